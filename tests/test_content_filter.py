from story.content_filter import ContentFilter, DEFAULT_PROHIBITED_TERMS, contains_prohibited_content

content_filter = ContentFilter(terms=["grimword"])


def test_detects_plain_and_obfuscated_terms():
    assert content_filter.contains_prohibited_content("you GRIMWORD")
    assert content_filter.contains_prohibited_content("g.r.i.m w_o-r d")
    assert not content_filter.contains_prohibited_content("walk north")
    assert not content_filter.contains_prohibited_content("")


def test_filter_masks_terms():
    assert content_filter.filter_prohibited_content("the grimword ogre") == "the ******** ogre"


def test_educational_reply_left_alone():
    reply = "That word is a slur and can be hurtful. Let's keep our story respectful."
    assert content_filter.is_educational_response(reply)
    assert content_filter.filter_prohibited_content(reply + " grimword") == reply + " grimword"


def test_single_pattern_is_not_educational():
    assert not content_filter.is_educational_response("The offensive line of orcs advances.")


def test_default_terms_used_by_module_helpers():
    assert DEFAULT_PROHIBITED_TERMS
    assert contains_prohibited_content(DEFAULT_PROHIBITED_TERMS[0].upper())


def test_words_containing_a_term_are_not_flagged():
    short_term = ContentFilter(terms=["spic"])
    assert not short_term.contains_prohibited_content("I eat a spicy stew")
    assert not short_term.contains_prohibited_content("I open the suspicious door")
    assert short_term.filter_prohibited_content("a spicy, suspicious stew") == "a spicy, suspicious stew"


def test_whole_word_and_plural_are_flagged():
    short_term = ContentFilter(terms=["spic"])
    assert short_term.contains_prohibited_content("Spic!")
    assert short_term.contains_prohibited_content("those spics")
    assert short_term.contains_prohibited_content("s-p-i-c")
