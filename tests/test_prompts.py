from story.prompts import build_story_prompt, genre_context


def test_new_story_prompt_without_context():
    prompt = build_story_prompt("  I am a knight  ")
    assert 'The player has entered the command: "I am a knight"' in prompt
    assert "Here's the story so far" not in prompt
    assert "CONTENT MODERATION" in prompt


def test_continuation_prompt_includes_transcript_and_genre():
    prompt = build_story_prompt("go left", context="> look\nA dark corridor.", genre="Sci-Fi")
    assert "Here's the story so far:\n> look\nA dark corridor." in prompt
    assert 'The player\'s command is: "go left"' in prompt
    assert "This is a sci-fi adventure." in prompt


def test_blank_genre_adds_nothing():
    assert genre_context("") == ""
    assert genre_context("   ") == ""
