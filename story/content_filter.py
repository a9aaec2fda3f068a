"""
Prohibited-content filter for player commands and model output.

Terms are matched case-insensitively as whole words (plain plural
included), also when obfuscated with spaces or punctuation between the
letters ("s.l.u.r"). Ordinary words that merely contain a term are left
alone. Model answers
that read as an educational reply about offensive language are passed
through untouched.
"""
import re
from typing import Iterable, List, Pattern, Tuple

# Basic list of slurs; extend as needed
DEFAULT_PROHIBITED_TERMS: Tuple[str, ...] = (
    "nigga", "nigger", "faggot", "retard", "spic", "kike", "chink", "gook",
)

EDUCATIONAL_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"harmful", re.I),
    re.compile(r"inappropriate", re.I),
    re.compile(r"offensive", re.I),
    re.compile(r"instead.{1,30}try", re.I),
    re.compile(r"language.{1,50}hurtful", re.I),
    re.compile(r"slur", re.I),
    re.compile(r"respectful", re.I),
    re.compile(r"inclusive", re.I),
)

CONTENT_WARNING_MESSAGE = (
    "I notice that you've used language that could be considered offensive or "
    "disrespectful. In our adventure, let's try to use inclusive and respectful "
    "language so everyone can feel welcome. What would you like your character to do next?"
)


class ContentFilter:
    def __init__(self, terms: Iterable[str] = DEFAULT_PROHIBITED_TERMS):
        self.terms: List[str] = [t.lower() for t in terms if t]
        # whole word, letters optionally separated by non-word characters or underscores
        self._patterns = [
            re.compile(r"\b" + r"[\W_]*".join(re.escape(ch) for ch in t) + r"s?\b", re.I)
            for t in self.terms
        ]

    def contains_prohibited_content(self, text: str) -> bool:
        if not text:
            return False
        return any(p.search(text) for p in self._patterns)

    @staticmethod
    def is_educational_response(text: str) -> bool:
        """True when at least two educational patterns match."""
        if not text:
            return False
        return sum(1 for p in EDUCATIONAL_PATTERNS if p.search(text)) >= 2

    def filter_prohibited_content(self, text: str) -> str:
        """Mask prohibited terms with asterisks; educational answers are left alone."""
        if not text or self.is_educational_response(text):
            return text

        filtered = text
        for term, pattern in zip(self.terms, self._patterns):
            filtered = pattern.sub("*" * len(term), filtered)
        return filtered


_default_filter = ContentFilter()


def contains_prohibited_content(text: str) -> bool:
    return _default_filter.contains_prohibited_content(text)


def is_educational_response(text: str) -> bool:
    return ContentFilter.is_educational_response(text)


def filter_prohibited_content(text: str) -> str:
    return _default_filter.filter_prohibited_content(text)
