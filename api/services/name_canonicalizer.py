"""
Name canonicalization for duplicate detection.

Turns free-text names into comparable token lists:
1. Trim and lower-case
2. "&" and "+" become the word "and"
3. Anything that is not a letter, digit or whitespace becomes a space
4. Whitespace is collapsed and the name is split into tokens
5. Names of 3+ tokens drop single-character tokens (middle initials)
6. The first remaining token is mapped through the nickname table

Examples:
    "Bob Smith"           -> ["robert", "smith"]
    "John Q. Public"      -> ["john", "public"]
    "Smith & Wesson"      -> ["smith", "and", "wesson"]
    "O'Brien, Kate"       -> ["brien", "kate"]

Pure and stateless; safe to call from any thread.
"""
import re
from typing import Optional

from config.matching_weights import MIDDLE_INITIAL_MIN_TOKENS
from config.nickname_lookup import get_canonical_first_name

# "_" is a word character but not alphanumeric
_NON_ALPHANUMERIC = re.compile(r"[^\w\s]|_")
_AMPERSAND = re.compile(r"[&+]")
_WHITESPACE = re.compile(r"\s+")


def canonical_tokens(name: Optional[str]) -> list[str]:
    """
    Normalize a name into canonical tokens.

    Args:
        name: Raw name string (may be None or empty)

    Returns:
        Ordered list of normalized tokens, empty for empty input
    """
    if not name:
        return []

    text = name.strip().lower()
    text = _AMPERSAND.sub(" and ", text)
    text = _NON_ALPHANUMERIC.sub(" ", text)
    text = _WHITESPACE.sub(" ", text).strip()
    if not text:
        return []

    tokens = text.split(" ")

    if len(tokens) >= MIDDLE_INITIAL_MIN_TOKENS:
        tokens = [t for t in tokens if len(t) > 1]
        if not tokens:
            return []

    tokens[0] = get_canonical_first_name(tokens[0])
    return tokens


def canonical_key(name: Optional[str]) -> str:
    """Canonical tokens joined by a single space, for equality checks."""
    return " ".join(canonical_tokens(name))
