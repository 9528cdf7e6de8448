"""
Handle normalization for social usernames shown on cards.
"""
import re

_WHITESPACE_RE = re.compile(r"\s+")
_LEADING_AT_RE = re.compile(r"^@+")


def normalize_handle(value: str | None) -> str:
    """
    Normalize a user handle to a single leading "@".

    All whitespace is removed; an empty result stays empty.
    "  @@Foo Bar " -> "@FooBar", "emir" -> "@emir".
    """
    if not value:
        return ""
    compact = _WHITESPACE_RE.sub("", value)
    if not compact:
        return ""
    return "@" + _LEADING_AT_RE.sub("", compact)
