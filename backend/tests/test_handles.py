import pytest

from services.handles import normalize_handle


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("", ""),
        (None, ""),
        ("emir", "@emir"),
        ("@emir", "@emir"),
        ("@@@emir", "@emir"),
        ("  @@Foo Bar ", "@FooBar"),
        ("   ", ""),
        ("a\tb\nc", "@abc"),
    ],
)
def test_normalize_handle_examples(raw, expected):
    assert normalize_handle(raw) == expected


@pytest.mark.parametrize("raw", ["emir", "@@x y", "  @Foo  ", "", "name_with.dots"])
def test_normalize_handle_is_idempotent(raw):
    once = normalize_handle(raw)
    assert normalize_handle(once) == once


def test_normalized_handle_has_single_leading_at_and_no_whitespace():
    out = normalize_handle(" @ @ @ spaced out ")
    assert out.startswith("@")
    assert not out.startswith("@@")
    assert not any(ch.isspace() for ch in out)
