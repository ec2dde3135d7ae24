import pytest

from blobkit.storage.escape import (
    escape_key,
    escape_metadata_key,
    escape_metadata_value,
    hex_unescape,
    unescape_key,
    unescape_metadata_key,
    unescape_metadata_value,
)


@pytest.mark.parametrize(
    "key,expected",
    [
        ("plain/key.txt", "plain/key.txt"),
        ("a\\b", "a__0x5c__b"),
        ("tab\there", "tab__0x9__here"),
        ("del\x7f", "del__0x7f__"),
        ("dir/", "dir__0x2f__"),
        ("../up", "..__0x2f__up"),
        ("a/../b", "a/..__0x2f__b"),
        ("ünïcödé/😀", "ünïcödé/😀"),
    ],
)
def test_escape_key(key: str, expected: str) -> None:
    assert escape_key(key) == expected
    assert unescape_key(expected) == key


def test_escape_key_prefix_keeps_trailing_slash() -> None:
    assert escape_key("dir/", is_prefix=True) == "dir/"
    assert escape_key("/", is_prefix=True) == "/"


def test_escape_key_literal_marker_is_escaped() -> None:
    """A key that already looks like an escape marker must survive a round trip."""
    escaped = escape_key("__0x41__")
    assert escaped == "__0x5f___0x41__"
    assert unescape_key(escaped) == "__0x41__"


def test_escaped_keys_do_not_collide() -> None:
    keys = ["a\\b", "a__0x5c__b", "dir/", "dir__0x2f__"]
    escaped = {escape_key(k) for k in keys}
    assert len(escaped) == len(keys)


def test_hex_unescape_leaves_invalid_markers() -> None:
    assert hex_unescape("__0x110000__") == "__0x110000__"
    assert hex_unescape("__0xZZ__") == "__0xZZ__"
    assert hex_unescape("__0x41__") == "A"


@pytest.mark.parametrize(
    "key,expected",
    [
        ("valid_key", "valid_key"),
        ("content-type", "content__0x2d__type"),
        ("1abc", "__0x31__abc"),
        ("a1", "a1"),
        ("spa ce", "spa__0x20__ce"),
    ],
)
def test_escape_metadata_key(key: str, expected: str) -> None:
    assert escape_metadata_key(key) == expected
    assert unescape_metadata_key(expected) == key


def test_escape_metadata_value() -> None:
    assert escape_metadata_value("a b/c") == "a%20b%2Fc"
    assert escape_metadata_value("héllo") == "h%C3%A9llo"
    assert unescape_metadata_value("a%20b%2Fc") == "a b/c"
