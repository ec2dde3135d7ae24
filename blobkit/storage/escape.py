"""
Escaping helpers for object keys and metadata.

Keys and metadata are arbitrary UTF-8 strings on the portable side, while
backends reject or mangle some characters. Escaped characters are written as
``__0x<hex>__`` markers; unescaping reverses every valid marker and passes
everything else through untouched.
"""

import re
from collections.abc import Callable, Sequence
from urllib.parse import quote, unquote

ShouldEscape = Callable[[Sequence[str], int], bool]

_MARKER_START = ("_", "_", "0", "x")
_MARKER_PATTERN = re.compile(r"__0x([0-9a-fA-F]+)__")


def _starts_marker(chars: Sequence[str], i: int) -> bool:
    return tuple(chars[i:i + 4]) == _MARKER_START


def hex_escape(value: str, should_escape: ShouldEscape) -> str:
    """
    Escape the characters of ``value`` selected by ``should_escape``.

    ``should_escape`` receives the full character sequence and the index being
    considered. A literal ``__0x`` already present in the input always has its
    first underscore escaped so the result decodes unambiguously.
    """
    chars = list(value)
    escaped = []
    changed = False
    for i, c in enumerate(chars):
        if should_escape(chars, i) or _starts_marker(chars, i):
            escaped.append(f"__{ord(c):#x}__")
            changed = True
        else:
            escaped.append(c)
    if not changed:
        return value
    return "".join(escaped)


def hex_unescape(value: str) -> str:
    """Reverse hex_escape."""

    def _replace(match: re.Match) -> str:
        code_point = int(match.group(1), 16)
        if code_point > 0x10FFFF:
            return match.group(0)
        return chr(code_point)

    return _MARKER_PATTERN.sub(_replace, value)


def url_escape(value: str) -> str:
    """Percent-encode every character outside the unreserved set."""
    return quote(value, safe="")


def url_unescape(value: str) -> str:
    return unquote(value)


def is_ascii_alphanumeric(c: str) -> bool:
    return ("a" <= c <= "z") or ("A" <= c <= "Z") or ("0" <= c <= "9")


def _key_should_escape(is_prefix: bool) -> ShouldEscape:
    def should_escape(chars: Sequence[str], i: int) -> bool:
        c = chars[i]
        if c == "\\":
            return True
        if ord(c) < 32 or ord(c) == 127:
            return True
        # A trailing "/" on a full key cannot be addressed consistently.
        if not is_prefix and i == len(chars) - 1 and c == "/":
            return True
        if i > 1 and c == "/" and chars[i - 1] == "." and chars[i - 2] == ".":
            return True
        return False

    return should_escape


def escape_key(key: str, is_prefix: bool = False) -> str:
    """
    Escape a blob key for Azure.

    ``is_prefix`` is True for list prefixes and delimiters, where a trailing
    "/" is meaningful and must be kept as is.
    """
    return hex_escape(key, _key_should_escape(is_prefix))


def unescape_key(key: str) -> str:
    return hex_unescape(key)


def _metadata_key_should_escape(chars: Sequence[str], i: int) -> bool:
    c = chars[i]
    if i == 0 and "0" <= c <= "9":
        return True
    if is_ascii_alphanumeric(c) or c == "_":
        return False
    return True


def escape_metadata_key(key: str) -> str:
    """Escape a metadata key into a C# identifier, as Azure requires."""
    return hex_escape(key, _metadata_key_should_escape)


def unescape_metadata_key(key: str) -> str:
    return hex_unescape(key)


def escape_metadata_value(value: str) -> str:
    return url_escape(value)


def unescape_metadata_value(value: str) -> str:
    return url_unescape(value)
