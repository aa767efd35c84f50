"""
Lexical helpers shared by the definition and record parsers.

- strip_comments: remove `#`, `//` and `/* */` comments, keeping line numbers
- parse_literal / quote_literal: the literal grammar of record files
- quote_string: always-quoted form, used for oneOf option lists

Invariants:
    - Comment markers inside double-quoted strings are kept verbatim
    - strip_comments never changes the number of lines
"""

from __future__ import annotations

import re

_ESCAPES = {"n": "\n", "t": "\t", '"': '"', "\\": "\\"}
_REVERSE_ESCAPES = {"\n": "\\n", "\t": "\\t", '"': '\\"', "\\": "\\\\"}
_BARE_RE = re.compile(r'[^\s"]+')


def strip_comments(text: str) -> str:
    """Remove comments from `text`, preserving quoted strings and newlines.

    Block comments are replaced by spaces (and their newlines kept) so that
    every remaining character stays on its original line.
    """
    out: list[str] = []
    i = 0
    length = len(text)
    in_string = False

    while i < length:
        ch = text[i]

        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < length:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"' or ch == "\n":
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif ch == "#" or text.startswith("//", i):
            end = text.find("\n", i)
            i = length if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            stop = length if end == -1 else end + 2
            out.append("".join("\n" if c == "\n" else " " for c in text[i:stop]))
            i = stop
        else:
            out.append(ch)
            i += 1

    return "".join(out)


def parse_literal(text: str) -> str:
    """Parse one literal: a double-quoted string or a bare token.

    Returns:
        The literal's text with quotes removed and escapes resolved

    Raises:
        ValueError: If the literal is empty, unterminated or has trailing text
    """
    text = text.strip()
    if not text:
        raise ValueError("missing value")

    if not text.startswith('"'):
        if not _BARE_RE.fullmatch(text):
            raise ValueError(f"bare value '{text}' must be a single token; quote it")
        return text

    chars: list[str] = []
    i = 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            if i + 1 >= len(text):
                break
            escaped = text[i + 1]
            if escaped not in _ESCAPES:
                raise ValueError(f"unknown escape '\\{escaped}'")
            chars.append(_ESCAPES[escaped])
            i += 2
            continue
        if ch == '"':
            if text[i + 1 :].strip():
                raise ValueError("unexpected text after closing quote")
            return "".join(chars)
        chars.append(ch)
        i += 1

    raise ValueError("unterminated string")


def quote_literal(value: str) -> str:
    """Render `value` so that parse_literal gives it back unchanged."""
    needs_quotes = (
        not value
        or not _BARE_RE.fullmatch(value)
        or "#" in value
        or "//" in value
        or "/*" in value
    )
    if not needs_quotes:
        return value
    return quote_string(value)


def quote_string(value: str) -> str:
    """Render `value` as a double-quoted string with escapes."""
    return '"' + "".join(_REVERSE_ESCAPES.get(c, c) for c in value) + '"'
