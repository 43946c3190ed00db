"""
string_differ.py — Diff the string tables of two JavaScript bundles.

A string table is the set of `KEY: "value"` entries a bundle defines (keys
are upper snake case, quoted or not). The diff lists removed, changed and
added entries as `-` / `+` lines, rendered in one of MODES.
"""

import re

CODEBLOCK = "codeblock"
PLAIN = "plain"
MODES = (CODEBLOCK, PLAIN)

# A key right after `?` (or `? `) is a ternary branch such as `a?FOO:"x"`,
# not an entry. Wider spacing before the key is not detected.
STRING_ENTRY_RE = re.compile(
    r"""(?<![\w$"'?])(?<!\?\s)["']?([A-Z][A-Z0-9_]+)["']?\s*:\s*"((?:[^"\\\n]|\\.)*)\""""
)

# Zero-width spaces keep a value from closing the surrounding fence
_FENCE = "```"
_BROKEN_FENCE = "`\u200b`\u200b`"


class StringDiffError(Exception):
    """Raised when the inputs cannot be diffed."""


def parse_strings(content: str) -> dict[str, str]:
    """Map each string key to its raw (still escaped) value; first definition wins."""
    strings: dict[str, str] = {}
    for key, value in STRING_ENTRY_RE.findall(content):
        strings.setdefault(key, value)
    return strings


def _load_table(content: str, label: str) -> dict[str, str]:
    strings = parse_strings(content)
    if not strings and content.strip():
        raise StringDiffError(f"no string table found in {label} content")
    return strings


def _entry(sign: str, key: str, value: str) -> str:
    return f'{sign} {key}: "{value}"'


def diff_lines(old_strings: dict[str, str], new_strings: dict[str, str]) -> list[str]:
    lines = []
    for key, value in old_strings.items():
        if key not in new_strings:
            lines.append(_entry("-", key, value))
    for key, value in new_strings.items():
        if key not in old_strings:
            lines.append(_entry("+", key, value))
        elif old_strings[key] != value:
            lines.append(_entry("-", key, old_strings[key]))
            lines.append(_entry("+", key, value))
    return lines


def render(lines: list[str], mode: str) -> str:
    if not lines:
        return ""
    if mode == PLAIN:
        return "\n".join(lines)
    body = "\n".join(line.replace(_FENCE, _BROKEN_FENCE) for line in lines)
    return f"{_FENCE}diff\n{body}\n{_FENCE}"


def diff_strings(old_content: str, new_content: str, mode: str = CODEBLOCK) -> str:
    """Return the rendered string table diff, or "" when nothing changed.

    Raises StringDiffError for an unknown mode or when non-empty content
    carries no string table at all.
    """
    if mode not in MODES:
        raise StringDiffError(f"unknown diff mode {mode!r} (expected one of {', '.join(MODES)})")
    if old_content == new_content:
        return ""

    old_strings = _load_table(old_content, "old")
    new_strings = _load_table(new_content, "new")
    return render(diff_lines(old_strings, new_strings), mode)
