"""Parser for the free-form allowlist text.

The allowlist is authored by hand, often through a rich-text editor, so the
text arrives with markup, HTML entities, byte-order marks and invisible
Unicode characters mixed in. Each clean-up step below is a separate function
so it can be tested on its own; :func:`parse_allow_map` chains them.

Format, one rule per line::

    # comment
    // comment
    /* block
       comment */
    <!-- markup comment -->
    restricted-page-1 => 203.0.113.10, 203.0.113.0/24   // trailing comment
    restricted-page-2 => 2001:db8::1, 2001:db8::/64

A slug may be written with surrounding slashes or percent-encoded; entries
are registered under both the literal and the decoded slug. Rules for the
same slug on several lines are merged.
"""
from __future__ import annotations

import html
import logging
import re
import unicodedata
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union
from urllib.parse import unquote

from .diagnostics import Diagnostics

log = logging.getLogger(__name__)

AllowMap = Dict[str, List[str]]

_UTF8_BOM = b"\xef\xbb\xbf"
_MISDECODED_BOM = "\u00ef\u00bb\u00bf"

_BREAK_TAG = re.compile(r"<\s*br\s*/?\s*>", re.IGNORECASE)
_PARAGRAPH_CLOSE = re.compile(r"<\s*/\s*p\s*>", re.IGNORECASE)
_SCRIPT_STYLE = re.compile(r"<\s*(script|style)\b[^>]*>.*?<\s*/\s*\1\s*>", re.IGNORECASE | re.DOTALL)
_MARKUP_COMMENT = re.compile(r"<!\s*--.*?--\s*>", re.DOTALL)
_TAG = re.compile(r"<\s*/?\s*[A-Za-z][^<>]*>|<![^<>]*>|<\?[^<>]*\?>")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)

_WIDE_SPACES = re.compile("[\u00a0\u3000]")
_ZERO_WIDTH = re.compile("[\ufeff\u200b\u200c\u200d\u2060]")

_TRIM_CHARS = "\\s\u00a0\u3000\ufeff\u200b\u200c\u200d\u2060\u00ad"
_TRIM = re.compile(f"^[{_TRIM_CHARS}]+|[{_TRIM_CHARS}]+$")

_COMMENT_LINE = re.compile(r"^\s*(#|//)")
_TRAILING_COMMENT = re.compile(r"\s*(//|#).*$", re.DOTALL)
_RULE_SEPARATOR = re.compile(r"\s*=>\s*")
_KEY_EDGE_CHARS = "/ \t\n\r\0"


def trim(value: str) -> str:
    """``str.strip`` that also removes BOM, zero-width and soft-hyphen characters."""
    return _TRIM.sub("", value)


def markup_breaks_to_newlines(text: str) -> str:
    text = _BREAK_TAG.sub("\n", text)
    return _PARAGRAPH_CLOSE.sub("\n", text)


def strip_markup(text: str) -> str:
    """Remove tags while keeping the line structure."""
    text = _SCRIPT_STYLE.sub("", text)
    text = _MARKUP_COMMENT.sub("", text)
    return _TAG.sub("", text)


def decode_entities(text: str) -> str:
    return html.unescape(text)


def strip_bom(text: str) -> str:
    if text.startswith(_MISDECODED_BOM):
        text = text[len(_MISDECODED_BOM):]
    if text.startswith("\ufeff"):
        text = text[1:]
    return text


def strip_format_chars(text: str) -> str:
    """Drop Unicode ``Cf`` code points (bidi marks, zero-width joiners, ...)."""
    return "".join(ch for ch in text if unicodedata.category(ch) != "Cf")


def normalize_spaces(text: str) -> str:
    text = _WIDE_SPACES.sub(" ", text)
    return _ZERO_WIDTH.sub("", text)


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def strip_block_comments(text: str) -> str:
    return _BLOCK_COMMENT.sub("", text)


def strip_markup_comments(text: str) -> str:
    return _MARKUP_COMMENT.sub("", text)


def _decode(raw_text: Union[str, bytes]) -> str:
    if isinstance(raw_text, bytes):
        if raw_text.startswith(_UTF8_BOM):
            raw_text = raw_text[len(_UTF8_BOM):]
        return raw_text.decode("utf-8", errors="replace")
    return raw_text


def clean_text(raw_text: Union[str, bytes]) -> str:
    """Run every text-level stage, in order, before the text is split into lines."""
    text = _decode(raw_text or "")
    for stage in (
        markup_breaks_to_newlines,
        strip_markup,
        decode_entities,
        strip_bom,
        strip_format_chars,
        normalize_spaces,
        normalize_newlines,
        strip_block_comments,
        strip_markup_comments,
    ):
        text = stage(text)
    return text


def iter_rule_lines(text: str, diagnostics: Optional[Diagnostics] = None) -> Iterator[str]:
    """Yield the non-empty, comment-free lines of cleaned text."""
    for raw_line in text.split("\n"):
        line = trim(raw_line)
        if not line or _COMMENT_LINE.match(line):
            continue
        line = trim(_TRAILING_COMMENT.sub("", line))
        if not line:
            if diagnostics is not None:
                diagnostics.skip("line", raw_line, "only a comment after trimming")
            continue
        yield line


def slug_variants(raw_key: str) -> List[str]:
    """Return the decoded and the literal form of a rule key, deduplicated."""
    key = trim(trim(raw_key).strip(_KEY_EDGE_CHARS))
    if not key:
        return []
    variants = [trim(unquote(key)), key]
    return [variant for variant in dict.fromkeys(variants) if variant]


def parse_rule_line(line: str, diagnostics: Optional[Diagnostics] = None) -> Optional[Tuple[List[str], List[str]]]:
    """Split ``slug => ip, ip/len`` into its key variants and entry list."""
    parts = _RULE_SEPARATOR.split(line, maxsplit=1)
    if len(parts) != 2:
        if diagnostics is not None:
            diagnostics.skip("line", line, "missing '=>' separator")
        return None

    keys = slug_variants(parts[0])
    entries = [entry for entry in (trim(item) for item in trim(parts[1]).split(",")) if entry]
    if not keys or not entries:
        if diagnostics is not None:
            diagnostics.skip("line", line, "empty slug or address list")
        return None
    return keys, entries


def merge_entries(allow_map: AllowMap, key: str, entries: List[str]) -> None:
    existing = allow_map.setdefault(key, [])
    for entry in entries:
        if entry not in existing:
            existing.append(entry)


def parse_allow_map(raw_text: Union[str, bytes], diagnostics: Optional[Diagnostics] = None) -> AllowMap:
    """Turn allowlist text into ``{slug: [ip-or-cidr, ...]}``.

    Entries are kept as written; whether they parse is decided when they are
    matched. Lines that cannot be understood are skipped, never fatal.
    """
    allow_map: AllowMap = {}
    for line in iter_rule_lines(clean_text(raw_text), diagnostics):
        parsed = parse_rule_line(line, diagnostics)
        if parsed is None:
            continue
        keys, entries = parsed
        for key in keys:
            merge_entries(allow_map, key, entries)
    return allow_map


def lookup_specs(allow_map: AllowMap, identifier: str) -> Optional[List[str]]:
    """Find the entries for a resource by its literal, trimmed or decoded name.

    Returns ``None`` when the resource is not listed at all, which callers
    treat differently from a listed resource with no usable entries.
    """
    if not identifier:
        return None
    trimmed = trim(identifier).strip(_KEY_EDGE_CHARS)
    for candidate in dict.fromkeys((identifier, trimmed, unquote(trimmed))):
        if candidate in allow_map:
            return allow_map[candidate]
    return None


def load_allow_map(path: Path, diagnostics: Optional[Diagnostics] = None) -> AllowMap:
    """Read and parse an allowlist file; raises ``OSError`` if it cannot be read."""
    allow_map = parse_allow_map(path.read_bytes(), diagnostics)
    log.debug("Parsed %d allowlist entries from %s", len(allow_map), path)
    return allow_map


__all__ = [
    "AllowMap",
    "clean_text",
    "decode_entities",
    "iter_rule_lines",
    "load_allow_map",
    "lookup_specs",
    "markup_breaks_to_newlines",
    "merge_entries",
    "normalize_newlines",
    "normalize_spaces",
    "parse_allow_map",
    "parse_rule_line",
    "slug_variants",
    "strip_block_comments",
    "strip_bom",
    "strip_format_chars",
    "strip_markup",
    "strip_markup_comments",
    "trim",
]
