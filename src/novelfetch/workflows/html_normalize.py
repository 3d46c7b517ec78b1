"""HTML decoding, text repair and strict-XML serialization helpers.

Chapter fragments end up inside XHTML documents, so everything serialized here
must be well-formed XML: the only named references left in the output are the
five XML predefined ones, every other character reference is numeric, and no
bare ampersand survives.
"""

from __future__ import annotations

import re
import unicodedata
from html.entities import codepoint2name, name2codepoint
from typing import Mapping, Optional

import ftfy
from bs4 import Tag
from bs4.formatter import HTMLFormatter
from charset_normalizer import from_bytes

__all__ = [
    "XML_ENTITY_FORMATTER",
    "collapse_whitespace",
    "decode_bytes_auto",
    "is_safe_xml_attribute",
    "is_valid_xml_name",
    "minimal_text_fix",
    "serialize_node",
    "to_strict_xml_entities",
]

_ZERO_WIDTH = {0x200B, 0x200C, 0x200D, 0x2060, 0xFEFF}
_REMOVE = {0x00, 0x0B, 0x0C}
_C1_TO_SPACE = {cp: " " for cp in range(0x80, 0xA0)}
_TRANSLATE = {**{cp: None for cp in _ZERO_WIDTH | _REMOVE}, **_C1_TO_SPACE}
# Code points XML 1.0 does not allow, raw or as character references.
_XML_FORBIDDEN = {
    cp: None
    for cp in [*range(0x00, 0x09), 0x0B, 0x0C, *range(0x0E, 0x20), *range(0xD800, 0xE000), 0xFFFE, 0xFFFF]
}

_WHITESPACE_RE = re.compile(r"\s+")
_NAMED_REF_RE = re.compile(r"&([a-zA-Z][a-zA-Z0-9]*);")
_BARE_AMP_RE = re.compile(r"&(?!(?:[a-zA-Z][a-zA-Z0-9]*|#\d+|#[xX][0-9a-fA-F]+);)")
_XML_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_XML_BOUND_ATTRS = frozenset({"xml:lang", "xml:space"})
_XML_PREDEFINED = frozenset({"amp", "lt", "gt", "quot"})


def decode_bytes_auto(body: bytes, headers: Optional[Mapping[str, str]] = None) -> str:
    """Decode HTTP bytes using charset header hints with charset-normalizer fallback."""

    enc = None
    if headers:
        ct = headers.get("content-type", "") or headers.get("Content-Type", "")
        match = re.search(r"charset=([^\s;]+)", ct, re.I)
        if match:
            enc = match.group(1).strip(' "\'').lower()
    if enc:
        try:
            return body.decode(enc, errors="replace")
        except LookupError:
            pass
    if not body:
        return ""
    result = from_bytes(body).best()
    if result is None:
        return body.decode("utf-8", errors="replace")
    return str(result)


def minimal_text_fix(text: str) -> str:
    """Fix mojibake and strip zero-width/control noise without collapsing structure."""

    if not text:
        return ""
    normalized = unicodedata.normalize("NFC", text)
    fixed = ftfy.fix_text(normalized, normalization="NFC")
    return fixed.translate(_TRANSLATE)


def collapse_whitespace(text: Optional[str]) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def is_valid_xml_name(name: str) -> bool:
    """True for names that need no namespace prefix; anything with a colon fails."""

    return bool(name) and bool(_XML_NAME_RE.match(name))


def is_safe_xml_attribute(name: str) -> bool:
    if name in _XML_BOUND_ATTRS:
        return True
    return is_valid_xml_name(name) and not name.lower().startswith("xml")


def _substitute_numeric(value: str) -> str:
    out = []
    for ch in value.translate(_XML_FORBIDDEN):
        if ch == "&":
            out.append("&amp;")
        elif ch == "<":
            out.append("&lt;")
        elif ch == ">":
            out.append("&gt;")
        elif ord(ch) > 127 and ord(ch) in codepoint2name:
            out.append(f"&#{ord(ch)};")
        else:
            out.append(ch)
    return "".join(out)


# Characters that HTML would spell as a named entity are written numerically.
XML_ENTITY_FORMATTER = HTMLFormatter(entity_substitution=_substitute_numeric)


def _named_to_numeric(match: "re.Match[str]") -> str:
    name = match.group(1)
    if name in _XML_PREDEFINED:
        return match.group(0)
    if name == "apos":
        return "&#39;"
    codepoint = name2codepoint.get(name)
    if codepoint is None:
        return f"&amp;{name};"
    return f"&#{codepoint};"


def to_strict_xml_entities(markup: str) -> str:
    """Rewrite named references as numeric ones and escape bare ampersands."""

    if not markup:
        return ""
    converted = _NAMED_REF_RE.sub(_named_to_numeric, markup)
    return _BARE_AMP_RE.sub("&amp;", converted)


def serialize_node(node: Tag) -> str:
    """Serialize ``node`` with numeric entities; a ``body`` contributes only its children."""

    if node.name == "body":
        markup = node.decode_contents(formatter=XML_ENTITY_FORMATTER)
    else:
        markup = node.decode(formatter=XML_ENTITY_FORMATTER)
    return to_strict_xml_entities(markup)
