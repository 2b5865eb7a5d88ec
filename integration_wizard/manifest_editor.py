"""Scoped-registry edits for the package manifest (Packages/manifest.json).

The manifest is validated with ``json`` and then edited in place: only the
matched entry's ``scopes`` (or ``url``) value is replaced, and new entries or
a new registries section are spliced in as text. Every byte outside those
spans is kept, including key order, spacing, inline arrays and line endings.
New text follows the layout found around the insertion point, so a minified
manifest stays on one line. When the registry is already in the desired
state the original text is returned untouched.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Protocol, Sequence, Tuple

from .models import RegistryEntry

logger = logging.getLogger(__name__)

REGISTRIES_KEY = "scopedRegistries"
UTF8_BOM = b"\xef\xbb\xbf"

_DECODER = json.JSONDecoder()
_WS = re.compile(r"[ \t\n\r]*")
_INLINE_WS = re.compile(r"[ \t]*")


class MalformedDocument(ValueError):
    pass


class DocumentStore(Protocol):
    def exists(self, path: str) -> bool:
        ...

    def read(self, path: str) -> bytes:
        ...

    def write(self, path: str, data: bytes) -> None:
        ...


class FileDocumentStore:
    def exists(self, path: str) -> bool:
        return Path(path).is_file()

    def read(self, path: str) -> bytes:
        return Path(path).read_bytes()

    def write(self, path: str, data: bytes) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)


def decode_document(data: bytes) -> str:
    if data.startswith(UTF8_BOM):
        data = data[len(UTF8_BOM):]
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedDocument(f"manifest is not UTF-8 text: {e}") from e


def encode_document(text: str) -> bytes:
    return text.lstrip("\ufeff").encode("utf-8")


def _parse(document: str) -> Dict[str, Any]:
    try:
        root = json.loads(document.lstrip("\ufeff"))
    except json.JSONDecodeError as e:
        raise MalformedDocument(f"manifest is not valid JSON: {e}") from e
    if not isinstance(root, dict):
        raise MalformedDocument("manifest root must be an object")
    return root


def _registries(root: Dict[str, Any]) -> List[Dict[str, Any]]:
    registries = root[REGISTRIES_KEY]
    if not isinstance(registries, list):
        raise MalformedDocument(f"{REGISTRIES_KEY} must be a list")
    for item in registries:
        if not isinstance(item, dict):
            raise MalformedDocument(f"{REGISTRIES_KEY} entries must be objects")
    return registries


def _has_registry(document: str, name: str) -> bool:
    root = _parse(document)
    if REGISTRIES_KEY not in root:
        return False
    return any(item.get("name") == name for item in _registries(root))


def find_registry(document: str, name: str) -> Optional[RegistryEntry]:
    root = _parse(document)
    if REGISTRIES_KEY not in root:
        return None
    for item in _registries(root):
        if item.get("name") == name:
            scopes = item.get("scopes")
            if not isinstance(scopes, list):
                raise MalformedDocument(f"registry {name}: scopes list not found")
            return RegistryEntry(name=name, url=str(item.get("url") or ""), scopes=tuple(scopes))
    return None


# ---- text spans ----------------------------------------------------------
#
# The scanners below only run on text that json.loads has already accepted.


class _Member(NamedTuple):
    key: str
    lead: int  # just after the preceding "{" or ","
    start: int
    key_end: int
    value: int
    end: int


class _Style(NamedTuple):
    newline: str
    unit: Optional[str]  # None: keep new text on one line
    colon: str
    comma: str


def _skip_ws(text: str, i: int) -> int:
    return _WS.match(text, i).end()


def _members(text: str, start: int) -> List[_Member]:
    """Spans of the members of the object that opens at ``text[start]``."""

    out: List[_Member] = []
    i = start + 1
    while True:
        lead = i
        i = _skip_ws(text, i)
        if text[i] == "}":
            return out
        key, key_end = _DECODER.raw_decode(text, i)
        value = _skip_ws(text, _skip_ws(text, key_end) + 1)
        _, end = _DECODER.raw_decode(text, value)
        out.append(_Member(key, lead, i, key_end, value, end))
        i = _skip_ws(text, end)
        if text[i] == "}":
            return out
        i += 1


def _items(text: str, start: int) -> List[Tuple[int, int]]:
    """(start, end) spans of the elements of the array that opens at ``text[start]``."""

    out: List[Tuple[int, int]] = []
    i = _skip_ws(text, start + 1)
    if text[i] == "]":
        return out
    while True:
        _, end = _DECODER.raw_decode(text, i)
        out.append((i, end))
        i = _skip_ws(text, end)
        if text[i] == "]":
            return out
        i = _skip_ws(text, i + 1)


def _last(members: Sequence[_Member], key: str) -> Optional[_Member]:
    # json.loads keeps the last of repeated keys
    for m in reversed(members):
        if m.key == key:
            return m
    return None


def _indent_at(text: str, pos: int) -> str:
    line = text.rfind("\n", 0, pos) + 1
    return _INLINE_WS.match(text, line).group()


def _style(text: str, members: Sequence[_Member]) -> _Style:
    newline = "\r\n" if "\r\n" in text else "\n"
    unit: Optional[str] = "  " if "\n" in text else None
    colon = ": "
    if members:
        first = members[0]
        lead = text[first.lead:first.start]
        unit = (lead.rsplit("\n", 1)[1] or "  ") if "\n" in lead else None
        between = text[first.key_end:first.value]
        if "\n" not in between:
            colon = between
    comma = ", " if colon.endswith(" ") else ","
    return _Style(newline, unit, colon, comma)


def _render(value: Any, style: _Style, base: str) -> str:
    if style.unit is None:
        return json.dumps(value, ensure_ascii=False, separators=(style.comma, style.colon))
    text = json.dumps(value, ensure_ascii=False, indent=style.unit, separators=(",", style.colon))
    return text.replace("\n", style.newline + base)


def _render_scopes(old: str, scopes: List[str], style: _Style, base: str) -> str:
    if "\n" in old or (not json.loads(old) and style.unit is not None):
        return _render(scopes, style, base)
    if not scopes:
        return "[]"
    pad = _INLINE_WS.match(old, 1).group()
    return "[" + pad + style.comma.join(json.dumps(s, ensure_ascii=False) for s in scopes) + pad + "]"


def _splice(text: str, edits: List[Tuple[int, int, str]]) -> str:
    for start, end, replacement in sorted(edits, key=lambda e: e[0], reverse=True):
        text = text[:start] + replacement + text[end:]
    return text


def _add_section(document: str, root_start: int, members: List[_Member], entry: RegistryEntry, style: _Style) -> str:
    value = [entry.to_json()]
    if not members:
        _, root_end = _DECODER.raw_decode(document, root_start)
        text = _render({REGISTRIES_KEY: value}, style, _indent_at(document, root_start))
        return _splice(document, [(root_start, root_end, text)])

    last = members[-1]
    if style.unit is None:
        base = ""
        sep = style.comma
    else:
        base = _indent_at(document, last.start)
        sep = "," + style.newline + base
    text = sep + json.dumps(REGISTRIES_KEY) + style.colon + _render(value, style, base)
    return _splice(document, [(last.end, last.end, text)])


def _insert_first(document: str, section: _Member, items: List[Tuple[int, int]], entry: RegistryEntry, style: _Style) -> str:
    if not items:
        text = _render([entry.to_json()], style, _indent_at(document, section.start))
        return _splice(document, [(section.value, section.end, text)])

    first = items[0][0]
    lead = document[section.value + 1:first]
    if "\n" in lead:
        text = _render(entry.to_json(), style, lead.rsplit("\n", 1)[1])
    else:
        text = _render(entry.to_json(), style._replace(unit=None), "")
    return _splice(document, [(first, first, text + "," + lead)])


def ensure_registry(document: str, entry: RegistryEntry, *, update_url: bool = False) -> str:
    """Return ``document`` with exactly one registry named ``entry.name``.

    - no registries section: one is appended as the last root key
    - no entry of that name: a new entry is inserted first in the list
    - existing entry: its scopes are replaced (and its url when ``update_url``)

    Raises MalformedDocument when the document or the registries section
    cannot be understood; the caller keeps its original text in that case.
    """

    root = _parse(document)
    root_start = _skip_ws(document, 1 if document.startswith("\ufeff") else 0)
    members = _members(document, root_start)
    style = _style(document, members)

    if REGISTRIES_KEY not in root:
        return _add_section(document, root_start, members, entry, style)

    registries = _registries(root)
    section = _last(members, REGISTRIES_KEY)
    items = _items(document, section.value)
    matches = [i for i, item in enumerate(registries) if item.get("name") == entry.name]

    if not matches:
        return _insert_first(document, section, items, entry, style)

    existing = registries[matches[0]]
    scopes = existing.get("scopes")
    if not isinstance(scopes, list):
        raise MalformedDocument(f"registry {entry.name}: scopes list not found")

    desired = list(entry.scopes)
    move_url = update_url and existing.get("url") != entry.url
    if scopes == desired and not move_url and len(matches) == 1:
        return document

    target = _members(document, items[matches[0]][0])
    scopes_span = _last(target, "scopes")
    edits: List[Tuple[int, int, str]] = []
    if scopes != desired:
        old = document[scopes_span.value:scopes_span.end]
        base = _indent_at(document, scopes_span.start)
        edits.append((scopes_span.value, scopes_span.end, _render_scopes(old, desired, style, base)))
    if move_url:
        url = json.dumps(entry.url, ensure_ascii=False)
        url_span = _last(target, "url")
        if url_span is not None:
            edits.append((url_span.value, url_span.end, url))
        else:
            gap = document[scopes_span.lead:scopes_span.start]
            colon = document[scopes_span.key_end:scopes_span.value]
            edits.append((scopes_span.start, scopes_span.start, '"url"' + colon + url + "," + gap))
    for i in matches[1:]:
        logger.warning("Dropping duplicate registry entry %s", entry.name)
        edits.append((items[i - 1][1], items[i][1], ""))

    return _splice(document, edits)


def ensure_registry_file(
    store: DocumentStore,
    path: str,
    entry: RegistryEntry,
    *,
    update_url: bool = False,
) -> bool:
    """Apply ensure_registry to a stored manifest. Returns True if it was rewritten."""

    if not store.exists(path):
        raise FileNotFoundError(path)

    before = decode_document(store.read(path))
    existed = _has_registry(before, entry.name)
    after = ensure_registry(before, entry, update_url=update_url)

    if after == before:
        logger.info("Scoped registry %s already up to date", entry.name)
        return False

    store.write(path, encode_document(after))
    if not existed:
        logger.info("Scoped registry %s added (%s)", entry.name, ", ".join(entry.scopes))
    else:
        logger.info("Scoped registry %s scopes set to [%s]", entry.name, ", ".join(entry.scopes))
    return True
