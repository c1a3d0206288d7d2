"""Content and diff fingerprints."""

from __future__ import annotations

import hashlib
from typing import Union

from bs4 import BeautifulSoup

CHANGE_TAGS = ("ins", "del")


def hash_content(content: Union[str, bytes]) -> str:
    """SHA-256 hex digest of raw content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


# Diffs with no changes hash to one of these: an empty body, or an empty
# JSON change list.
EMPTY_HASHES = frozenset({hash_content(b""), hash_content(b"[]")})
NO_CHANGE = "[no change]"


def is_empty_hash(value) -> bool:
    return value in EMPTY_HASHES


def display_hash(value) -> str:
    """Hash as shown in reports, with the 'no change' sentinel."""
    if not value:
        return ""
    return NO_CHANGE if is_empty_hash(value) else value


def _decode(body: Union[str, bytes]) -> str:
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def change_markup(body: Union[str, bytes]) -> str:
    """
    The change-bearing part of a diff: every <ins>/<del> element in
    document order. Bodies without change markup are returned whole.
    """
    text = _decode(body)
    if "<ins" not in text and "<del" not in text:
        return text
    soup = BeautifulSoup(text, "lxml")
    changes = soup.find_all(CHANGE_TAGS)
    if not changes:
        return text
    return "\n".join(str(tag) for tag in changes)


def change_text(body: Union[str, bytes]) -> str:
    """Visible text of the changes in a diff, whitespace collapsed."""
    text = _decode(body)
    if "<" not in text:
        return " ".join(text.split())
    soup = BeautifulSoup(text, "lxml")
    changes = soup.find_all(CHANGE_TAGS)
    nodes = changes if changes else [soup]
    parts = []
    for node in nodes:
        part = " ".join(node.get_text(" ").split())
        if part:
            parts.append(f"{node.name}:{part}" if changes else part)
    return "\n".join(parts)


def diff_fingerprint(body: Union[str, bytes], text_only: bool = False):
    """Return (hash, length) for a diff body."""
    payload = change_text(body) if text_only else change_markup(body)
    encoded = payload.encode("utf-8")
    return hash_content(encoded), len(encoded)
