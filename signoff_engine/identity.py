"""Deterministic identity for work orders.

``record_key(issuer, wo_number)`` is the only thing any write path may use to
decide "insert new row" vs "update existing row". Every function here is total:
identity derivation must never block a write, so unresolvable input collapses
to the literal ``"unknown"`` segment instead of raising.
"""
from __future__ import annotations

import hashlib
import re
from typing import Any

from .utils import short_sha1

UNKNOWN = "unknown"

_UNSAFE = re.compile(r"[^a-z0-9_]")
_HOSTNAME = re.compile(r"^[a-z0-9-]+(\.[a-z0-9-]+)+$")

# Second-level labels under a two-letter country code that are themselves
# public suffixes (example.co.uk, example.com.au, ...).
_PUBLIC_SECOND_LEVEL = {"co", "com", "net", "org", "gov", "edu", "ac", "ltd", "plc"}


def _as_text(raw: Any) -> str:
    if raw is None or isinstance(raw, bool):
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="ignore")
    return str(raw)


def registrable_domain(host: str) -> str:
    """``mail.eu.example.com`` -> ``example.com``; ``a.example.co.uk`` -> ``example.co.uk``."""
    labels = [p for p in host.split(".") if p]
    if len(labels) <= 2:
        return ".".join(labels)
    if len(labels[-1]) == 2 and labels[-2] in _PUBLIC_SECOND_LEVEL:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def _slug(text: str) -> str:
    return _UNSAFE.sub("", text.replace(".", "_"))


def normalize_issuer_key(raw: Any) -> str:
    """Normalise a platform name, sender address or domain to an issuer key."""
    text = _as_text(raw).strip().lower()
    if "@" in text:
        text = text.rsplit("@", 1)[1].strip()
    if _HOSTNAME.match(text):
        text = registrable_domain(text)
    return _slug(text) or UNKNOWN


def normalize_wo_number(raw: Any) -> str:
    return _slug(_as_text(raw).strip().lower()) or UNKNOWN


def record_key(issuer: Any, wo_number: Any) -> str:
    return f"{normalize_issuer_key(issuer)}:{normalize_wo_number(wo_number)}"


def same_work_order(a: Any, b: Any) -> bool:
    na, nb = normalize_wo_number(a), normalize_wo_number(b)
    return na != UNKNOWN and na == nb


def digits_only(raw: Any) -> str:
    """Strip ``WO``/``work order`` prefixes and keep digits (``"WO# 123-45"`` -> ``"12345"``)."""
    text = _as_text(raw).strip()
    text = re.sub(r"^wo\s*#?\s*", "", text, flags=re.IGNORECASE)
    text = re.sub(r"^work\s*order\s*#?\s*", "", text, flags=re.IGNORECASE)
    return "".join(ch for ch in text if ch in "0123456789")


def document_fingerprint(document_bytes: bytes) -> str:
    """sha256 of the raw document: the same physical scan always maps to one id."""
    return hashlib.sha256(document_bytes).hexdigest()


def review_id_for(fm_key: Any, document_id: str) -> str:
    return "review_" + short_sha1(f"{normalize_issuer_key(fm_key)}|{document_id}")
