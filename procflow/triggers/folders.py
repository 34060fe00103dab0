"""Folder matching for ON_FILE_CREATED procedures.

Rules are tried in a fixed order and the first hit wins:

    exact      normalized folder equals the file's folder
    prefix     normalized file path starts with ``folder + "/"``
    provider   folder looks like a storage provider id and is a whole
               segment of the file path

Normalization lower-cases, turns backslashes into slashes, collapses repeated
slashes and strips leading and trailing slashes, so ``/Invoices/`` and
``invoices`` compare equal. Matching is segment aware: ``invoices`` never
matches ``archived-invoices``.
"""

from __future__ import annotations

import re
from typing import Optional

RULE_EXACT = "exact"
RULE_PREFIX = "prefix"
RULE_PROVIDER = "provider"

_PROVIDER_ID = re.compile(r"^[A-Za-z0-9_-]+$")
_SLASHES = re.compile(r"/+")


def normalize_folder(path: Optional[str]) -> str:
    if not path:
        return ""
    path = _SLASHES.sub("/", path.strip().replace("\\", "/"))
    return path.strip("/").lower()


def parent_folder(file_path: str) -> str:
    """Normalized folder containing *file_path*."""
    normalized = normalize_folder(file_path)
    head, _, _ = normalized.rpartition("/")
    return head


def looks_like_provider_id(value: str, min_length: int = 20) -> bool:
    return len(value) >= min_length and bool(_PROVIDER_ID.match(value))


def match_folder(
    configured: Optional[str],
    file_path: str,
    provider_id_min_length: int = 20,
) -> Optional[str]:
    """Return the name of the rule under which *file_path* lives in *configured*, else None."""
    folder = normalize_folder(configured)
    if not folder:
        return None
    path = normalize_folder(file_path)

    if folder == parent_folder(file_path):
        return RULE_EXACT
    if path.startswith(folder + "/"):
        return RULE_PREFIX

    raw = (configured or "").strip()
    if looks_like_provider_id(raw, provider_id_min_length):
        # provider ids are case sensitive
        segments = [s for s in _SLASHES.split(file_path.replace("\\", "/")) if s]
        if raw in segments:
            return RULE_PROVIDER
    return None
