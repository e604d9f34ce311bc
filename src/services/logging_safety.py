"""Helpers that keep principal ids and tokens out of log lines."""
from __future__ import annotations

import hashlib
from typing import Optional


def safe_log_identifier(value: Optional[str], *, prefix: str) -> str:
    """Deterministic, non-reversible stand-in for an identifier in logs."""
    text = (value or "").strip()
    if not text:
        return f"{prefix}-missing"
    return f"{prefix}-{hashlib.sha256(text.encode('utf-8')).hexdigest()[:12]}"


def token_fingerprint(token: Optional[str]) -> str:
    """Short digest that lets two log lines be matched to the same token."""
    return safe_log_identifier(token, prefix="tok")
