"""Invite codes — short alphanumeric tokens used to join a group."""

from __future__ import annotations

import secrets
import string

INVITE_ALPHABET = string.ascii_uppercase + string.digits


def generate_invite_code(length: int = 8) -> str:
    return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(length))


def normalize_invite_code(code: str) -> str:
    """Codes are compared case-insensitively, stored uppercase."""
    return (code or "").strip().upper()
