"""Room code generation and normalisation."""

from __future__ import annotations

import secrets
import string

from app.settings import settings

ALPHABET = string.ascii_uppercase + string.digits


def generate_code(length: int | None = None) -> str:
	size = length or settings.room_code_length
	return "".join(secrets.choice(ALPHABET) for _ in range(size))


def normalize_code(code: str | None) -> str:
	return (code or "").strip().upper()
