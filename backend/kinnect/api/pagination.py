from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime

from kinnect.domain.errors import ValidationError


def encode_cursor(dt: datetime, id: str) -> str:
    payload = {"t": dt.isoformat(), "id": id}
    return base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()


def decode_cursor(s: str) -> tuple[datetime, str]:
    try:
        data = json.loads(base64.urlsafe_b64decode(s.encode()).decode())
        return (datetime.fromisoformat(data["t"]), str(data["id"]))
    except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError):
        raise ValidationError("invalid_cursor") from None


def decode_optional(s: str | None) -> tuple[datetime, str] | None:
    return decode_cursor(s) if s else None
