from __future__ import annotations

import hashlib
import json
import math
from dataclasses import replace
from typing import Any

from .constants import F_CHECKSUM_ALT, F_FROM, F_MD5, F_TEXT, F_TO, F_TS, F_TYPE
from .envelope import Message
from .errors import DecodeError, IntegrityError


def _dumps(obj: dict[str, Any]) -> bytes:
    s = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    # JS line separators are legal in JSON strings but break some line readers.
    s = s.replace("\u2028", "\\u2028").replace("\u2029", "\\u2029")
    # Lone surrogates (from "\ud800" escapes) become "?".
    return s.encode("utf-8", errors="replace")


def _canonical_map(message: Message) -> dict[str, Any]:
    return {
        F_FROM: message.sender or "",
        F_TEXT: message.text or "",
        F_TO: message.to or "",
        F_TS: int(message.ts or 0),
        F_TYPE: message.msg_type or "",
    }


def canonical_encode(message: Message) -> bytes:
    """Deterministic encoding of the checksummed fields (checksum excluded)."""
    return _dumps(_canonical_map(message))


def compute_checksum(message: Message) -> str:
    return hashlib.md5(canonical_encode(message)).hexdigest()


def sign(message: Message) -> Message:
    return replace(message, checksum=compute_checksum(message))


def serialize(message: Message) -> bytes:
    """Encode a message as one record, without the terminator.

    The checksum is always recomputed from the other fields.
    """
    record = _canonical_map(message)
    record[F_MD5] = compute_checksum(message)
    return _dumps(record)


def _str_field(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _ts_field(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return 0
    return 0


def deserialize(data: bytes | str) -> Message:
    if isinstance(data, (bytes, bytearray)):
        try:
            text = bytes(data).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"record is not valid UTF-8: {e}") from e
    else:
        text = data

    try:
        raw = json.loads(text)
    except ValueError as e:
        raise DecodeError(f"malformed record: {e}") from e
    except RecursionError as e:
        raise DecodeError("record is nested too deeply") from e

    if not isinstance(raw, dict):
        raise DecodeError("record must be a JSON object")

    checksum = raw.get(F_MD5) if F_MD5 in raw else raw.get(F_CHECKSUM_ALT)

    return Message(
        msg_type=_str_field(raw.get(F_TYPE)),
        sender=_str_field(raw.get(F_FROM)),
        to=_str_field(raw.get(F_TO)),
        text=_str_field(raw.get(F_TEXT)),
        ts=_ts_field(raw.get(F_TS)),
        checksum=_str_field(checksum),
    )


def verify(message: Message) -> bool:
    if not message.checksum:
        return False
    return message.checksum.lower() == compute_checksum(message)


def decode_verified(data: bytes | str) -> Message:
    """Deserialize a record and reject it unless its checksum matches."""
    message = deserialize(data)
    if not verify(message):
        raise IntegrityError("checksum mismatch; message discarded")
    return message
