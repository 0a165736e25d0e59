from __future__ import annotations

import time
from dataclasses import dataclass


def now_s() -> int:
    return int(time.time())


@dataclass(frozen=True)
class Message:
    msg_type: str = ""
    sender: str = ""
    to: str = ""
    text: str = ""
    ts: int = 0
    checksum: str = ""


def make_message(
    msg_type: str,
    *,
    sender: str,
    to: str = "",
    text: str = "",
    ts: int | None = None,
) -> Message:
    return Message(
        msg_type=msg_type,
        sender=sender,
        to=to,
        text=text,
        ts=now_s() if ts is None else int(ts),
    )
