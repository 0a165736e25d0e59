from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .codec import serialize
from .constants import SERVER_NAME, T_ACK, T_ERROR, T_MSG, T_PM, T_SYSTEM
from .envelope import Message, make_message
from .stats import StatsManager

if TYPE_CHECKING:
    from .connection import Connection
    from .registry import Registry


class MessageRouter:
    """
    Dispatch policy for verified messages from active sessions.

    This class is responsible for:
    - Broadcasting chat messages to every participant except the sender
    - Delivering private messages to a single registered recipient
    - Rejecting unsupported message types with an error to the sender only
    - Building relay-originated records (system, ack, error, server PM)
    """

    def __init__(self, registry: Registry, stats: StatsManager | None = None) -> None:
        self.registry = registry
        self.stats = stats if stats is not None else StatsManager()
        self.log = logging.getLogger("chatrelay.router")

    def route(self, source: Connection, message: Message) -> None:
        username = source.username
        t = message.msg_type

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX user=%r peer=%s type=%r to=%r text_len=%s",
                username,
                source.peer,
                t,
                message.to,
                len(message.text),
            )

        if not username:
            self.send_error(source, "not authenticated")
            return

        if t == T_MSG:
            self.broadcast_from(username, message.text)
        elif t == T_PM:
            if not message.to:
                self.send_error(source, "pm requires 'to'")
                return
            self.private_from_to(source, message.to, message.text)
        else:
            self.send_error(source, f"unsupported message type: {t!r}")

    def broadcast_from(self, sender: str, text: str) -> int:
        payload = serialize(make_message(T_MSG, sender=sender, text=text))
        n = self.registry.for_each_except(sender, lambda conn: conn.send(payload))
        self.stats.inc("msgs_forwarded")
        return n

    def private_from_to(self, source: Connection, to: str, text: str) -> bool:
        dest = self.registry.lookup(to)
        if dest is None:
            self.send_error(source, f"user {to} is not connected")
            return False

        pm = make_message(T_PM, sender=source.username or "", to=to, text=text)
        dest.send(serialize(pm))
        self.stats.inc("pms_forwarded")
        return True

    def broadcast_system(self, text: str, *, exclude: str | None = None) -> int:
        payload = serialize(make_message(T_SYSTEM, sender=SERVER_NAME, text=text))
        n = self.registry.for_each_except(exclude, lambda conn: conn.send(payload))
        self.stats.inc("system_sent")
        return n

    def send_server_pm(self, to: str, text: str) -> bool:
        dest = self.registry.lookup(to)
        if dest is None:
            return False
        pm = make_message(T_PM, sender=SERVER_NAME, to=to, text=text)
        return dest.send(serialize(pm))

    def send_ack(self, conn: Connection, text: str) -> bool:
        ack = make_message(T_ACK, sender=SERVER_NAME, to=conn.username or "", text=text)
        return conn.send(serialize(ack))

    def send_error(self, conn: Connection, text: str) -> bool:
        self.stats.inc("errors_sent")
        err = make_message(T_ERROR, sender=SERVER_NAME, to=conn.username or "", text=text)
        return conn.send(serialize(err))
