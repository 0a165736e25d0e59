from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

from .codec import decode_verified, deserialize, verify
from .constants import T_JOIN, USERNAME_MAX_CHARS
from .errors import DecodeError, IntegrityError, ProtocolViolation, TransportError
from .util import normalize_username

if TYPE_CHECKING:
    from .connection import Connection
    from .registry import Registry
    from .router import MessageRouter


class SessionState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    ACTIVE = "active"
    CLOSED = "closed"


class Session:
    """
    Per-connection lifecycle: handshake, steady-state loop, teardown.

    UNAUTHENTICATED -> ACTIVE -> CLOSED, one way. Handshake failures are
    fatal (one error reply, then close). Bad records once ACTIVE are answered
    with an error and the loop continues.
    """

    def __init__(
        self,
        connection: Connection,
        registry: Registry,
        router: MessageRouter,
        *,
        username_max_chars: int = USERNAME_MAX_CHARS,
    ) -> None:
        self.conn = connection
        self.registry = registry
        self.router = router
        self.stats = router.stats
        self.username_max_chars = int(username_max_chars)
        self.state = SessionState.UNAUTHENTICATED
        self.username: str | None = None
        self.log = logging.getLogger("chatrelay.session")

    def run(self) -> None:
        self.stats.inc("connections")
        self.log.debug("Session started peer=%s", self.conn.peer)
        try:
            if self._handshake():
                self._active_loop()
        except ProtocolViolation as e:
            self.stats.inc("joins_rejected")
            self.log.info("Handshake rejected peer=%s reason=%s", self.conn.peer, e)
            self.router.send_error(self.conn, str(e))
        except TransportError as e:
            self.log.info(
                "Transport error user=%r peer=%s err=%s", self.username, self.conn.peer, e
            )
        finally:
            self._finish()

    def _next_record(self) -> bytes | None:
        while True:
            record = self.conn.receive()
            if record is None or record.strip():
                return record

    def _handshake(self) -> bool:
        try:
            record = self._next_record()
        except DecodeError as e:
            raise ProtocolViolation(f"invalid join record: {e}") from e
        if record is None:
            self.log.debug("Peer left before join peer=%s", self.conn.peer)
            return False

        self.stats.inc("records_in")
        try:
            join = deserialize(record)
        except DecodeError as e:
            self.stats.inc("records_bad")
            raise ProtocolViolation("invalid join record") from e

        if join.msg_type != T_JOIN:
            raise ProtocolViolation("expected 'join'")

        if not verify(join):
            self.stats.inc("records_corrupt")
            raise ProtocolViolation("checksum invalid in join")

        if not join.sender.strip():
            raise ProtocolViolation("username empty")

        user = normalize_username(join.sender, self.username_max_chars)
        if user is None:
            raise ProtocolViolation("invalid username")

        if not self.registry.register_if_absent(user, self.conn):
            raise ProtocolViolation("user already connected")

        self.username = user
        self.conn.username = user
        self.state = SessionState.ACTIVE
        self.stats.inc("joins")
        self.log.info("User joined user=%r peer=%s", user, self.conn.peer)

        self.router.send_ack(self.conn, "connected to server")
        self.router.broadcast_system(f"{user} has joined", exclude=user)
        return True

    def _active_loop(self) -> None:
        while self.state is SessionState.ACTIVE:
            try:
                record = self._next_record()
            except DecodeError as e:
                self.stats.inc("records_bad")
                self.router.send_error(self.conn, f"bad record: {e}")
                continue

            if record is None:
                return

            self.stats.inc("records_in")
            try:
                message = decode_verified(record)
            except IntegrityError:
                self.stats.inc("records_corrupt")
                self.router.send_error(self.conn, "checksum mismatch; message discarded")
                continue
            except DecodeError as e:
                self.stats.inc("records_bad")
                self.log.debug(
                    "Bad record user=%r bytes=%s err=%s", self.username, len(record), e
                )
                self.router.send_error(self.conn, "malformed record")
                continue

            self.router.route(self.conn, message)

    def _finish(self) -> None:
        was_active = self.state is SessionState.ACTIVE
        self.state = SessionState.CLOSED

        if was_active and self.username is not None:
            if self.registry.unregister_if_owner(self.username, self.conn):
                self.stats.inc("parts")
                self.router.broadcast_system(f"{self.username} has left")
                self.log.info("User left user=%r peer=%s", self.username, self.conn.peer)

        self.conn.close()
        self.log.debug("Session closed user=%r peer=%s", self.username, self.conn.peer)
