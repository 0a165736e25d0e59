from __future__ import annotations

import logging
import socket
import threading

from .constants import MAX_RECORD_BYTES, RECORD_TERMINATOR
from .errors import DecodeError, TransportError


class Connection:
    """
    One participant's duplex byte stream.

    Records are newline-terminated. Writes are serialized with a per-connection
    lock so concurrent fan-out never interleaves two records. Reads are
    expected from a single thread (the owning session).
    """

    def __init__(
        self,
        sock: socket.socket,
        *,
        peer: str | None = None,
        max_record_bytes: int = MAX_RECORD_BYTES,
    ) -> None:
        self.log = logging.getLogger("chatrelay.connection")
        self.peer = peer or "-"
        self.username: str | None = None
        self.max_record_bytes = int(max_record_bytes)

        self._sock = sock
        self._rfile = sock.makefile("rb")
        self._write_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False

    def __repr__(self) -> str:
        return f"<Connection peer={self.peer} user={self.username!r} closed={self._closed}>"

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, payload: bytes) -> bool:
        """Write one record. Returns False (never raises) if the peer is gone."""
        with self._write_lock:
            if self._closed:
                return False
            try:
                self._sock.sendall(payload + RECORD_TERMINATOR)
                return True
            except OSError as e:
                self.log.debug(
                    "Send failed peer=%s user=%r bytes=%s err=%s",
                    self.peer,
                    self.username,
                    len(payload),
                    e,
                )
        self.close()
        return False

    def receive(self) -> bytes | None:
        """
        Block for the next record.

        Returns None at end of stream or after a local close. Raises
        TransportError on I/O failure and DecodeError for an oversized record
        (the remainder of that record is consumed first).
        """
        limit = self.max_record_bytes
        line = self._readline(limit + 1)
        if not line:
            return None

        if len(line) > limit and not line.endswith(RECORD_TERMINATOR):
            while line and not line.endswith(RECORD_TERMINATOR):
                line = self._readline(limit + 1)
            raise DecodeError(f"record exceeds {limit} bytes")

        return line.rstrip(b"\r\n")

    def _readline(self, size: int) -> bytes:
        try:
            return self._rfile.readline(size)
        except (OSError, ValueError) as e:
            # ValueError: the reader was closed underneath us.
            if self._closed:
                return b""
            raise TransportError(f"read failed from {self.peer}: {e}") from e

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        # shutdown() wakes a reader blocked in readline().
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

        for closer in (self._rfile.close, self._sock.close):
            try:
                closer()
            except OSError as e:
                self.log.debug("Close failed peer=%s err=%s", self.peer, e)
