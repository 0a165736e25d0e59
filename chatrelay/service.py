from __future__ import annotations

import logging
import signal
import socket
import sys
import threading
from typing import TextIO

from .commands import CommandHandler
from .config import RelayRuntimeConfig
from .connection import Connection
from .registry import Registry
from .router import MessageRouter
from .session import Session
from .stats import StatsManager


class RelayService:
    def __init__(
        self, config: RelayRuntimeConfig, registry: Registry | None = None
    ) -> None:
        self.config = config
        self.log = logging.getLogger("chatrelay.relay")

        # Injected so tests and embedders can share or inspect it.
        self.registry = registry if registry is not None else Registry()
        self.stats_manager = StatsManager()
        self.router = MessageRouter(self.registry, self.stats_manager)
        self.command_handler = CommandHandler(self)

        self._shutdown = threading.Event()
        self._stop_lock = threading.Lock()

        self._listener: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._console_thread: threading.Thread | None = None

        # Every open connection, including ones still in the handshake.
        self._live_lock = threading.Lock()
        self._live: set[Connection] = set()

    @property
    def accepting(self) -> bool:
        return self._listener is not None and not self._shutdown.is_set()

    @property
    def address(self) -> tuple[str, int]:
        if self._listener is None:
            raise RuntimeError("relay is not started")
        host, port = self._listener.getsockname()[:2]
        return host, port

    def start(self) -> None:
        if self._listener is not None:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.config.host, int(self.config.port)))
            sock.listen(int(self.config.backlog))
        except OSError:
            sock.close()
            raise

        self._listener = sock
        self.stats_manager.set_start_time()

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="chatrelay-accept", daemon=True
        )
        self._accept_thread.start()

        host, port = self.address
        self.log.info("Relay listening on %s:%s", host, port)

    def _accept_loop(self) -> None:
        listener = self._listener
        if listener is None:
            raise RuntimeError("relay is not started")

        while not self._shutdown.is_set():
            try:
                sock, addr = listener.accept()
            except OSError as e:
                if self._shutdown.is_set():
                    break
                self.log.warning("Accept failed: %s", e)
                continue

            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            except OSError:
                pass

            peer = f"{addr[0]}:{addr[1]}"
            conn = Connection(sock, peer=peer, max_record_bytes=self.config.max_record_bytes)
            with self._live_lock:
                self._live.add(conn)

            if self._shutdown.is_set():
                conn.close()
                break

            t = threading.Thread(
                target=self._serve, args=(conn,), name=f"client-{peer}", daemon=True
            )
            t.start()
            self.log.debug("Accepted connection peer=%s", peer)

        self.log.info("Accept loop stopped")

    def _serve(self, conn: Connection) -> None:
        session = Session(
            conn,
            self.registry,
            self.router,
            username_max_chars=self.config.username_max_chars,
        )
        try:
            session.run()
        except Exception:
            self.log.exception("Session crashed peer=%s", conn.peer)
            conn.close()
        finally:
            with self._live_lock:
                self._live.discard(conn)

    def live_connections(self) -> list[Connection]:
        with self._live_lock:
            return list(self._live)

    def broadcast_system(self, text: str) -> int:
        return self.router.broadcast_system(text)

    def send_server_pm(self, to: str, text: str) -> bool:
        return self.router.send_server_pm(to, text)

    def console_loop(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        stdin = stdin if stdin is not None else sys.stdin
        stdout = stdout if stdout is not None else sys.stdout

        for raw in stdin:
            reply = self.command_handler.handle_line(raw)
            if reply:
                print(reply, file=stdout, flush=True)
            if self._shutdown.is_set():
                break

    def run_forever(self, *, console: bool | None = None) -> None:
        if self._listener is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        use_console = self.config.console if console is None else console
        if use_console:
            self._console_thread = threading.Thread(
                target=self.console_loop, name="chatrelay-console", daemon=True
            )
            self._console_thread.start()

        while not self._shutdown.wait(0.25):
            pass

        if self._accept_thread is not None:
            self._accept_thread.join(timeout=2.0)
        self.log.info("Relay stopped")

    def stop(self, notice: str | None = None) -> None:
        """Stop accepting and close every connection. Idempotent."""
        with self._stop_lock:
            if self._shutdown.is_set():
                return
            self._shutdown.set()

        self.log.info("Relay shutting down")

        if notice:
            self.router.broadcast_system(notice)

        listener = self._listener
        if listener is not None:
            # shutdown() wakes a thread blocked in accept() on Linux.
            for closer in (lambda: listener.shutdown(socket.SHUT_RDWR), listener.close):
                try:
                    closer()
                except OSError:
                    pass

        # Sessions observe the close as end-of-stream and run their own cleanup.
        for conn in self.registry.connections() + self.live_connections():
            conn.close()
