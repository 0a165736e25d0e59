"""Operator console commands for the relay."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatrelay.service import RelayService


SHUTDOWN_NOTICE = "server shutting down"

HELP_TEXT = "\n".join(
    [
        "commands:",
        "  /list               connected users",
        "  /pm <user> <text>   private message from the server",
        "  /stats              relay statistics",
        "  /quit               notify everyone and shut down",
        "  <text>              broadcast as a system notice",
    ]
)


class CommandHandler:
    """Handles lines typed on the relay's operator console."""

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay

    def handle_line(self, line: str) -> str | None:
        """Run one console line. Returns text for the operator, if any."""
        text = line.strip()
        if not text:
            return None

        if not text.startswith("/"):
            self.relay.broadcast_system(text)
            return None

        parts = text.split(" ", 2)
        cmd = parts[0][1:].lower()

        if cmd == "list":
            users = sorted(self.relay.registry.snapshot())
            return "connected: " + (", ".join(users) if users else "(none)")

        if cmd == "quit":
            self.relay.stop(notice=SHUTDOWN_NOTICE)
            return "relay stopped"

        if cmd == "pm":
            if len(parts) < 3 or not parts[1] or not parts[2].strip():
                return "usage: /pm <user> <message>"
            to, body = parts[1], parts[2]
            if not self.relay.send_server_pm(to, body):
                return f"user not found: {to}"
            return None

        if cmd == "stats":
            return self.relay.stats_manager.format_stats(self.relay.registry)

        if cmd == "help":
            return HELP_TEXT

        return f"unknown command: /{cmd} (try /help)"
