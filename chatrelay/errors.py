"""Error taxonomy shared by the relay and the participant client."""

from __future__ import annotations


class ChatRelayError(Exception):
    pass


class DecodeError(ChatRelayError, ValueError):
    """A record that cannot be parsed into a message."""


class IntegrityError(ChatRelayError, ValueError):
    """A record whose declared checksum does not match its fields."""


class ProtocolViolation(ChatRelayError):
    """A handshake-level failure; the session is closed after one error reply."""


class TransportError(ChatRelayError, OSError):
    """The underlying stream failed."""
