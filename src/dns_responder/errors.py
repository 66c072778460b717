"""Exceptions raised by the DNS wire codec."""

from dns_responder.types import FailureReason


class DecodeError(Exception):
    """A datagram violates the wire format.

    Raised inside the codec and turned into a ``DecodeFailure`` by the reader,
    so it never reaches callers of ``read_query``.
    """

    def __init__(self, reason: FailureReason, message: str):
        super().__init__(message)
        self.reason = reason


class EncodingError(ValueError):
    """A response cannot be represented on the wire."""
