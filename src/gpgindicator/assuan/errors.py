"""Exceptions raised while reaching or talking to the gpg-agent."""

from __future__ import annotations

from typing import Optional


class AssuanError(Exception):
    """Base class for every agent protocol failure."""


class MalformedTransportFile(AssuanError):
    """Raised when a TCP redirect file does not hold ``<port>\\n<secret>``."""


class TransportError(AssuanError):
    """Raised when the connection to the agent fails or breaks."""


class AgentTimeout(TransportError):
    """Raised when the agent did not answer within the allowed time."""


class RequestCancelled(TransportError):
    """Raised in a blocked receive after the client was cancelled."""


class FramingError(AssuanError):
    """Raised when received bytes are not newline terminated."""


class UnknownResponseType(AssuanError):
    """Raised when a response line matches none of the known prefixes."""


class WrongResponseType(AssuanError):
    """Raised when a response is not of the type the caller expected."""


class AgentErrorResponse(WrongResponseType):
    """The agent answered ``ERR`` where something else was expected."""

    def __init__(self, code: int, description: Optional[str] = None) -> None:
        self.code = code
        self.description = description
        detail = f"{code} {description}" if description else str(code)
        super().__init__(f"gpg-agent error: {detail}")


class MalformedResponse(AssuanError):
    """Raised when a response of a known type fails to parse."""


class UnexpectedProtocolFlow(AssuanError):
    """Raised when the agent leaves the expected handshake script."""
