"""Assuan protocol client for the gpg-agent.

- transport: socket vs. TCP redirect-file discovery
- codec: request encoding, response classification and decoding
- client: one buffered connection
- handshake: the unlock script built on top of the client
"""

from gpgindicator.assuan.client import AssuanClient
from gpgindicator.assuan.codec import Request, Response, ResponseType, classify
from gpgindicator.assuan.errors import (
    AgentErrorResponse,
    AgentTimeout,
    AssuanError,
    FramingError,
    MalformedResponse,
    MalformedTransportFile,
    RequestCancelled,
    TransportError,
    UnexpectedProtocolFlow,
    UnknownResponseType,
    WrongResponseType,
)
from gpgindicator.assuan.handshake import unlock
from gpgindicator.assuan.transport import AgentTarget, SocketTarget, TcpTarget, detect_transport

__all__ = [
    "AgentErrorResponse",
    "AgentTarget",
    "AgentTimeout",
    "AssuanClient",
    "AssuanError",
    "FramingError",
    "MalformedResponse",
    "MalformedTransportFile",
    "Request",
    "RequestCancelled",
    "Response",
    "ResponseType",
    "SocketTarget",
    "TcpTarget",
    "TransportError",
    "UnexpectedProtocolFlow",
    "UnknownResponseType",
    "WrongResponseType",
    "classify",
    "detect_transport",
    "unlock",
]
