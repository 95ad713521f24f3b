"""
Work out how to reach the gpg-agent.

Normally the agent listens on a Unix domain socket. Where the
platform has no real domain sockets (Gpg4win, for one) the agent
instead listens on a localhost TCP port and writes a regular file
at the socket path:

    <decimal port>\\n<raw shared secret bytes>

The client must send the secret as the very first bytes of the
session to authenticate.
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from .errors import MalformedTransportFile

logger = logging.getLogger("gpgindicator.assuan.transport")

TCP_HOST = "127.0.0.1"


@dataclass(frozen=True)
class SocketTarget:
    """A Unix domain socket endpoint."""

    path: Path


@dataclass(frozen=True)
class TcpTarget:
    """A localhost TCP endpoint plus the secret that opens it."""

    port: int
    secret: bytes = field(repr=False)
    host: str = TCP_HOST


AgentTarget = Union[SocketTarget, TcpTarget]


def detect_transport(path: Path | str) -> AgentTarget:
    """Decide between socket mode and TCP mode for an agent path.

    Anything that is not a regular file (a socket, a missing path, a
    symlink) is treated as a domain socket; connecting will report
    the real problem if there is one.

    Args:
        path: The agent socket path, e.g. from ``gpgconf``.

    Returns:
        SocketTarget or TcpTarget.

    Raises:
        MalformedTransportFile: If the redirect file has no newline or
            a non-decimal port.
    """
    path = Path(path)
    try:
        mode = os.lstat(path).st_mode
    except FileNotFoundError:
        return SocketTarget(path)

    if not stat.S_ISREG(mode):
        return SocketTarget(path)

    content = path.read_bytes()
    pos = content.find(b"\n")
    if pos == -1:
        raise MalformedTransportFile(f"{path}: no newline between port and secret")

    port_text = content[:pos].strip()
    if not port_text.isdigit():
        raise MalformedTransportFile(f"{path}: port is not a decimal number")

    target = TcpTarget(port=int(port_text), secret=content[pos + 1:])
    logger.debug("Agent at %s redirects to TCP port %d", path, target.port)
    return target
