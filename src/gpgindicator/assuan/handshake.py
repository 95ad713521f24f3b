"""
Unlock a key in the gpg-agent by signing a dummy digest.

The agent caches a passphrase once it has been used for a private
key operation. So to "unlock" we ask the agent to sign the SHA-1 of
the empty string with loopback pinentry, and hand it the passphrase
when it inquires. The signature itself is thrown away.

Script:
    <- OK                              greeting
    -> OPTION pinentry-mode loopback   <- OK
    -> SIGKEY <keygrip>                <- OK
    -> SETHASH --hash=sha1 <digest>    <- OK
    -> PKSIGN
       already unlocked:  <- D <sig>  <- OK
       locked:            <- S ...    <- INQUIRE PASSPHRASE
                          -> D <passphrase>  -> END
                          <- D <sig>  <- OK
    -> BYE                             <- OK
"""

from __future__ import annotations

import hashlib
import logging

from .client import DEFAULT_TIMEOUT, AssuanClient
from .codec import Request, Response, ResponseType
from .errors import AgentErrorResponse, UnexpectedProtocolFlow
from .transport import AgentTarget

logger = logging.getLogger("gpgindicator.assuan.handshake")

EMPTY_SHA1 = hashlib.sha1(b"").hexdigest().upper()


def _receive(client: AssuanClient) -> Response:
    """Receive one response; an ``ERR`` line is raised as AgentErrorResponse."""
    response = client.receive_response()
    if response.type is ResponseType.ERROR:
        error = response.to_error()
        raise AgentErrorResponse(error.code, error.description)
    return response


def _expect(client: AssuanClient, expected: ResponseType) -> Response:
    """Receive one response and insist on its type."""
    response = _receive(client)
    response.check_type(expected)
    return response


def _command(client: AssuanClient, command: str, parameters: str | None = None) -> None:
    """Send a command and require a plain ``OK``."""
    client.send_request(Request.command(command, parameters))
    _expect(client, ResponseType.OK)


def unlock(
    target: AgentTarget,
    keygrip: str,
    passphrase: str,
    timeout: float = DEFAULT_TIMEOUT,
) -> None:
    """Unlock the key identified by ``keygrip``.

    The connection is closed on every exit path.

    Args:
        target: Where the agent listens.
        keygrip: Agent-local identifier of the key.
        passphrase: Passphrase to hand over if the agent asks for it.
        timeout: Bound on each agent read.

    Raises:
        TransportError: Connecting, reading or writing failed.
        WrongResponseType: The agent answered with an unexpected type
            (``AgentErrorResponse`` for an ``ERR``, e.g. a bad passphrase).
        UnexpectedProtocolFlow: ``PKSIGN`` was answered with neither
            data nor a status line.
    """
    with AssuanClient(target, timeout=timeout) as client:
        client.initialize()
        _expect(client, ResponseType.OK)

        _command(client, "OPTION", "pinentry-mode loopback")
        _command(client, "SIGKEY", keygrip)
        _command(client, "SETHASH", f"--hash=sha1 {EMPTY_SHA1}")

        client.send_request(Request.command("PKSIGN"))
        response = client.receive_response()
        response_type = response.type

        if response_type is ResponseType.RAW_DATA:
            logger.info("Key %s was already unlocked", keygrip)
            _expect(client, ResponseType.OK)
        elif response_type is ResponseType.INFORMATION:
            inquiry = _receive(client).to_inquire()
            logger.debug("Agent inquires %s, sending passphrase", inquiry.keyword)
            client.send_request(Request.raw_data(passphrase.encode("utf-8")))
            client.send_request(Request.command("END"))
            _expect(client, ResponseType.RAW_DATA)
            _expect(client, ResponseType.OK)
        else:
            detail = response_type.name
            if response_type is ResponseType.ERROR:
                error = response.to_error()
                detail = f"ERR {error.code} {error.description or ''}".rstrip()
            raise UnexpectedProtocolFlow(f"Unexpected response to PKSIGN: {detail}")

        _command(client, "BYE")
        logger.info("Key %s unlocked", keygrip)
