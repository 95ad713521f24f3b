"""
Assuan client: one connection to the gpg-agent.

A reader thread drains the socket into a queue of complete lines.
Transport failures go into a separate error queue, and a pending
error always wins over buffered lines: once the transport is broken
the lines behind it cannot be trusted.

Usage:
    with AssuanClient(detect_transport(socket_path)) as client:
        client.initialize()
        client.receive_response().to_ok()
        client.send_request(Request.command("GETINFO", "version"))
"""

from __future__ import annotations

import logging
import socket
import threading
from collections import deque
from typing import Optional

from .codec import Request, Response, split_lines
from .errors import AgentTimeout, FramingError, RequestCancelled, TransportError
from .transport import AgentTarget, SocketTarget

logger = logging.getLogger("gpgindicator.assuan.client")

DEFAULT_TIMEOUT = 10.0
RECV_SIZE = 4096


class AssuanClient:
    """Client side of a single Assuan session.

    The connection is opened by :meth:`initialize` and closed by
    :meth:`dispose` (or by leaving the ``with`` block).

    Args:
        target: Where the agent listens.
        timeout: Bound in seconds on connecting and on each receive.
    """

    def __init__(self, target: AgentTarget, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.target = target
        self.timeout = timeout
        self._sock: Optional[socket.socket] = None
        self._reader: Optional[threading.Thread] = None
        self._cond = threading.Condition()
        self._send_lock = threading.Lock()
        self._lines: deque[bytes] = deque()
        self._errors: deque[Exception] = deque()
        self._end_of_stream: Optional[Exception] = None
        self._established = threading.Event()
        self._disposed = threading.Event()

    @property
    def is_established(self) -> bool:
        return self._established.is_set()

    def __enter__(self) -> "AssuanClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    def initialize(self) -> None:
        """Connect, and authenticate first when in TCP mode.

        Raises:
            TransportError: If the agent cannot be reached.
        """
        if self._disposed.is_set():
            raise TransportError("Client already disposed")

        try:
            self._sock = self._connect()
        except OSError as exc:
            raise TransportError(f"Cannot connect to gpg-agent at {self._describe()}: {exc}") from exc

        self._sock.settimeout(None)
        self._established.set()
        self._reader = threading.Thread(
            target=self._read_loop, name="assuan-reader", daemon=True
        )
        self._reader.start()
        logger.debug("Connected to gpg-agent at %s", self._describe())

        if not isinstance(self.target, SocketTarget):
            # The nonce goes out bare, before the greeting is read.
            self._write(self.target.secret)

    def send_request(self, request: Request) -> None:
        """Write one request line.

        Raises:
            TransportError: If a transport error is pending or the write fails.
        """
        self._raise_pending_error()
        self._write(request.encode())

    def receive_response(self, timeout: Optional[float] = None) -> Response:
        """Block until the next response line arrives.

        Args:
            timeout: Override of the client timeout for this call.

        Returns:
            The next line, unclassified.

        Raises:
            TransportError: A queued transport error, checked before any
                buffered line.
            AgentTimeout: Nothing arrived in time.
        """
        wait = self.timeout if timeout is None else timeout
        with self._cond:
            self._cond.wait_for(
                lambda: self._errors or self._lines or self._end_of_stream, timeout=wait
            )
            if self._errors:
                raise self._errors.popleft()
            if self._lines:
                return Response(self._lines.popleft())
            if self._end_of_stream is not None:
                raise self._end_of_stream
            raise AgentTimeout(f"No response from gpg-agent within {wait}s")

    def cancel(self) -> None:
        """Abort a receive blocked in another thread."""
        self._push_error(RequestCancelled("Request cancelled"))

    def dispose(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._disposed.is_set():
            return
        self._disposed.set()

        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()

        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=1)
        self._established.clear()

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _connect(self) -> socket.socket:
        if isinstance(self.target, SocketTarget):
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            sock.settimeout(self.timeout)
            try:
                sock.connect(str(self.target.path))
            except OSError:
                sock.close()
                raise
            return sock
        return socket.create_connection((self.target.host, self.target.port), timeout=self.timeout)

    def _describe(self) -> str:
        if isinstance(self.target, SocketTarget):
            return str(self.target.path)
        return f"{self.target.host}:{self.target.port}"

    def _write(self, payload: bytes) -> None:
        sock = self._sock
        if sock is None:
            raise TransportError("Connection is not established")
        try:
            with self._send_lock:
                sock.sendall(payload)
        except OSError as exc:
            raise TransportError(f"Write to gpg-agent failed: {exc}") from exc

    def _raise_pending_error(self) -> None:
        with self._cond:
            if self._errors:
                raise self._errors.popleft()

    def _push_error(self, error: Exception) -> None:
        with self._cond:
            self._errors.append(error)
            self._cond.notify_all()

    def _read_loop(self) -> None:
        """Reader thread: frame incoming bytes into lines."""
        sock = self._sock
        pending = b""
        while sock is not None:
            try:
                chunk = sock.recv(RECV_SIZE)
            except OSError as exc:
                if not self._disposed.is_set():
                    self._push_error(TransportError(f"Read from gpg-agent failed: {exc}"))
                return

            if not chunk:
                if self._disposed.is_set():
                    return
                # Lines already received stay readable; the close surfaces after them.
                with self._cond:
                    if pending:
                        self._end_of_stream = FramingError("Agent closed the connection mid-line")
                    else:
                        self._end_of_stream = TransportError("gpg-agent closed the connection")
                    self._cond.notify_all()
                return

            lines, pending = split_lines(pending + chunk)
            if lines:
                with self._cond:
                    self._lines.extend(lines)
                    self._cond.notify_all()
