"""Shared test fixtures for gpgindicator."""

from __future__ import annotations

import shutil
import socket
import tempfile
import threading
import time
from pathlib import Path
from typing import Optional
from urllib.parse import unquote_to_bytes

import pytest

from gpgindicator.models import Capability, KeyKind, KeyRecord

SIGNATURE_LINE = b"D (7:sig-val(3:rsa(1:s4:%0A%25%0D)))"
BAD_PASSPHRASE_LINE = b"ERR 67108875 Bad passphrase <Pinentry>"


class FakeAgent:
    """A scripted gpg-agent speaking just enough Assuan to sign.

    Serves connections one at a time on a Unix socket or, with a
    ``secret``, on a localhost TCP port that expects the secret first.

    Attributes:
        unlocked: Whether PKSIGN answers without asking for a passphrase.
        received: Every line received, across connections.
        connections: Number of accepted connections.
    """

    def __init__(
        self,
        directory: Path,
        passphrase: str = "correct horse",
        unlocked: bool = False,
        secret: Optional[bytes] = None,
    ) -> None:
        self.passphrase = passphrase
        self.unlocked = unlocked
        self.secret = secret
        self.received: list[bytes] = []
        self.connections = 0
        self.auth_failures = 0

        if secret is None:
            self.socket_path = directory / "S.gpg-agent"
            self._server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            self._server.bind(str(self.socket_path))
            self.port = None
        else:
            self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            self._server.bind(("127.0.0.1", 0))
            self.port = self._server.getsockname()[1]
            self.socket_path = directory / "S.gpg-agent"
            self.socket_path.write_bytes(f"{self.port}\n".encode("ascii") + secret)
        self._server.listen(4)
        self._server.settimeout(0.1)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def commands(self) -> list[bytes]:
        """First word of every received line."""
        return [line.split(b" ", 1)[0] for line in self.received]

    def stop(self) -> None:
        self._stop.set()
        self._thread.join(timeout=2)
        self._server.close()

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._server.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            self.connections += 1
            with conn:
                conn.settimeout(5)
                try:
                    self._session(conn)
                except OSError:
                    pass

    def _session(self, conn: socket.socket) -> None:
        with conn.makefile("rb") as stream:
            self._converse(conn, stream)

    def _converse(self, conn: socket.socket, stream) -> None:
        if self.secret is not None:
            if stream.read(len(self.secret)) != self.secret:
                self.auth_failures += 1
                return
        conn.sendall(b"OK Pleased to meet you\n")

        while True:
            line = stream.readline()
            if not line:
                return
            line = line.rstrip(b"\n")
            self.received.append(line)
            command = line.split(b" ", 1)[0]

            if command in (b"OPTION", b"SIGKEY", b"SETHASH"):
                conn.sendall(b"OK\n")
            elif command == b"PKSIGN":
                self._pksign(conn, stream)
            elif command == b"BYE":
                conn.sendall(b"OK closing connection\n")
                return
            else:
                conn.sendall(b"ERR 536871187 Unknown IPC command\n")

    def _pksign(self, conn: socket.socket, stream) -> None:
        if self.unlocked:
            conn.sendall(SIGNATURE_LINE + b"\nOK\n")
            return

        conn.sendall(b"S INQUIRE_MAXLEN 255\nINQUIRE PASSPHRASE\n")
        data = stream.readline().rstrip(b"\n")
        self.received.append(data)
        end = stream.readline().rstrip(b"\n")
        self.received.append(end)

        given = unquote_to_bytes(data[2:]).decode("utf-8")
        if given == self.passphrase:
            self.unlocked = True
            conn.sendall(SIGNATURE_LINE + b"\nOK\n")
        else:
            conn.sendall(BAD_PASSPHRASE_LINE + b"\n")


class ScriptedServer:
    """Unix socket server that replays byte chunks to one client.

    Args:
        path: Socket path.
        chunks: Byte strings sent in order, ``delay`` seconds apart.
        close: Close the connection after the last chunk.
    """

    def __init__(self, path: Path, chunks: list[bytes], close: bool = True, delay: float = 0.02):
        self.path = path
        self.chunks = chunks
        self.close = close
        self.delay = delay
        self.received = b""
        self._done = threading.Event()
        self._server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self._server.bind(str(path))
        self._server.listen(1)
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        self._server.settimeout(0.1)
        while True:
            try:
                conn, _ = self._server.accept()
                break
            except socket.timeout:
                if self._done.is_set():
                    return
            except OSError:
                return
        with conn:
            for chunk in self.chunks:
                time.sleep(self.delay)
                conn.sendall(chunk)
            if not self.close:
                conn.settimeout(0.1)
                while not self._done.is_set():
                    try:
                        data = conn.recv(4096)
                    except socket.timeout:
                        continue
                    except OSError:
                        break
                    if not data:
                        break
                    self.received += data

    def stop(self) -> None:
        self._done.set()
        self._thread.join(timeout=2)
        self._server.close()


@pytest.fixture
def short_tmp() -> Path:
    """A short temporary directory; Unix socket paths are length limited."""
    path = Path(tempfile.mkdtemp(prefix="gi-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def fake_agent(short_tmp: Path):
    """A locked fake agent on a Unix socket."""
    agent = FakeAgent(short_tmp)
    yield agent
    agent.stop()


@pytest.fixture
def tcp_agent(short_tmp: Path):
    """A locked fake agent behind a TCP redirect file."""
    agent = FakeAgent(short_tmp, secret=b"\x01nonce\x00\xff-16-bytes")
    yield agent
    agent.stop()


@pytest.fixture
def scripted(short_tmp: Path):
    """Factory for ScriptedServer instances; all are stopped afterwards."""
    servers: list[ScriptedServer] = []

    def factory(chunks: list[bytes], close: bool = True, delay: float = 0.02) -> ScriptedServer:
        server = ScriptedServer(short_tmp / f"s{len(servers)}", chunks, close=close, delay=delay)
        servers.append(server)
        return server

    yield factory
    for server in servers:
        server.stop()


@pytest.fixture
def tmp_indicator_home(tmp_path: Path) -> Path:
    """Provide a temporary indicator home directory for testing."""
    home = tmp_path / ".gpgindicator"
    home.mkdir()
    return home


def make_key(
    fingerprint: str = "BA6178432DE5A500A82820F6C728B2BDC9756E05",
    keygrip: str = "D215899C4CB530235AA8B246C6517CDED9FE217A",
    user_id: Optional[str] = "Sophia Taylor <sophia@example.com>",
) -> KeyRecord:
    return KeyRecord(
        kind=KeyKind.PRIMARY,
        capabilities=frozenset({Capability.SIGN, Capability.CERTIFY}),
        fingerprint=fingerprint,
        keygrip=keygrip,
        user_id=user_id,
    )


@pytest.fixture
def signing_key() -> KeyRecord:
    return make_key()


@pytest.fixture
def other_key() -> KeyRecord:
    return make_key(
        fingerprint="B3D18BC755A7E11EC8F3A9028CC2E9CFB3BE270C",
        keygrip="CF1E56A855F60F97EAF98832039644B260803887",
        user_id=None,
    )
