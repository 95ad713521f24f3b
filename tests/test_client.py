"""Tests for the Assuan client connection."""

from __future__ import annotations

import threading
import time

import pytest

from gpgindicator.assuan.client import AssuanClient
from gpgindicator.assuan.codec import Request, ResponseType
from gpgindicator.assuan.errors import (
    AgentTimeout,
    FramingError,
    RequestCancelled,
    TransportError,
)
from gpgindicator.assuan.transport import SocketTarget, TcpTarget


class TestConnect:
    """Connection setup and teardown."""

    def test_missing_socket(self, short_tmp):
        client = AssuanClient(SocketTarget(short_tmp / "nope"), timeout=1)
        with pytest.raises(TransportError):
            client.initialize()
        assert client.is_established is False

    def test_established_after_initialize(self, scripted):
        server = scripted([b"OK hi\n"], close=False)
        with AssuanClient(SocketTarget(server.path), timeout=1) as client:
            client.initialize()
            assert client.is_established is True
        assert client.is_established is False

    def test_dispose_twice(self, scripted):
        server = scripted([b"OK\n"], close=False)
        client = AssuanClient(SocketTarget(server.path), timeout=1)
        client.initialize()
        client.dispose()
        client.dispose()

    def test_initialize_after_dispose(self, scripted):
        server = scripted([], close=False)
        client = AssuanClient(SocketTarget(server.path), timeout=1)
        client.dispose()
        with pytest.raises(TransportError):
            client.initialize()

    def test_tcp_sends_secret_first(self, tcp_agent):
        target = TcpTarget(port=tcp_agent.port, secret=tcp_agent.secret)
        with AssuanClient(target, timeout=2) as client:
            client.initialize()
            assert client.receive_response().type is ResponseType.OK
        assert tcp_agent.auth_failures == 0

    def test_tcp_wrong_secret(self, tcp_agent):
        target = TcpTarget(port=tcp_agent.port, secret=b"x" * len(tcp_agent.secret))
        with AssuanClient(target, timeout=2) as client:
            client.initialize()
            with pytest.raises(TransportError):
                client.receive_response()
        assert tcp_agent.auth_failures == 1


class TestReceive:
    """Line buffering and error ordering."""

    def test_lines_in_order(self, scripted):
        server = scripted([b"OK hi\nS PROGRESS x\n", b"D abc\nOK\n"], close=False)
        with AssuanClient(SocketTarget(server.path), timeout=2) as client:
            client.initialize()
            types = [client.receive_response().type for _ in range(4)]
        assert types == [
            ResponseType.OK,
            ResponseType.INFORMATION,
            ResponseType.RAW_DATA,
            ResponseType.OK,
        ]

    def test_line_split_across_chunks(self, scripted):
        server = scripted([b"OK Plea", b"sed to meet you\n"], close=False)
        with AssuanClient(SocketTarget(server.path), timeout=2) as client:
            client.initialize()
            assert client.receive_response().to_ok().message == "Pleased to meet you"

    def test_buffered_lines_before_close(self, scripted):
        server = scripted([b"OK\nOK closing connection\n"], close=True)
        with AssuanClient(SocketTarget(server.path), timeout=2) as client:
            client.initialize()
            time.sleep(0.2)
            assert client.receive_response().line == b"OK"
            assert client.receive_response().line == b"OK closing connection"
            with pytest.raises(TransportError):
                client.receive_response()

    def test_partial_line_at_close(self, scripted):
        server = scripted([b"OK\nERR 12"], close=True)
        with AssuanClient(SocketTarget(server.path), timeout=2) as client:
            client.initialize()
            assert client.receive_response().line == b"OK"
            with pytest.raises(FramingError):
                client.receive_response()

    def test_timeout(self, scripted):
        server = scripted([], close=False)
        with AssuanClient(SocketTarget(server.path), timeout=0.2) as client:
            client.initialize()
            with pytest.raises(AgentTimeout):
                client.receive_response()

    def test_per_call_timeout(self, scripted):
        server = scripted([], close=False)
        with AssuanClient(SocketTarget(server.path), timeout=30) as client:
            client.initialize()
            start = time.monotonic()
            with pytest.raises(AgentTimeout):
                client.receive_response(timeout=0.1)
            assert time.monotonic() - start < 5

    def test_queued_error_wins_over_lines(self, scripted):
        server = scripted([b"OK\nOK\n"], close=False)
        with AssuanClient(SocketTarget(server.path), timeout=2) as client:
            client.initialize()
            time.sleep(0.2)
            client.cancel()
            with pytest.raises(RequestCancelled):
                client.receive_response()
            # the error is consumed; buffered lines follow
            assert client.receive_response().type is ResponseType.OK

    def test_cancel_unblocks_receive(self, scripted):
        server = scripted([], close=False)
        client = AssuanClient(SocketTarget(server.path), timeout=10)
        client.initialize()
        errors = []

        def receive():
            try:
                client.receive_response()
            except RequestCancelled as exc:
                errors.append(exc)

        thread = threading.Thread(target=receive)
        thread.start()
        time.sleep(0.1)
        client.cancel()
        thread.join(timeout=2)
        client.dispose()
        assert len(errors) == 1

    def test_pending_error_blocks_send(self, scripted):
        server = scripted([], close=False)
        with AssuanClient(SocketTarget(server.path), timeout=1) as client:
            client.initialize()
            client.cancel()
            with pytest.raises(RequestCancelled):
                client.send_request(Request.command("BYE"))


class TestSend:
    """Request writing."""

    def test_request_reaches_agent(self, scripted):
        server = scripted([b"OK\n"], close=False)
        with AssuanClient(SocketTarget(server.path), timeout=1) as client:
            client.initialize()
            client.receive_response()
            client.send_request(Request.command("GETINFO", "version"))
            deadline = time.monotonic() + 2
            while b"GETINFO" not in server.received and time.monotonic() < deadline:
                time.sleep(0.02)
        assert server.received == b"GETINFO version\n"

    def test_send_before_initialize(self, short_tmp):
        client = AssuanClient(SocketTarget(short_tmp / "x"))
        with pytest.raises(TransportError):
            client.send_request(Request.command("BYE"))
