"""End-to-end tests against a live FileExchangeServer on an ephemeral port."""

import socket
import threading

import pytest

from fileshare.config import ServerConfig
from fileshare.errors import ServerError
from fileshare.server_core import FileExchangeServer
from fileshare_client.client_core import FileExchangeClient

from conftest import audit_lines, read_response, send_lines, wait_for


def open_connection(server):
    sock = socket.create_connection(("127.0.0.1", server.port), timeout=5)
    return sock, sock.makefile("r", encoding="utf-8", newline="\n")


class TestServing:

    def test_multiple_commands_on_one_connection(self, connection):
        sock, stream = connection
        send_lines(sock, "list")
        assert read_response(stream) == ["No files found."]
        send_lines(sock, "put one.txt", "1", "EOF")
        assert read_response(stream) == ["File one.txt uploaded successfully."]
        send_lines(sock, "bogus")
        assert read_response(stream) == ["Invalid command."]
        send_lines(sock, "list")
        assert read_response(stream) == ["one.txt"]

    def test_failed_session_does_not_stop_acceptor(self, server, audit_path):
        sock, stream = open_connection(server)
        send_lines(sock, "put broken.txt", "partial")
        sock.close()
        stream.close()
        assert wait_for(lambda: server.active_sessions == 0)

        client = FileExchangeClient("127.0.0.1", server.port, timeout=5)
        assert client.list_files() == ["No files found."]

    def test_bind_failure_raises(self, server, file_manager, audit_log):
        clashing = FileExchangeServer(ServerConfig(host="127.0.0.1", port=server.port),
                                      file_manager=file_manager, audit_log=audit_log)
        with pytest.raises(ServerError):
            clashing.start()


class AcceptDuringShutdown:
    """Listening socket stand-in whose accept() races with stop()."""

    def __init__(self, server, conn):
        self.server = server
        self.conn = conn

    def accept(self):
        self.server.shutdown_event.set()
        return self.conn, ("127.0.0.1", 40000)

    def close(self):
        pass


class TestShutdown:

    def test_stop_returns_with_open_sessions(self, make_server):
        server = make_server(pool_size=2)
        sock, stream = open_connection(server)
        assert wait_for(lambda: server.active_sessions == 1)
        stopper = threading.Thread(target=server.stop)
        stopper.start()
        stopper.join(timeout=5)
        assert not stopper.is_alive()
        assert server.active_sessions == 0
        stream.close()
        sock.close()

    def test_connection_accepted_while_stopping_is_closed(self, file_manager, audit_log):
        server = FileExchangeServer(ServerConfig(host="127.0.0.1", port=0, pool_size=1),
                                    file_manager=file_manager, audit_log=audit_log)
        server.start()
        listener = server.server_socket
        peer, accepted = socket.socketpair()
        server.server_socket = AcceptDuringShutdown(server, accepted)
        try:
            server.serve_forever()
            assert server.connections_accepted == 0
            assert server.active_sessions == 0
            peer.settimeout(2)
            assert peer.recv(1) == b""
            assert server.session_slots.acquire(blocking=False)
        finally:
            listener.close()
            server.stop()
            peer.close()


class TestConcurrency:

    def test_fifty_concurrent_uploads_on_pool_of_twenty(self, make_server, tmp_path, file_manager, audit_path):
        server = make_server(pool_size=20)
        client = FileExchangeClient("127.0.0.1", server.port, timeout=30)
        sources = tmp_path / "sources"
        sources.mkdir()
        expected = {}
        for i in range(50):
            lines = [f"file {i} line {n}" for n in range(25)]
            (sources / f"upload-{i}.txt").write_text("\n".join(lines) + "\n")
            expected[f"upload-{i}.txt"] = lines

        responses = {}
        errors = []

        def upload(name):
            try:
                responses[name] = client.put_file(str(sources / name))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=upload, args=(name,)) for name in expected]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        for name, lines in expected.items():
            assert responses[name] == [f"File {name} uploaded successfully."]
            assert file_manager.read_lines(name) == lines
        assert sorted(client.list_files()) == sorted(expected)

        records = [line.split("|") for line in audit_lines(audit_path) if "|put " in line]
        assert len(records) == 50
        for fields in records:
            assert len(fields) == 6
            assert fields[4] == "Completed"
        assert sorted(fields[3] for fields in records) == sorted(f"put {name}" for name in expected)

    def test_concurrent_duplicate_uploads_have_one_winner(self, server, file_manager):
        client = FileExchangeClient("127.0.0.1", server.port, timeout=10)
        barrier = threading.Barrier(10)
        results = {}

        def upload(n):
            barrier.wait()
            results[n] = list(client.exchange("put", "same.txt", [f"body from {n}"]))

        threads = [threading.Thread(target=upload, args=(n,)) for n in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        winners = [n for n, response in results.items() if response == ["File same.txt uploaded successfully."]]
        losers = [n for n, response in results.items() if response == ["Error: File already exists on the server."]]
        assert len(winners) == 1
        assert len(losers) == 9
        assert file_manager.read_lines("same.txt") == [f"body from {winners[0]}"]


class TestAdmissionControl:

    def _saturate(self, server):
        """Occupy the only worker with an idle session and queue a second client."""
        idle_sock, idle_stream = open_connection(server)
        assert wait_for(lambda: server.active_sessions == 1)
        waiting_sock, waiting_stream = open_connection(server)
        send_lines(waiting_sock, "list")
        return (idle_sock, idle_stream), (waiting_sock, waiting_stream)

    def test_accept_blocks_while_pool_is_saturated(self, make_server):
        server = make_server(pool_size=1)
        (idle_sock, idle_stream), (waiting_sock, waiting_stream) = self._saturate(server)

        assert not wait_for(lambda: server.connections_accepted > 1, timeout=0.5)
        waiting_sock.settimeout(0.3)
        with pytest.raises(socket.timeout):
            waiting_sock.recv(1)

        idle_stream.close()
        idle_sock.close()
        waiting_sock.settimeout(5)
        assert read_response(waiting_stream) == ["No files found."]
        assert server.connections_accepted == 2
        waiting_stream.close()
        waiting_sock.close()

    def test_queue_policy_accepts_beyond_pool_size(self, make_server):
        server = make_server(pool_size=1, block_on_saturation=False)
        (idle_sock, idle_stream), (waiting_sock, waiting_stream) = self._saturate(server)

        assert wait_for(lambda: server.connections_accepted == 2)
        assert server.active_sessions == 1

        idle_stream.close()
        idle_sock.close()
        assert read_response(waiting_stream) == ["No files found."]
        waiting_stream.close()
        waiting_sock.close()

    def test_session_timeout_frees_worker(self, make_server):
        server = make_server(pool_size=1, session_timeout=0.2)
        idle_sock, idle_stream = open_connection(server)
        assert wait_for(lambda: server.active_sessions == 1)
        assert wait_for(lambda: server.active_sessions == 0, timeout=3)

        client = FileExchangeClient("127.0.0.1", server.port, timeout=5)
        assert client.list_files() == ["No files found."]
        idle_stream.close()
        idle_sock.close()
