"""Shared fixtures and line-protocol helpers for the fileshare tests.

Server fixtures bind to 127.0.0.1 on an ephemeral port and keep their
storage root and audit log inside the test's tmp_path, so every test gets
an isolated server.
"""

import socket
import threading
import time

import pytest

from fileshare.audit_log import AuditLog
from fileshare.config import ServerConfig
from fileshare.file_manager import FileManager
from fileshare.server_core import FileExchangeServer


def wait_for(predicate, timeout=5.0, interval=0.02):
    """Poll `predicate` until it is truthy or `timeout` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def send_lines(sock, *lines):
    """Send each line with a trailing newline."""
    sock.sendall("".join(line + "\n" for line in lines).encode("utf-8"))


def read_response(stream):
    """Read lines from a text-mode socket file up to the EOF sentinel.

    Raises AssertionError if the stream ends first.
    """
    lines = []
    while True:
        line = stream.readline()
        assert line, "connection closed before EOF sentinel"
        line = line.rstrip("\n")
        if line == "EOF":
            return lines
        lines.append(line)


def audit_lines(path):
    """Return the audit log's lines, or [] if it was never written."""
    if not path.exists():
        return []
    return path.read_text(encoding="utf-8").splitlines()


@pytest.fixture
def storage_dir(tmp_path):
    return tmp_path / "serverFiles"


@pytest.fixture
def file_manager(storage_dir):
    return FileManager(str(storage_dir))


@pytest.fixture
def audit_path(tmp_path):
    return tmp_path / "log.txt"


@pytest.fixture
def audit_log(audit_path):
    return AuditLog(str(audit_path))


@pytest.fixture
def make_server(file_manager, audit_log):
    """Factory starting a FileExchangeServer in a background thread."""
    started = []

    def _make(pool_size=20, block_on_saturation=True, session_timeout=None):
        config = ServerConfig(host="127.0.0.1", port=0, pool_size=pool_size,
                              block_on_saturation=block_on_saturation,
                              session_timeout=session_timeout)
        server = FileExchangeServer(config, file_manager=file_manager, audit_log=audit_log)
        server.start()
        thread = threading.Thread(target=server.serve_forever, name="AcceptLoop", daemon=True)
        thread.start()
        assert server.wait_until_serving(timeout=5)
        started.append((server, thread))
        return server

    yield _make

    for server, thread in started:
        server.stop()
        thread.join(timeout=5)


@pytest.fixture
def server(make_server):
    return make_server()


@pytest.fixture
def connection(server):
    """A raw socket connected to the running server plus a text reader."""
    sock = socket.create_connection(("127.0.0.1", server.port), timeout=5)
    stream = sock.makefile("r", encoding="utf-8", newline="\n")
    yield sock, stream
    stream.close()
    sock.close()
