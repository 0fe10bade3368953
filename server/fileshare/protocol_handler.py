"""
Protocol handler for newline-delimited text framing
Handles command parsing, body/response framing and buffered line reads
"""

import socket
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Optional

from .errors import ProtocolError

SENTINEL = "EOF" # Terminates every body and every response
ENCODING = "utf-8"
RECV_CHUNK_SIZE = 4096

class CommandType(Enum):
    """Command verb enumeration"""
    LIST = "list"
    PUT = "put"
    UNKNOWN = "unknown"

@dataclass
class Command:
    """A parsed command line"""
    type: CommandType
    verb: str
    argument: Optional[str] = None

class ProtocolHandler:
    """Handles line protocol encoding and command parsing"""

    def parse_command(self, line: str) -> Command:
        """Split a command line on its first space and classify the verb"""
        parts = line.split(" ", 1)
        verb = parts[0]
        argument = parts[1] if len(parts) > 1 else None

        try:
            command_type = CommandType(verb.lower())
        except ValueError:
            command_type = CommandType.UNKNOWN

        return Command(type=command_type, verb=verb, argument=argument)

    def encode_line(self, text: str) -> bytes:
        """Encode a single line with its terminator"""
        return (text + "\n").encode(ENCODING)

    def encode_command(self, verb: str, argument: Optional[str] = None) -> bytes:
        """Encode a command line"""
        if argument is None:
            return self.encode_line(verb)
        return self.encode_line(f"{verb} {argument}")

    def encode_response(self, lines: Iterable[str]) -> bytes:
        """Encode response lines followed by the sentinel"""
        return b''.join(self.encode_line(line) for line in lines) + self.encode_line(SENTINEL)

    def encode_body(self, lines: Iterable[str]) -> bytes:
        """Encode upload body lines followed by the sentinel"""
        return self.encode_response(lines)

class LineReader:
    """Buffered line reader over a connected socket"""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._buffer = bytearray()
        self._eof = False

    def _fill(self) -> bool:
        """
        Receives the next chunk into the buffer.

        Returns:
            False once the peer has closed its sending half.

        Raises:
            ConnectionError: If a socket error or timeout occurs during read.
        """
        if self._eof:
            return False
        try:
            chunk = self.sock.recv(RECV_CHUNK_SIZE)
        except socket.timeout as e:
            raise ConnectionError(f"Socket timeout occurred while waiting for a line: {e}") from e
        except OSError as e:
            raise ConnectionError(f"Socket error encountered during read operation: {e}") from e

        if not chunk:
            self._eof = True
            return False
        self._buffer.extend(chunk)
        return True

    def read_line(self) -> Optional[str]:
        """
        Reads one line with its terminator stripped.

        Returns:
            The line, or None at end of stream. An unterminated final
            fragment is returned as a line before None.
        """
        while True:
            newline_index = self._buffer.find(b"\n")
            if newline_index != -1:
                raw = bytes(self._buffer[:newline_index])
                del self._buffer[:newline_index + 1]
                return self._decode(raw)
            if not self._fill():
                break

        if self._buffer:
            raw = bytes(self._buffer)
            self._buffer.clear()
            return self._decode(raw)
        return None

    def read_body(self) -> Iterator[str]:
        """
        Yields body lines up to (not including) the sentinel.

        Raises:
            ProtocolError: If the stream ends before the sentinel.
        """
        lines_read = 0
        while True:
            line = self.read_line()
            if line is None:
                raise ProtocolError(f"Connection closed before {SENTINEL} sentinel (after {lines_read} lines).")
            if line == SENTINEL:
                return
            lines_read += 1
            yield line

    def read_response(self) -> Iterator[str]:
        """Yields response lines up to the sentinel; same framing as a body"""
        return self.read_body()

    def drain_body(self) -> int:
        """Consumes a body up to the sentinel, returns how many lines were discarded"""
        discarded = 0
        for _ in self.read_body():
            discarded += 1
        return discarded

    @staticmethod
    def _decode(raw: bytes) -> str:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        return raw.decode(ENCODING, errors="replace")
