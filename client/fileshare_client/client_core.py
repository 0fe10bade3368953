"""
Client session driver
Opens one connection per command, sends it (plus upload body) and reads the framed response
"""

import logging
import socket
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from fileshare.protocol_handler import LineReader, ProtocolHandler

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 9100


class FileExchangeClient:
    """Talks to a fileshare server, one command per connection"""

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, timeout: Optional[float] = None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.protocol = ProtocolHandler()

    def exchange(self, verb: str, argument: Optional[str] = None,
                 body: Optional[Iterable[str]] = None) -> Iterator[str]:
        """
        Sends one command and yields the server's response lines.

        Args:
            verb: The command verb ('list' or 'put').
            argument: Optional command argument.
            body: Lines to upload after the command line; followed by the sentinel.

        Yields:
            Each response line before the sentinel.

        Raises:
            ConnectionError: If the server cannot be reached or the connection fails.
            ProtocolError: If the server closes before sending the sentinel.
        """
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as e:
            raise ConnectionError(f"Could not connect to {self.host}:{self.port}: {e}") from e

        with sock:
            try:
                sock.sendall(self.protocol.encode_command(verb, argument))
                if body is not None:
                    sock.sendall(self.protocol.encode_body(body))
            except OSError as e:
                raise ConnectionError(f"Failed to send '{verb}' to {self.host}:{self.port}: {e}") from e
            logger.debug(f"Sent '{verb}' to {self.host}:{self.port}, awaiting response.")

            reader = LineReader(sock)
            yield from reader.read_response()

    def list_files(self) -> List[str]:
        """Return the server's response to 'list'"""
        return list(self.exchange("list"))

    def put_file(self, file_path: str) -> List[str]:
        """Upload a local text file under its base name"""
        path = Path(file_path)
        with open(path, 'r', encoding='utf-8') as f:
            lines = [line.rstrip("\n") for line in f]
        return list(self.exchange("put", path.name, lines))
