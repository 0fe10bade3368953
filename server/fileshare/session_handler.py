"""
Session handler
Runs one accepted connection: reads commands, dispatches list/put, frames responses
"""

import logging
import socket
from typing import Iterable, Optional, Tuple

from .audit_log import AuditLog
from .errors import FileError, ProtocolError
from .file_manager import FileManager
from .protocol_handler import SENTINEL, Command, CommandType, LineReader, ProtocolHandler

logger = logging.getLogger(__name__)

# --- Response lines ---
NO_FILES_FOUND = "No files found."
ERR_NO_FILENAME = "Error: No filename specified for put command."
ERR_FILE_EXISTS = "Error: File already exists on the server."
ERR_INVALID_COMMAND = "Invalid command."


class SessionHandler:
    """
    Serves every command/response turn of a single client connection.

    The handler owns the connection: it is closed when run() returns,
    whatever the outcome.
    """

    def __init__(self, conn: socket.socket, client_address: Tuple[str, int],
                 file_manager: FileManager, audit_log: AuditLog,
                 protocol: Optional[ProtocolHandler] = None):
        """
        Args:
            conn: The connected client socket.
            client_address: (ip_string, port_integer) of the peer.
            file_manager: Storage root handle shared by all sessions.
            audit_log: Sink receiving one record per handled command.
            protocol: Line encoder/parser; a default one is created if omitted.
        """
        self.conn = conn
        self.client_ip = client_address[0]
        self.log_id = f"{client_address[0]}:{client_address[1]}"
        self.file_manager = file_manager
        self.audit_log = audit_log
        self.protocol = protocol or ProtocolHandler()
        self.reader = LineReader(conn)
        self.commands_handled = 0

    def run(self):
        """
        Processes commands until the peer closes the connection.

        Raises:
            ProtocolError: If the peer closes in the middle of an upload body.
            ConnectionError: On socket failures.
        """
        try:
            while True:
                line = self.reader.read_line()
                if line is None: # Peer closed between commands: normal end of session
                    logger.info(f"Client {self.log_id} closed the connection after {self.commands_handled} command(s).")
                    break
                if line == SENTINEL: # Stray sentinel at a turn boundary
                    continue

                command = self.protocol.parse_command(line)
                logger.info(f"Command from {self.log_id}: {line!r}")
                self._dispatch(command)
                self.commands_handled += 1
        finally:
            self.conn.close()

    def _dispatch(self, command: Command):
        handler_map = {
            CommandType.LIST: self._handle_list,
            CommandType.PUT: self._handle_put,
        }
        handler_method = handler_map.get(command.type, self._handle_unknown)
        handler_method(command)

    def _send(self, lines: Iterable[str]):
        """
        Sends a framed response.

        Raises:
            ConnectionError: If a socket error occurs during send.
        """
        try:
            self.conn.sendall(self.protocol.encode_response(lines))
        except OSError as e:
            raise ConnectionError(f"Failed to send response to {self.log_id}: {e}") from e

    def _handle_list(self, command: Command):
        file_names = self.file_manager.list_files()
        self.audit_log.record(self.client_ip, "list", True, "Files listed successfully")
        self._send(file_names or [NO_FILES_FOUND])
        logger.debug(f"Listed {len(file_names)} file(s) for {self.log_id}.")

    def _handle_put(self, command: Command):
        """
        Handles an upload. The body is always consumed up to the sentinel
        before responding, so a rejected upload leaves the stream aligned
        on the next command.
        """
        action = f"put {command.argument}" if command.argument is not None else "put"

        if not command.argument:
            discarded = self._drain_rejected_body(action)
            logger.warning(f"Upload from {self.log_id} rejected: no filename ({discarded} body lines discarded).")
            self.audit_log.record(self.client_ip, action, False, "Upload failed - No filename specified")
            self._send([ERR_NO_FILENAME])
            return

        try:
            stored_file = self.file_manager.create_file(command.argument)
        except FileExistsError:
            discarded = self._drain_rejected_body(action)
            logger.warning(f"Upload of '{command.argument}' from {self.log_id} rejected: file exists ({discarded} body lines discarded).")
            self.audit_log.record(self.client_ip, action, False, "Upload failed - File already exists")
            self._send([ERR_FILE_EXISTS])
            return
        except (FileError, OSError) as e:
            self._drain_rejected_body(action)
            logger.error(f"Upload of '{command.argument}' from {self.log_id} could not be started: {e}")
            self.audit_log.record(self.client_ip, action, False, f"Upload failed - {e}")
            self._send([f"Error saving the file: {e}"])
            return

        write_error: Optional[OSError] = None
        try:
            for body_line in self.reader.read_body():
                if write_error is not None:
                    continue # Keep draining so framing survives a failed write
                try:
                    stored_file.write_line(body_line)
                except OSError as e:
                    write_error = e
                    logger.error(f"Write failed for '{stored_file.path}' from {self.log_id}: {e}. Draining remaining body.")
            if write_error is None:
                stored_file.close()
        except (ProtocolError, ConnectionError):
            stored_file.discard()
            self.audit_log.record(self.client_ip, action, False, "Upload aborted - connection closed before EOF")
            raise
        except OSError as e: # Raised by close(), which flushes the last buffered lines
            write_error = e

        if write_error is not None:
            stored_file.discard()
            self.audit_log.record(self.client_ip, action, False, f"Upload failed - {write_error}")
            self._send([f"Error saving the file: {write_error}"])
            return

        name = stored_file.path.name
        logger.info(f"Stored '{name}' ({stored_file.lines_written} lines) from {self.log_id}.")
        self.audit_log.record(self.client_ip, action, True, "File uploaded successfully")
        self._send([f"File {name} uploaded successfully."])

    def _drain_rejected_body(self, action: str) -> int:
        """Discards the body of a rejected upload, auditing an abort if the stream ends early"""
        try:
            return self.reader.drain_body()
        except (ProtocolError, ConnectionError):
            self.audit_log.record(self.client_ip, action, False, "Upload aborted - connection closed before EOF")
            raise

    def _handle_unknown(self, command: Command):
        logger.warning(f"Unknown command '{command.verb}' from {self.log_id}.")
        self.audit_log.record(self.client_ip, command.verb, False, "Invalid command")
        self._send([ERR_INVALID_COMMAND])
