"""
Core server implementation
Binds the listening socket, accepts connections and runs sessions on a bounded worker pool
"""

import logging
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Set, Tuple

from .audit_log import AuditLog
from .config import ServerConfig
from .errors import ProtocolError, ServerError
from .file_manager import FileManager
from .protocol_handler import ProtocolHandler
from .session_handler import SessionHandler

logger = logging.getLogger(__name__)

ACCEPT_POLL_INTERVAL = 0.5 # Seconds between shutdown checks while idle
LISTEN_BACKLOG = 50

class FileExchangeServer:
    """Main file exchange server class"""

    def __init__(self, config: Optional[ServerConfig] = None,
                 file_manager: Optional[FileManager] = None,
                 audit_log: Optional[AuditLog] = None):
        self.config = config or ServerConfig()
        self.host = self.config.host
        self.port = self.config.port
        self.server_socket: Optional[socket.socket] = None

        # Initialize components
        self.file_manager = file_manager or FileManager(self.config.storage_dir)
        self.audit_log = audit_log or AuditLog(self.config.audit_log_path)
        self.protocol = ProtocolHandler()

        self.executor: Optional[ThreadPoolExecutor] = None
        self.shutdown_event = threading.Event()
        self.serving_event = threading.Event()
        # One slot per worker; the accept loop waits for a slot before accepting
        self.session_slots = threading.Semaphore(self.config.pool_size)
        self._connections: Set[socket.socket] = set() # Accepted sockets not yet closed
        self._connections_lock = threading.Lock()
        self._active_sessions = 0
        self.connections_accepted = 0

    @property
    def active_sessions(self) -> int:
        """Number of sessions currently being served"""
        with self._connections_lock:
            return self._active_sessions

    def start(self):
        """
        Creates, binds and listens on the server socket.

        Raises:
            ServerError: If the port cannot be bound.
        """
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.server_socket.bind((self.host, self.port))
            self.server_socket.listen(LISTEN_BACKLOG)
            self.server_socket.settimeout(ACCEPT_POLL_INTERVAL)
        except OSError as e:
            self.server_socket.close()
            self.server_socket = None
            logger.critical(f"Fatal: Failed to bind server socket to {self.host}:{self.port}: {e}.")
            raise ServerError(f"Failed to bind {self.host}:{self.port}: {e}") from e

        self.port = self.server_socket.getsockname()[1] # Resolves port 0 to the ephemeral port
        self.executor = ThreadPoolExecutor(max_workers=self.config.pool_size, thread_name_prefix="SessionWorker")
        self.shutdown_event.clear()
        logger.info(f"Server listening on {self.host}:{self.port} with {self.config.pool_size} workers.")

    def serve_forever(self):
        """Accept loop: runs until stop() is called"""
        if self.server_socket is None:
            self.start()

        policy = "block" if self.config.block_on_saturation else "queue"
        logger.info(f"Accepting connections (saturation policy: {policy}).")
        server_socket = self.server_socket
        executor = self.executor
        self.serving_event.set()
        try:
            while not self.shutdown_event.is_set():
                if self.config.block_on_saturation:
                    # Blocks while every worker is busy; timeout keeps shutdown responsive
                    if not self.session_slots.acquire(timeout=ACCEPT_POLL_INTERVAL):
                        continue
                try:
                    client_conn, client_address = server_socket.accept()
                except socket.timeout:
                    self._release_slot()
                    continue
                except OSError as e:
                    self._release_slot()
                    if not self.shutdown_event.is_set():
                        logger.error(f"Socket error occurred while accepting connections: {e}")
                    break

                # Checked under the lock so stop() either sees this connection or it is never served
                with self._connections_lock:
                    stopping = self.shutdown_event.is_set()
                    if not stopping:
                        self._connections.add(client_conn)
                if stopping:
                    client_conn.close()
                    self._release_slot()
                    break

                self.connections_accepted += 1
                logger.info(f"Accepted new connection from {client_address[0]}:{client_address[1]}.")
                self._submit(executor, client_conn, client_address)
        finally:
            self.serving_event.clear()
            logger.info("Server connection acceptance loop has terminated.")

    def wait_until_serving(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the accept loop is running"""
        return self.serving_event.wait(timeout)

    def stop(self):
        """Stop the server"""
        if self.shutdown_event.is_set() and self.server_socket is None:
            return
        logger.warning("Server shutdown sequence initiated...")
        self.shutdown_event.set()

        if self.server_socket:
            try:
                self.server_socket.close()
            except OSError as e:
                logger.error(f"Error encountered while closing server socket: {e}")
            self.server_socket = None

        # Unblock workers sitting in recv(); their sessions then end normally
        with self._connections_lock:
            open_connections = list(self._connections)
        for conn in open_connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

        if self.executor:
            self.executor.shutdown(wait=True, cancel_futures=True)
            self.executor = None

        # Connections still queued when the executor was cancelled
        with self._connections_lock:
            leftover_connections = list(self._connections)
            self._connections.clear()
        for conn in leftover_connections:
            conn.close()
        logger.info("Server has been stopped.")

    def _submit(self, executor: ThreadPoolExecutor, client_conn: socket.socket, client_address: Tuple[str, int]):
        try:
            executor.submit(self._handle_connection, client_conn, client_address)
        except RuntimeError as e: # Executor already shut down
            logger.warning(f"Dropping connection from {client_address[0]}:{client_address[1]}: {e}")
            with self._connections_lock:
                self._connections.discard(client_conn)
            client_conn.close()
            self._release_slot()

    def _release_slot(self):
        if self.config.block_on_saturation:
            self.session_slots.release()

    def _handle_connection(self, client_conn: socket.socket, client_address: Tuple[str, int]):
        """Handle individual client connection"""
        log_id = f"{client_address[0]}:{client_address[1]}"
        with self._connections_lock:
            self._active_sessions += 1
        try:
            client_conn.settimeout(self.config.session_timeout)
            SessionHandler(client_conn, client_address, self.file_manager,
                           self.audit_log, self.protocol).run()
        except ConnectionError as e:
            logger.warning(f"Connection issue with {log_id}: {e}. Closing connection.")
        except ProtocolError as e:
            logger.error(f"Protocol error encountered with {log_id}: {e}. Closing connection.")
        except Exception as e:
            logger.critical(f"Unexpected error occurred while handling client {log_id}: {e}", exc_info=True)
        finally:
            client_conn.close()
            with self._connections_lock:
                self._connections.discard(client_conn)
                self._active_sessions -= 1
            self._release_slot()
            logger.info(f"Connection with {log_id} closed")
