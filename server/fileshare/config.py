"""
Server configuration
Defaults, the ServerConfig container and port.info loading
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# --- Server Configuration Constants ---
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 9100
THREAD_POOL_SIZE = 20 # How many sessions are served concurrently
STORAGE_DIR = "serverFiles" # Directory uploaded files are stored under
AUDIT_LOG_FILE = "log.txt"
PORT_CONFIG_FILE = "port.info"


@dataclass
class ServerConfig:
    """Settings for one FileExchangeServer instance."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    pool_size: int = THREAD_POOL_SIZE
    storage_dir: str = STORAGE_DIR
    audit_log_path: str = AUDIT_LOG_FILE
    # True: accept loop blocks while every worker is busy. False: queue in the executor.
    block_on_saturation: bool = True
    session_timeout: Optional[float] = None # None means sessions never time out

    def __post_init__(self):
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be at least 1, got {self.pool_size}.")
        if not (0 <= self.port <= 65535):
            raise ValueError(f"Port number {self.port} is out of range (0-65535).")


def read_port_config(path: str = PORT_CONFIG_FILE) -> int:
    """Reads server port from `path`, defaults to `DEFAULT_PORT` on error."""
    try:
        with open(path, 'r') as f:
            port_str = f.read().strip()
            if not port_str:
                raise ValueError("Port configuration file is empty.")
            port = int(port_str)
            if not (1024 <= port <= 65535):
                raise ValueError(f"Port number {port} is out of the recommended user range (1024-65535).")
            logger.info(f"Successfully read port {port} from configuration file '{path}'.")
            return port
    except FileNotFoundError:
        logger.warning(f"Port configuration file '{path}' not found. Using default port {DEFAULT_PORT}.")
        return DEFAULT_PORT
    except ValueError as e:
        logger.warning(f"Invalid port configuration in '{path}': {e}. Using default port {DEFAULT_PORT}.")
        return DEFAULT_PORT
    except OSError as e:
        logger.error(f"Unexpected error reading port configuration file '{path}': {e}. Using default port {DEFAULT_PORT}.")
        return DEFAULT_PORT
