"""
Server entry point
Parses command-line options, configures logging and runs the file exchange server
"""

import argparse
import logging
import os
import signal
import sys
from typing import Any, List, Optional

from .config import (AUDIT_LOG_FILE, DEFAULT_HOST, PORT_CONFIG_FILE, STORAGE_DIR,
                     THREAD_POOL_SIZE, ServerConfig, read_port_config)
from .errors import ServerError
from .server_core import FileExchangeServer

# Logging Configuration
LOG_FORMAT = '%(asctime)s - %(threadName)s - %(levelname)s - %(message)s'
SERVER_LOG_FILE = "server.log"

logger = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO, log_file: str = SERVER_LOG_FILE):
    """Log to `log_file` (append mode) and to stdout"""
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_file, mode='a'),
            logging.StreamHandler(sys.stdout)
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fileshare-server", description="Line-protocol file exchange server")
    parser.add_argument('--host', type=str, default=DEFAULT_HOST,
                        help=f'Bind address (default: {DEFAULT_HOST})')
    parser.add_argument('--port', type=int, default=None,
                        help=f'TCP port (default: read from {PORT_CONFIG_FILE})')
    parser.add_argument('--port-file', type=str, default=PORT_CONFIG_FILE,
                        help=f'File holding the port number (default: {PORT_CONFIG_FILE})')
    parser.add_argument('--pool-size', type=int, default=THREAD_POOL_SIZE,
                        help=f'Number of concurrent session workers (default: {THREAD_POOL_SIZE})')
    parser.add_argument('--storage-dir', type=str, default=STORAGE_DIR,
                        help=f'Directory for uploaded files (default: {STORAGE_DIR})')
    parser.add_argument('--log-file', type=str, default=AUDIT_LOG_FILE,
                        help=f'Audit log file (default: {AUDIT_LOG_FILE})')
    parser.add_argument('--no-block', action='store_true',
                        help='Queue connections instead of blocking accept when all workers are busy')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    port = args.port if args.port is not None else read_port_config(args.port_file)
    try:
        config = ServerConfig(
            host=args.host,
            port=port,
            pool_size=args.pool_size,
            storage_dir=args.storage_dir,
            audit_log_path=args.log_file,
            block_on_saturation=not args.no_block,
        )
    except ValueError as e:
        logger.critical(f"Invalid server configuration: {e}")
        return 2

    logger.info(f"File exchange server starting (PID {os.getpid()}).")
    server = FileExchangeServer(config)

    def _signal_handler(signum: int, frame: Optional[Any]):
        sig_name = signal.Signals(signum).name
        logger.warning(f"{sig_name} received by server. Initiating graceful shutdown sequence...")
        server.shutdown_event.set()

    if hasattr(signal, 'SIGTERM'):
        signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    try:
        server.start()
    except ServerError as e:
        logger.critical(f"Server startup aborted: {e}")
        return 1

    try:
        server.serve_forever()
    finally:
        server.stop()
        logger.info("Server application has completed its full termination sequence.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
