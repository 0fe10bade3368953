"""
Client command-line interface

Usage:
    fileshare-client list
    fileshare-client put <filepath>
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from fileshare.errors import ProtocolError

from .client_core import DEFAULT_HOST, DEFAULT_PORT, FileExchangeClient

USAGE = "Usage: fileshare-client <command> [filepath]"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fileshare-client", usage="%(prog)s [--host HOST] [--port PORT] {list,put} [filepath]")
    parser.add_argument('--host', type=str, default=DEFAULT_HOST, help=f'Server host (default: {DEFAULT_HOST})')
    parser.add_argument('--port', type=int, default=DEFAULT_PORT, help=f'Server port (default: {DEFAULT_PORT})')
    parser.add_argument('command', nargs='?', help="'list' or 'put'")
    parser.add_argument('filepath', nargs='?', help="File to upload with 'put'")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.WARNING, format='%(levelname)s - %(message)s')
    args = build_parser().parse_args(argv)

    if not args.command:
        print(USAGE)
        return 1

    client = FileExchangeClient(args.host, args.port)
    command = args.command.lower()
    try:
        if command == "put" and args.filepath:
            if not os.path.exists(args.filepath):
                print(f"Error: File {args.filepath} does not exist.")
                return 1
            if not os.path.isfile(args.filepath):
                print(f"Error: {args.filepath} is not a regular file.")
                return 1
            responses = client.put_file(args.filepath)
        elif command == "list":
            responses = client.list_files()
        else:
            print("Invalid command or missing filepath for 'put'.")
            return 1
    except UnicodeDecodeError:
        print(f"Error: File {args.filepath} is not a UTF-8 text file.")
        return 1
    except (ConnectionError, ProtocolError, OSError) as e:
        print(f"Connection error: {e}", file=sys.stderr)
        return 0

    for line in responses:
        print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
