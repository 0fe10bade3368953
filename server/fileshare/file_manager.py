"""
File management operations
Handles the storage root: safe naming, listing and exclusive file creation
"""

import logging
from pathlib import Path
from typing import List

from .errors import FileError

logger = logging.getLogger(__name__)


class StoredFile:
    """Write handle for a file being uploaded"""

    def __init__(self, path: Path, handle):
        self.path = path
        self._handle = handle
        self.lines_written = 0

    def write_line(self, line: str):
        """Write one body line with its own terminator"""
        self._handle.write(line + "\n")
        self.lines_written += 1

    def close(self):
        if not self._handle.closed:
            self._handle.close()

    def discard(self):
        """Close and remove a partially written file"""
        try:
            self.close()
        except OSError as e:
            logger.debug(f"Error closing partial file '{self.path}': {e}")
        try:
            self.path.unlink()
            logger.info(f"Removed incomplete upload '{self.path}'.")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove incomplete upload '{self.path}': {e}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is None:
            self.close()
        else:
            self.discard()
        return False


class FileManager:
    """Manages the storage root shared by all sessions"""

    def __init__(self, storage_path: str = "serverFiles"):
        # Root is created lazily by the first upload
        self.storage_path = Path(storage_path)

    @staticmethod
    def safe_name(filename: str) -> str:
        """
        Reduces a client-supplied filename to its final path component.

        Raises:
            FileError: If nothing usable remains after stripping.
        """
        name = filename.replace("\\", "/").rsplit("/", 1)[-1]
        if name in ("", ".", "..") or "\0" in name:
            raise FileError(f"Invalid filename '{filename}'.")
        return name

    def ensure_storage_root(self):
        """
        Creates the storage root if it does not exist yet.

        Raises:
            FileError: If the root path exists but is not a directory.
        """
        try:
            self.storage_path.mkdir(parents=True, exist_ok=True)
        except FileExistsError as e:
            raise FileError(f"Storage root '{self.storage_path}' is not a directory.") from e

    def list_files(self) -> List[str]:
        """List regular files under the storage root, sorted by name"""
        if not self.storage_path.is_dir():
            return []
        return sorted(entry.name for entry in self.storage_path.iterdir() if entry.is_file())

    def create_file(self, filename: str) -> StoredFile:
        """
        Atomically creates a new file under the storage root.

        Args:
            filename: The client-supplied name; only its base name is used.

        Returns:
            A StoredFile open for writing.

        Raises:
            FileError: If the name is not usable.
            FileExistsError: If a file with that name already exists.
            OSError: If the storage root or the file cannot be created.
        """
        name = self.safe_name(filename)
        self.ensure_storage_root()
        file_path = self.storage_path / name
        # Mode 'x' fails if the name is taken, so concurrent uploads cannot both win
        handle = open(file_path, 'x', encoding='utf-8', newline='\n')
        logger.debug(f"Created '{file_path}' for upload.")
        return StoredFile(file_path, handle)

    def read_lines(self, filename: str) -> List[str]:
        """Read a stored file back as lines without terminators"""
        file_path = self.storage_path / self.safe_name(filename)
        with open(file_path, 'r', encoding='utf-8', newline='\n') as f:
            content = f.read()
        return content.split("\n")[:-1] if content else []
