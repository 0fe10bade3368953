"""
Exception hierarchy shared by the server and client packages
"""


class ServerError(Exception):
    """Base class for fileshare-specific exceptions."""
    pass

class ProtocolError(ServerError):
    """Indicates the peer broke line framing (e.g. stream ended before EOF)."""
    pass

class FileError(ServerError):
    """Indicates an invalid filename or a storage failure."""
    pass
