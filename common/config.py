# common/config.py
"""
Runtime configuration for the server and the client.

Defaults match the fixed constants in common.protocol, so running either side
without arguments behaves like the original hard-coded setup.
"""

from dataclasses import dataclass
from typing import Optional

from common.protocol import HOST, PORT, CHUNK_SIZE, FILES_DIR, INT_MAX


@dataclass
class ServerConfig:
    """Server configuration: bind address, file store root and chunk size."""
    host: str = HOST
    port: int = PORT
    files_dir: str = FILES_DIR
    chunk_size: int = CHUNK_SIZE
    backlog: int = 10
    accept_poll_interval: float = 0.5  # seconds between stop-flag checks in the accept loop

    def __post_init__(self):
        if not (0 < self.chunk_size <= INT_MAX):
            raise ValueError(f"chunk_size must be between 1-{INT_MAX}, got {self.chunk_size}")
        if not (0 <= self.port <= 65535):
            raise ValueError(f"port must be between 0-65535, got {self.port}")


@dataclass
class ClientConfig:
    """Client configuration. ``download_dir`` defaults to client_<id>_files."""
    host: str = HOST
    port: int = PORT
    download_dir: Optional[str] = None
    chunk_size: int = CHUNK_SIZE  # size of the local receive buffer

    def __post_init__(self):
        if not (0 < self.chunk_size <= INT_MAX):
            raise ValueError(f"chunk_size must be between 1-{INT_MAX}, got {self.chunk_size}")
        if not (0 <= self.port <= 65535):
            raise ValueError(f"port must be between 0-65535, got {self.port}")

    def download_dir_for(self, client_id: int) -> str:
        return self.download_dir or f"client_{client_id}_files"
