# server_app/server.py
import socket
import threading
import os
from typing import List, Optional

from common.config import ServerConfig
from common.log import get_logger
from common.protocol import (
    CMD_LIST_FILES, CMD_GET_FILES, CMD_QUIT,
    RESP_ERROR, RESP_UNKNOWN,
    FileTransfer, ProtocolError, ConnectionClosedError,
    recv_handshake, recv_command, send_listing, send_status,
    send_file_header, send_chunk, iter_chunks, is_safe_name
)

logger = get_logger('server')


def list_files(files_dir: str) -> List[str]:
    """Regular files in ``files_dir``, in directory-enumeration order."""
    return [f for f in os.listdir(files_dir) if os.path.isfile(os.path.join(files_dir, f))]


def resolve_file(files_dir: str, filename: str) -> Optional[str]:
    """
    Map a requested name to a regular file inside ``files_dir``.

    Returns None for names with path segments, names that resolve outside the
    root (e.g. through a symlink) and names that are not regular files.
    """
    if not is_safe_name(filename):
        return None
    root = os.path.realpath(files_dir)
    file_path = os.path.realpath(os.path.join(root, filename))
    if os.path.commonpath([root, file_path]) != root:
        return None
    if not os.path.isfile(file_path):
        return None
    return file_path


def send_file(sock, files_dir: str, filename: str, chunk_size: int) -> Optional[int]:
    """
    Send one GET response for ``filename``.

    Returns the number of chunks sent, or None when an ERROR status was sent.
    """
    file_path = resolve_file(files_dir, filename)
    if file_path is None:
        send_status(sock, RESP_ERROR, filename)
        return None

    try:
        f = open(file_path, 'rb')
    except OSError as e:
        # Removed or unreadable since it was resolved; nothing is on the wire yet
        logger.warning(f"Could not open '{filename}': {e}")
        send_status(sock, RESP_ERROR, filename)
        return None

    with f:
        file_size = os.fstat(f.fileno()).st_size
        send_file_header(sock, FileTransfer(name=filename, size=file_size))
        sent = 0
        parts = 0
        for chunk in iter_chunks(f, chunk_size, limit=file_size):
            send_chunk(sock, chunk.part, chunk.data)
            sent += len(chunk.data)
            parts = chunk.part
    if sent != file_size:
        # The peer is waiting for the announced size; the stream can't be repaired.
        raise ProtocolError(f"File '{filename}' shrank during transfer ({sent}/{file_size} bytes)")
    return parts


class ClientHandler(threading.Thread):
    def __init__(self, client_socket, client_address, config: ServerConfig):
        super().__init__(daemon=True)
        self.client_socket = client_socket
        self.client_address = client_address
        self.config = config
        self.client_id = None
        logger.info(f"[NEW CONNECTION] {self.client_address} connected.")

    def run(self):
        try:
            self.client_id = recv_handshake(self.client_socket)
            logger.info(f"[{self.client_address}] Client ID: {self.client_id}")
            while True:
                command = recv_command(self.client_socket)
                logger.info(f"[{self.client_address}] RX: Command='{command.keyword}', Args={command.args}")

                if command.keyword == CMD_LIST_FILES:
                    self.handle_list_files()
                elif command.keyword == CMD_GET_FILES:
                    self.handle_get_files(command.args)
                elif command.keyword == CMD_QUIT:
                    logger.info(f"[{self.client_address}] Quit requested.")
                    break
                else:
                    send_status(self.client_socket, RESP_UNKNOWN, command.keyword)
                    logger.warning(f"[{self.client_address}] Unknown command '{command.keyword}'.")
        except ConnectionClosedError as e:
            logger.info(f"[{self.client_address}] Disconnected: {e}")
        except ProtocolError as e:
            logger.error(f"[{self.client_address}] Protocol error, closing session: {e}")
        except OSError as e:
            logger.error(f"[{self.client_address}] I/O error, closing session: {e}")
        finally:
            self.client_socket.close()
            logger.info(f"[{self.client_address}] Connection closed (client {self.client_id}).")

    def handle_list_files(self):
        files = list_files(self.config.files_dir)
        send_listing(self.client_socket, files)
        logger.info(f"[{self.client_address}] Sent file list ({len(files)} files).")

    def handle_get_files(self, filenames):
        for filename in filenames:
            parts = send_file(self.client_socket, self.config.files_dir, filename, self.config.chunk_size)
            if parts is None:
                logger.warning(f"[{self.client_address}] File '{filename}' not found or not allowed.")
            else:
                logger.info(f"[{self.client_address}] File '{filename}' sent in {parts} chunks.")


class Server:
    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.server_socket = None
        self._stop = threading.Event()

    @property
    def address(self):
        return self.server_socket.getsockname()[:2]

    def bind(self):
        """Create the listening socket. Raises OSError if the port can't be bound."""
        os.makedirs(self.config.files_dir, exist_ok=True)
        server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            server_socket.bind((self.config.host, self.config.port))
            server_socket.listen(self.config.backlog)
        except OSError:
            server_socket.close()
            raise
        # Accept wakes up periodically so shutdown() is noticed
        server_socket.settimeout(self.config.accept_poll_interval)
        self.server_socket = server_socket
        logger.info(f"[LISTENING] Server is listening on {self.address[0]}:{self.address[1]}")
        logger.info(f"Serving files from: {os.path.abspath(self.config.files_dir)}")

    def serve_forever(self):
        try:
            while not self._stop.is_set():
                try:
                    client_socket, client_address = self.server_socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    # e.g. EMFILE or ECONNABORTED; back off and keep listening
                    logger.error(f"[ACCEPT] Could not accept connection: {e}")
                    self._stop.wait(self.config.accept_poll_interval)
                    continue
                try:
                    client_socket.settimeout(None)
                    handler = ClientHandler(client_socket, client_address, self.config)
                    handler.start()
                except (OSError, RuntimeError) as e:
                    logger.error(f"[{client_address}] Could not start session: {e}")
                    client_socket.close()
        finally:
            self.server_socket.close()
            logger.info("[CLOSED] Server socket closed.")

    def start(self):
        self.bind()
        try:
            self.serve_forever()
        except KeyboardInterrupt:
            logger.info("[SHUTTING DOWN] Server is shutting down.")

    def shutdown(self):
        self._stop.set()
