# client_app/client.py
import socket
import os
import random
from typing import Callable, List, Optional, Tuple

from common.config import ClientConfig
from common.log import get_logger
from common.protocol import (
    CMD_LIST_FILES, CMD_GET_FILES, CMD_QUIT,
    RESP_OK, RESP_ERROR, INT_MIN, INT_MAX,
    ProtocolError,
    send_handshake, send_command, parse_command, recv_listing, recv_string,
    recv_file_header, recv_chunk_header, recv_into_file,
    is_safe_name, progress_percent
)

logger = get_logger('client')

# progress_callback(filename, part, received_bytes, total_bytes, percent)
ProgressCallback = Callable[[str, int, int, int, int], None]

USAGE = "Commands: list, get <file1> <file2>..., quit"


def print_progress(filename, part, received, total, percent):
    print(f"Downloading {filename} part {part} .... {percent}%")


class Client:
    def __init__(self, config: Optional[ClientConfig] = None, client_id: Optional[int] = None):
        self.config = config or ClientConfig()
        self.host = self.config.host
        self.port = self.config.port
        self.client_id = client_id if client_id is not None else random.randint(100, 999)
        if not (INT_MIN <= self.client_id <= INT_MAX):
            raise ValueError(f"client_id must fit a signed 32-bit integer, got {self.client_id}")
        self.download_dir = self.config.download_dir_for(self.client_id)
        self.client_socket = None
        self.receive_buffer = bytearray(self.config.chunk_size)  # reused for every chunk

    @property
    def connected(self):
        return self.client_socket is not None

    def connect(self):
        """Open the session and send the handshake. Raises OSError on failure."""
        os.makedirs(self.download_dir, exist_ok=True)
        client_socket = socket.create_connection((self.host, self.port))
        try:
            send_handshake(client_socket, self.client_id)
        except OSError:
            client_socket.close()
            raise
        self.client_socket = client_socket
        logger.info(f"Client {self.client_id} connected to {self.host}:{self.port}")
        return f"Connected to server at {self.host}:{self.port}"

    def disconnect(self, send_quit=True):
        if self.client_socket:
            try:
                if send_quit:
                    send_command(self.client_socket, CMD_QUIT.lower())
            except OSError as e:
                logger.warning(f"Could not send quit: {e}")
            finally:
                self.client_socket.close()
                self.client_socket = None
        return "Disconnected."

    def _require_connection(self):
        if not self.client_socket:
            raise ConnectionError("Not connected.")
        return self.client_socket

    def request_list_files(self) -> List[str]:
        sock = self._require_connection()
        send_command(sock, CMD_LIST_FILES.lower())
        return recv_listing(sock)

    def request_download(self, filenames: List[str],
                         progress_callback: Optional[ProgressCallback] = None) -> List[Tuple[bool, str]]:
        """
        Send one combined get command and read one response per name, in order.

        Returns a (success, message) pair per requested name. Connection and
        protocol errors propagate; files already received stay on disk.
        """
        sock = self._require_connection()
        send_command(sock, " ".join([CMD_GET_FILES.lower()] + list(filenames)))
        return [self.receive_file(progress_callback) for _ in filenames]

    def receive_file(self, progress_callback: Optional[ProgressCallback] = None) -> Tuple[bool, str]:
        sock = self._require_connection()
        status, filename, file_size = recv_file_header(sock)
        if status == RESP_ERROR:
            return False, f"File '{filename}' does not exist."
        if status != RESP_OK:
            raise ProtocolError(f"Unexpected status '{status}' in file response")

        if not is_safe_name(filename):
            # Keep the stream in sync but never touch the filesystem
            self._receive_chunks(filename, file_size, None, None)
            logger.warning(f"Rejected unsafe file name from server: '{filename}'")
            return False, f"Rejected unsafe file name '{filename}'."

        save_path = os.path.join(self.download_dir, filename)
        with open(save_path, 'wb') as f:
            self._receive_chunks(filename, file_size, f, progress_callback)
        return True, f"Download complete: {filename}"

    def _receive_chunks(self, filename, file_size, fileobj, progress_callback):
        sock = self.client_socket
        received = 0
        while received < file_size:
            part, chunk_size = recv_chunk_header(sock)
            if chunk_size <= 0 or chunk_size > file_size - received:
                raise ProtocolError(
                    f"Bad chunk length {chunk_size} for '{filename}' ({received}/{file_size} bytes received)")
            recv_into_file(sock, chunk_size, fileobj, self.receive_buffer)
            received += chunk_size
            if progress_callback:
                progress_callback(filename, part, received, file_size, progress_percent(received, file_size))
        return received

    def execute(self, line: str, progress_callback: Optional[ProgressCallback] = None) -> str:
        """Run one text command and return what should be shown to the user."""
        command = parse_command(line)
        if not command.keyword:
            return ""

        if command.keyword == CMD_LIST_FILES:
            files = self.request_list_files()
            if not files:
                return "No files available."
            return "\n".join(["Available files:"] + [f"- {name}" for name in files])

        if command.keyword == CMD_GET_FILES:
            if not command.args:
                return "Usage: get <file1> <file2>..."
            results = self.request_download(command.args, progress_callback)
            return "\n".join(message for _, message in results)

        if command.keyword == CMD_QUIT:
            return self.disconnect(send_quit=True)

        sock = self._require_connection()
        send_command(sock, command.text)
        status = recv_string(sock)
        detail = recv_string(sock)
        return f"Unknown command '{detail}' ({status}). {USAGE}"

    def run_ui(self, input_func=input):
        """
        Interactive prompt loop. Returns True after a clean quit and False when
        the session was lost; a lost session is never retried.
        """
        print(f"\nClient ID: {self.client_id}")
        print(f"Download directory: {self.download_dir}")
        while self.connected:
            print(f"\n{USAGE}\n")
            try:
                line = input_func("> ")
            except EOFError:
                line = CMD_QUIT.lower()
            try:
                output = self.execute(line, print_progress)
            except (OSError, ProtocolError) as e:
                print(f"\n[ERROR] Session failed: {e}")
                logger.error(f"Session failed during '{line}': {e}")
                self.disconnect(send_quit=False)
                return False
            if output:
                print(output)
        return True
