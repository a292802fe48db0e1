"""Client session driver tests against a live server and against scripted peers."""

import os
import socket
import tempfile
import threading
import unittest

import run_client
from client_app.client import Client
from common.config import ClientConfig
from common.protocol import (
    CHUNK_SIZE, ProtocolError, ConnectionClosedError, FileTransfer,
    send_file_header, send_string, send_chunk
)
from server_harness import RunningServer, write_file


class ClientServerTestCase(unittest.TestCase):
    chunk_size = 1024

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.files_dir = os.path.join(self._tmp.name, 'store')
        self.download_dir = os.path.join(self._tmp.name, 'downloads')
        os.makedirs(self.files_dir)
        self.running = RunningServer(self.files_dir, chunk_size=self.chunk_size)
        self.running.__enter__()
        self.client = self.running.client(self.download_dir)

    def tearDown(self):
        self.client.disconnect()
        self.running.__exit__(None, None, None)
        self._tmp.cleanup()

    def downloaded(self, name):
        with open(os.path.join(self.download_dir, name), 'rb') as f:
            return f.read()


class TestRoundTrip(ClientServerTestCase):
    def test_sizes_around_chunk_boundaries(self):
        sizes = [0, 1, self.chunk_size - 1, self.chunk_size, self.chunk_size + 1, 5 * self.chunk_size + 3]
        for size in sizes:
            with self.subTest(size=size):
                data = os.urandom(size)
                write_file(self.files_dir, f'f{size}.bin', data)
                [(success, message)] = self.client.request_download([f'f{size}.bin'])
                self.assertTrue(success, message)
                self.assertEqual(self.downloaded(f'f{size}.bin'), data)

    def test_list(self):
        write_file(self.files_dir, 'one.txt', b'1')
        write_file(self.files_dir, 'two.txt', b'22')
        os.makedirs(os.path.join(self.files_dir, 'dir'))
        self.assertEqual(sorted(self.client.request_list_files()), ['one.txt', 'two.txt'])

    def test_progress_reports_every_chunk(self):
        write_file(self.files_dir, 'p.bin', b'p' * (2 * self.chunk_size + 100))
        calls = []
        self.client.request_download(['p.bin'], lambda *args: calls.append(args))
        total = 2 * self.chunk_size + 100
        self.assertEqual([c[1] for c in calls], [1, 2, 3])
        self.assertEqual([c[2] for c in calls], [self.chunk_size, 2 * self.chunk_size, total])
        self.assertEqual(calls[-1][4], 100)


class TestMissingFiles(ClientServerTestCase):
    def test_missing_file_creates_nothing(self):
        [(success, message)] = self.client.request_download(['ghost.txt'])
        self.assertFalse(success)
        self.assertIn('ghost.txt', message)
        self.assertFalse(os.path.exists(os.path.join(self.download_dir, 'ghost.txt')))

    def test_missing_file_leaves_existing_local_copy(self):
        write_file(self.download_dir, 'ghost.txt', b'local')
        self.client.request_download(['ghost.txt'])
        self.assertEqual(self.downloaded('ghost.txt'), b'local')

    def test_batch_get_independence(self):
        a, c = os.urandom(3000), os.urandom(1024)
        write_file(self.files_dir, 'a', a)
        write_file(self.files_dir, 'c', c)
        results = self.client.request_download(['a', 'b', 'c'])
        self.assertEqual([success for success, _ in results], [True, False, True])
        self.assertEqual(self.downloaded('a'), a)
        self.assertEqual(self.downloaded('c'), c)
        self.assertFalse(os.path.exists(os.path.join(self.download_dir, 'b')))
        # Session is still usable afterwards
        self.assertEqual(sorted(self.client.request_list_files()), ['a', 'c'])

    def test_traversal_request_is_refused(self):
        write_file(self._tmp.name, 'secret.txt', b'secret')
        [(success, _)] = self.client.request_download(['../secret.txt'])
        self.assertFalse(success)


class TestExecute(ClientServerTestCase):
    def test_commands_are_case_insensitive(self):
        write_file(self.files_dir, 'x.txt', b'xyz')
        self.assertIn('- x.txt', self.client.execute('LiSt'))
        self.assertIn('Download complete: x.txt', self.client.execute('GeT x.txt'))
        self.assertEqual(self.downloaded('x.txt'), b'xyz')

    def test_unknown_command(self):
        output = self.client.execute('frobnicate')
        self.assertIn("Unknown command 'FROBNICATE'", output)
        self.assertEqual(self.client.execute('list'), 'No files available.')

    def test_get_without_names(self):
        self.assertTrue(self.client.execute('get').startswith('Usage'))

    def test_quit(self):
        self.client.execute('quit')
        self.assertFalse(self.client.connected)

    def test_run_ui_script(self):
        write_file(self.files_dir, 'ui.txt', b'ui')
        lines = iter(['list', 'get ui.txt missing.txt', 'quit'])
        self.assertTrue(self.client.run_ui(input_func=lambda prompt: next(lines)))
        self.assertEqual(self.downloaded('ui.txt'), b'ui')

    def test_run_ui_treats_eof_as_quit(self):
        def closed_input(prompt):
            raise EOFError
        self.assertTrue(self.client.run_ui(input_func=closed_input))
        self.assertFalse(self.client.connected)


class TestExampleScenario(ClientServerTestCase):
    chunk_size = CHUNK_SIZE

    def test_report_progress(self):
        data = os.urandom(2500000)
        write_file(self.files_dir, 'report.txt', data)
        calls = []
        self.client.request_download(['report.txt'], lambda *args: calls.append(args))
        self.assertEqual([c[1] for c in calls], [1, 2, 3])
        self.assertEqual([c[4] for c in calls], [41, 83, 100])
        self.assertEqual(self.downloaded('report.txt'), data)


class TestConcurrentSessions(ClientServerTestCase):
    def test_two_clients_same_file(self):
        data = os.urandom(20 * self.chunk_size + 7)
        write_file(self.files_dir, 'samefile.txt', data)
        dirs = [os.path.join(self._tmp.name, f'client{i}') for i in (1, 2)]
        results = {}

        def download(index, download_dir):
            client = self.running.client(download_dir, client_id=100 + index)
            try:
                results[index] = client.request_download(['samefile.txt'])
            finally:
                client.disconnect()

        threads = [threading.Thread(target=download, args=(i, d)) for i, d in enumerate(dirs)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        self.assertEqual(len(results), 2)
        for download_dir in dirs:
            with open(os.path.join(download_dir, 'samefile.txt'), 'rb') as f:
                self.assertEqual(f.read(), data)


class ScriptedPeerTestCase(unittest.TestCase):
    """Client wired to one end of a socket pair; the test plays the server."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.download_dir = os.path.join(self._tmp.name, 'downloads')
        os.makedirs(self.download_dir)
        self.client = Client(ClientConfig(download_dir=self.download_dir, chunk_size=16), client_id=7)
        self.client.client_socket, self.peer = socket.socketpair()
        self.client.client_socket.settimeout(5)

    def tearDown(self):
        self.client.disconnect(send_quit=False)
        self.peer.close()
        self._tmp.cleanup()

    def test_unsafe_received_name_is_rejected(self):
        send_file_header(self.peer, FileTransfer(name='../evil.txt', size=5))
        send_chunk(self.peer, 1, b'hello')
        send_string(self.peer, 'ERROR')
        send_string(self.peer, 'next.txt')

        success, message = self.client.receive_file()
        self.assertFalse(success)
        self.assertIn('unsafe', message)
        self.assertFalse(os.path.exists(os.path.join(self._tmp.name, 'evil.txt')))
        # Payload was drained; the following response decodes cleanly
        self.assertEqual(self.client.receive_file(), (False, "File 'next.txt' does not exist."))

    def test_connection_loss_leaves_partial_file_and_raises(self):
        send_file_header(self.peer, FileTransfer(name='cut.bin', size=10))
        self.peer.sendall(b'\x00\x00\x00\x01\x00\x00\x00\x0a' + b'abcd')
        self.peer.close()
        with self.assertRaises(ConnectionClosedError):
            self.client.receive_file()
        with open(os.path.join(self.download_dir, 'cut.bin'), 'rb') as f:
            self.assertEqual(f.read(), b'abcd')

    def test_chunk_overrunning_size_fails_session(self):
        send_file_header(self.peer, FileTransfer(name='over.bin', size=3))
        send_chunk(self.peer, 1, b'toolong')
        with self.assertRaises(ProtocolError):
            self.client.receive_file()

    def test_unexpected_status(self):
        send_string(self.peer, 'MAYBE')
        send_string(self.peer, 'x')
        with self.assertRaises(ProtocolError):
            self.client.receive_file()

    def test_run_ui_reports_lost_session(self):
        self.peer.close()
        lines = iter(['list'])
        self.assertFalse(self.client.run_ui(input_func=lambda prompt: next(lines)))
        self.assertFalse(self.client.connected)


class TestConnect(unittest.TestCase):
    def test_connect_failure_raises(self):
        with socket.socket() as probe:
            probe.bind(('127.0.0.1', 0))
            port = probe.getsockname()[1]
        with tempfile.TemporaryDirectory() as root:
            client = Client(ClientConfig(host='127.0.0.1', port=port, download_dir=root))
            with self.assertRaises(OSError):
                client.connect()

    def test_default_download_dir_uses_client_id(self):
        client = Client(ClientConfig(), client_id=321)
        self.assertEqual(client.download_dir, 'client_321_files')
        self.assertTrue(100 <= Client(ClientConfig()).client_id <= 999)

    def test_client_id_must_fit_handshake(self):
        with self.assertRaises(ValueError):
            Client(ClientConfig(), client_id=2 ** 31)
        with self.assertRaises(ValueError):
            Client(ClientConfig(), client_id=-2 ** 31 - 1)
        self.assertEqual(Client(ClientConfig(), client_id=2 ** 31 - 1).client_id, 2 ** 31 - 1)

    def test_launcher_rejects_out_of_range_client_id(self):
        with self.assertRaises(SystemExit):
            run_client.parse_args(['--client-id', str(2 ** 31)])
        self.assertEqual(run_client.parse_args(['--client-id', '42']).client_id, 42)

    def test_chunk_size_must_fit_frame(self):
        with self.assertRaises(ValueError):
            ClientConfig(chunk_size=2 ** 31)


if __name__ == '__main__':
    unittest.main()
