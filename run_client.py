# run_client.py
import argparse
import logging
import sys

from client_app.client import Client
from common.config import ClientConfig
from common.log import setup_logging
from common.protocol import INT_MIN, INT_MAX


def client_id_type(text):
    value = int(text)
    if not (INT_MIN <= value <= INT_MAX):
        raise argparse.ArgumentTypeError(f"client id must be between {INT_MIN} and {INT_MAX}")
    return value


def parse_args(argv=None):
    defaults = ClientConfig()
    parser = argparse.ArgumentParser(description='Chunked TCP file client')
    parser.add_argument('--host', type=str, default=defaults.host,
                        help=f'Server host (default: {defaults.host})')
    parser.add_argument('--port', type=int, default=defaults.port,
                        help=f'Server port (default: {defaults.port})')
    parser.add_argument('--client-id', type=client_id_type, default=None,
                        help='Client identifier sent in the handshake (default: random 100-999)')
    parser.add_argument('--download-dir', type=str, default=None,
                        help='Where downloads are written (default: client_<id>_files)')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    # Progress and listings go to stdout; keep the log to warnings and above
    logger = setup_logging(logging.WARNING)
    client = Client(ClientConfig(host=args.host, port=args.port, download_dir=args.download_dir),
                    client_id=args.client_id)
    try:
        print(client.connect())
    except OSError as e:
        logger.error(f"Error connecting to server: {e}")
        return 1
    try:
        return 0 if client.run_ui() else 1
    except KeyboardInterrupt:
        client.disconnect(send_quit=True)
        print("\nDisconnected.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
