# run_server.py
import argparse
import logging
import sys

from common.config import ServerConfig
from common.log import setup_logging
from server_app.server import Server


def parse_args(argv=None):
    defaults = ServerConfig()
    parser = argparse.ArgumentParser(description='Chunked TCP file server')
    parser.add_argument('--host', type=str, default=defaults.host,
                        help=f'Host to bind to (default: {defaults.host})')
    parser.add_argument('--port', type=int, default=defaults.port,
                        help=f'TCP port (default: {defaults.port})')
    parser.add_argument('--files-dir', type=str, default=defaults.files_dir,
                        help=f'Directory of files to serve (default: {defaults.files_dir})')
    parser.add_argument('--chunk-size', type=int, default=defaults.chunk_size,
                        help=f'Chunk size in bytes (default: {defaults.chunk_size})')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logger = setup_logging(getattr(logging, args.log_level))
    config = ServerConfig(host=args.host, port=args.port,
                          files_dir=args.files_dir, chunk_size=args.chunk_size)
    server = Server(config)
    try:
        server.start()
    except OSError as e:
        logger.error(f"Could not start server: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
