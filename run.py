#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
MiniHTTPD
---------
Static file and CGI web server.
This is the main entry point for the server.
"""

import sys
import signal
import argparse

from minihttpd.server import WebServer


def build_parser():
    parser = argparse.ArgumentParser(description='MiniHTTPD static file and CGI server')

    # Basic server options
    parser.add_argument('-c', '--config', type=str, help='Path to configuration file (JSON or server.conf style)')
    parser.add_argument('-H', '--host', type=str, help='Host address to bind to')
    parser.add_argument('-p', '--port', type=int, help='Port to listen on')
    parser.add_argument('-d', '--directory', type=str, help='Document root directory')

    # Script execution options
    parser.add_argument('--php-interpreter', type=str, help='Interpreter used to run scripts (e.g. php-cgi)')
    parser.add_argument('--php-enabled', action='store_true', default=None, help='Enable script execution')

    # Worker pool and timeouts
    parser.add_argument('--max-threads', type=int, help='Number of worker threads')
    parser.add_argument('--max-queue', type=int, help='Connections allowed to wait for a worker (0 = unbounded)')
    parser.add_argument('--request-timeout', type=int, help='Client socket timeout in seconds (0 = none)')
    parser.add_argument('--script-timeout', type=int, help='Script run time limit in seconds (0 = none)')

    # Logging options
    parser.add_argument('--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level')
    parser.add_argument('--log-file', type=str, help='Path to log file')
    parser.add_argument('--no-color', action='store_true', help='Disable colored logging')

    parser.add_argument('--write-config', type=str, metavar='PATH',
                        help='Write the effective configuration to PATH and exit')
    return parser


def main(argv=None):
    """
    Main entry point for the server.
    """
    args = build_parser().parse_args(argv)

    # Convert arguments to dictionary, excluding None values
    config_args = {k: v for k, v in vars(args).items() if v is not None}
    config_file = config_args.pop('config', None)
    write_config = config_args.pop('write_config', None)

    # Special handling for boolean flags
    if config_args.pop('no_color', False):
        config_args['colored_logging'] = False

    server = WebServer(config_file=config_file, **config_args)

    if write_config:
        return 0 if server.config.save_to_file(write_config) else 1

    def stop(sig, frame):
        server.logger.info(f"Received signal {sig}, shutting down...")
        server.shutdown()

    signal.signal(signal.SIGINT, stop)
    signal.signal(signal.SIGTERM, stop)

    if not server.start():
        return 1

    try:
        # Keep the main thread alive until interrupted
        server.wait_for_shutdown()
    finally:
        server.shutdown()

    return 0


if __name__ == '__main__':
    sys.exit(main())
