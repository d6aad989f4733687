"""
Shared fixtures for the MiniHTTPD tests.

Scripts are written in Python and executed with the interpreter running the
tests, so no PHP installation is needed; they keep the ``.php`` extension the
router looks for.
"""

import os
import sys
import socket
import threading
from collections import namedtuple

import pytest

# Make the package importable without installing it
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from minihttpd.config import ServerConfig
from minihttpd.handler import RequestHandler
from minihttpd.server import WebServer


Response = namedtuple('Response', ['status', 'reason', 'headers', 'body', 'raw'])

CLIENT_ADDRESS = ('127.0.0.1', 54321)

# Echoes its CGI environment, input and working directory as JSON.
ECHO_SCRIPT = '''\
import json, os, sys
data = sys.stdin.read()
sys.stdout.write("Content-Type: application/json\\r\\n")
sys.stdout.write("X-Powered-By: tests\\r\\n")
sys.stdout.write("\\r\\n")
sys.stdout.write(json.dumps({"env": dict(os.environ), "body": data, "cwd": os.getcwd()}))
'''

README_BYTES = b'line one\r\nline two\r\nlast line without newline'
BINARY_BYTES = bytes(range(256)) * 8


def parse_response(raw):
    """Split a raw HTTP response into status, headers (lower-cased keys) and body."""
    head, _, body = raw.partition(b'\r\n\r\n')
    lines = head.decode('iso-8859-1').split('\r\n')
    _, status, reason = lines[0].split(' ', 2)
    headers = {}
    for line in lines[1:]:
        key, value = line.split(':', 1)
        headers[key.strip().lower()] = value.strip()
    return Response(int(status), reason, headers, body, raw)


def recv_all(sock):
    chunks = []
    while True:
        chunk = sock.recv(65536)
        if not chunk:
            break
        chunks.append(chunk)
    return b''.join(chunks)


@pytest.fixture
def docroot(tmp_path):
    """A document root with text, binary, a subdirectory and scripts."""
    root = tmp_path / 'htdocs'
    root.mkdir()
    (root / 'readme.txt').write_bytes(README_BYTES)
    (root / 'logo.png').write_bytes(BINARY_BYTES)
    (root / 'form.php').write_text(ECHO_SCRIPT)
    (root / 'admin.php').write_text(ECHO_SCRIPT)

    assets = root / 'assets'
    assets.mkdir()
    (assets / 'style.css').write_text('body { color: red; }\n')
    (assets / 'fonts').mkdir()

    (tmp_path / 'secret.txt').write_text('outside the document root\n')
    return root


@pytest.fixture
def make_config(docroot):
    """Factory for ServerConfig objects pointing at the test document root."""
    def factory(**overrides):
        values = {
            'directory': str(docroot),
            'php_interpreter': sys.executable,
            'php_enabled': True,
            'port': 8080,
            'server_software': 'TestServer/1.0'
        }
        values.update(overrides)
        return ServerConfig(**values)
    return factory


@pytest.fixture
def exchange(make_config):
    """
    Run one raw request through a RequestHandler over a socket pair.

    Returns a callable ``exchange(raw_bytes, **config_overrides)`` giving the
    parsed Response, or None when the handler closed without answering.
    """
    def run(raw_request, **overrides):
        handler = RequestHandler(make_config(**overrides))
        server_sock, client_sock = socket.socketpair()
        client_sock.settimeout(15)
        worker = threading.Thread(
            target=handler.handle_request,
            args=(server_sock, CLIENT_ADDRESS)
        )
        worker.start()
        try:
            client_sock.sendall(raw_request)
            # Half-close so a handler waiting for more input sees end of stream
            client_sock.shutdown(socket.SHUT_WR)
            raw = recv_all(client_sock)
        finally:
            client_sock.close()
            worker.join(15)
        if not raw:
            return None
        return parse_response(raw)
    return run


@pytest.fixture
def live_server(docroot):
    """A started WebServer on an ephemeral localhost port."""
    server = WebServer(
        configure_logging=False,
        host='127.0.0.1',
        port=0,
        directory=str(docroot),
        php_interpreter=sys.executable,
        php_enabled=True,
        request_timeout=10
    )
    assert server.start()
    yield server
    server.shutdown()


@pytest.fixture
def base_url(live_server):
    host, port = live_server.server_address
    return f"http://{host}:{port}"
