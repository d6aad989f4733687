"""
End-to-end tests against a running WebServer.
"""

import sys
import socket
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
import requests

from conftest import README_BYTES, BINARY_BYTES, parse_response, recv_all
from minihttpd.server import WebServer


SLOW_SCRIPT = '''\
import time
time.sleep(2)
print("Content-Type: text/plain")
print()
print("slow done")
'''


def raw_request(address, payload, timeout=10):
    with socket.create_connection(address, timeout=timeout) as sock:
        sock.sendall(payload)
        return parse_response(recv_all(sock))


class TestScenarios:

    def test_get_text_file(self, base_url):
        response = requests.get(f"{base_url}/readme.txt", timeout=10)
        assert response.status_code == 200
        assert response.headers['Content-Type'].startswith('text/plain')
        assert response.content == README_BYTES.replace(b'\r\n', b'\n') + b'\n'

    def test_get_binary_file(self, base_url):
        response = requests.get(f"{base_url}/logo.png", timeout=10)
        assert response.status_code == 200
        assert response.content == BINARY_BYTES

    def test_missing(self, base_url):
        response = requests.get(f"{base_url}/nope.html", timeout=10)
        assert response.status_code == 404
        assert '404' in response.text

    def test_post_script(self, base_url):
        response = requests.post(f"{base_url}/form.php", data='a=1', timeout=10,
                                 headers={'Content-Type': 'application/x-www-form-urlencoded'})
        assert response.status_code == 200
        data = response.json()
        assert data['env']['CONTENT_LENGTH'] == '3'
        assert data['env']['REQUEST_METHOD'] == 'POST'
        assert data['body'] == 'a=1'

    def test_script_sees_bound_port(self, live_server, base_url):
        data = requests.get(f"{base_url}/form.php", timeout=10).json()
        assert data['env']['SERVER_PORT'] == str(live_server.server_address[1])

    def test_directory_listing(self, base_url):
        response = requests.get(f"{base_url}/assets/", timeout=10)
        assert response.status_code == 200
        assert 'style.css' in response.text
        assert 'fonts/' in response.text

    def test_bad_request_line(self, live_server):
        response = raw_request(live_server.server_address, b"BADLINE\r\n")
        assert response.status == 400

    def test_unsupported_method(self, base_url):
        response = requests.delete(f"{base_url}/readme.txt", timeout=10)
        assert response.status_code == 501


class TestConcurrency:

    def test_parallel_requests(self, base_url):
        def fetch(_):
            return requests.get(f"{base_url}/logo.png", timeout=10).content

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(fetch, range(24)))
        assert all(body == BINARY_BYTES for body in results)

    def test_failed_connection_does_not_affect_others(self, live_server, base_url):
        # A client that connects and vanishes
        with socket.create_connection(live_server.server_address):
            pass
        raw_request(live_server.server_address, b"BADLINE\r\n")
        response = requests.get(f"{base_url}/readme.txt", timeout=10)
        assert response.status_code == 200


class TestLifecycle:

    def test_shutdown_and_restart(self, docroot):
        server = WebServer(configure_logging=False, host='127.0.0.1', port=0,
                           directory=str(docroot))
        assert server.start()
        first_address = server.server_address
        server.shutdown()
        assert not server.is_running
        with pytest.raises(OSError):
            socket.create_connection(first_address, timeout=2).close()

        try:
            assert server.restart()
            host, port = server.server_address
            response = requests.get(f"http://{host}:{port}/readme.txt", timeout=10)
            assert response.status_code == 200
        finally:
            server.shutdown()

    def test_missing_interpreter_refuses_to_start(self, docroot):
        server = WebServer(configure_logging=False, host='127.0.0.1', port=0,
                           directory=str(docroot), php_enabled=True,
                           php_interpreter='/nonexistent/php-cgi')
        assert server.start() is False
        assert not server.is_running

    def test_document_root_created(self, tmp_path):
        root = tmp_path / 'fresh-root'
        server = WebServer(configure_logging=False, host='127.0.0.1', port=0,
                           directory=str(root))
        try:
            assert server.start()
            assert root.is_dir()
        finally:
            server.shutdown()

    def test_document_root_must_be_directory(self, tmp_path):
        not_a_dir = tmp_path / 'file.txt'
        not_a_dir.write_text('x')
        server = WebServer(configure_logging=False, host='127.0.0.1', port=0,
                           directory=str(not_a_dir))
        assert server.start() is False


class TestSaturation:

    def test_full_queue_rejected_with_503(self, docroot):
        (docroot / 'slow.php').write_text(SLOW_SCRIPT)
        server = WebServer(configure_logging=False, host='127.0.0.1', port=0,
                           directory=str(docroot), php_enabled=True,
                           php_interpreter=sys.executable,
                           max_threads=1, max_queue=1)
        assert server.start()
        busy = []
        try:
            # One request on the worker, one waiting in the queue
            for _ in range(2):
                sock = socket.create_connection(server.server_address, timeout=15)
                sock.sendall(b"GET /slow.php HTTP/1.1\r\n\r\n")
                busy.append(sock)
            time.sleep(0.5)

            # Nothing is sent, so the rejection is readable before close
            with socket.create_connection(server.server_address, timeout=10) as extra:
                rejected = parse_response(recv_all(extra))
            assert rejected.status == 503

            for sock in busy:
                response = parse_response(recv_all(sock))
                assert response.status == 200
                assert response.body.strip() == b'slow done'
        finally:
            for sock in busy:
                sock.close()
            server.shutdown()

    def test_unbounded_queue_waits(self, docroot):
        (docroot / 'slow.php').write_text(SLOW_SCRIPT)
        server = WebServer(configure_logging=False, host='127.0.0.1', port=0,
                           directory=str(docroot), php_enabled=True,
                           php_interpreter=sys.executable,
                           max_threads=1, max_queue=0)
        assert server.start()
        try:
            with ThreadPoolExecutor(max_workers=3) as pool:
                futures = [
                    pool.submit(raw_request, server.server_address,
                                b"GET /slow.php HTTP/1.1\r\n\r\n", 30)
                    for _ in range(3)
                ]
                statuses = [f.result().status for f in futures]
            assert statuses == [200, 200, 200]
        finally:
            server.shutdown()
