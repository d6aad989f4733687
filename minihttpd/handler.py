#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
HTTP Request Handler Module for MiniHTTPD
-----------------------------------------
Handles one connection end to end: parses the request, routes it to a static
file, a directory index or listing, or a CGI script, and writes the response.
"""

import os
import html
import socket
import logging
import traceback
import urllib.parse
from datetime import datetime
from .gateway import CgiGateway, GatewayError
from .utils import (
    get_mime_type,
    content_type_header,
    is_path_safe,
    format_http_date,
    format_timestamp,
    human_readable_size
)

# HTTP status codes with descriptions
HTTP_STATUS = {
    200: 'OK',
    400: 'Bad Request',
    403: 'Forbidden',
    404: 'Not Found',
    413: 'Payload Too Large',
    500: 'Internal Server Error',
    501: 'Not Implemented',
    503: 'Service Unavailable'
}

MAX_LINE_LENGTH = 8192
MAX_HEADERS = 100
FILE_CHUNK_SIZE = 65536

# Target classifications produced by RequestHandler.resolve_target
TARGET_STATIC = 'static'
TARGET_DIRECTORY = 'directory'
TARGET_SCRIPT = 'script'
TARGET_MISSING = 'missing'
TARGET_FORBIDDEN = 'forbidden'

ERROR_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{code} {status}</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 40px; color: #333; }}
        h1 {{ color: #e74c3c; }}
        .server-info {{ color: #999; font-size: 12px; margin-top: 30px; }}
    </style>
</head>
<body>
    <h1>{code} {status}</h1>
    <p>{message}</p>
    <div class="server-info">{software} | {date}</div>
</body>
</html>"""

LISTING_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Index of {path}</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 20px; }}
        h1 {{ color: #333; }}
        table {{ width: 100%; border-collapse: collapse; margin-top: 20px; }}
        th, td {{ border: 1px solid #ddd; padding: 8px; text-align: left; }}
        th {{ background-color: #f4f4f4; font-weight: bold; }}
        tr:nth-child(even) {{ background-color: #f9f9f9; }}
        tr:hover {{ background-color: #f1f1f1; }}
    </style>
</head>
<body>
    <h1>Index of {path}</h1>
{parent}    <table>
        <tr><th>Name</th><th>Size</th><th>Last Modified</th></tr>
{rows}    </table>
</body>
</html>
"""


class HTTPError(Exception):
    """A request failure that maps directly onto an error response."""

    def __init__(self, status_code, message=None):
        self.status_code = status_code
        self.message = message or HTTP_STATUS.get(status_code, 'Error')
        super().__init__(f"{status_code} {self.message}")


class ResponseStream:
    """
    Write side of a client connection.

    Remembers whether the status line has gone out, since a response that has
    started cannot be turned into a different status any more.
    """

    def __init__(self, client_socket, server_software):
        self.client_socket = client_socket
        self.server_software = server_software
        self.status_code = None
        self.bytes_sent = 0

    @property
    def started(self):
        return self.status_code is not None

    def send_head(self, status_code, headers):
        """
        Send the status line and headers.

        Date, Server and Connection headers are filled in unless given.
        """
        if self.started:
            raise RuntimeError(f"Response head already sent with status {self.status_code}")

        status_message = HTTP_STATUS.get(status_code, 'Unknown')
        headers = dict(headers)
        headers.setdefault('Date', format_http_date())
        headers.setdefault('Server', self.server_software)
        headers.setdefault('Connection', 'close')

        lines = [f"HTTP/1.1 {status_code} {status_message}"]
        lines.extend(f"{key}: {value}" for key, value in headers.items())
        self.status_code = status_code
        self.write(("\r\n".join(lines) + "\r\n\r\n").encode('iso-8859-1'))

    def write(self, data):
        if data:
            self.client_socket.sendall(data)
            self.bytes_sent += len(data)


class RequestHandler:
    """
    Handles HTTP requests by parsing the request, routing it to the appropriate
    responder based on the resolved target, and generating HTTP responses.

    One instance is shared by all worker threads; per-request state lives in
    local variables and the request dictionary only.
    """

    def __init__(self, server_config, server_port=None):
        """
        Initialize the request handler.

        Args:
            server_config: Server configuration object
            server_port: Port the listener is bound to, exported to scripts
        """
        self.config = server_config
        self.document_root = os.path.realpath(server_config.document_root)
        self.gateway = CgiGateway(server_config, server_port)
        self.logger = logging.getLogger('RequestHandler')

    def handle_request(self, client_socket, client_address):
        """
        Handle one connection: read a request, send a response, close.

        Nothing raised while handling escapes this method.

        Args:
            client_socket: Client socket object
            client_address: Client address tuple (ip, port)
        """
        out = ResponseStream(client_socket, self.config.server_software)
        request_line = '-'
        rfile = client_socket.makefile('rb')

        try:
            request = self._parse_request(rfile, client_address)
            if request is None:
                self.logger.debug(f"{client_address[0]}:{client_address[1]} closed without sending a request")
                return

            request_line = f"{request['method']} {request['raw_path']}"
            if request['method'] in ('GET', 'POST'):
                self.route(request, out)
            else:
                raise HTTPError(501, f"Method {request['method']} not implemented")

        except HTTPError as e:
            self._try_send_error(out, e.status_code, e.message)
        except GatewayError as e:
            self.logger.error(f"Script execution failed: {e}")
            self._try_send_error(out, 500, "Script execution failed")
        except socket.timeout:
            self.logger.warning(f"Request from {client_address[0]}:{client_address[1]} timed out")
        except ConnectionError as e:
            self.logger.warning(f"Connection error: {e}")
        except Exception as e:
            self.logger.error(f"Error handling request: {e}")
            self.logger.debug(traceback.format_exc())
            self._try_send_error(out, 500, "Internal Server Error")
        finally:
            if out.started:
                self.logger.info(
                    f"{client_address[0]}:{client_address[1]} - {request_line} - {out.status_code}"
                )
            rfile.close()
            client_socket.close()

    def reject(self, client_socket, status_code, message):
        """
        Answer a connection without reading its request, then close it.

        Used by the listener when the worker queue is full.
        """
        out = ResponseStream(client_socket, self.config.server_software)
        try:
            self._try_send_error(out, status_code, message)
        finally:
            client_socket.close()

    # Request parsing

    def _parse_request(self, rfile, client_address):
        """
        Parse an HTTP request from the client connection.

        Args:
            rfile: Binary file object reading from the client socket
            client_address: Client address tuple (ip, port)

        Returns:
            dict: Parsed request, or None if the client sent nothing at all

        Raises:
            HTTPError: 400 for a malformed request, 413 for an oversized body
        """
        line = self._read_line(rfile)
        if not line:
            return None

        parts = line.decode('iso-8859-1').strip().split()
        if len(parts) < 2:
            raise HTTPError(400, "Malformed request line")

        method, target = parts[0], parts[1]
        headers = self._read_headers(rfile)

        # Absolute-form targets carry scheme and host in front of the path
        if target.lower().startswith(('http://', 'https://')):
            split = urllib.parse.urlsplit(target)
            target = split.path or '/'
            if split.query:
                target += '?' + split.query

        raw_path, _, query = target.partition('?')
        path = urllib.parse.unquote(raw_path)
        if '\x00' in path:
            raise HTTPError(400, "Invalid character in path")

        request = {
            'method': method,
            'raw_path': target,
            'path': path,
            'query': query,
            'version': parts[2] if len(parts) > 2 else 'HTTP/1.0',
            'headers': headers,
            'content_type': headers.get('content-type', ''),
            'body': b'',
            'client_address': client_address
        }

        if method == 'POST':
            request['body'] = self._read_body(rfile, headers)

        return request

    def _read_line(self, rfile):
        line = rfile.readline(MAX_LINE_LENGTH + 1)
        if len(line) > MAX_LINE_LENGTH:
            raise HTTPError(400, "Request line too long")
        return line

    def _read_headers(self, rfile):
        """Read header lines up to the blank line; keys are lower-cased."""
        headers = {}
        while True:
            line = self._read_line(rfile)
            if not line:
                break
            line = line.decode('iso-8859-1').rstrip('\r\n')
            if not line:
                break
            if len(headers) >= MAX_HEADERS:
                raise HTTPError(400, "Too many headers")
            if ':' not in line:
                continue
            key, value = line.split(':', 1)
            headers[key.strip().lower()] = value.strip()
        return headers

    def _read_body(self, rfile, headers):
        try:
            content_length = int(headers.get('content-length', '0'))
        except ValueError:
            raise HTTPError(400, "Invalid Content-Length header")
        if content_length < 0:
            raise HTTPError(400, "Invalid Content-Length header")
        if content_length > self.config.max_request_size:
            raise HTTPError(413, f"Request body exceeds {self.config.max_request_size} bytes")

        body = rfile.read(content_length) if content_length else b''
        if len(body) < content_length:
            raise HTTPError(400, "Request body shorter than Content-Length")
        return body

    # Routing

    def resolve_target(self, url_path):
        """
        Map a decoded URL path onto the document root and classify it.

        Args:
            url_path: Decoded request path, query already removed

        Returns:
            tuple: (canonical filesystem path, one of the TARGET_* constants)
        """
        candidate = os.path.join(self.document_root, url_path.lstrip('/'))
        resolved = os.path.realpath(candidate)

        if not is_path_safe(self.document_root, resolved):
            return resolved, TARGET_FORBIDDEN
        if os.path.isdir(resolved):
            return resolved, TARGET_DIRECTORY
        if not os.path.isfile(resolved):
            return resolved, TARGET_MISSING
        if resolved.lower().endswith(self.config.script_extension.lower()):
            return resolved, TARGET_SCRIPT
        return resolved, TARGET_STATIC

    def route(self, request, out):
        """
        Dispatch a parsed request to the matching responder.

        Args:
            request: Parsed request dictionary
            out: ResponseStream of the client connection
        """
        url_path = request['path']
        file_path, target = self.resolve_target(url_path)
        self.logger.debug(f"{url_path} resolved to {file_path} ({target})")

        if target == TARGET_FORBIDDEN:
            self.logger.warning(f"Blocked path outside document root: {url_path}")
            raise HTTPError(403, "Access denied")
        if target == TARGET_MISSING:
            raise HTTPError(404, f"{url_path} was not found on this server")

        if target == TARGET_DIRECTORY:
            self._serve_directory(file_path, url_path, request, out)
        elif target == TARGET_SCRIPT:
            if not self.config.script_execution_enabled:
                raise HTTPError(403, "Script execution is disabled")
            self.gateway.execute(file_path, url_path, request, out)
        else:
            self._serve_file(out, file_path)

    def _serve_directory(self, dir_path, url_path, request, out):
        """Index script first, then index page, then a generated listing."""
        index_script = os.path.join(dir_path, self.config.index_script)
        index_page = os.path.join(dir_path, self.config.index_page)

        if self.config.script_execution_enabled and os.path.isfile(index_script):
            script_url = url_path.rstrip('/') + '/' + self.config.index_script
            self.gateway.execute(index_script, script_url, request, out)
        elif os.path.isfile(index_page):
            self._serve_file(out, index_page)
        else:
            self._send_directory_listing(out, dir_path, url_path)

    # Responders

    def _serve_file(self, out, file_path):
        """
        Send a regular file.

        Text types are decoded, their line endings normalised to ``\\n`` and
        re-encoded as UTF-8; Content-Length is the size of what is sent.
        Everything else is streamed byte for byte with its on-disk size.
        """
        mime_type = get_mime_type(file_path)

        if mime_type.startswith('text/'):
            with open(file_path, 'r', encoding='utf-8', errors='replace', newline=None) as f:
                text = ''.join(line if line.endswith('\n') else line + '\n' for line in f)
            body = text.encode('utf-8')
            headers = {
                'Content-Type': content_type_header(mime_type),
                'Content-Length': str(len(body))
            }
            self._send_response(out, 200, headers, body)
            return

        with open(file_path, 'rb') as f:
            size = os.fstat(f.fileno()).st_size
            out.send_head(200, {'Content-Type': mime_type, 'Content-Length': str(size)})
            while True:
                chunk = f.read(FILE_CHUNK_SIZE)
                if not chunk:
                    break
                out.write(chunk)

    def _send_directory_listing(self, out, dir_path, url_path):
        """
        Send an HTML table of the directory's children.

        Directories come first, then files, each group sorted by name.

        Args:
            out: ResponseStream of the client connection
            dir_path: Directory path on the server
            url_path: Path in the request
        """
        base_url = url_path.rstrip('/') + '/'

        with os.scandir(dir_path) as it:
            entries = sorted(it, key=lambda e: (not e.is_dir(), e.name.lower(), e.name))

        rows = []
        for entry in entries:
            is_dir = entry.is_dir()
            display = entry.name + ('/' if is_dir else '')
            href = urllib.parse.quote(base_url + display)
            try:
                stat = entry.stat()
                size = '-' if is_dir else human_readable_size(stat.st_size)
                modified = format_timestamp(stat.st_mtime)
            except OSError:
                # Dangling symlink or entry removed while listing
                size, modified = '-', '-'
            rows.append(
                f'        <tr><td><a href="{html.escape(href)}">{html.escape(display)}</a></td>'
                f'<td>{size}</td><td>{modified}</td></tr>\n'
            )

        parent = ''
        if base_url != '/':
            parent_url = base_url.rstrip('/').rsplit('/', 1)[0] + '/'
            parent = f'    <a href="{html.escape(urllib.parse.quote(parent_url))}">Parent Directory</a>\n'

        page = LISTING_TEMPLATE.format(
            path=html.escape(base_url),
            parent=parent,
            rows=''.join(rows)
        )
        body = page.encode('utf-8')
        headers = {
            'Content-Type': 'text/html; charset=utf-8',
            'Content-Length': str(len(body))
        }
        self._send_response(out, 200, headers, body)

    def _send_response(self, out, status_code, headers, body=None):
        """
        Send a complete HTTP response.

        Args:
            out: ResponseStream of the client connection
            status_code: HTTP status code
            headers: Response headers dict
            body: Response body bytes
        """
        out.send_head(status_code, headers)
        if body:
            out.write(body)

    def _try_send_error(self, out, status_code, message):
        try:
            self._send_error_response(out, status_code, message)
        except OSError as e:
            self.logger.debug(f"Could not send {status_code} to client: {e}")

    def _send_error_response(self, out, status_code, message):
        """
        Send error response, unless a response is already under way.

        A ``<code>.html`` file in the document root replaces the built-in page.

        Args:
            out: ResponseStream of the client connection
            status_code: HTTP status code
            message: Error message
        """
        if out.started:
            self.logger.warning(
                f"Cannot send {status_code} ({message}): status {out.status_code} already sent"
            )
            return

        error_page_path = os.path.join(self.document_root, f"{status_code}.html")
        body = None
        if os.path.isfile(error_page_path):
            try:
                with open(error_page_path, 'rb') as f:
                    body = f.read()
            except OSError as e:
                self.logger.warning(f"Could not read custom error page {error_page_path}: {e}")

        if body is None:
            page = ERROR_PAGE_TEMPLATE.format(
                code=status_code,
                status=HTTP_STATUS.get(status_code, 'Unknown'),
                message=html.escape(message),
                software=html.escape(self.config.server_software),
                date=datetime.now().strftime('%Y-%m-%d %H:%M:%S')
            )
            body = page.encode('utf-8')

        headers = {
            'Content-Type': 'text/html; charset=utf-8',
            'Content-Length': str(len(body))
        }
        self._send_response(out, status_code, headers, body)
