#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
CGI Gateway Module for MiniHTTPD
--------------------------------
Runs a script through the configured interpreter, one subprocess per request.

Request metadata goes to the child through CGI environment variables and the
request body through its stdin. The child's combined stdout/stderr is split at
the first blank line: the header block is inspected for ``Content-Type`` and
everything after it is relayed to the client as the response body.
"""

import os
import logging
import threading
import subprocess

# Variables copied from the server's own environment; everything else the
# child sees is built per request.
PASSTHROUGH_ENV = (
    'PATH',
    'SYSTEMROOT',
    'LANG',
    'LC_ALL',
    'TZ',
    'LD_LIBRARY_PATH',
    'TMPDIR',
    'TEMP',
    'TMP'
)

DEFAULT_CONTENT_TYPE = 'text/html; charset=UTF-8'
DEFAULT_POST_CONTENT_TYPE = 'application/x-www-form-urlencoded'

# Request headers that are never exported as HTTP_* variables. Proxy would
# become HTTP_PROXY, which many HTTP clients honour as a proxy setting.
SKIPPED_HEADERS = ('content-type', 'content-length', 'proxy')


class GatewayError(Exception):
    """The script could not produce a response and nothing was sent yet."""


class CgiGateway:
    """
    Executes scripts as CGI subprocesses and relays their output.
    """

    def __init__(self, server_config, server_port=None):
        """
        Args:
            server_config: Server configuration object
            server_port: Port the listener is actually bound to (defaults to
                the configured port)
        """
        self.config = server_config
        self.server_port = server_port if server_port is not None else server_config.port
        self.logger = logging.getLogger('CgiGateway')

    def build_environment(self, script_path, script_url, request):
        """
        Build the CGI environment for one invocation.

        Args:
            script_path: Absolute filesystem path of the script
            script_url: URL path the script is reachable under
            request: Parsed request dictionary

        Returns:
            dict: Fresh environment mapping for the subprocess
        """
        env = {name: os.environ[name] for name in PASSTHROUGH_ENV if name in os.environ}

        method = request['method']
        env.update({
            'SCRIPT_FILENAME': script_path,
            'REQUEST_METHOD': method,
            'REDIRECT_STATUS': '200',
            'SCRIPT_NAME': script_url,
            'SERVER_NAME': self.config.server_name,
            'SERVER_SOFTWARE': self.config.server_software,
            'SERVER_PROTOCOL': 'HTTP/1.1',
            'GATEWAY_INTERFACE': 'CGI/1.1',
            'SERVER_PORT': str(self.server_port),
            'DOCUMENT_ROOT': self.config.document_root
        })

        client_address = request.get('client_address')
        if client_address:
            env['REMOTE_ADDR'] = str(client_address[0])
            env['REMOTE_PORT'] = str(client_address[1])

        for name, value in request.get('headers', {}).items():
            if name in SKIPPED_HEADERS or '\x00' in value:
                continue
            env['HTTP_' + name.upper().replace('-', '_')] = value

        if method == 'POST':
            env['CONTENT_LENGTH'] = str(len(request.get('body', b'')))
            env['CONTENT_TYPE'] = request.get('content_type') or DEFAULT_POST_CONTENT_TYPE
            env['REQUEST_URI'] = script_url
        else:
            query = request.get('query', '')
            env['QUERY_STRING'] = query
            env['REQUEST_URI'] = f"{script_url}?{query}" if query else script_url

        return env

    def execute(self, script_path, script_url, request, out):
        """
        Run a script and stream its response to the client.

        Args:
            script_path: Absolute filesystem path of the script
            script_url: URL path the script is reachable under
            request: Parsed request dictionary (method, query, body, content_type, headers)
            out: ResponseStream of the client connection

        Returns:
            int: Exit code of the script, or None if it was killed for exceeding
            the script timeout

        Raises:
            GatewayError: If the interpreter could not be started or the script
                output ended before its header block; nothing has been sent then.
        """
        env = self.build_environment(script_path, script_url, request)
        command = [self.config.script_interpreter, script_path]
        self.logger.debug(f"Executing {command} for {request['method']} {script_url}")

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=env,
                cwd=os.path.dirname(script_path)
            )
        except OSError as e:
            raise GatewayError(f"Could not start interpreter {command[0]}: {e}") from e

        timed_out = threading.Event()
        timer = None
        if self.config.script_timeout:
            timer = threading.Timer(
                self.config.script_timeout,
                self._kill,
                args=(process, script_path, timed_out)
            )
            timer.daemon = True
            timer.start()

        try:
            self._write_body(process, request)
            self._relay_output(process, out)
            exit_code = process.wait()
        finally:
            if timer is not None:
                timer.cancel()
            if process.poll() is None:
                process.kill()
                process.wait()
            process.stdout.close()

        if timed_out.is_set():
            self.logger.error(
                f"Script {script_path} exceeded {self.config.script_timeout}s and was killed"
            )
            return None
        if exit_code != 0:
            # The status line is already out; the failure can only be logged.
            self.logger.error(f"Script {script_path} failed with exit code {exit_code}")
        return exit_code

    def _write_body(self, process, request):
        """Feed the POST body to the script, then signal end of input."""
        body = request.get('body', b'')
        try:
            if request['method'] == 'POST' and body:
                process.stdin.write(body)
        except BrokenPipeError:
            self.logger.debug("Script exited before reading its input")
        finally:
            try:
                process.stdin.close()
            except BrokenPipeError:
                pass

    def _relay_output(self, process, out):
        content_type = None
        for raw_line in process.stdout:
            line = raw_line.rstrip(b'\r\n')
            if not line:
                break
            name, sep, value = line.decode('iso-8859-1').partition(':')
            if sep and name.strip().lower() == 'content-type':
                content_type = value.strip()
            else:
                self.logger.debug(f"Ignoring script header line: {line!r}")
        else:
            raise GatewayError("Script output ended before the end of its header block")

        out.send_head(200, {'Content-Type': content_type or DEFAULT_CONTENT_TYPE})
        for raw_line in process.stdout:
            out.write(raw_line)

    def _kill(self, process, script_path, timed_out):
        if process.poll() is None:
            timed_out.set()
            self.logger.warning(f"Killing {script_path}: script timeout reached")
            process.kill()
