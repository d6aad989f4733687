#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
MiniHTTPD Server Main Module
----------------------------
Listener and worker pool: accepts connections on a dedicated thread and runs
each one on a fixed-size pool of worker threads.
"""

import os
import shutil
import socket
import threading
import time
import logging
from concurrent.futures import ThreadPoolExecutor
from .config import ServerConfig
from .handler import RequestHandler
from .utils import setup_logging, check_hostname_availability

# How often the accept loop wakes up to notice a shutdown
ACCEPT_POLL_INTERVAL = 0.5


class WebServer:
    """
    Web server class that handles incoming connections and routes them
    to the request handler.

    The instance is the handle for a running server: create it, call
    start(), and stop it again with shutdown().
    """

    def __init__(self, config_file=None, configure_logging=True, **kwargs):
        """
        Initialize the web server.

        Args:
            config_file: Path to the configuration file
            configure_logging: Whether to install the logging handlers from the config
            **kwargs: Additional configuration parameters that override config file
        """
        self.config = ServerConfig(config_file, **kwargs)

        if configure_logging:
            setup_logging(
                log_level=self.config.log_level,
                log_file=self.config.log_file,
                max_size=self.config.log_max_size,
                backup_count=self.config.log_backup_count,
                use_colored_logging=self.config.colored_logging
            )
        self.logger = logging.getLogger('WebServer')

        # Server state
        self.server_socket = None
        self.server_address = None
        self.request_handler = None
        self.thread_pool = None
        self.accept_thread = None
        self.is_running = False
        self.start_time = None

        # Connections submitted to the pool and not finished yet
        self.active_connections = 0
        self.active_connections_lock = threading.Lock()

    def start(self):
        """
        Start the web server.

        Returns:
            bool: True if the server is listening, False otherwise
        """
        if self.is_running:
            self.logger.warning("Server is already running")
            return True

        if not self._check_document_root() or not self._check_interpreter():
            return False

        try:
            if not check_hostname_availability(self.config.host, self.config.port):
                self.logger.error(f"Address {self.config.host}:{self.config.port} is already in use")
                return False

            self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self.server_socket.bind((self.config.host, self.config.port))
            self.server_socket.listen(self.config.connection_queue)
            self.server_socket.settimeout(ACCEPT_POLL_INTERVAL)
            self.server_address = self.server_socket.getsockname()

        except OSError as e:
            self.logger.error(f"Error starting server: {e}")
            if self.server_socket:
                self.server_socket.close()
                self.server_socket = None
            return False

        self.request_handler = RequestHandler(self.config, server_port=self.server_address[1])
        self.thread_pool = ThreadPoolExecutor(
            max_workers=self.config.max_threads,
            thread_name_prefix="WebServerWorker"
        )
        self.is_running = True
        self.start_time = time.time()

        host, port = self.server_address
        self.logger.info(f"Server started and bound to http://{host}:{port}")
        self.logger.info(f"Access the server locally at: http://localhost:{port}")
        self.logger.info(f"Serving files from {self.config.document_root}")
        if self.config.script_execution_enabled:
            self.logger.info(f"Script execution enabled with interpreter {self.config.script_interpreter}")
        else:
            self.logger.info("Script execution disabled; scripts will be answered with 403")
        queue = self.config.max_queue or 'unbounded'
        self.logger.info(f"Worker pool: {self.config.max_threads} threads, queue {queue}")

        self.accept_thread = threading.Thread(
            target=self._accept_connections,
            name="WebServerAcceptor",
            daemon=True
        )
        self.accept_thread.start()
        return True

    def shutdown(self):
        """
        Shut down the web server gracefully.

        Stops accepting, then waits for connections already handed to the
        pool to finish.
        """
        if not self.is_running:
            return

        self.logger.info("Shutting down server...")
        self.is_running = False

        if self.accept_thread and self.accept_thread is not threading.current_thread():
            self.accept_thread.join()
        self.accept_thread = None

        if self.server_socket:
            self.server_socket.close()
            self.server_socket = None

        self.logger.debug("Shutting down thread pool...")
        self.thread_pool.shutdown(wait=True)
        self.thread_pool = None

        self.logger.info("Server shutdown complete")

    def restart(self):
        """
        Restart the server.
        """
        self.logger.info("Restarting server...")
        self.shutdown()
        return self.start()

    def wait_for_shutdown(self):
        """
        Wait for server shutdown (can be called after start() to keep the main thread alive).
        """
        try:
            while self.is_running:
                time.sleep(1)
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt, shutting down...")
            self.shutdown()

    def _check_document_root(self):
        document_root = self.config.document_root
        if os.path.isdir(document_root):
            return True
        if os.path.exists(document_root):
            self.logger.error(f"Document root {document_root} is not a directory")
            return False
        try:
            os.makedirs(document_root)
        except OSError as e:
            self.logger.error(f"Could not create document root {document_root}: {e}")
            return False
        self.logger.warning(f"Document root {document_root} did not exist and was created")
        return True

    def _check_interpreter(self):
        if not self.config.script_execution_enabled:
            return True
        interpreter = self.config.script_interpreter
        if interpreter and (os.path.isfile(interpreter) or shutil.which(interpreter)):
            return True
        self.logger.error(f"Script interpreter not found: {interpreter}")
        return False

    def _accept_connections(self):
        """
        Accept incoming connections.
        """
        capacity = None
        if self.config.max_queue:
            capacity = self.config.max_threads + self.config.max_queue

        while self.is_running:
            try:
                client_socket, client_address = self.server_socket.accept()
            except socket.timeout:
                continue
            except ConnectionError:
                # Non-fatal errors, continue accepting connections
                continue
            except OSError as e:
                if self.is_running:
                    self.logger.error(f"Error accepting connection: {e}")
                    # Sleep a bit to prevent CPU spinning on repeated errors
                    time.sleep(0.1)
                continue

            client_socket.settimeout(self.config.request_timeout)

            with self.active_connections_lock:
                saturated = capacity is not None and self.active_connections >= capacity
                if not saturated:
                    self.active_connections += 1

            if saturated:
                self.logger.warning(
                    f"Rejecting {client_address[0]}:{client_address[1]}: "
                    f"{self.active_connections} connections in flight"
                )
                self.request_handler.reject(client_socket, 503, "Server is busy, try again later")
                continue

            self.thread_pool.submit(self._handle_client, client_socket, client_address)

    def _handle_client(self, client_socket, client_address):
        """
        Handle client connection.

        Args:
            client_socket: Client socket object
            client_address: Client address tuple (ip, port)
        """
        try:
            self.request_handler.handle_request(client_socket, client_address)
        except Exception as e:
            self.logger.error(f"Error handling client {client_address}: {e}")
        finally:
            try:
                client_socket.close()
            except OSError:
                pass
            with self.active_connections_lock:
                self.active_connections -= 1
