#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
MiniHTTPD
---------
A small threaded HTTP/1.x server built on Python's socket library.

This package serves static files from a document root and can run scripts
through a CGI interpreter:
- Static file serving with MIME type detection
- Directory index files and generated directory listings
- CGI execution (one subprocess per request) for GET and POST
- Fixed-size worker pool with an optional bounded queue
- JSON or properties configuration files
"""

__version__ = '1.0.0'

from .server import WebServer
from .config import ServerConfig
from .handler import RequestHandler, HTTPError
from .gateway import CgiGateway, GatewayError
from .utils import setup_logging

# Make these classes available at the package level
__all__ = [
    'WebServer',
    'ServerConfig',
    'RequestHandler',
    'HTTPError',
    'CgiGateway',
    'GatewayError',
    'setup_logging'
]
