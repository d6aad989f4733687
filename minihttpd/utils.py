#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Utility Module for MiniHTTPD
----------------------------
Contains helper functions used throughout the server:
- Logging setup
- MIME type detection
- Path containment checks
- Size and date formatting for listings and headers
"""

import os
import socket
import time
import logging
import mimetypes
from datetime import datetime
from logging.handlers import RotatingFileHandler

import colorama
from colorama import Fore, Style

colorama.init(autoreset=True)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

DEFAULT_MIME_TYPE = 'application/octet-stream'


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the whole record according to its level."""

    FORMATS = {
        logging.DEBUG: Fore.CYAN + LOG_FORMAT + Style.RESET_ALL,
        logging.INFO: Fore.GREEN + LOG_FORMAT + Style.RESET_ALL,
        logging.WARNING: Fore.YELLOW + LOG_FORMAT + Style.RESET_ALL,
        logging.ERROR: Fore.RED + LOG_FORMAT + Style.RESET_ALL,
        logging.CRITICAL: Fore.RED + Style.BRIGHT + LOG_FORMAT + Style.RESET_ALL
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno, self.FORMATS[logging.INFO])
        formatter = logging.Formatter(log_fmt, datefmt=LOG_DATE_FORMAT)
        return formatter.format(record)


def setup_logging(log_level='INFO', log_file=None, max_size=10485760, backup_count=5, use_colored_logging=True):
    """
    Set up logging configuration.

    Args:
        log_level: Logging level (default: INFO)
        log_file: Log file path (default: None, console only)
        max_size: Maximum log file size in bytes (default: 10MB)
        backup_count: Number of backup logs to keep (default: 5)
        use_colored_logging: Whether to use colored logging in console (default: True)

    Returns:
        logging.Logger: Root logger instance
    """
    log_level_value = getattr(logging, str(log_level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_value)

    # Remove existing handlers so repeated calls don't duplicate output
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if log_file:
        try:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=max_size,
                backupCount=backup_count
            )
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Error setting up log file: {e}")

    console_handler = logging.StreamHandler()
    if use_colored_logging:
        console_handler.setFormatter(ColoredFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    root_logger.addHandler(console_handler)
    return root_logger


def is_path_safe(base_path, target_path):
    """
    Check that a path stays inside the base directory.

    Both paths are canonicalized first, so ``..`` segments and symlinks
    pointing outside the base are rejected.

    Args:
        base_path: Base directory path
        target_path: Target path to check

    Returns:
        bool: True if target_path is base_path or one of its descendants
    """
    base_path = os.path.realpath(base_path)
    target_path = os.path.realpath(target_path)
    try:
        return os.path.commonpath([base_path, target_path]) == base_path
    except ValueError:
        # Different drives on Windows
        return False


def get_mime_type(filepath):
    """
    Get MIME type for a file.

    Args:
        filepath: Path or name of the file

    Returns:
        str: Best-effort content type, ``application/octet-stream`` if unknown
    """
    mime_type, _ = mimetypes.guess_type(filepath)
    if mime_type is None:
        return DEFAULT_MIME_TYPE
    return mime_type


def content_type_header(mime_type):
    """Content-Type header value; text types are always sent as UTF-8."""
    if mime_type.startswith('text/') and 'charset' not in mime_type:
        return f"{mime_type}; charset=utf-8"
    return mime_type


def human_readable_size(size):
    """
    Convert size in bytes to human readable format.

    Plain bytes below 1024, otherwise two decimals with a binary suffix,
    e.g. ``512 B``, ``1.50 KB``, ``3.00 GB``.
    """
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ['KB', 'MB', 'GB']:
        value /= 1024
        if value < 1024 or unit == 'GB':
            return f"{value:.2f} {unit}"


def format_timestamp(timestamp):
    """Local time as ``yyyy-MM-dd HH:mm:ss``."""
    return datetime.fromtimestamp(timestamp).strftime('%Y-%m-%d %H:%M:%S')


def format_http_date(timestamp=None):
    """
    Format a timestamp as an HTTP date string.

    Args:
        timestamp: UNIX timestamp (default: current time)

    Returns:
        str: HTTP date string in RFC 7231 format
    """
    if timestamp is None:
        timestamp = time.time()
    return time.strftime('%a, %d %b %Y %H:%M:%S GMT', time.gmtime(timestamp))


def check_hostname_availability(host, port):
    """
    Check if a hostname and port are available.

    Args:
        host: Host address
        port: Port number

    Returns:
        bool: True if nothing is listening there yet, False otherwise
    """
    if not port:
        return True
    probe_host = '127.0.0.1' if host in ('', '0.0.0.0') else host
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.settimeout(1)
            return s.connect_ex((probe_host, port)) != 0
    except OSError:
        return False


# Initialize mimetypes module
mimetypes.init()

# Add common MIME types that might be missing
mimetypes.add_type('text/javascript', '.js')
mimetypes.add_type('text/css', '.css')
mimetypes.add_type('image/x-icon', '.ico')
mimetypes.add_type('image/svg+xml', '.svg')
mimetypes.add_type('application/json', '.json')
mimetypes.add_type('text/markdown', '.md')
