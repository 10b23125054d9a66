#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#

import os
import sys
import socket
import getpass
import logging

logger = logging.getLogger(__name__)


def get_tty(explicit=None):
    """Resolve the terminal name: explicit value, $TTY, then stdin's tty"""
    if explicit:
        return explicit
    env_tty = os.environ.get('TTY')
    if env_tty:
        return env_tty
    try:
        return os.ttyname(sys.stdin.fileno())
    except (OSError, AttributeError, ValueError) as e:
        logger.debug(f"Could not determine TTY: {e}")
        return ""


def get_process_context(directory=None, tty=None, sid=None):
    """Collect hostname, user, tty, session id and working directory with error handling"""
    try:
        hostname = socket.gethostname()
    except OSError as e:
        logger.warning(f"Could not determine hostname: {e}")
        hostname = "unknown"

    try:
        username = getpass.getuser()
    except (KeyError, OSError) as e:
        logger.warning(f"Could not determine user: {e}")
        username = os.environ.get('USER', 'unknown')

    if not directory:
        try:
            directory = os.getcwd()
        except OSError as e:
            logger.warning(f"Could not determine working directory: {e}")
            directory = os.environ.get('PWD', '/')

    return {
        'hostname': hostname,
        'username': username,
        'tty': get_tty(tty),
        'sid': sid or "",
        'directory': directory,
    }
