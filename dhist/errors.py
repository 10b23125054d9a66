#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#


class DhistError(Exception):
    """Base class for all dhist errors"""


class ConfigError(DhistError):
    """Configuration file could not be read or parsed"""


class StoreAccessError(DhistError):
    """History database is unreadable or an I/O operation failed"""


class QueryParseError(DhistError):
    """Raw query text could not be parsed"""

    def __init__(self, message, position=None):
        super().__init__(message)
        self.position = position


class ImportFormatError(DhistError):
    """Import file does not have the expected layout"""
