#!/usr/bin/env python3
"""
Exception hierarchy shared by the loader, store and CLI modules.

File access problems are not wrapped: they surface as the builtin OSError
(FileNotFoundError, PermissionError, ...).
"""


class ParserError(Exception):
    """Base class for every error raised by this application."""


class ConfigError(ParserError):
    """Invalid command-line parameters. Raised before the store is touched."""


class ParseError(ParserError):
    """A single log line could not be turned into a LogRecord."""

    def __init__(self, message, line_number=None, line=None):
        self.line_number = line_number
        self.line = line
        if line_number is not None:
            message = f"Line {line_number}: {message}"
        super().__init__(message)


class StoreError(ParserError):
    """The relational store failed (connection, query, schema)."""


class RejectedRowError(StoreError):
    """The store rejected the data of a statement (integrity or data error)."""


class LoadError(ParserError):
    """A loader strategy failed as a whole."""


class BulkLoadError(LoadError):
    """The bulk file transfer aborted. Nothing from the file is kept."""
