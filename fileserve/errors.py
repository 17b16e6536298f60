"""Error taxonomy shared by the request handlers.

Each error carries the HTTP status it maps to and a short reason that is
safe to show to clients. Anything more specific (OS error text, absolute
paths) belongs in the server log, never in ``reason``.
"""

from __future__ import annotations


class FileServeError(Exception):
    status_code = 500
    default_reason = 'Internal Server Error'

    def __init__(self, reason: str | None = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class PathEscape(FileServeError, PermissionError):
    status_code = 403
    default_reason = 'Forbidden'


class NotFound(FileServeError):
    status_code = 404
    default_reason = 'Not Found'


class BadRequest(FileServeError):
    status_code = 400
    default_reason = 'Bad Request'


class IOFailure(FileServeError):
    status_code = 500
    default_reason = 'Internal Server Error'


class MethodNotAllowed(FileServeError):
    status_code = 405
    default_reason = 'Method Not Allowed'
