"""Error taxonomy shared by the ledger, gateways and request handlers."""

from __future__ import annotations


class MatchmakerError(Exception):
    """Base error; ``status_code`` is the HTTP status the API answers with."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MatchmakerError):
    status_code = 400


class Unauthorized(MatchmakerError):
    status_code = 401


class Forbidden(MatchmakerError):
    status_code = 403


class NotFound(MatchmakerError):
    status_code = 404


class PersistenceError(MatchmakerError):
    status_code = 500


class GatewayError(MatchmakerError):
    status_code = 502


class Conflict(MatchmakerError):
    status_code = 409
