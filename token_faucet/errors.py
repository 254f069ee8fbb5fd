# errors.py
from typing import Optional


class FaucetError(Exception):
    """Base class for faucet failures that map onto an HTTP status."""

    http_status = 500

    def __init__(self, message: str, *, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(FaucetError):
    http_status = 400


class BotCheckFailed(FaucetError):
    http_status = 400


class NetworkError(FaucetError):
    # upstream ledger node or verification provider unreachable; retryable
    http_status = 500


class StorageError(FaucetError):
    http_status = 500


class RecordingFailed(FaucetError):
    """Tokens were sent but the claim could not be persisted."""

    http_status = 500
