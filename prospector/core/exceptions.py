"""
Custom exceptions for the Prospector API.
Provides consistent error handling across the application.
"""
from typing import Optional

from fastapi import status


class ProspectorException(Exception):
    """Base exception for Prospector"""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "An error occurred", status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class ConfigurationError(ProspectorException):
    """Required server configuration is missing"""
    def __init__(self, setting: str):
        super().__init__(f"Server misconfiguration: Missing {setting}")


class ValidationError(ProspectorException):
    """Validation failed"""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Validation failed", field: str = None):
        if field:
            message = f"Validation failed for field '{field}': {message}"
        super().__init__(message)


class UnauthorizedError(ProspectorException):
    """Shared secret did not match"""
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized", debug: Optional[dict] = None):
        self.debug = debug
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.debug is not None:
            body["debug_auth"] = self.debug
        return body


class ExternalServiceError(ProspectorException):
    """External service call failed"""
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, service: str = "External service", message: str = None, status: Optional[int] = None):
        self.service = service
        self.upstream_status = status
        msg = f"{service} call failed"
        if message:
            msg = f"{msg}: {message}"
        super().__init__(msg)


class RateLimitedError(ExternalServiceError):
    """External service kept answering 429 after all retries"""
    def __init__(self, service: str = "External service", attempts: int = 1):
        self.attempts = attempts
        super().__init__(service, f"rate limited after {attempts} attempts", status=429)


class PersistenceError(ProspectorException):
    """A write to the record store failed"""
    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message)


class MissingColumnError(PersistenceError):
    """An update named a column the destination table does not have"""
    def __init__(self, table_name: str, column: str):
        self.table_name = table_name
        self.column = column
        super().__init__(f"Could not find the '{column}' column of '{table_name}'")
