"""Custom exceptions for Klaviyo and Airtable client interactions."""

from typing import List, Optional


class APIClientError(Exception):
    """Base class for all API client errors."""
    def __init__(self, message="An error occurred with the API client", status_code=None):
        self.status_code = status_code
        super().__init__(message)

class AuthenticationError(APIClientError):
    """Raised when API authentication fails (invalid key or missing permission)."""
    def __init__(self, message="API authentication failed", status_code=401):
        super().__init__(message, status_code)

class RateLimitError(APIClientError):
    """Raised when the API rate limit is exceeded."""
    def __init__(self, message="API rate limit exceeded", status_code=429, retry_after=None):
        self.retry_after = retry_after # Seconds to wait before retrying
        super().__init__(message, status_code)

class ServerError(APIClientError):
    """Raised for 5xx responses. Retryable."""
    def __init__(self, message="API server error", status_code=500):
        super().__init__(message, status_code)

class NotFoundError(APIClientError):
    """Raised for 404 responses, annotated with the resource parsed from the endpoint."""
    def __init__(self, message="Resource not found", status_code=404,
                 resource_type: Optional[str] = None, resource_id: Optional[str] = None):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message, status_code)

class APIRequestError(APIClientError):
    """Raised for general API request errors (e.g., invalid parameters, unprocessable entity)."""
    pass

class APIParsingError(APIClientError):
    """Raised when the API response cannot be parsed correctly."""
    def __init__(self, message="Failed to parse API response", status_code=None):
        super().__init__(message, status_code)

class EmptyResponseError(APIParsingError):
    """Raised when the API answers with an empty body."""
    def __init__(self, message="Empty response received from API", status_code=None):
        super().__init__(message, status_code)

class NetworkError(APIClientError):
    """Raised when the API cannot be reached at all."""
    def __init__(self, message="Network error: unable to reach the API", status_code=-1):
        super().__init__(message, status_code)

class BatchValidationError(APIClientError):
    """Raised locally when a batch of sink records has an invalid shape."""
    def __init__(self, message="Invalid batch of records"):
        super().__init__(message, status_code=None)

class MultiBatchFailureError(APIClientError):
    """
    Raised when one or more record batches failed.

    Some records may already have been written: `created` carries the ids that
    made it to the sink before the call gave up.
    """
    def __init__(self, message=None, failed_batches: int = 0, created: Optional[List[str]] = None):
        self.failed_batches = failed_batches
        self.created = list(created or [])
        super().__init__(message or f"{failed_batches} batch(es) failed", status_code=None)

class SyncConnectionError(APIClientError):
    """Raised by the sync orchestrator when a connection test fails."""
    pass
