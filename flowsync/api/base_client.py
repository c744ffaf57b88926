import abc
import json
import logging
import re
from typing import Dict, Any, Optional, Tuple

import requests

from .exceptions import (
    APIClientError, AuthenticationError, RateLimitError, ServerError, NotFoundError,
    APIRequestError, APIParsingError, EmptyResponseError, NetworkError
)
from .retry import retry_with_backoff, DEFAULT_MAX_RETRIES, DEFAULT_INITIAL_DELAY

logger = logging.getLogger(__name__)

# Resource ids that can be recovered from an endpoint path for 404 messages
_RESOURCE_PATTERNS = (
    ("flow-action", re.compile(r"/flow-actions/([^/?]+)")),
    ("flow", re.compile(r"/flows/([^/?]+)")),
)


def parse_resource_hint(endpoint: str) -> Tuple[Optional[str], Optional[str]]:
    """Returns (resource_type, resource_id) embedded in an endpoint path, if any."""
    for resource_type, pattern in _RESOURCE_PATTERNS:
        match = pattern.search(endpoint)
        if match:
            return resource_type, match.group(1)
    return None, None


def extract_error_message(body: Any) -> Optional[str]:
    """Best-effort error message from a JSON or JSON:API error body."""
    if not isinstance(body, dict):
        return None
    for key in ("detail", "message"):
        if isinstance(body.get(key), str) and body[key]:
            return body[key]
    errors = body.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        detail = errors[0].get("detail") or errors[0].get("title")
        if detail:
            return detail
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    if isinstance(error, str) and error:
        return error
    return None


class RateLimitedAPIClient(abc.ABC):
    """Abstract base class for the rate-limited REST clients."""

    DEFAULT_TIMEOUT = 30 # Default request timeout in seconds
    MAX_RETRIES = DEFAULT_MAX_RETRIES
    INITIAL_BACKOFF = DEFAULT_INITIAL_DELAY # Initial backoff delay in seconds
    DEFAULT_RETRY_AFTER = 5
    SERVICE_NAME = "API"

    def __init__(self, api_key: Optional[str] = None, base_url: str = "",
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.base_url = base_url
        self.session = session or requests.Session()
        if self.api_key:
            self._set_auth_header()

    @abc.abstractmethod
    def _set_auth_header(self):
        """Sets the necessary authentication headers for the specific API."""
        pass

    def _build_url(self, endpoint: str) -> str:
        return self.base_url.rstrip('/') + '/' + endpoint.lstrip('/')

    def _request(self, method: str, endpoint: str, params: Optional[Dict] = None,
                 json: Optional[Dict] = None, headers: Optional[Dict] = None) -> Dict[str, Any]:
        """Makes an HTTP request, retrying rate limited and server errors with backoff."""
        try:
            return retry_with_backoff(
                lambda: self._send(method, endpoint, params=params, json=json, headers=headers),
                max_retries=self.MAX_RETRIES,
                initial_delay=self.INITIAL_BACKOFF,
                label=f"[{self.SERVICE_NAME}] {method} {endpoint}",
            )
        except APIClientError as e:
            logger.error(f"[{self.SERVICE_NAME}] Final error for {method} {endpoint}: {e}")
            raise

    def _send(self, method: str, endpoint: str, params: Optional[Dict] = None,
              json: Optional[Dict] = None, headers: Optional[Dict] = None) -> Dict[str, Any]:
        """Single attempt: send, classify the status and parse the body."""
        url = self._build_url(endpoint)
        logger.debug(f"Making {method} request to {url} with params: {params}")
        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json,
                headers=headers,
                timeout=self.DEFAULT_TIMEOUT
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"[{self.SERVICE_NAME}] Network error for {url}: {e}")
            raise NetworkError(f"Network error: Unable to connect to {self.SERVICE_NAME}. Please check your internet connection.") from e

        self._check_rate_limit_headers(response)

        if response.status_code == 429:
            retry_after = self._parse_retry_after(response)
            raise RateLimitError(f"Rate limit exceeded - retry after {retry_after} seconds", status_code=429, retry_after=retry_after)

        text = response.text
        body = None
        if text and text.strip():
            try:
                body = self._parse_json(text)
            except APIParsingError:
                if response.ok:
                    raise
                # Error bodies are allowed to be non-JSON
                body = None

        if not response.ok:
            raise self._error_for_status(response, endpoint, body)

        if body is None:
            logger.error(f"[{self.SERVICE_NAME}] Empty response received from {url}")
            raise EmptyResponseError(f"Empty response received from {self.SERVICE_NAME}", status_code=response.status_code)

        return body

    def _parse_json(self, text: str) -> Any:
        # JSON:API bodies are plain JSON documents, one parser covers both
        try:
            return json.loads(text)
        except ValueError as e:
            logger.error(f"Failed to parse JSON response. Response text: {text[:500]}...")
            raise APIParsingError(f"Failed to parse JSON response: {e}")

    def _parse_retry_after(self, response: requests.Response) -> float:
        raw = response.headers.get("Retry-After")
        try:
            return float(raw) if raw is not None else self.DEFAULT_RETRY_AFTER
        except ValueError:
            return self.DEFAULT_RETRY_AFTER

    def _check_rate_limit_headers(self, response: requests.Response):
        remaining = response.headers.get("x-ratelimit-remaining")
        if remaining is None:
            return
        try:
            remaining = int(remaining)
        except ValueError:
            return
        if remaining <= 1:
            limit = response.headers.get("x-ratelimit-limit", "?")
            logger.warning(f"[{self.SERVICE_NAME}] Rate limit nearly reached: {remaining}/{limit} remaining")

    def _error_for_status(self, response: requests.Response, endpoint: str, body: Any) -> APIClientError:
        """Maps a non-2xx response onto the exception taxonomy."""
        status = response.status_code
        detail = extract_error_message(body) or response.reason or ""

        if status == 404:
            resource_type, resource_id = parse_resource_hint(endpoint)
            if resource_type == "flow":
                message = f"Flow not found (ID: {resource_id}) - it may have been deleted or the ID is incorrect"
            elif resource_type == "flow-action":
                message = f"Action not found (ID: {resource_id}) - it may have been deleted or the ID is incorrect"
            else:
                message = f"Resource not found - the requested endpoint ({endpoint}) doesn't exist"
            return NotFoundError(message, resource_type=resource_type, resource_id=resource_id)
        if status == 401:
            return AuthenticationError(f"Authentication failed - please check your {self.SERVICE_NAME} API key", status_code=401)
        if status == 403:
            return AuthenticationError("Access forbidden - your API key doesn't have permission for this operation", status_code=403)
        if status >= 500:
            return ServerError(f"{self.SERVICE_NAME} server error ({status}) - please try again later", status_code=status)
        return APIRequestError(f"{self.SERVICE_NAME} API Error: {status} - {detail}", status_code=status)

    @abc.abstractmethod
    def test_connection(self) -> bool:
        """Performs a lightweight call proving the credentials work."""
        pass
