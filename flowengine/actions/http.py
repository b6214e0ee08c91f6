"""HTTP request action."""

from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.error_recovery import RetryConfig, execute_with_retry
from ..core.exceptions import ErrorCategory, TransientError, WorkflowEngineError
from ..core.logging import get_logger

logger = get_logger(__name__)

BODY_METHODS = {"POST", "PUT", "PATCH"}


class HttpRequestConfig(BaseModel):
    """Configuration of an ``http_request`` action."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str = Field(..., min_length=1)
    method: str = Field(default="GET")
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    timeout: Optional[float] = Field(default=None, gt=0, description="Timeout in milliseconds")
    retry_count: Optional[int] = Field(default=None, ge=0, alias="retryCount")
    follow_redirects: bool = Field(default=True, alias="followRedirects")

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        method = v.strip().upper()
        if method not in {"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"}:
            raise ValueError(f"Unsupported HTTP method: {v}")
        return method


class HttpRequestError(WorkflowEngineError):
    """Raised when a request completes with a non-2xx status."""

    default_code = "HttpRequestError"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.NETWORK, recoverable=False, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.add_details(status_code=status_code)


def parse_response(response: requests.Response) -> Any:
    """Parsed JSON body, or status, headers and text for other content."""
    content_type = response.headers.get("Content-Type", "")
    if "json" in content_type.lower():
        try:
            return response.json()
        except ValueError:
            logger.warning(f"Response from {response.url} declared JSON but could not be parsed")
    return {
        "status": response.status_code,
        "headers": dict(response.headers),
        "body": response.text,
    }


class HttpRequestAction:
    """
    Performs one HTTP request per invocation.

    Connection failures, timeouts and 5xx responses are retried up to
    ``retryCount`` extra times; other non-2xx responses fail at once.
    """

    def __init__(self, timeout_ms: float = 30000, retry_count: int = 0,
                 session: Optional[requests.Session] = None):
        self.timeout_ms = timeout_ms
        self.retry_count = retry_count
        self.session = session or requests.Session()

    def __call__(self, config: Dict[str, Any], input_data: Any) -> Any:
        settings = HttpRequestConfig.model_validate(config)

        body = settings.body
        if body is None and settings.method in BODY_METHODS:
            body = input_data

        retry_count = self.retry_count if settings.retry_count is None else settings.retry_count
        timeout_ms = settings.timeout or self.timeout_ms
        retry_config = RetryConfig(
            max_attempts=retry_count + 1,
            base_delay=0.5,
            max_delay=10.0,
            retryable_exceptions=[TransientError],
        )

        response = execute_with_retry(
            self._send, retry_config, settings, body, timeout_ms / 1000.0
        )
        return parse_response(response)

    def _send(self, settings: HttpRequestConfig, body: Any, timeout: float) -> requests.Response:
        request_kwargs: Dict[str, Any] = {
            "headers": settings.headers,
            "timeout": timeout,
            "allow_redirects": settings.follow_redirects,
        }
        if body is not None:
            if isinstance(body, (str, bytes)):
                request_kwargs["data"] = body
            else:
                request_kwargs["json"] = body

        logger.info(f"HTTP {settings.method} {settings.url}")
        try:
            response = self.session.request(settings.method, settings.url, **request_kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientError(f"HTTP {settings.method} {settings.url} failed: {str(e)}")

        if response.status_code >= 500:
            raise TransientError(
                f"HTTP {settings.method} {settings.url} returned {response.status_code}"
            )
        if not 200 <= response.status_code < 300:
            raise HttpRequestError(
                f"HTTP {settings.method} {settings.url} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response
