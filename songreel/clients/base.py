"""Shared plumbing for provider HTTP clients.

Every provider client normalizes its API into the same contract:

    submit(input, callback_url) -> provider_task_id
    fetch_status(provider_task_id) -> ProviderStatus(pending | succeeded | failed)

and owns retry-on-transport-error only. Error classification:
    - 429, 5xx, timeouts, connection errors: retried in-call (tenacity),
      then raised as TransportError
    - other 4xx: ProviderRejection, never retried

Clients know nothing about jobs or stages.
"""

import enum
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from songreel.exceptions import ProviderRejection, TransportError
from songreel.utils.logging import get_logger

log = get_logger(__name__)

RETRIABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class ProviderState(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ProviderStatus:
    """Normalized provider task status.

    Attributes:
        state: pending, succeeded or failed.
        result: Provider-specific resolved output (songs list, image URLs).
        error: Provider-reported failure message when state is failed.
    """

    state: ProviderState
    result: Any = None
    error: str | None = None

    @classmethod
    def pending(cls) -> "ProviderStatus":
        return cls(ProviderState.PENDING)

    @classmethod
    def succeeded(cls, result: Any) -> "ProviderStatus":
        return cls(ProviderState.SUCCEEDED, result=result)

    @classmethod
    def failed(cls, error: str) -> "ProviderStatus":
        return cls(ProviderState.FAILED, error=error)


class AsyncProvider(Protocol):
    """Provider that completes asynchronously (webhook or poll)."""

    provider_name: str

    async def submit(self, request: dict[str, Any], callback_url: str | None = None) -> str: ...

    async def fetch_status(self, provider_task_id: str) -> ProviderStatus: ...


def is_retriable_error(exception: BaseException) -> bool:
    """Determine if an error should trigger retry logic.

    Returns:
        True for 429/5xx responses, timeouts and connection-level failures.
    """
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code in RETRIABLE_STATUS_CODES
    return isinstance(exception, httpx.TransportError)


class ProviderClient:
    """Base class for JSON-over-HTTP provider clients.

    Args:
        base_url: API base URL.
        api_key: Bearer token.
        timeout: Per-request timeout in seconds.
        max_attempts: In-call attempts for retriable errors.
        retry_wait: tenacity wait strategy between attempts.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    provider_name = "provider"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_wait: wait_base | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=8)
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers=headers,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying transient failures.

        ``path`` may also be an absolute URL (the client's base URL is then
        ignored).

        Raises:
            TransportError: Retriable failure persisted across all attempts.
            ProviderRejection: Non-retriable HTTP status.
        """

        @retry(
            retry=retry_if_exception(is_retriable_error),
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            before_sleep=lambda retry_state: log.warning(
                "provider_request_retry",
                provider=self.provider_name,
                path=path,
                attempt=retry_state.attempt_number,
            ),
            reraise=True,
        )
        async def _send() -> httpx.Response:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response

        try:
            response = await _send()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            body = e.response.text[:200]
            if status_code in RETRIABLE_STATUS_CODES:
                raise TransportError(
                    f"{self.provider_name} returned {status_code}: {body}",
                    provider=self.provider_name,
                    status_code=status_code,
                ) from e
            raise ProviderRejection(
                f"{self.provider_name} rejected request ({status_code}): {body}",
                provider=self.provider_name,
            ) from e
        except httpx.TransportError as e:
            raise TransportError(
                f"{self.provider_name} request failed: {type(e).__name__}: {e}",
                provider=self.provider_name,
            ) from e
        return response

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and decode the JSON body.

        Raises:
            TransportError: Retriable failure, or a body that is not JSON.
            ProviderRejection: Non-retriable HTTP status.
        """
        response = await self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"{self.provider_name} returned a non-JSON body",
                provider=self.provider_name,
                status_code=response.status_code,
            ) from e

    async def close(self) -> None:
        """Close HTTP client connections."""
        await self.client.aclose()


class KieClient(ProviderClient):
    """Base for KIE-hosted providers, which wrap responses in ``{code, msg, data}``."""

    def _unwrap(self, body: Any) -> dict[str, Any]:
        """Return ``data`` from a KIE envelope, classifying non-200 codes."""
        if not isinstance(body, dict):
            raise ProviderRejection(
                f"{self.provider_name} returned an unexpected body", provider=self.provider_name
            )

        code = body.get("code")
        message = body.get("msg") or body.get("message") or ""
        if code != 200:
            if code in RETRIABLE_STATUS_CODES:
                raise TransportError(
                    f"{self.provider_name} error {code}: {message}",
                    provider=self.provider_name,
                    status_code=code,
                )
            raise ProviderRejection(
                f"{self.provider_name} error {code}: {message}", provider=self.provider_name
            )

        data = body.get("data")
        if not isinstance(data, dict):
            raise ProviderRejection(
                f"{self.provider_name} response has no data", provider=self.provider_name
            )
        return data

    def _task_id(self, data: dict[str, Any]) -> str:
        task_id = data.get("taskId") or data.get("task_id")
        if not task_id:
            raise ProviderRejection(
                f"{self.provider_name} response missing taskId", provider=self.provider_name
            )
        return str(task_id)
