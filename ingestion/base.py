"""
Abstract base class for source adapters with resilient outbound HTTP.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
from datetime import timedelta
import asyncio
import logging

import httpx

from core.clock import Clock, utc_now
from core.config import settings
from core.exceptions import (
    ETLException,
    APIExtractionError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
    TransformationError,
)
from models.base import SourceKind
from schemas.normalized import CanonicalRecord

logger = logging.getLogger(__name__)


class SourceAdapter(ABC):
    """
    Abstract base class for all source adapters.

    Responsibilities:
    - Outbound requests tagged with the client label (User-Agent)
    - Bounded per-request timeout
    - Retry with exponential backoff for transient failures
    - Circuit breaker to stop hammering a failing provider

    Subclasses implement fetch() and map provider payloads into canonical
    records. A failing fetch raises an ExtractionError subclass; the import
    runner decides what happens next.

    Attributes:
        max_retries: Maximum number of attempts per request (default: settings)
        retry_delay: Initial retry delay in seconds (default: settings)
        timeout: Request timeout in seconds (default: settings)
        retry_on_rate_limit: Sleep and retry on HTTP 429 instead of failing
        transport: Optional httpx transport (tests inject MockTransport)
    """

    source_kind: SourceKind

    def __init__(
        self,
        source_name: str,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        retry_on_rate_limit: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = utc_now,
    ):
        self.source_name = source_name
        self.max_retries = max(1, max_retries if max_retries is not None else settings.MAX_RETRIES)
        self.retry_delay = retry_delay if retry_delay is not None else settings.RETRY_DELAY_SECONDS
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.retry_on_rate_limit = retry_on_rate_limit
        self.transport = transport
        self.clock = clock

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = 5
        self._circuit_breaker_open_until = None
        self._circuit_breaker_timeout = 60  # seconds

    @abstractmethod
    async def fetch(self) -> List[CanonicalRecord]:
        """
        Fetch and parse the provider's current data.

        Returns:
            Canonical records in provider order

        Raises:
            ExtractionError: When the source as a whole could not be read
        """
        pass

    def parse_row(self, parse: Callable, row: Any, *args) -> Optional[CanonicalRecord]:
        """
        Map one provider row, dropping it if it is malformed.

        A row that fails validation or has unexpected field types is logged
        and skipped; sibling rows are unaffected.
        """
        try:
            return parse(row, *args)
        except (ValueError, TypeError, AttributeError, KeyError, OverflowError, OSError, TransformationError) as e:
            logger.warning(
                f"{self.source_name}: failed to parse row, dropped: {type(e).__name__}: {e}",
                extra={"error_context": {"source_name": self.source_name, "error_type": type(e).__name__}}
            )
            return None

    def _client(self) -> httpx.AsyncClient:
        """HTTP client carrying the client label and timeout"""
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": settings.USER_AGENT},
            transport=self.transport,
            follow_redirects=True,
        )

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False

        if self.clock() >= self._circuit_breaker_open_until:
            logger.info(f"Circuit breaker reset for {self.source_name}")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        """Record a failure and potentially open circuit breaker."""
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = self.clock() + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened for {self.source_name}. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        """Record a successful request."""
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    def _backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** attempt)

    @staticmethod
    def _retry_after(response: httpx.Response, default: float) -> float:
        value = response.headers.get("Retry-After")
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            return default

    async def _get(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        GET with retry logic and exponential backoff.

        Returns:
            HTTP response with a 2xx status

        Raises:
            AuthenticationError: 401/403
            ResourceNotFoundError: 404
            RateLimitError: 429 (immediately unless retry_on_rate_limit)
            NetworkError: 5xx, timeouts and connection errors after max retries
            APIExtractionError: Any other non-2xx response or open circuit
        """
        if self._is_circuit_open():
            raise APIExtractionError(
                f"Circuit breaker is open for {self.source_name}",
                context={
                    "source_name": self.source_name,
                    "api_url": url,
                    "open_until": self._circuit_breaker_open_until.isoformat()
                }
            )

        last_exception = None

        for attempt in range(self.max_retries):
            is_last = attempt >= self.max_retries - 1
            try:
                logger.debug(f"Request attempt {attempt + 1}/{self.max_retries} to {url}")

                response = await client.get(url, params=params, headers=headers)

                if response.status_code in (401, 403):
                    self._record_failure()
                    raise AuthenticationError(
                        f"Authentication failed for {url}",
                        context={
                            "status_code": response.status_code,
                            "api_url": url,
                            "source_name": self.source_name
                        }
                    )

                if response.status_code == 404:
                    self._record_failure()
                    raise ResourceNotFoundError(
                        f"Resource not found: {url}",
                        context={
                            "status_code": 404,
                            "api_url": url,
                            "source_name": self.source_name
                        }
                    )

                if response.status_code == 429:
                    retry_after = self._retry_after(response, self._backoff(attempt))

                    if self.retry_on_rate_limit and not is_last:
                        logger.warning(f"Rate limited by {url}. Retrying after {retry_after} seconds")
                        await asyncio.sleep(retry_after)
                        continue

                    self._record_failure()
                    raise RateLimitError(
                        f"Rate limit exceeded for {url}",
                        context={
                            "status_code": 429,
                            "api_url": url,
                            "source_name": self.source_name,
                            "retry_count": attempt + 1
                        },
                        retry_after=int(retry_after)
                    )

                if response.status_code >= 500:
                    if not is_last:
                        delay = self._backoff(attempt)
                        logger.warning(
                            f"Server error {response.status_code} from {url}. "
                            f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                        )
                        await asyncio.sleep(delay)
                        continue

                    self._record_failure()
                    raise NetworkError(
                        f"Server error {response.status_code} after {self.max_retries} attempts",
                        context={
                            "status_code": response.status_code,
                            "api_url": url,
                            "source_name": self.source_name,
                            "retry_count": attempt + 1,
                            "response_body": response.text[:500]
                        }
                    )

                if response.status_code >= 400:
                    self._record_failure()
                    raise APIExtractionError(
                        f"HTTP {response.status_code} from {url}",
                        context={
                            "status_code": response.status_code,
                            "api_url": url,
                            "source_name": self.source_name,
                            "response_body": response.text[:500]
                        }
                    )

                self._record_success()
                return response

            except ETLException:
                raise

            except httpx.TimeoutException as e:
                last_exception = e
                if not is_last:
                    delay = self._backoff(attempt)
                    logger.warning(f"Request timeout for {url}. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue

                self._record_failure()
                raise NetworkError(
                    f"Request timeout after {self.max_retries} attempts",
                    context={
                        "api_url": url,
                        "source_name": self.source_name,
                        "timeout": self.timeout,
                        "retry_count": attempt + 1
                    },
                    original_exception=e
                )

            except httpx.TransportError as e:
                last_exception = e
                if not is_last:
                    delay = self._backoff(attempt)
                    logger.warning(f"Network error for {url}. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue

                self._record_failure()
                raise NetworkError(
                    f"Network error after {self.max_retries} attempts",
                    context={
                        "api_url": url,
                        "source_name": self.source_name,
                        "retry_count": attempt + 1
                    },
                    original_exception=e
                )

        raise APIExtractionError(
            "Max retries exceeded",
            context={"api_url": url, "source_name": self.source_name},
            original_exception=last_exception
        )
