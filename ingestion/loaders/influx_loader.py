"""
InfluxDB transport with token authentication, timeouts and retry logic.

This module provides the only component that talks to the time-series store:
- Line-protocol batch writes (``/api/v2/write``, millisecond precision)
- InfluxQL range queries (``/query`` with ``epoch=ms``)
- Exponential backoff retry for timeouts, network errors and 5xx responses
- Immediate failure on authentication errors
"""

import httpx
import asyncio
import pandas as pd
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
from datetime import datetime
from schemas.point import Point, to_millis
from core.exceptions import (
    AuthenticationError,
    NetworkError,
    QueryError,
    WriteError,
)
import logging

logger = logging.getLogger(__name__)


def escape_identifier(name: str) -> str:
    """Quote an InfluxQL identifier"""
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def parse_timestamp_ms(value: Any) -> int:
    """
    Epoch milliseconds from a query result cell.

    The store answers with integers when ``epoch=ms`` is honoured and with
    RFC3339 strings otherwise; both are accepted.
    """
    if isinstance(value, bool):
        raise ValueError(f"Unexpected timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        return pd.Timestamp(value).value // 1_000_000
    raise ValueError(f"Unexpected timestamp value: {value!r}")


class InfluxTransport:
    """
    Async client for one InfluxDB bucket.

    Use as an async context manager; an ``httpx.AsyncClient`` can be injected
    (tests pass one built on ``httpx.MockTransport``).

    Attributes:
        max_retries: Maximum number of attempts per request (default: 3)
        retry_delay: Initial retry delay in seconds (default: 1.0)
        timeout: Request timeout in seconds (default: 30.0)
    """

    def __init__(
        self,
        url: str,
        org: Optional[str],
        bucket: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.url = url.rstrip("/")
        self.org = org
        self.bucket = bucket
        self.token = token
        self.timeout = timeout
        self.max_retries = max(max_retries, 1)
        self.retry_delay = retry_delay
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "InfluxTransport":
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Token {self.token}"
        return headers

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        params: Dict[str, Any],
        content: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        """
        Send a request with retry logic and exponential backoff.

        Returns:
            The first response below 500 (callers check the status)

        Raises:
            AuthenticationError: HTTP 401/403, never retried
            NetworkError: Retryable failures after max retries
        """
        url = f"{self.url}{path}"
        request_headers = {**self.headers, **(headers or {})}
        client = self._get_client()

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"{method} attempt {attempt + 1}/{self.max_retries} to {url}")

                response = await client.request(
                    method,
                    url,
                    params=params,
                    content=content,
                    headers=request_headers,
                    timeout=self.timeout
                )

                if response.status_code in (401, 403):
                    raise AuthenticationError(
                        f"Authentication failed for {url}",
                        context={
                            "status_code": response.status_code,
                            "url": url,
                            "bucket": self.bucket
                        }
                    )

                if response.status_code >= 500:
                    if attempt < self.max_retries - 1:
                        delay = self.retry_delay * (2 ** attempt)
                        logger.warning(
                            f"Server error {response.status_code}. "
                            f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                        )
                        await asyncio.sleep(delay)
                        continue
                    raise NetworkError(
                        f"Server error after {self.max_retries} attempts",
                        context={
                            "status_code": response.status_code,
                            "url": url,
                            "response_body": response.text[:500]
                        },
                        retry_count=attempt + 1
                    )

                return response

            except httpx.TimeoutException as e:
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Request timeout. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                else:
                    raise NetworkError(
                        f"Request timeout after {self.max_retries} attempts",
                        context={"url": url, "timeout": self.timeout},
                        original_exception=e,
                        retry_count=attempt + 1
                    )

            except httpx.TransportError as e:
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Network error. Retrying in {delay} seconds: {e}")
                    await asyncio.sleep(delay)
                else:
                    raise NetworkError(
                        f"Network error after {self.max_retries} attempts",
                        context={"url": url},
                        original_exception=e,
                        retry_count=attempt + 1
                    )

            except httpx.HTTPError as e:
                # Decoding errors, redirect loops: not transient, not retried
                raise NetworkError(
                    f"HTTP error: {e}",
                    context={"url": url},
                    original_exception=e,
                    retry_count=attempt + 1
                )

        # max_retries is at least 1, so the loop always returns or raises
        raise NetworkError("Max retries exceeded", context={"url": url})

    async def write_batch(self, points: Sequence[Point]) -> None:
        """
        Write one batch as line protocol.

        Raises:
            WriteError: The store rejected the batch
            NetworkError, AuthenticationError: As raised by the retry loop
        """
        if not points:
            return

        body = "\n".join(point.to_line_protocol() for point in points)
        params = {"bucket": self.bucket, "precision": "ms"}
        if self.org:
            params["org"] = self.org

        response = await self._request_with_retry(
            "POST",
            "/api/v2/write",
            params=params,
            content=body,
            headers={"Content-Type": "text/plain; charset=utf-8"}
        )

        if not response.is_success:
            raise WriteError(
                f"Write rejected with status {response.status_code}",
                context={
                    "status_code": response.status_code,
                    "bucket": self.bucket,
                    "points": len(points),
                    "response_body": response.text[:500]
                }
            )

        logger.debug(f"Wrote {len(points)} points to {self.bucket}")

    async def query_range(
        self,
        measurement: str,
        start: datetime,
        end: datetime
    ) -> List[Tuple[int, float]]:
        """
        Fetch ``(timestamp_ms, value)`` pairs of a measurement in ``[start, end]``.

        Raises:
            QueryError: The store reported an error or returned an unreadable body
        """
        query = (
            f"SELECT \"value\" FROM {escape_identifier(measurement)} "
            f"WHERE time >= {to_millis(start)}ms AND time <= {to_millis(end)}ms"
        )
        response = await self._request_with_retry(
            "GET",
            "/query",
            params={"db": self.bucket, "q": query, "epoch": "ms"}
        )

        if not response.is_success:
            raise QueryError(
                f"Query failed with status {response.status_code}",
                context={
                    "measurement": measurement,
                    "status_code": response.status_code,
                    "response_body": response.text[:500]
                }
            )

        try:
            data = response.json()
        except ValueError as e:
            raise QueryError(
                "Failed to parse JSON response",
                context={"measurement": measurement, "response_body": response.text[:500]},
                original_exception=e
            )

        return self._parse_series(data, measurement)

    async def query_timestamps(self, measurement: str, start: datetime, end: datetime) -> Set[int]:
        return {timestamp for timestamp, _ in await self.query_range(measurement, start, end)}

    @staticmethod
    def _parse_series(data: Any, measurement: str) -> List[Tuple[int, float]]:
        rows: List[Tuple[int, float]] = []

        if not isinstance(data, dict) or "error" in data:
            raise QueryError(
                "Unexpected query response",
                context={"measurement": measurement, "response": str(data)[:500]}
            )

        results = data.get("results") or []
        if not isinstance(results, list):
            raise QueryError(
                "Unexpected query response: 'results' is not a list",
                context={"measurement": measurement, "response": str(data)[:500]}
            )

        for result in results:
            if not isinstance(result, dict):
                raise QueryError(
                    "Unexpected query result entry",
                    context={"measurement": measurement, "result": str(result)[:500]}
                )
            if "error" in result:
                raise QueryError(
                    f"Query error: {result['error']}",
                    context={"measurement": measurement}
                )

            series_list = result.get("series") or []
            if not isinstance(series_list, list):
                raise QueryError(
                    "Unexpected query result: 'series' is not a list",
                    context={"measurement": measurement, "result": str(result)[:500]}
                )

            for series in series_list:
                if not isinstance(series, dict):
                    raise QueryError(
                        "Unexpected series entry",
                        context={"measurement": measurement, "series": str(series)[:500]}
                    )
                columns = series.get("columns") or ["time", "value"]
                values = series.get("values") or []
                if not isinstance(columns, list) or not isinstance(values, list):
                    raise QueryError(
                        "Unexpected series shape",
                        context={"measurement": measurement, "series": str(series)[:500]}
                    )
                time_index = columns.index("time") if "time" in columns else 0
                value_index = columns.index("value") if "value" in columns else 1
                for row in values:
                    try:
                        timestamp = parse_timestamp_ms(row[time_index])
                        value = row[value_index]
                        rows.append((timestamp, float(value) if value is not None else float("nan")))
                    except (IndexError, KeyError, TypeError, ValueError) as e:
                        logger.debug(f"Skipping unreadable row {row!r}: {e}")

        return rows
