"""
Sources that supply the full row set of one table.

The cache engine only needs ``fetch_all()``. Errors are raised here and turned
into FETCH_FAILED results at the engine boundary.
"""
import logging
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Protocol, Sequence, TypeVar

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

logger = logging.getLogger("table_source")

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)


class TableSourceError(Exception):
    """The remote table could not be read."""


class TableSourceUnavailable(TableSourceError):
    """Transient failure (network, quota, 5xx); worth another attempt."""


class TableSource(Protocol[T_co]):
    """Supplies every row of one logical table, in source order."""

    def fetch_all(self) -> Sequence[T_co]:
        ...


class StaticTableSource(Generic[T]):
    """
    In-memory source for fixtures and local runs.

    ``fetch_count`` tracks how often the cache actually hit the source.
    """

    def __init__(self, rows: Iterable[T] = ()):
        self._rows = list(rows)
        self.fetch_count = 0

    def replace(self, rows: Iterable[T]) -> None:
        self._rows = list(rows)

    def fetch_all(self) -> List[T]:
        self.fetch_count += 1
        return list(self._rows)


class HttpTableSource(Generic[T]):
    """
    Reads a table exposed as a JSON list of records over HTTP.

    GET ``{base_url}/{table}`` must return either a JSON array of objects or
    ``{"rows": [...]}``. Each record is parsed with ``parse_row``; records it
    rejects are skipped with a warning. Transport errors, 429 and 5xx
    responses are retried with exponential backoff inside this source; the
    cache engine itself never retries.
    """

    def __init__(
        self,
        table: str,
        parse_row: Callable[[Dict[str, Any]], T],
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        session: Optional[requests.Session] = None,
    ):
        self.table = table
        self.url = f"{base_url.rstrip('/')}/{table}"
        self._parse_row = parse_row
        self._api_key = api_key
        self._timeout = timeout
        self._session = session or requests.Session()
        self._get_records = retry(
            stop=stop_after_attempt(max(retry_attempts, 1)),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
            retry=retry_if_exception_type(TableSourceUnavailable),
            reraise=True,
        )(self._request_records)

    def _get_headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _request_records(self) -> List[Dict[str, Any]]:
        try:
            response = self._session.get(self.url, headers=self._get_headers(), timeout=self._timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning(f"Table source unreachable for {self.table}: {e}")
            raise TableSourceUnavailable(f"{self.table}: {e}") from e
        except requests.RequestException as e:
            raise TableSourceError(f"{self.table}: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"Table source returned {response.status_code} for {self.table}")
            raise TableSourceUnavailable(f"{self.table}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise TableSourceError(f"{self.table}: HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise TableSourceError(f"{self.table}: response is not JSON") from e

        if isinstance(payload, dict):
            payload = payload.get("rows")
        if not isinstance(payload, list):
            raise TableSourceError(f"{self.table}: expected a list of records")
        return payload

    def fetch_all(self) -> List[T]:
        records = self._get_records()
        rows = []
        skipped = 0
        for record in records:
            try:
                rows.append(self._parse_row(record))
            except (ValueError, TypeError, AttributeError) as e:
                # Blank or half-filled spreadsheet lines
                skipped += 1
                logger.warning(f"Skipping malformed record in {self.table}: {e}")
        logger.debug(f"Fetched {len(rows)} rows from {self.url} ({skipped} skipped)")
        return rows
