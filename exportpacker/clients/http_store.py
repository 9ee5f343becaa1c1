"""REST record store client for exportpacker.

Endpoints (relative to the configured base URL):

    GET  /records?state=Pending          -> {"records": [...]} or [...]
    GET  /records/{id}/artifacts         -> {"artifacts": [...]} or [...]
    POST /records/{id}/state             <- {"state": "...", "error_message": ...}

Retries transient failures (429, 5xx, timeouts, connection errors) with
backoff; everything else fails fast. Exhausted or permanent failures raise
ExternalStoreError so the pipeline can record them per record.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from requests import Session
from requests.adapters import HTTPAdapter

from config.defaults import STORE_BACKOFF_BASE, STORE_MAX_RETRIES, STORE_REQUEST_TIMEOUT
from exportpacker.clients.record_store import ArtifactRef, RecordStore
from exportpacker.errors import ExternalStoreError, RecordProblem
from exportpacker.models.records import ExportRecord, RecordState

logger = logging.getLogger(__name__)

_RETRY_STATUSES = (500, 502, 503, 504)


class HttpRecordStore(RecordStore):
    """Record store reached over HTTP.

    Args:
        base_url: Service root, e.g. ``https://records.internal/api``.
        api_key: Optional bearer token.
        request_timeout: HTTP request timeout in seconds.
        max_retries: Maximum retry attempts on transient failures.
        backoff_base: Base seconds for backoff (doubles per attempt on 429).
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        request_timeout: int = STORE_REQUEST_TIMEOUT,
        max_retries: int = STORE_MAX_RETRIES,
        backoff_base: float = STORE_BACKOFF_BASE,
    ) -> None:
        if not base_url:
            raise ValueError("HttpRecordStore requires a base_url")
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base

        self._session = Session()
        adapter = HTTPAdapter(max_retries=0)   # We handle retries manually
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)
        self._session.headers.update({"Accept": "application/json"})
        if api_key:
            self._session.headers["Authorization"] = f"Bearer {api_key}"

    def _url(self, *parts: str) -> str:
        return "/".join([self.base_url] + [quote(str(p), safe="") for p in parts])

    def _request(
        self,
        method: str,
        url: str,
        error_code: str,
        record_id: Optional[str] = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Execute an HTTP request with backoff retry.

        Raises:
            ExternalStoreError: On a non-2xx answer, a permanent request
                failure, or exhausted retries.
        """
        last_problem = "no attempt made"
        for attempt in range(self.max_retries + 1):
            try:
                resp = self._session.request(method, url, timeout=self.request_timeout, **kwargs)

                if resp.status_code == 429:
                    wait = self.backoff_base * (2 ** attempt)
                    last_problem = "rate limited (429)"
                    logger.warning("Record store rate limit (429), backing off %.1fs", wait)
                    time.sleep(wait)
                    continue

                if resp.status_code in _RETRY_STATUSES:
                    wait = self.backoff_base * (attempt + 1)
                    last_problem = f"server error {resp.status_code}"
                    logger.warning(
                        "Record store server error %d, retrying in %.1fs (attempt %d/%d)",
                        resp.status_code,
                        wait,
                        attempt + 1,
                        self.max_retries,
                    )
                    time.sleep(wait)
                    continue

                if not 200 <= resp.status_code < 300:
                    raise ExternalStoreError(
                        f"{method} {url} returned HTTP {resp.status_code}",
                        record_id=record_id,
                        error_code=error_code,
                        details={"status_code": resp.status_code},
                    )

                return resp

            except requests.exceptions.Timeout:
                wait = self.backoff_base * (2 ** attempt)
                last_problem = "timeout"
                logger.warning(
                    "Record store request timeout, retrying in %.1fs (attempt %d/%d)",
                    wait,
                    attempt + 1,
                    self.max_retries,
                )
                time.sleep(wait)
            except requests.exceptions.ConnectionError as exc:
                wait = self.backoff_base * (2 ** attempt)
                last_problem = f"connection error: {exc}"
                logger.warning(
                    "Record store connection error: %s, retrying in %.1fs (attempt %d/%d)",
                    exc,
                    wait,
                    attempt + 1,
                    self.max_retries,
                )
                time.sleep(wait)
            except requests.exceptions.RequestException as exc:
                logger.error("Record store request failed permanently: %s", exc)
                raise ExternalStoreError(
                    f"{method} {url} failed: {exc}",
                    record_id=record_id,
                    error_code=error_code,
                ) from exc

        logger.error("Record store: exhausted %d retries for %s %s", self.max_retries, method, url)
        raise ExternalStoreError(
            f"{method} {url} failed after {self.max_retries} retries ({last_problem})",
            record_id=record_id,
            error_code=error_code,
        )

    @staticmethod
    def _json_list(resp: requests.Response, key: str, record_id: Optional[str]) -> List[Any]:
        try:
            body = resp.json()
        except ValueError as exc:
            raise ExternalStoreError(
                f"Record store returned a non-JSON body for {key}",
                record_id=record_id,
                error_code=RecordProblem.RECORD_FETCH_FAILURE,
            ) from exc
        if isinstance(body, dict):
            body = body.get(key, [])
        if not isinstance(body, list):
            raise ExternalStoreError(
                f"Record store returned a non-list {key} payload",
                record_id=record_id,
                error_code=RecordProblem.RECORD_FETCH_FAILURE,
            )
        return body

    def fetch_pending_records(self) -> List[ExportRecord]:
        resp = self._request(
            "GET",
            self._url("records"),
            RecordProblem.RECORD_FETCH_FAILURE,
            params={"state": RecordState.PENDING},
        )
        records = []
        for entry in self._json_list(resp, "records", None):
            try:
                records.append(ExportRecord.from_dict(entry))
            except (TypeError, ValueError, AttributeError) as exc:
                logger.warning("HttpRecordStore: ignoring malformed record payload: %s", exc)
        # The service may ignore the filter
        return [r for r in records if r.state == RecordState.PENDING]

    def fetch_artifact_refs(self, record_id: str) -> List[ArtifactRef]:
        record_id = str(record_id)
        resp = self._request(
            "GET",
            self._url("records", record_id, "artifacts"),
            RecordProblem.RECORD_FETCH_FAILURE,
            record_id=record_id,
        )
        return self._json_list(resp, "artifacts", record_id)

    def _transition(self, record_id: str, state: str, message: Optional[str]) -> None:
        record_id = str(record_id)
        payload: Dict[str, Any] = {"state": state, "error_message": message}
        self._request(
            "POST",
            self._url("records", record_id, "state"),
            RecordProblem.STORE_UPDATE_FAILURE,
            record_id=record_id,
            json=payload,
        )
        logger.debug("HttpRecordStore: record %s -> %s", record_id, state)

    def mark_processing(self, record_id: str) -> None:
        self._transition(record_id, RecordState.PROCESSING, None)

    def mark_processed(self, record_id: str) -> None:
        self._transition(record_id, RecordState.PROCESSED, None)

    def mark_errored(self, record_id: str, message: str) -> None:
        self._transition(record_id, RecordState.ERRORED, message)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._session.close()
