"""Thin client for the Dataverse Web API (OData v4).

Records are created with a collection-level POST and linked to their parents
through ``@odata.bind`` properties in the same request body.
"""

import logging
import re
import time
from typing import Any, Callable

import httpx

from app.core.config import settings
from app.errors import ExternalStoreUnavailableError

logger = logging.getLogger(__name__)

API_PATH = "/api/data/v9.2"

RETRYABLE_STATUS_CODES = frozenset({500, 502, 503, 504})

# The connection was never established, so the server cannot have acted on it.
NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)

# https://org.crm.dynamics.com/api/data/v9.2/osot_table_accounts(<guid>)
_ENTITY_ID_PATTERN = re.compile(r"\(([^)]+)\)\s*$")


class DataverseError(Exception):
    """Raised when Dataverse rejects a request outright (4xx or malformed reply)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def odata_bind(entity_set: str, external_id: str) -> str:
    return f"/{entity_set}({external_id})"


class DataverseClient:
    """Synchronous Dataverse client with linear backoff on failures that are safe to retry."""

    def __init__(
        self,
        base_url: str | None = None,
        access_token: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        base_url = base_url if base_url is not None else settings.dataverse_url
        self.base_url = base_url.rstrip("/") + API_PATH if base_url else None
        self.access_token = access_token if access_token is not None else settings.dataverse_access_token
        self.max_retries = max_retries if max_retries is not None else settings.dataverse_max_retries
        self._sleep = sleep
        self._client = httpx.Client(
            timeout=timeout if timeout is not None else settings.dataverse_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json; charset=utf-8",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        idempotent: bool = True,
    ) -> httpx.Response:
        """
        Send a request, retrying failures that are safe to repeat.

        A request that never reached Dataverse is always retried. Timeouts after
        sending and 5xx replies are only retried when ``idempotent``; otherwise
        the record may already exist and a second attempt could duplicate it.

        Raises:
            ExternalStoreUnavailableError: If Dataverse is not configured or
                still unreachable after the last attempt
            DataverseError: If Dataverse answers with a non-retryable error, or
                a non-idempotent request failed after it may have been applied
        """
        if not self.base_url:
            raise ExternalStoreUnavailableError("Dataverse is not configured (DATAVERSE_URL)")

        url = f"{self.base_url}/{path.lstrip('/')}"
        request_headers = {**self._headers(), **(headers or {})}
        last_error = ""

        for attempt in range(1, self.max_retries + 1):
            try:
                response = self._client.request(method, url, json=json, headers=request_headers)
            except NOT_SENT_ERRORS as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "Dataverse %s %s not sent (attempt %s/%s): %s",
                    method, path, attempt, self.max_retries, last_error,
                )
            except httpx.RequestError as e:
                if not idempotent:
                    raise DataverseError(
                        f"Dataverse {method} {path} outcome unknown: {type(e).__name__}: {e}"
                    ) from e
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "Dataverse %s %s failed (attempt %s/%s): %s",
                    method, path, attempt, self.max_retries, last_error,
                )
            else:
                retryable = response.status_code in RETRYABLE_STATUS_CODES and idempotent
                if not retryable:
                    if response.is_error:
                        raise DataverseError(
                            f"Dataverse {method} {path} returned {response.status_code}: "
                            f"{response.text[:500]}",
                            status_code=response.status_code,
                        )
                    return response
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Dataverse %s %s returned %s (attempt %s/%s)",
                    method, path, response.status_code, attempt, self.max_retries,
                )

            if attempt < self.max_retries:
                self._sleep(0.5 * attempt)

        raise ExternalStoreUnavailableError(
            f"Dataverse {method} {path} failed after {self.max_retries} attempts: {last_error}"
        )

    def create(self, entity_set: str, payload: dict[str, Any], primary_key: str) -> str:
        """Create one record and return its generated id."""
        response = self._request(
            "POST",
            entity_set,
            json=payload,
            headers={"Prefer": "return=representation"},
            idempotent=False,
        )

        if response.content:
            try:
                body = response.json()
            except ValueError as e:
                raise DataverseError(f"Dataverse returned invalid JSON for {entity_set}") from e
            if isinstance(body, dict) and body.get(primary_key):
                return str(body[primary_key])

        # 204 No Content: the id only comes back in the OData-EntityId header.
        entity_url = response.headers.get("OData-EntityId", "")
        match = _ENTITY_ID_PATTERN.search(entity_url)
        if match:
            return match.group(1)
        raise DataverseError(f"Dataverse did not return an id for the new {entity_set} record")

    def delete(self, entity_set: str, external_id: str) -> None:
        """Delete one record. A record that is already gone counts as deleted."""
        try:
            self._request("DELETE", f"{entity_set}({external_id})")
        except DataverseError as e:
            if e.status_code == 404:
                logger.info("%s(%s) already deleted", entity_set, external_id)
                return
            raise
