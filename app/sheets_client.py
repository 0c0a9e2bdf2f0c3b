"""
Google Sheets API client.

Fetches the whole configured sheet range as one opaque snapshot. The response
body is returned exactly as decoded; nothing here inspects its structure.
"""
import logging
from typing import Any, Optional
from urllib.parse import quote

import requests
from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from app.cache.errors import ConfigError, RemoteFetchError
from config.settings import Settings, settings as default_settings

logger = logging.getLogger("sheets_client")

# Longest slice of an error body kept in logs and results
MAX_ERROR_TEXT = 2000

# Statuses worth another attempt; everything else fails fast
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class TransientFetchError(RemoteFetchError):
    """Remote failure that may succeed on retry (timeouts, 429, 5xx)."""


class SheetsClient:
    """
    Thin wrapper around the Sheets v4 ``values.get`` endpoint.

    Usage:
        client = SheetsClient(settings)
        payload = client.fetch_snapshot()
    """

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def _values_url(self) -> str:
        """Build the values URL for the configured sheet range."""
        sheet_range = quote(f"{self.config.sheet_name}!{self.config.sheet_range}", safe="!:")
        spreadsheet_id = quote(self.config.google_spreadsheet_id or "", safe="")
        return f"{self.config.sheets_base_url}/{spreadsheet_id}/values/{sheet_range}"

    def fetch_snapshot(self) -> Any:
        """
        Fetch the current sheet contents.

        Transient failures are retried with exponential backoff up to
        ``fetch_max_attempts`` times; the last error is re-raised.

        Returns:
            Decoded JSON body of the API response

        Raises:
            ConfigError: If the API key or spreadsheet ID is missing
            RemoteFetchError: On transport failure, timeout, non-2xx response,
                or a body that is not JSON
        """
        if not self.is_configured:
            raise ConfigError("Cannot fetch: GOOGLE_SHEETS_API_KEY or GOOGLE_SPREADSHEET_ID not set.")

        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.config.fetch_max_attempts)),
            wait=wait_exponential(multiplier=self.config.fetch_retry_multiplier, max=10),
            retry=retry_if_exception_type(TransientFetchError),
            reraise=True,
        )
        return retrying(self._fetch_once)

    def _fetch_once(self) -> Any:
        """Single request with no retry."""
        logger.info("Fetching fresh data from Google Sheets...")
        try:
            response = requests.get(
                self._values_url(),
                params={"key": self.config.google_sheets_api_key},
                timeout=self.config.fetch_timeout_seconds,
            )
        except requests.Timeout as e:
            logger.error(f"Google Sheets request timed out after {self.config.fetch_timeout_seconds}s")
            raise TransientFetchError(f"Request timed out: {e}") from e
        except requests.ConnectionError as e:
            logger.error(f"Google Sheets connection error: {e}")
            raise TransientFetchError(f"Error fetching data from Google: {e}") from e
        except requests.RequestException as e:
            logger.error(f"Google Sheets request failed: {e}")
            raise RemoteFetchError(f"Error fetching data from Google: {e}") from e

        if not response.ok:
            error_text = response.text[:MAX_ERROR_TEXT]
            logger.error(f"Google Sheets API Error ({response.status_code}): {error_text}")
            if response.status_code in RETRYABLE_STATUSES:
                raise TransientFetchError(error_text, status_code=response.status_code)
            raise RemoteFetchError(error_text, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Google Sheets returned a non-JSON body: {e}")
            raise RemoteFetchError(
                f"Error processing data from Google: {e}",
                status_code=response.status_code,
            ) from e

    def __call__(self) -> Any:
        return self.fetch_snapshot()
