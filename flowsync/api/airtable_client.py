import logging
import time
from typing import Dict, Any, List, Optional, Sequence
from urllib.parse import quote

import requests

from .base_client import RateLimitedAPIClient
from .exceptions import (
    APIClientError, AuthenticationError, NotFoundError, APIRequestError,
    BatchValidationError, MultiBatchFailureError
)

logger = logging.getLogger(__name__)

AIRTABLE_BASE_URL = "https://api.airtable.com/v0"
RESERVED_KEYS = ("id", "fields")


def sanitise_create_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """Strips keys Airtable would reject as unknown field names inside `fields`."""
    return {k: v for k, v in row.items() if k not in RESERVED_KEYS}


def _field_map(row: Dict[str, Any]) -> Any:
    """Unwraps a `{fields: {...}}` envelope; bare field-maps pass through."""
    if isinstance(row.get("fields"), dict):
        return row["fields"]
    return row


class AirtableClient(RateLimitedAPIClient):
    """
    Write-capable client for one Airtable base.

    Records are created/updated in batches of BATCH_SIZE with a short pause
    between batches. A failed batch does not stop the next one, but the call
    raises MultiBatchFailureError at the end (or as soon as MAX_FAILED_BATCHES
    batches have failed). There is no dedup key: creating the same rows twice
    creates duplicate records.
    """

    SERVICE_NAME = "Airtable"
    BATCH_SIZE = 10
    DELAY_SECONDS = 0.12 # Small cushion for Airtable's 5 req/s limit
    MAX_FAILED_BATCHES = 3

    def __init__(self, api_key: str, base_id: str, base_url: str = AIRTABLE_BASE_URL,
                 session: Optional[requests.Session] = None, batch_size: Optional[int] = None,
                 batch_delay: Optional[float] = None, max_retries: Optional[int] = None,
                 initial_backoff: Optional[float] = None):
        if not api_key:
            logger.error("Airtable API key not provided.")
            raise AuthenticationError("Airtable API key not configured")
        if not base_id:
            logger.error("Airtable base ID not provided.")
            raise AuthenticationError("Airtable base ID not configured")
        self.base_id = base_id
        super().__init__(api_key=api_key, base_url=f"{base_url.rstrip('/')}/{base_id}", session=session)
        if batch_size is not None:
            self.BATCH_SIZE = batch_size
        if batch_delay is not None:
            self.DELAY_SECONDS = batch_delay
        if max_retries is not None:
            self.MAX_RETRIES = max_retries
        if initial_backoff is not None:
            self.INITIAL_BACKOFF = initial_backoff
        logger.info("AirtableClient initialized.")

    def _set_auth_header(self):
        """Sets the Authorization Bearer token header for Airtable authentication."""
        self.session.headers.update({
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        })

    @staticmethod
    def _table_path(table: str) -> str:
        return quote(table, safe="")

    def test_connection(self, table: str = "Flows") -> bool:
        """Lists at most one record from `table`, rewriting failures into likely causes."""
        logger.info("[Airtable] Testing API connection...")
        try:
            self.list_records(table, max_records=1)
        except APIClientError as e:
            logger.error(f"[Airtable] Connection test failed: {e}")
            if e.status_code in (401, 403):
                raise AuthenticationError("Airtable authentication failed: Check your API key", status_code=e.status_code) from e
            if e.status_code == 404:
                raise NotFoundError(
                    f'Airtable base or table not found: Check your base ID and ensure "{table}" table exists',
                    resource_type="table", resource_id=table,
                ) from e
            raise
        logger.info("[Airtable] Connection test successful")
        return True

    def list_records(self, table: str, max_records: Optional[int] = None, view: Optional[str] = None,
                     filter_by_formula: Optional[str] = None) -> List[Dict[str, Any]]:
        """Lists records of `table` (first page only)."""
        params: Dict[str, Any] = {}
        if max_records:
            params["maxRecords"] = max_records
        if view:
            params["view"] = view
        if filter_by_formula:
            params["filterByFormula"] = filter_by_formula
        response = self._request("GET", self._table_path(table), params=params or None)
        return response.get("records") or []

    # --- Batch writes --- #

    def _build_create_batch(self, batch_items: Sequence[Any], batch_index: int) -> List[Dict[str, Any]]:
        invalid = [item for item in batch_items if not isinstance(item, dict)]
        if invalid:
            raise BatchValidationError(f"Batch {batch_index} contains {len(invalid)} invalid items")

        records = []
        for item in batch_items:
            fields = _field_map(item)
            if not isinstance(fields, dict):
                raise BatchValidationError("Record is missing fields object or fields is not an object")
            fields = sanitise_create_row(fields)
            if not fields:
                raise BatchValidationError("Record has no fields left to write")
            records.append({"fields": fields})
        return records

    def _build_update_batch(self, batch_items: Sequence[Any], batch_index: int) -> List[Dict[str, Any]]:
        invalid = [item for item in batch_items if not isinstance(item, dict)]
        if invalid:
            raise BatchValidationError(f"Batch {batch_index} contains {len(invalid)} invalid items")

        records = []
        for item in batch_items:
            record_id = item.get("id")
            if not record_id:
                raise BatchValidationError(f"Batch {batch_index} has a record without an id")
            fields = _field_map(item)
            if not isinstance(fields, dict):
                raise BatchValidationError("Record is missing fields object or fields is not an object")
            fields = sanitise_create_row(fields)
            if not fields:
                raise BatchValidationError(f"Record {record_id} has no fields to update")
            records.append({"id": record_id, "fields": fields})
        return records

    def _write_in_batches(self, method: str, table: str, rows: Any, build_batch) -> List[str]:
        if not isinstance(rows, list):
            logger.error(f"[Airtable] {method} called with invalid rows: {type(rows).__name__}")
            raise BatchValidationError("Invalid records data: rows must be a list")
        if not rows:
            logger.info(f"[Airtable] No records to write to '{table}'")
            return []

        total_batches = (len(rows) + self.BATCH_SIZE - 1) // self.BATCH_SIZE
        logger.info(f"[Airtable] Writing {len(rows)} records to table '{table}' in {total_batches} batches")

        written: List[str] = []
        failed_batches = []
        for start in range(0, len(rows), self.BATCH_SIZE):
            batch_index = start // self.BATCH_SIZE + 1
            batch_items = rows[start:start + self.BATCH_SIZE]
            try:
                records = build_batch(batch_items, batch_index)
                logger.debug(f"[Airtable] Processing batch {batch_index}/{total_batches} - {len(records)} records")
                response = self._request(method, self._table_path(table), json={"records": records})
                ids = [r.get("id") for r in response.get("records") or [] if isinstance(r, dict)]
                written.extend(ids)
                logger.info(f"[Airtable] Batch {batch_index}/{total_batches} succeeded with {len(ids)} records")
            except APIClientError as e:
                logger.error(f"[Airtable] Error writing batch {batch_index}/{total_batches}: {e}")
                failed_batches.append((batch_index, e))
                if len(failed_batches) >= self.MAX_FAILED_BATCHES:
                    logger.error(f"[Airtable] Too many failed batches ({len(failed_batches)}), aborting")
                    raise MultiBatchFailureError(
                        f"Multiple batch failures: {e}", failed_batches=len(failed_batches), created=written
                    ) from e
                logger.info("[Airtable] Continuing with next batch despite error")

            if start + self.BATCH_SIZE < len(rows):
                time.sleep(self.DELAY_SECONDS)

        if failed_batches:
            message = f"{len(failed_batches)} batch(es) failed while writing to '{table}'"
            logger.error(f"[Airtable] {message}")
            raise MultiBatchFailureError(message, failed_batches=len(failed_batches), created=written)

        logger.info(f"[Airtable] Successfully wrote all {len(rows)} records in {total_batches} batches")
        return written

    def create_records(self, table: str, rows: List[Dict[str, Any]]) -> List[str]:
        """
        Creates records in `table`.

        Args:
            table: Airtable table name.
            rows: Field-maps, optionally wrapped in a `{"fields": {...}}` envelope.

        Returns:
            Ids of the created records, in order.
        """
        return self._write_in_batches("POST", table, rows, self._build_create_batch)

    def update_records(self, table: str, rows: List[Dict[str, Any]]) -> List[str]:
        """Updates records in `table`. Every row must carry its Airtable record `id`."""
        return self._write_in_batches("PATCH", table, rows, self._build_update_batch)
