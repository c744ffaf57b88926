import logging
import re
import time
from typing import Dict, Any, List, Iterator, Optional
from urllib.parse import urlparse, parse_qs

import requests

from .base_client import RateLimitedAPIClient
from .exceptions import APIClientError, AuthenticationError, NotFoundError, RateLimitError
from ..models.sync import FailedFlowRecord, utc_timestamp

logger = logging.getLogger(__name__)

KLAVIYO_BASE_URL = "https://a.klaviyo.com/api"
KLAVIYO_REVISION = "2023-10-15"
JSON_API_CONTENT_TYPE = "application/vnd.api+json"

_VALID_ID = re.compile(r"^[a-zA-Z0-9]+$")


def is_valid_id(value: Optional[str]) -> bool:
    """Klaviyo flow and flow action ids are strictly alphanumeric."""
    return bool(value) and isinstance(value, str) and bool(_VALID_ID.match(value))


def next_page_cursor(response: Dict[str, Any]) -> Optional[str]:
    """Extracts `page[cursor]` from the JSON:API `links.next` URL, if any."""
    links = response.get("links") if isinstance(response, dict) else None
    next_url = links.get("next") if isinstance(links, dict) else None
    if not next_url:
        return None
    cursors = parse_qs(urlparse(next_url).query).get("page[cursor]")
    return cursors[0] if cursors else None


class KlaviyoClient(RateLimitedAPIClient):
    """
    Read-only client for the Klaviyo REST API.

    Every list/query call waits a fixed delay first to stay under Klaviyo's
    published rate limits; 429 responses are additionally retried with backoff.
    Message fetch failures are collected in `failed_flows` instead of raised.
    """

    SERVICE_NAME = "Klaviyo"
    FLOW_DELAY = 1.0 # seconds, flows endpoints allow 3/s 60/min
    METRICS_DELAY = 0.6 # seconds, metrics endpoints allow 10/s 150/min
    AGGREGATE_DELAY = 1.0

    def __init__(self, api_key: str, base_url: str = KLAVIYO_BASE_URL, revision: str = KLAVIYO_REVISION,
                 session: Optional[requests.Session] = None, max_retries: Optional[int] = None,
                 initial_backoff: Optional[float] = None):
        if not api_key:
            logger.error("Klaviyo API key not provided.")
            raise AuthenticationError("Klaviyo API key not configured")
        self.revision = revision
        super().__init__(api_key=api_key, base_url=base_url, session=session)
        if max_retries is not None:
            self.MAX_RETRIES = max_retries
        if initial_backoff is not None:
            self.INITIAL_BACKOFF = initial_backoff
        self.failed_flows: List[FailedFlowRecord] = []
        logger.info("KlaviyoClient initialized.")

    def _set_auth_header(self):
        """Sets the Klaviyo-API-Key authorization and revision headers."""
        self.session.headers.update({
            "Accept": f"application/json, {JSON_API_CONTENT_TYPE}",
            "Authorization": f"Klaviyo-API-Key {self.api_key}",
            "revision": self.revision,
            "Content-Type": "application/json",
        })

    def _json_api_headers(self) -> Dict[str, str]:
        return {"Accept": JSON_API_CONTENT_TYPE, "revision": self.revision}

    def _pause(self, seconds: float):
        time.sleep(seconds)

    def test_connection(self) -> bool:
        """GET /accounts. Raises on any failure."""
        logger.info("[Klaviyo] Testing connection...")
        self._request("GET", "/accounts")
        logger.info("[Klaviyo] Connection successful")
        return True

    # --- Flows --- #

    def get_flows(self, page_cursor: Optional[str] = None) -> Dict[str, Any]:
        """Fetches a single page of flows."""
        params = {"page[cursor]": page_cursor} if page_cursor else None
        self._pause(self.FLOW_DELAY)
        return self._request("GET", "/flows", params=params)

    def iter_flows(self) -> Iterator[Dict[str, Any]]:
        """Yields raw flow resources across all pages, following `links.next`."""
        cursor = None
        seen_cursors = set()
        while True:
            response = self.get_flows(page_cursor=cursor)
            for item in response.get("data") or []:
                yield item
            cursor = next_page_cursor(response)
            if not cursor or cursor in seen_cursors:
                break
            seen_cursors.add(cursor)

    def get_all_flows(self) -> List[Dict[str, Any]]:
        flows = list(self.iter_flows())
        logger.info(f"[Klaviyo] Fetched {len(flows)} flows")
        return flows

    def get_flow_actions(self, flow_id: str) -> Dict[str, Any]:
        """
        Fetches the actions of one flow.

        Never raises: an invalid id or any fetch error yields {"data": []} so
        that one broken flow cannot stop the sync.
        """
        if not is_valid_id(flow_id):
            logger.warning(f"[Klaviyo] Invalid flow ID format: {flow_id}. Flow ID should be alphanumeric.")
            return {"data": []}

        try:
            self._pause(self.FLOW_DELAY)
            response = self._request("GET", f"/flows/{flow_id}/flow-actions/", headers=self._json_api_headers())
        except APIClientError as e:
            logger.error(f"[Klaviyo] Error fetching actions for flow {flow_id}: {e}")
            logger.warning(f"[Klaviyo] Returning empty result for flow {flow_id} due to error")
            return {"data": []}

        data = response.get("data") if isinstance(response, dict) else None
        if not isinstance(data, list):
            logger.warning(f"[Klaviyo] Empty or invalid response for flow {flow_id}")
            return {"data": []}

        logger.info(f"[Klaviyo] Successfully fetched {len(data)} flow actions for flow {flow_id}")
        if data and isinstance(data[0], dict) and data[0].get("type") == "flow-action":
            return response

        now = utc_timestamp()
        return {
            "data": [
                {
                    "id": action.get("id") or "",
                    "type": action.get("type") or "flow-action",
                    "attributes": {
                        "name": (action.get("attributes") or {}).get("name") or "Unnamed Action",
                        "action_type": (action.get("attributes") or {}).get("action_type") or "unknown",
                        "created": (action.get("attributes") or {}).get("created") or now,
                        "updated": (action.get("attributes") or {}).get("updated") or now,
                    },
                }
                for action in data if isinstance(action, dict)
            ]
        }

    def get_flow_messages(self, flow_action_id: str) -> Dict[str, Any]:
        """
        Fetches the messages of a flow action via `?include=flow-message`.

        Only `flow-message` items of the `included` side list are returned.
        Never raises: failures are appended to `failed_flows` and an empty
        result is returned.
        """
        if not is_valid_id(flow_action_id):
            self._record_failure(flow_action_id, "Invalid action ID format")
            return {"data": []}

        try:
            self._pause(self.FLOW_DELAY)
            response = self._request(
                "GET", f"/flow-actions/{flow_action_id}",
                params={"include": "flow-message"},
                headers=self._json_api_headers(),
            )
        except Exception as e:
            self._record_failure(flow_action_id, self._failure_reason(e), getattr(e, "status_code", None))
            return {"data": []}

        included = response.get("included") if isinstance(response, dict) else None
        messages = [
            item for item in included
            if isinstance(item, dict) and item.get("type") == "flow-message"
        ] if isinstance(included, list) else []

        if not messages:
            self._record_failure(flow_action_id, "No flow messages found in response")
            return {"data": []}

        logger.info(f"[Klaviyo] Successfully extracted {len(messages)} messages for flow action {flow_action_id}")
        return {
            "data": [
                {"id": m.get("id"), "type": m.get("type"), "attributes": m.get("attributes") or {}}
                for m in messages
            ]
        }

    @staticmethod
    def _failure_reason(error: Exception) -> str:
        status = getattr(error, "status_code", None)
        if isinstance(error, NotFoundError) or status == 404:
            return "Action not found (404)"
        if isinstance(error, AuthenticationError) or status in (401, 403):
            return "Authentication or permission error"
        if isinstance(error, RateLimitError) or status == 429:
            return "Rate limit exceeded"
        message = str(error)
        if message:
            return message.split("\n")[0][:100]
        return "Unknown error"

    def _record_failure(self, flow_action_id: Optional[str], reason: str, status=None):
        logger.warning(f"[Klaviyo] Skipping flow action {flow_action_id}: {reason}")
        # One record per flow action, however often it is fetched
        if any(f.flow_action_id == flow_action_id for f in self.failed_flows):
            logger.debug(f"[Klaviyo] Failure for flow action {flow_action_id} already recorded")
            return
        self.failed_flows.append(FailedFlowRecord(
            flow_action_id=flow_action_id,
            reason=reason,
            status=status if status is not None else "unknown",
        ))

    def get_failed_flows(self) -> List[FailedFlowRecord]:
        """Failed flow actions accumulated over this client's lifetime."""
        return list(self.failed_flows)

    # --- Metrics --- #

    def get_metrics(self) -> Dict[str, Any]:
        self._pause(self.METRICS_DELAY)
        return self._request("GET", "/metrics")

    def query_metric_aggregate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST /metric-aggregates wrapped in a JSON:API envelope.

        Errors propagate; the caller decides whether a failed query aborts the flow.
        """
        logger.debug(f"[Klaviyo] Query metric aggregate payload: {payload}")
        self._pause(self.AGGREGATE_DELAY)
        try:
            return self._request("POST", "/metric-aggregates", json={
                "data": {
                    "type": "metric-aggregate",
                    "attributes": payload,
                }
            })
        except APIClientError as e:
            logger.error(f"[Klaviyo] Error querying metric aggregates: {e}. Payload was: {payload}")
            raise
