import logging
from datetime import datetime
from typing import Dict, Any, Iterable, List, Optional

from ..models.flow import Flow, FlowStatus
from ..models.metrics import Metric
from ..models.sync import FailedFlowRecord, utc_timestamp

logger = logging.getLogger(__name__)


def count_growth(current_count: float, previous_count: float) -> float:
    """
    Percentage growth from the previous period to the current one.

    Returns 0 when there is no previous data, never inf/NaN.
    """
    if previous_count > 0:
        return ((current_count - previous_count) / previous_count) * 100
    return 0


def metrics_for_flow(flow_id: str, metrics: Iterable[Metric], metric_ids: Optional[Iterable[str]] = None) -> List[Metric]:
    """
    Picks the metrics to aggregate for a flow.

    With an explicit `metric_ids` filter only those metrics are used; otherwise
    metrics whose name contains the flow id are matched.
    """
    if metric_ids is not None:
        wanted = set(metric_ids)
        return [m for m in metrics if m.id in wanted]
    return [m for m in metrics if m.name and flow_id in m.name]


def _iso(value: Optional[datetime]) -> str:
    if value is None:
        return utc_timestamp()
    return value.isoformat().replace("+00:00", "Z")


def status_column(flow: Flow) -> str:
    """The enum value, or Klaviyo's own status when the enum has no member for it."""
    if flow.status is FlowStatus.UNKNOWN and flow.raw_status:
        return flow.raw_status
    return flow.status.value


def flow_to_airtable_record(
    flow: Flow,
    current_count: float,
    previous_count: float,
    message_count: int,
    action_count: int,
    metric_count: int,
) -> Dict[str, Any]:
    """
    Converts an enriched flow into a record for the Airtable "Flows" table.

    Returns:
        Dictionary with a single `fields` key, keyed by Airtable column name.
    """
    return {
        "fields": {
            "Flow ID": flow.id,
            "Flow Name": flow.name or "Unnamed Flow",
            "Status": status_column(flow),
            "Trigger Type": flow.trigger_type or "unknown",
            "Created At": _iso(flow.created),
            "Updated At": _iso(flow.updated),
            "Current Period Count": current_count,
            "Previous Period Count": previous_count,
            "Count Growth %": count_growth(current_count, previous_count),
            "Message Count": message_count,
            "Action Count": action_count,
            "Metric Count": metric_count,
        }
    }


def failed_flow_to_airtable_record(failed: FailedFlowRecord) -> Dict[str, Any]:
    """Converts a failed flow action into a record for the "Failed_Flows" table."""
    return {
        "fields": {
            "Flow Action ID": failed.flow_action_id or "",
            "Error Reason": failed.reason,
            "Status Code": str(failed.status) if failed.status is not None else "unknown",
            "Timestamp": failed.timestamp or utc_timestamp(),
            "Is Error": True,
        }
    }
