from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import BaseModel, Field


def utc_timestamp() -> str:
    """Current UTC time as an ISO-8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class FailedFlowRecord(BaseModel):
    """A flow action whose messages could not be fetched. Reported, never retried."""
    flow_action_id: Optional[str] = None
    reason: str
    status: Union[int, str] = "unknown"
    timestamp: str = Field(default_factory=utc_timestamp)


class FlowError(BaseModel):
    """A flow whose enrichment failed and was skipped."""
    flow_id: str = Field(..., serialization_alias="flowId")
    error: str


class SyncMetricsSummary(BaseModel):
    total_metrics: int = Field(0, serialization_alias="totalMetrics")
    total_messages: int = Field(0, serialization_alias="totalMessages")
    total_failed_flows: int = Field(0, serialization_alias="totalFailedFlows")


class SyncReport(BaseModel):
    """Outcome of one sync run, including partial failures."""
    success: bool = True
    flows_processed: int = Field(0, serialization_alias="flowsProcessed")
    flows_created: int = Field(0, serialization_alias="flowsCreated")
    flows_with_errors: int = Field(0, serialization_alias="flowsWithErrors")
    failed_flows_reported: int = Field(0, serialization_alias="failedFlowsReported")
    flow_errors: List[FlowError] = Field(default_factory=list, serialization_alias="flowErrors")
    metrics: SyncMetricsSummary = Field(default_factory=SyncMetricsSummary)

    def to_api_dict(self) -> dict:
        """camelCase dictionary for callers of the sync trigger."""
        return self.model_dump(by_alias=True)
