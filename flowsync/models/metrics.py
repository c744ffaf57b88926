from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


class Metric(BaseModel):
    """
    A named event type tracked by Klaviyo (e.g. "Opened Email").

    Metrics are matched to flows heuristically, there is no foreign key.
    """
    id: str
    name: str = ""
    integration: Optional[str] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "Metric":
        attributes = item.get("attributes") or {}
        integration = attributes.get("integration")
        # JSON:API metrics carry an integration object, older payloads a plain string
        if isinstance(integration, dict):
            integration = integration.get("name") or integration.get("key")
        return cls(
            id=str(item.get("id", "")),
            name=attributes.get("name") or "",
            integration=integration,
            created=attributes.get("created"),
            updated=attributes.get("updated"),
        )


def year_filter(year: int) -> str:
    """Klaviyo filter string covering one calendar year."""
    return f"greater_or_equal(datetime,{year}-01-01),less_or_equal(datetime,{year}-12-31)"


class MetricAggregateQuery(BaseModel):
    """Request body attributes for POST /metric-aggregates."""
    metric_id: List[str]
    interval: str = "day"
    measurements: List[str] = Field(default_factory=lambda: ["count"])
    timezone: str = "UTC"
    filter: str

    @classmethod
    def for_year(cls, metric_ids: List[str], year: int) -> "MetricAggregateQuery":
        return cls(metric_id=list(metric_ids), filter=year_filter(year))

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump()


class MetricAggregateResult(BaseModel):
    """Measurement buckets returned by a metric aggregate query."""
    data: List[Dict[str, Any]] = Field(default_factory=list)
    dates: List[str] = Field(default_factory=list)

    @classmethod
    def from_response(cls, response: Dict[str, Any]) -> "MetricAggregateResult":
        """Reads `data.attributes.{data,dates}`; anything malformed yields no buckets."""
        data = response.get("data") if isinstance(response, dict) else None
        attributes = data.get("attributes") if isinstance(data, dict) else None
        if not isinstance(attributes, dict):
            return cls()
        buckets = attributes.get("data")
        dates = attributes.get("dates")
        return cls(
            data=[b for b in buckets if isinstance(b, dict)] if isinstance(buckets, list) else [],
            dates=[str(d) for d in dates] if isinstance(dates, list) else [],
        )

    def total(self, measurement: str = "count") -> float:
        """Sums every value of `measurement` across all buckets, treating gaps as 0."""
        total = 0
        for bucket in self.data:
            measurements = bucket.get("measurements")
            if not isinstance(measurements, dict):
                continue
            values = measurements.get(measurement)
            if not isinstance(values, list):
                continue
            total += sum(v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool))
        return total
