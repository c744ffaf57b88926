from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class FlowStatus(str, Enum):
    ACTIVE = "active"
    DRAFT = "draft"
    ARCHIVED = "archived"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "FlowStatus":
        """Maps any status string from Klaviyo onto the enum, falling back to UNKNOWN."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.UNKNOWN


def _attributes(item: Dict[str, Any]) -> Dict[str, Any]:
    attributes = item.get("attributes") if isinstance(item, dict) else None
    return attributes if isinstance(attributes, dict) else {}


class Flow(BaseModel):
    """An automation sequence in Klaviyo. Read-only once fetched."""
    id: str
    name: str = "Unnamed Flow"
    status: FlowStatus = FlowStatus.UNKNOWN
    raw_status: Optional[str] = None  # as sent by Klaviyo, e.g. "live" or "manual"
    trigger_type: str = "unknown"
    archived: bool = False
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value):
        return FlowStatus.parse(value)

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "Flow":
        """Builds a Flow from a JSON:API `flow` resource object."""
        attributes = _attributes(item)
        return cls(
            id=str(item.get("id", "")),
            name=attributes.get("name") or "Unnamed Flow",
            status=attributes.get("status"),
            raw_status=attributes.get("status") if isinstance(attributes.get("status"), str) else None,
            trigger_type=attributes.get("trigger_type") or "unknown",
            archived=bool(attributes.get("archived", False)),
            created=attributes.get("created"),
            updated=attributes.get("updated"),
        )

    class Config:
        frozen = True


class FlowAction(BaseModel):
    """A step within a flow. References its flow by id only."""
    id: str
    flow_id: str
    name: str = "Unnamed Action"
    action_type: str = "unknown"
    status: Optional[str] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any], flow_id: str) -> "FlowAction":
        attributes = _attributes(item)
        return cls(
            id=str(item.get("id", "")),
            flow_id=flow_id,
            name=attributes.get("name") or "Unnamed Action",
            action_type=attributes.get("action_type") or "unknown",
            status=attributes.get("status"),
            created=attributes.get("created"),
            updated=attributes.get("updated"),
        )

    class Config:
        frozen = True


class FlowMessage(BaseModel):
    """A concrete communication (email, sms...) emitted by a flow action."""
    id: str
    flow_action_id: str
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @property
    def name(self) -> Optional[str]:
        return self.attributes.get("name")

    @property
    def channel(self) -> Optional[str]:
        return self.attributes.get("channel")

    @property
    def subject_line(self) -> Optional[str]:
        content = self.attributes.get("content")
        if isinstance(content, dict) and content.get("subject"):
            return content["subject"]
        return self.attributes.get("subject_line")

    @property
    def status(self) -> Optional[str]:
        return self.attributes.get("status")

    @classmethod
    def from_api(cls, item: Dict[str, Any], flow_action_id: str) -> "FlowMessage":
        return cls(id=str(item.get("id", "")), flow_action_id=flow_action_id, attributes=_attributes(item))
