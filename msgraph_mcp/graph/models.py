from __future__ import annotations
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GraphModel(BaseModel):
    """Subset of a Graph JSON resource; unknown fields are dropped on parse."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class DateTimeTimeZone(GraphModel):
    dateTime: str
    timeZone: Optional[str] = None


class ItemBody(GraphModel):
    content: Optional[str] = None
    contentType: Optional[str] = None


# -----------------------------
# To Do
# -----------------------------
class TodoTaskList(GraphModel):
    id: str
    displayName: Optional[str] = None
    isOwner: Optional[bool] = None
    isShared: Optional[bool] = None
    wellknownListName: Optional[str] = None


class TodoTask(GraphModel):
    id: str
    title: Optional[str] = None
    status: Optional[str] = None
    importance: Optional[str] = None
    createdDateTime: Optional[str] = None
    lastModifiedDateTime: Optional[str] = None
    dueDateTime: Optional[DateTimeTimeZone] = None
    reminderDateTime: Optional[DateTimeTimeZone] = None
    isReminderOn: Optional[bool] = None
    body: Optional[ItemBody] = None
    categories: Optional[List[str]] = None
    etag: Optional[str] = Field(default=None, alias="@odata.etag")


# -----------------------------
# Calendar
# -----------------------------
class EmailAddress(GraphModel):
    name: Optional[str] = None
    address: Optional[str] = None


class Recipient(GraphModel):
    emailAddress: Optional[EmailAddress] = None


class ResponseStatus(GraphModel):
    response: Optional[str] = None


class Attendee(GraphModel):
    emailAddress: Optional[EmailAddress] = None
    type: Optional[str] = None
    status: Optional[ResponseStatus] = None


class Location(GraphModel):
    displayName: Optional[str] = None


class CalendarEvent(GraphModel):
    id: str
    subject: Optional[str] = None
    start: Optional[DateTimeTimeZone] = None
    end: Optional[DateTimeTimeZone] = None
    location: Optional[Location] = None
    organizer: Optional[Recipient] = None
    attendees: Optional[List[Attendee]] = None
    isAllDay: Optional[bool] = None
    webLink: Optional[str] = None


# -----------------------------
# Planner
# -----------------------------
class Identity(GraphModel):
    id: Optional[str] = None
    displayName: Optional[str] = None


class IdentitySet(GraphModel):
    user: Optional[Identity] = None


class PlannerPlan(GraphModel):
    id: str
    title: Optional[str] = None
    createdDateTime: Optional[str] = None
    owner: Optional[str] = None
    createdBy: Optional[IdentitySet] = None
    etag: Optional[str] = Field(default=None, alias="@odata.etag")


class PlannerTask(GraphModel):
    id: str
    planId: Optional[str] = None
    bucketId: Optional[str] = None
    title: Optional[str] = None
    percentComplete: int = 0
    priority: Optional[int] = None
    dueDateTime: Optional[str] = None
    startDateTime: Optional[str] = None
    createdDateTime: Optional[str] = None
    assignments: Dict[str, Any] = Field(default_factory=dict)
    orderHint: Optional[str] = None
    etag: Optional[str] = Field(default=None, alias="@odata.etag")


class PlannerBucket(GraphModel):
    id: str
    planId: Optional[str] = None
    name: Optional[str] = None
    orderHint: Optional[str] = None
    etag: Optional[str] = Field(default=None, alias="@odata.etag")


class PlannerChecklistItem(GraphModel):
    title: Optional[str] = None
    isChecked: bool = False
    orderHint: Optional[str] = None


class PlannerExternalReference(GraphModel):
    alias: Optional[str] = None
    type: Optional[str] = None
    previewPriority: Optional[str] = None


class PlannerTaskDetails(GraphModel):
    id: Optional[str] = None
    description: Optional[str] = None
    checklist: Dict[str, PlannerChecklistItem] = Field(default_factory=dict)
    references: Dict[str, PlannerExternalReference] = Field(default_factory=dict)
    etag: Optional[str] = Field(default=None, alias="@odata.etag")


def collection(data: Any) -> List[Dict[str, Any]]:
    """Items of a Graph collection response ({"value": [...]})."""
    if not isinstance(data, dict):
        return []
    return data.get("value") or []
