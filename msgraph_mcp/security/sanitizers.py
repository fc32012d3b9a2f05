# sanitizers.py
# - Project raw Graph records onto the fields a tool result may expose
# - Errors become {"error": ..., "code": ...}; tracebacks and paths never leave the process

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from pydantic import BaseModel, ConfigDict

from msgraph_mcp.errors import ErrorKind, GraphMCPError
from msgraph_mcp.graph.models import (
    CalendarEvent,
    PlannerBucket,
    PlannerPlan,
    PlannerTask,
    PlannerTaskDetails,
    TodoTask,
    TodoTaskList,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred"
MAX_ERROR_LENGTH = 200

# "/srv/app/db.py", "C:\\Users\\x\\file.py:12"
_PATH_RE = re.compile(r"(?:[A-Za-z]:)?(?:[\\/][\w.\-]+){2,}(?::\d+)*")


class Sanitized(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def out(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SanitizedTask(Sanitized):
    id: str
    title: Optional[str] = None
    status: Optional[str] = None
    importance: Optional[str] = None
    createdDateTime: Optional[str] = None
    lastModifiedDateTime: Optional[str] = None
    dueDateTime: Optional[str] = None
    isReminderOn: Optional[bool] = None
    body: Optional[str] = None
    categories: Optional[List[str]] = None


class SanitizedTaskList(Sanitized):
    id: str
    displayName: Optional[str] = None
    isOwner: Optional[bool] = None
    isShared: Optional[bool] = None
    wellknownListName: Optional[str] = None


class SanitizedPerson(Sanitized):
    name: Optional[str] = None
    email: Optional[str] = None


class SanitizedAttendee(SanitizedPerson):
    type: Optional[str] = None
    response: Optional[str] = None


class SanitizedEvent(Sanitized):
    id: str
    subject: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    startTimeZone: Optional[str] = None
    endTimeZone: Optional[str] = None
    location: Optional[str] = None
    organizer: Optional[SanitizedPerson] = None
    attendees: Optional[List[SanitizedAttendee]] = None
    isAllDay: Optional[bool] = None
    webLink: Optional[str] = None


class SanitizedPlannerTask(Sanitized):
    id: str
    planId: Optional[str] = None
    bucketId: Optional[str] = None
    title: Optional[str] = None
    percentComplete: int = 0
    priority: Optional[str] = None
    dueDateTime: Optional[str] = None
    startDateTime: Optional[str] = None
    createdDateTime: Optional[str] = None
    assigneeCount: int = 0


class SanitizedPlan(Sanitized):
    id: str
    title: Optional[str] = None
    createdDateTime: Optional[str] = None
    owner: Optional[str] = None
    createdBy: Optional[str] = None


class SanitizedBucket(Sanitized):
    id: str
    planId: Optional[str] = None
    name: Optional[str] = None


class SanitizedChecklistItem(Sanitized):
    title: Optional[str] = None
    isChecked: bool = False


class SanitizedReference(Sanitized):
    url: str
    alias: Optional[str] = None
    type: Optional[str] = None


class SanitizedTaskDetails(Sanitized):
    description: Optional[str] = None
    checklist: List[SanitizedChecklistItem] = []
    references: List[SanitizedReference] = []


# -----------------------------
# To Do
# -----------------------------
def sanitize_task(task: TodoTask) -> Dict[str, Any]:
    return SanitizedTask(
        id=task.id,
        title=task.title,
        status=task.status,
        importance=task.importance,
        createdDateTime=task.createdDateTime,
        lastModifiedDateTime=task.lastModifiedDateTime,
        dueDateTime=task.dueDateTime.dateTime if task.dueDateTime else None,
        isReminderOn=task.isReminderOn,
        body=task.body.content if task.body else None,
        categories=task.categories,
    ).out()


def sanitize_task_list(lst: TodoTaskList) -> Dict[str, Any]:
    return SanitizedTaskList(
        id=lst.id,
        displayName=lst.displayName,
        isOwner=lst.isOwner,
        isShared=lst.isShared,
        wellknownListName=lst.wellknownListName,
    ).out()


# -----------------------------
# Calendar
# -----------------------------
def sanitize_calendar_event(event: CalendarEvent) -> Dict[str, Any]:
    organizer = None
    if event.organizer and event.organizer.emailAddress:
        ea = event.organizer.emailAddress
        organizer = SanitizedPerson(name=ea.name, email=ea.address)

    attendees = None
    if event.attendees is not None:
        attendees = []
        for a in event.attendees:
            ea = a.emailAddress
            attendees.append(
                SanitizedAttendee(
                    name=ea.name if ea else None,
                    email=ea.address if ea else None,
                    type=a.type,
                    response=a.status.response if a.status else None,
                )
            )

    return SanitizedEvent(
        id=event.id,
        subject=event.subject,
        start=event.start.dateTime if event.start else None,
        end=event.end.dateTime if event.end else None,
        startTimeZone=event.start.timeZone if event.start else None,
        endTimeZone=event.end.timeZone if event.end else None,
        location=event.location.displayName if event.location else None,
        organizer=organizer,
        attendees=attendees,
        isAllDay=event.isAllDay,
        webLink=event.webLink,
    ).out()


# -----------------------------
# Planner
# -----------------------------
def priority_label(priority: Optional[int]) -> Optional[str]:
    """Planner priority 0..10 -> urgent/high/normal/low."""
    if priority is None:
        return None
    if priority <= 1:
        return "urgent"
    if priority <= 3:
        return "high"
    if priority <= 5:
        return "normal"
    return "low"


def sanitize_planner_task(task: PlannerTask) -> Dict[str, Any]:
    return SanitizedPlannerTask(
        id=task.id,
        planId=task.planId,
        bucketId=task.bucketId,
        title=task.title,
        percentComplete=task.percentComplete,
        priority=priority_label(task.priority),
        dueDateTime=task.dueDateTime,
        startDateTime=task.startDateTime,
        createdDateTime=task.createdDateTime,
        assigneeCount=len(task.assignments),
    ).out()


def sanitize_planner_plan(plan: PlannerPlan) -> Dict[str, Any]:
    created_by = None
    if plan.createdBy and plan.createdBy.user:
        created_by = plan.createdBy.user.displayName
    return SanitizedPlan(
        id=plan.id,
        title=plan.title,
        createdDateTime=plan.createdDateTime,
        owner=plan.owner,
        createdBy=created_by,
    ).out()


def sanitize_planner_bucket(bucket: PlannerBucket) -> Dict[str, Any]:
    return SanitizedBucket(id=bucket.id, planId=bucket.planId, name=bucket.name).out()


def sanitize_planner_task_details(details: PlannerTaskDetails) -> Dict[str, Any]:
    # reference keys are percent-encoded URLs
    return SanitizedTaskDetails(
        description=details.description,
        checklist=[
            SanitizedChecklistItem(title=item.title, isChecked=item.isChecked)
            for item in details.checklist.values()
        ],
        references=[
            SanitizedReference(url=unquote(key), alias=ref.alias, type=ref.type)
            for key, ref in details.references.items()
        ],
    ).out()


# -----------------------------
# Errors
# -----------------------------
def _scrub(message: str) -> str:
    # first line only; tracebacks follow on the next lines
    first = message.strip().splitlines()[0] if message.strip() else ""
    first = _PATH_RE.sub("[redacted]", first)
    if len(first) > MAX_ERROR_LENGTH:
        first = first[:MAX_ERROR_LENGTH] + "..."
    return first


def sanitize_error(error: Any) -> Dict[str, str]:
    """Turn anything raised during a tool call into a client-safe payload."""
    if isinstance(error, GraphMCPError):
        kind: ErrorKind = error.kind
        return {"error": _scrub(error.message) or GENERIC_ERROR_MESSAGE, "code": kind.value}
    if isinstance(error, BaseException):
        logger.debug("sanitizing unexpected error type=%s", type(error).__name__)
        return {"error": _scrub(str(error)) or GENERIC_ERROR_MESSAGE}
    return {"error": GENERIC_ERROR_MESSAGE}
