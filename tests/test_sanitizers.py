"""Result projections and client-safe error payloads."""

from __future__ import annotations

import pytest

from msgraph_mcp.errors import AuthenticationError, GraphAPIError, RateLimitError, ValidationError
from msgraph_mcp.graph.models import CalendarEvent, PlannerBucket, PlannerPlan, PlannerTask, PlannerTaskDetails, TodoTask, TodoTaskList
from msgraph_mcp.security.sanitizers import (
    GENERIC_ERROR_MESSAGE,
    priority_label,
    sanitize_calendar_event,
    sanitize_error,
    sanitize_planner_bucket,
    sanitize_planner_plan,
    sanitize_planner_task,
    sanitize_planner_task_details,
    sanitize_task,
    sanitize_task_list,
)


class TestTodoProjection:
    def test_task_flattens_due_and_body_and_drops_unknown_fields(self):
        task = TodoTask.model_validate(
            {
                "@odata.etag": 'W/"abc"',
                "id": "t1",
                "title": "Pay rent",
                "status": "notStarted",
                "importance": "high",
                "dueDateTime": {"dateTime": "2025-06-01T00:00:00.0000000", "timeZone": "UTC"},
                "body": {"content": "monthly", "contentType": "text"},
                "linkedResources": [{"webUrl": "https://example.com"}],
                "categories": ["home"],
            }
        )
        out = sanitize_task(task)
        assert out == {
            "id": "t1",
            "title": "Pay rent",
            "status": "notStarted",
            "importance": "high",
            "dueDateTime": "2025-06-01T00:00:00.0000000",
            "body": "monthly",
            "categories": ["home"],
        }

    def test_task_without_optional_fields(self):
        assert sanitize_task(TodoTask(id="t2")) == {"id": "t2"}

    def test_task_list(self):
        lst = TodoTaskList.model_validate(
            {"id": "l1", "displayName": "Tasks", "isOwner": True, "isShared": False, "wellknownListName": "defaultList", "extra": 1}
        )
        assert sanitize_task_list(lst) == {
            "id": "l1",
            "displayName": "Tasks",
            "isOwner": True,
            "isShared": False,
            "wellknownListName": "defaultList",
        }


class TestCalendarProjection:
    def test_event_flattens_people_and_times(self):
        event = CalendarEvent.model_validate(
            {
                "id": "e1",
                "subject": "Standup",
                "start": {"dateTime": "2025-06-01T09:00:00.0000000", "timeZone": "UTC"},
                "end": {"dateTime": "2025-06-01T09:15:00.0000000", "timeZone": "UTC"},
                "location": {"displayName": "Room 1", "address": {"street": "hidden"}},
                "organizer": {"emailAddress": {"name": "Ana", "address": "ana@example.com"}},
                "attendees": [
                    {"emailAddress": {"name": "Bo", "address": "bo@example.com"}, "type": "required", "status": {"response": "accepted", "time": "x"}},
                ],
                "isAllDay": False,
                "webLink": "https://outlook.office.com/e1",
                "body": {"content": "<html>secret</html>"},
            }
        )
        out = sanitize_calendar_event(event)
        assert out["start"] == "2025-06-01T09:00:00.0000000"
        assert out["startTimeZone"] == "UTC"
        assert out["endTimeZone"] == "UTC"
        assert out["location"] == "Room 1"
        assert out["organizer"] == {"name": "Ana", "email": "ana@example.com"}
        assert out["attendees"] == [{"name": "Bo", "email": "bo@example.com", "type": "required", "response": "accepted"}]
        assert out["isAllDay"] is False
        assert "body" not in out

    def test_event_with_empty_attendees_keeps_empty_list(self):
        out = sanitize_calendar_event(CalendarEvent(id="e2", attendees=[]))
        assert out == {"id": "e2", "attendees": []}


class TestPlannerProjection:
    @pytest.mark.parametrize(
        "priority,label",
        [(0, "urgent"), (1, "urgent"), (2, "high"), (3, "high"), (5, "normal"), (6, "low"), (9, "low"), (None, None)],
    )
    def test_priority_label(self, priority, label):
        assert priority_label(priority) == label

    def test_task_counts_assignees_and_hides_ids(self):
        task = PlannerTask.model_validate(
            {
                "@odata.etag": 'W/"1"',
                "id": "p1",
                "planId": "plan",
                "bucketId": "b",
                "title": "Ship",
                "percentComplete": 50,
                "priority": 3,
                "assignments": {"user-a": {}, "user-b": {}},
                "orderHint": "8585",
            }
        )
        out = sanitize_planner_task(task)
        assert out["priority"] == "high"
        assert out["assigneeCount"] == 2
        assert "assignments" not in out
        assert "orderHint" not in out

    def test_plan_created_by_is_display_name(self):
        plan = PlannerPlan.model_validate(
            {"id": "plan", "title": "Q3", "owner": "group-1", "createdBy": {"user": {"id": "u1", "displayName": "Ana"}}}
        )
        assert sanitize_planner_plan(plan) == {"id": "plan", "title": "Q3", "owner": "group-1", "createdBy": "Ana"}

    def test_bucket(self):
        bucket = PlannerBucket.model_validate({"id": "b", "planId": "plan", "name": "Doing", "orderHint": "x"})
        assert sanitize_planner_bucket(bucket) == {"id": "b", "planId": "plan", "name": "Doing"}

    def test_details_unquote_reference_urls(self):
        details = PlannerTaskDetails.model_validate(
            {
                "description": "notes",
                "checklist": {"c1": {"title": "step", "isChecked": True, "orderHint": "1"}},
                "references": {"https%3A//example%2Ecom/doc": {"alias": "Doc", "type": "Other"}},
            }
        )
        out = sanitize_planner_task_details(details)
        assert out["checklist"] == [{"title": "step", "isChecked": True}]
        assert out["references"] == [{"url": "https://example.com/doc", "alias": "Doc", "type": "Other"}]


class TestSanitizeError:
    @pytest.mark.parametrize(
        "error,code",
        [
            (ValidationError("Invalid Task ID format"), "ValidationError"),
            (AuthenticationError("Authentication token invalid or expired"), "AuthenticationError"),
            (GraphAPIError("Graph API request failed with status 404", 404), "GraphAPIError"),
        ],
    )
    def test_known_errors_keep_message_and_kind(self, error, code):
        assert sanitize_error(error) == {"error": error.message, "code": code}

    def test_rate_limit_does_not_leak_internal_fields(self):
        out = sanitize_error(RateLimitError("Rate limit exceeded. Please wait 3 seconds.", 2500))
        assert out == {"error": "Rate limit exceeded. Please wait 3 seconds.", "code": "RateLimitError"}

    def test_generic_error_drops_traceback_and_paths(self):
        err = RuntimeError(
            'boom in /srv/app/msgraph_mcp/tools.py:120\nTraceback (most recent call last):\n  File "/srv/app/x.py"'
        )
        out = sanitize_error(err)
        assert out == {"error": "boom in [redacted]"}

    def test_windows_paths_are_redacted(self):
        out = sanitize_error(OSError(r"cannot open C:\Users\ana\tokens.json"))
        assert "Users" not in out["error"]
        assert "[redacted]" in out["error"]

    def test_long_messages_are_truncated(self):
        out = sanitize_error(ValueError("x" * 500))
        assert out["error"] == "x" * 200 + "..."

    def test_empty_message_and_non_exceptions_become_generic(self):
        assert sanitize_error(RuntimeError()) == {"error": GENERIC_ERROR_MESSAGE}
        assert sanitize_error("not an exception") == {"error": GENERIC_ERROR_MESSAGE}
        assert sanitize_error(None) == {"error": GENERIC_ERROR_MESSAGE}

    def test_known_errors_are_scrubbed_too(self):
        err = GraphAPIError("failed\n  at Object.<anonymous> (/internal/path/db.ts:123:5)")
        out = sanitize_error(err)
        assert out == {"error": "failed", "code": "GraphAPIError"}
        assert "/internal/path" not in str(out)

    def test_known_error_path_on_first_line_is_redacted(self):
        out = sanitize_error(ValidationError("cannot read /etc/msgraph/tokens.json"))
        assert out == {"error": "cannot read [redacted]", "code": "ValidationError"}
