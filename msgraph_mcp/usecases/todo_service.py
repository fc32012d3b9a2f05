import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from msgraph_mcp.errors import GraphAPIError, ValidationError
from msgraph_mcp.graph.client import GraphClient
from msgraph_mcp.graph.models import TodoTask, TodoTaskList, collection
from msgraph_mcp.security.validators import (
    parse_iso_datetime,
    validate_due_date,
    validate_importance,
    validate_list_id,
    validate_odata_filter,
    validate_search_query,
    validate_task_id,
    validate_title,
)

logger = logging.getLogger(__name__)

INCOMPLETE_FILTER = "status ne 'completed'"
STATUS_VALUES = ("notStarted", "inProgress", "completed")

# distinguishes "leave dueDateTime alone" from "clear it" (None)
UNSET: Any = object()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _due(task: TodoTask) -> Optional[datetime]:
    if not task.dueDateTime or not task.dueDateTime.dateTime:
        return None
    try:
        return parse_iso_datetime(task.dueDateTime.dateTime)
    except ValueError:
        return None


def _graph_due(value: str, now: datetime) -> Dict[str, str]:
    dt = validate_due_date(value, now=now).astimezone(timezone.utc)
    return {"dateTime": dt.isoformat().replace("+00:00", "Z"), "timeZone": "UTC"}


class TodoService:
    """Microsoft To Do lists and tasks (/me/todo)."""

    def __init__(self, client: GraphClient, *, now: Callable[[], datetime] = utc_now):
        self.client = client
        self._now = now

    # Lists
    async def get_task_lists(self) -> List[TodoTaskList]:
        data = await self.client.get("/me/todo/lists")
        lists = [TodoTaskList.model_validate(x) for x in collection(data)]
        logger.info("task lists retrieved count=%s", len(lists))
        return lists

    async def get_task_list(self, list_id: str) -> TodoTaskList:
        list_id = validate_list_id(list_id)
        return TodoTaskList.model_validate(await self.client.get(f"/me/todo/lists/{list_id}"))

    async def _default_list_id(self) -> str:
        lists = await self.get_task_lists()
        for lst in lists:
            if lst.wellknownListName == "defaultList":
                return lst.id
        if lists:
            logger.warning("default list not found, using first list")
            return lists[0].id
        raise GraphAPIError("No task lists found")

    # Tasks
    async def get_tasks(
        self,
        list_id: Optional[str] = None,
        *,
        filter: Optional[str] = None,
        top: Optional[int] = None,
        order_by: Optional[str] = None,
    ) -> List[TodoTask]:
        effective = list_id if list_id is not None else await self._default_list_id()
        effective = validate_list_id(effective)
        validate_odata_filter(filter)

        params: Dict[str, str] = {}
        if filter:
            params["$filter"] = filter
        if top:
            params["$top"] = str(top)
        if order_by:
            params["$orderby"] = order_by

        data = await self.client.get(f"/me/todo/lists/{effective}/tasks", query_params=params or None)
        tasks = [TodoTask.model_validate(x) for x in collection(data)]
        logger.info("tasks retrieved count=%s filtered=%s", len(tasks), bool(filter))
        return tasks

    async def get_task(self, list_id: str, task_id: str) -> TodoTask:
        list_id = validate_list_id(list_id)
        task_id = validate_task_id(task_id)
        return TodoTask.model_validate(await self.client.get(f"/me/todo/lists/{list_id}/tasks/{task_id}"))

    async def search_tasks(self, query: str, *, top: Optional[int] = None) -> List[TodoTask]:
        q = validate_search_query(query).lower()
        lists = await self.get_task_lists()
        found: List[TodoTask] = []
        for lst in lists:
            try:
                tasks = await self.get_tasks(lst.id, top=top)
            except Exception as e:
                logger.warning("search skipped a list err=%s", type(e).__name__)
                continue
            found.extend(t for t in tasks if q in (t.title or "").lower())
        logger.info("task search done results=%s lists=%s", len(found), len(lists))
        return found

    async def _all_incomplete(self) -> List[TodoTask]:
        lists = await self.get_task_lists()
        out: List[TodoTask] = []
        for lst in lists:
            try:
                out.extend(await self.get_tasks(lst.id, filter=INCOMPLETE_FILTER))
            except Exception as e:
                logger.warning("incomplete tasks skipped a list err=%s", type(e).__name__)
        return out

    async def _incomplete(self, list_id: Optional[str]) -> List[TodoTask]:
        if list_id:
            return await self.get_tasks(list_id, filter=INCOMPLETE_FILTER)
        return await self._all_incomplete()

    async def get_incomplete_tasks(self, list_id: Optional[str] = None, top: int = 50) -> List[TodoTask]:
        return await self.get_tasks(list_id, filter=INCOMPLETE_FILTER, top=top)

    async def get_completed_tasks(self, list_id: Optional[str] = None, top: int = 50) -> List[TodoTask]:
        return await self.get_tasks(
            list_id, filter="status eq 'completed'", top=top, order_by="lastModifiedDateTime desc"
        )

    async def get_high_priority_tasks(self, list_id: Optional[str] = None, top: int = 50) -> List[TodoTask]:
        return await self.get_tasks(
            list_id,
            filter="importance eq 'high' and status ne 'completed'",
            top=top,
            order_by="dueDateTime asc",
        )

    async def _due_between(
        self, list_id: Optional[str], start: Optional[datetime], end: Optional[datetime]
    ) -> List[TodoTask]:
        hits = []
        for t in await self._incomplete(list_id):
            due = _due(t)
            if due is None:
                continue
            if (start is None or due >= start) and (end is None or due < end):
                hits.append((due, t))
        hits.sort(key=lambda pair: pair[0])
        return [t for _, t in hits]

    async def get_tasks_due_today(self, list_id: Optional[str] = None) -> List[TodoTask]:
        today = start_of_day(self._now())
        return await self._due_between(list_id, today, today + timedelta(days=1))

    async def get_tasks_overdue(self, list_id: Optional[str] = None) -> List[TodoTask]:
        return await self._due_between(list_id, None, start_of_day(self._now()))

    async def get_tasks_due_this_week(self, list_id: Optional[str] = None) -> List[TodoTask]:
        today = start_of_day(self._now())
        return await self._due_between(list_id, today, today + timedelta(days=7))

    async def get_tasks_due_later(self, list_id: Optional[str] = None) -> List[TodoTask]:
        """Due a week or more from today, then tasks with no due date."""
        next_week = start_of_day(self._now()) + timedelta(days=7)
        dated, undated = [], []
        for t in await self._incomplete(list_id):
            due = _due(t)
            if due is None:
                undated.append(t)
            elif due >= next_week:
                dated.append((due, t))
        dated.sort(key=lambda pair: pair[0])
        return [t for _, t in dated] + undated

    # Writes
    async def create_task(
        self,
        list_id: Optional[str],
        title: str,
        *,
        due_date_time: Optional[str] = None,
        importance: Optional[str] = None,
        body: Optional[str] = None,
    ) -> TodoTask:
        effective = validate_list_id(list_id if list_id is not None else await self._default_list_id())
        payload: Dict[str, Any] = {"title": validate_title(title)}
        if due_date_time:
            payload["dueDateTime"] = _graph_due(due_date_time, self._now())
        if importance:
            payload["importance"] = validate_importance(importance)
        if body:
            payload["body"] = {"content": body, "contentType": "text"}

        data = await self.client.post(f"/me/todo/lists/{effective}/tasks", payload)
        task = TodoTask.model_validate(data)
        logger.info("task created")
        return task

    async def update_task(
        self,
        list_id: str,
        task_id: str,
        *,
        title: Optional[str] = None,
        due_date_time: Any = UNSET,
        importance: Optional[str] = None,
        status: Optional[str] = None,
        body: Optional[str] = None,
    ) -> TodoTask:
        list_id = validate_list_id(list_id)
        task_id = validate_task_id(task_id)

        payload: Dict[str, Any] = {}
        if title is not None:
            payload["title"] = validate_title(title)
        if status is not None:
            if status not in STATUS_VALUES:
                raise ValidationError(f"Invalid status: {status}. Allowed: {', '.join(STATUS_VALUES)}")
            payload["status"] = status
        if importance is not None:
            payload["importance"] = validate_importance(importance)
        if due_date_time is None:
            payload["dueDateTime"] = None
        elif due_date_time is not UNSET:
            payload["dueDateTime"] = _graph_due(due_date_time, self._now())
        if body is not None:
            payload["body"] = {"content": body, "contentType": "text"}

        data = await self.client.patch(f"/me/todo/lists/{list_id}/tasks/{task_id}", payload)
        logger.info("task updated fields=%s", sorted(payload))
        return TodoTask.model_validate(data or {"id": task_id})

    async def complete_task(self, list_id: str, task_id: str) -> TodoTask:
        return await self.update_task(list_id, task_id, status="completed")

    async def uncomplete_task(self, list_id: str, task_id: str) -> TodoTask:
        return await self.update_task(list_id, task_id, status="notStarted")

    async def delete_task(self, list_id: str, task_id: str) -> None:
        list_id = validate_list_id(list_id)
        task_id = validate_task_id(task_id)
        await self.client.delete(f"/me/todo/lists/{list_id}/tasks/{task_id}")
        logger.info("task deleted")

    async def create_task_list(self, display_name: str) -> TodoTaskList:
        name = validate_title(display_name, "List name")
        data = await self.client.post("/me/todo/lists", {"displayName": name})
        logger.info("task list created")
        return TodoTaskList.model_validate(data)

    async def delete_task_list(self, list_id: str) -> None:
        list_id = validate_list_id(list_id)
        await self.client.delete(f"/me/todo/lists/{list_id}")
        logger.info("task list deleted")
