import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from msgraph_mcp.errors import GraphAPIError, ValidationError
from msgraph_mcp.graph.client import GraphClient
from msgraph_mcp.graph.models import PlannerBucket, PlannerPlan, PlannerTask, PlannerTaskDetails, collection
from msgraph_mcp.security.validators import (
    validate_bucket_id,
    validate_due_date,
    validate_group_id,
    validate_percent_complete,
    validate_plan_id,
    validate_task_id,
    validate_title,
    validate_user_id,
)
from msgraph_mcp.usecases.todo_service import UNSET, utc_now

logger = logging.getLogger(__name__)

# Planner stores priority as 0..10; these are the values the web UI writes
PRIORITY_CODES = {"urgent": 1, "high": 3, "normal": 5, "low": 9}


def priority_code(name: str) -> int:
    try:
        return PRIORITY_CODES[name]
    except KeyError:
        raise ValidationError(f"Invalid priority: {name}. Allowed: {', '.join(PRIORITY_CODES)}")


def _planner_date(value: str, now: datetime) -> str:
    dt = validate_due_date(value, now=now).astimezone(timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


class PlannerService:
    """Planner plans, buckets and tasks. Writes need the task's etag (If-Match)."""

    def __init__(self, client: GraphClient, *, now: Callable[[], datetime] = utc_now):
        self.client = client
        self._now = now

    # Reads
    async def get_my_tasks(self, *, top: Optional[int] = None) -> List[PlannerTask]:
        params = {"$top": str(top)} if top else None
        data = await self.client.get("/me/planner/tasks", query_params=params)
        tasks = [PlannerTask.model_validate(x) for x in collection(data)]
        logger.info("planner tasks retrieved count=%s", len(tasks))
        return tasks

    # $top would cut before the completion filter; limit afterwards
    async def get_incomplete_tasks(self, top: Optional[int] = 50) -> List[PlannerTask]:
        tasks = [t for t in await self.get_my_tasks() if t.percentComplete < 100]
        return tasks[:top] if top else tasks

    async def get_completed_tasks(self, top: Optional[int] = 50) -> List[PlannerTask]:
        tasks = [t for t in await self.get_my_tasks() if t.percentComplete == 100]
        return tasks[:top] if top else tasks

    async def get_plan(self, plan_id: str) -> PlannerPlan:
        plan_id = validate_plan_id(plan_id)
        return PlannerPlan.model_validate(await self.client.get(f"/planner/plans/{plan_id}"))

    async def get_plan_tasks(
        self, plan_id: str, *, bucket_id: Optional[str] = None, top: Optional[int] = None
    ) -> List[PlannerTask]:
        plan_id = validate_plan_id(plan_id)
        if bucket_id:
            bucket_id = validate_bucket_id(bucket_id)
        params = {"$top": str(top)} if top else None
        data = await self.client.get(f"/planner/plans/{plan_id}/tasks", query_params=params)
        tasks = [PlannerTask.model_validate(x) for x in collection(data)]
        if bucket_id:
            tasks = [t for t in tasks if t.bucketId == bucket_id]
        logger.info("plan tasks retrieved count=%s", len(tasks))
        return tasks

    async def get_plan_buckets(self, plan_id: str) -> List[PlannerBucket]:
        plan_id = validate_plan_id(plan_id)
        data = await self.client.get(f"/planner/plans/{plan_id}/buckets")
        return [PlannerBucket.model_validate(x) for x in collection(data)]

    async def get_task(self, task_id: str) -> PlannerTask:
        task_id = validate_task_id(task_id)
        return PlannerTask.model_validate(await self.client.get(f"/planner/tasks/{task_id}"))

    async def get_task_details(self, task_id: str) -> PlannerTaskDetails:
        task_id = validate_task_id(task_id)
        return PlannerTaskDetails.model_validate(await self.client.get(f"/planner/tasks/{task_id}/details"))

    async def get_group_plans(self, group_id: str) -> List[PlannerPlan]:
        group_id = validate_group_id(group_id)
        data = await self.client.get(f"/groups/{group_id}/planner/plans")
        return [PlannerPlan.model_validate(x) for x in collection(data)]

    async def get_etag(self, task_id: str) -> str:
        task = await self.get_task(task_id)
        if not task.etag:
            raise GraphAPIError("Unable to update task: etag not found")
        return task.etag

    # Writes
    async def create_task(
        self,
        plan_id: str,
        bucket_id: str,
        title: str,
        *,
        due_date_time: Optional[str] = None,
        priority: Optional[int] = None,
        assignments: Optional[List[str]] = None,
    ) -> PlannerTask:
        payload: Dict[str, Any] = {
            "planId": validate_plan_id(plan_id),
            "bucketId": validate_bucket_id(bucket_id),
            "title": validate_title(title),
        }
        if due_date_time:
            payload["dueDateTime"] = _planner_date(due_date_time, self._now())
        if priority is not None:
            payload["priority"] = priority
        if assignments:
            payload["assignments"] = {
                validate_user_id(user_id): {
                    "@odata.type": "#microsoft.graph.plannerAssignment",
                    "orderHint": " !",
                }
                for user_id in assignments
            }

        data = await self.client.post("/planner/tasks", payload)
        logger.info("planner task created")
        return PlannerTask.model_validate(data)

    async def update_task(
        self,
        task_id: str,
        etag: str,
        *,
        title: Optional[str] = None,
        due_date_time: Any = UNSET,
        priority: Optional[int] = None,
        percent_complete: Optional[int] = None,
        bucket_id: Optional[str] = None,
    ) -> PlannerTask:
        task_id = validate_task_id(task_id)
        payload: Dict[str, Any] = {}
        if title is not None:
            payload["title"] = validate_title(title)
        if priority is not None:
            payload["priority"] = priority
        if percent_complete is not None:
            payload["percentComplete"] = validate_percent_complete(percent_complete)
        if bucket_id is not None:
            payload["bucketId"] = validate_bucket_id(bucket_id)
        if due_date_time is None:
            payload["dueDateTime"] = None
        elif due_date_time is not UNSET:
            payload["dueDateTime"] = _planner_date(due_date_time, self._now())

        await self.client.patch(f"/planner/tasks/{task_id}", payload, headers={"If-Match": etag})
        logger.info("planner task updated fields=%s", sorted(payload))
        # Planner answers 204; read back the new state
        return await self.get_task(task_id)

    async def complete_task(self, task_id: str, etag: str) -> PlannerTask:
        return await self.update_task(task_id, etag, percent_complete=100)

    async def uncomplete_task(self, task_id: str, etag: str) -> PlannerTask:
        return await self.update_task(task_id, etag, percent_complete=0)

    async def move_task(self, task_id: str, etag: str, bucket_id: str) -> PlannerTask:
        return await self.update_task(task_id, etag, bucket_id=bucket_id)

    async def delete_task(self, task_id: str, etag: str) -> None:
        task_id = validate_task_id(task_id)
        await self.client.delete(f"/planner/tasks/{task_id}", headers={"If-Match": etag})
        logger.info("planner task deleted")

