# tools.py
# - MCP tool meta/executor
# - Tool definitions live in tool_schemas/*.json (name, description, inputSchema, tags)
# - call_tool: schema check -> handler -> sanitized JSON text content
# - Anything raised inside a handler becomes an isError result built by sanitize_error


import glob
import json
import logging
import os
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from jsonschema import ValidationError as JsonSchemaValidationError, validate

from msgraph_mcp.config import cfg
from msgraph_mcp.container import Services
from msgraph_mcp.context import request_context
from msgraph_mcp.security.sanitizers import (
    sanitize_calendar_event,
    sanitize_error,
    sanitize_planner_bucket,
    sanitize_planner_plan,
    sanitize_planner_task,
    sanitize_planner_task_details,
    sanitize_task,
    sanitize_task_list,
)
from msgraph_mcp.security.validators import validate_date_range, validate_date_string
from msgraph_mcp.usecases.planner_service import priority_code
from msgraph_mcp.usecases.todo_service import UNSET

logger = logging.getLogger("tools")

Handler = Callable[[Services, Dict[str, Any]], Awaitable[Any]]


# External JSON schema loading
def load_tool_defs(schema_dir: str) -> List[Dict[str, Any]]:
    tool_defs = []
    for path in sorted(glob.glob(os.path.join(schema_dir, "*.json"))):
        with open(path, "r", encoding="utf-8") as f:
            tool_defs.append(json.load(f))
    return tool_defs


TOOLS: List[Dict[str, Any]] = load_tool_defs(cfg.tool_schema_dir)
TOOLS_BY_NAME: Dict[str, Dict[str, Any]] = {t["name"]: t for t in TOOLS}
_TAG_INDEX: Dict[str, set[str]] = {}
for t in TOOLS:
    for tag in set(t.get("tags", []) or []):
        _TAG_INDEX.setdefault(tag, set()).add(t["name"])


def tools_by_tags(tags: list[str]) -> list[str]:
    out: set[str] = set()
    for tg in tags or []:
        out |= _TAG_INDEX.get(tg, set())
    return sorted(out)


def validate_params_by_schema(params: Dict[str, Any], schema: Dict[str, Any]) -> Optional[str]:
    try:
        validate(instance=params, schema=schema)
        return None
    except JsonSchemaValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        return f"{where}: {e.message}" if where else e.message


def list_tools(cursor: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """Return tool list (tools/list); everything fits in one page."""
    tool_defs = [
        {"name": t["name"], "description": t.get("description", ""), "inputSchema": t.get("inputSchema", {})}
        for t in TOOLS
    ]
    return tool_defs, None


# -----------------------------
# Handlers
# -----------------------------
HANDLERS: Dict[str, Handler] = {}


def tool(name: str) -> Callable[[Handler], Handler]:
    def register(fn: Handler) -> Handler:
        HANDLERS[name] = fn
        return fn
    return register


@tool("get_auth_status")
async def _get_auth_status(s: Services, p: Dict[str, Any]) -> Dict[str, Any]:
    try:
        await s.token_provider.get_valid_access_token()
    except Exception as e:
        logger.info(json.dumps({"event": "auth.status", "authenticated": False, "errorType": type(e).__name__}))
        return {"authenticated": False, "message": "Not authenticated. Please run OAuth flow first."}
    return {"authenticated": True, "message": "Authenticated with Microsoft Graph"}


@tool("get_client_status")
async def _get_client_status(s: Services, p: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "circuitState": s.graph.get_circuit_state().value,
        "failureCount": s.graph.circuit_breaker.get_failure_count(),
        "availableTokens": round(s.graph.get_available_tokens(), 2),
    }


# To Do reads
@tool("list_task_lists")
async def _list_task_lists(s: Services, p: Dict[str, Any]) -> Any:
    return [sanitize_task_list(x) for x in await s.todo.get_task_lists()]


@tool("list_tasks")
async def _list_tasks(s: Services, p: Dict[str, Any]) -> Any:
    list_id = p.get("listId")
    limit = p.get("limit", 50)
    f = p.get("filter", "all")
    todo = s.todo
    if f == "completed":
        tasks = await todo.get_completed_tasks(list_id, limit)
    elif f == "incomplete":
        tasks = await todo.get_incomplete_tasks(list_id, limit)
    elif f == "high-priority":
        tasks = await todo.get_high_priority_tasks(list_id, limit)
    elif f == "today":
        tasks = (await todo.get_tasks_due_today(list_id))[:limit]
    elif f == "overdue":
        tasks = (await todo.get_tasks_overdue(list_id))[:limit]
    elif f == "this-week":
        tasks = (await todo.get_tasks_due_this_week(list_id))[:limit]
    elif f == "later":
        tasks = (await todo.get_tasks_due_later(list_id))[:limit]
    else:
        tasks = await todo.get_tasks(list_id, top=limit)
    return [sanitize_task(x) for x in tasks]


@tool("get_task")
async def _get_task(s: Services, p: Dict[str, Any]) -> Any:
    return sanitize_task(await s.todo.get_task(p["listId"], p["taskId"]))


@tool("search_tasks")
async def _search_tasks(s: Services, p: Dict[str, Any]) -> Any:
    limit = p.get("limit", 20)
    tasks = await s.todo.search_tasks(p["query"], top=limit)
    return [sanitize_task(x) for x in tasks[:limit]]


# Calendar
@tool("list_calendar_events")
async def _list_calendar_events(s: Services, p: Dict[str, Any]) -> Any:
    f = p.get("filter", "today")
    if f == "this-week":
        events = await s.calendar.get_events_this_week()
    elif f == "this-month":
        events = await s.calendar.get_events_this_month()
    else:
        events = await s.calendar.get_events_today()
    return [sanitize_calendar_event(e) for e in events[: p.get("limit", 50)]]


@tool("get_calendar_view")
async def _get_calendar_view(s: Services, p: Dict[str, Any]) -> Any:
    start = validate_date_string(p["startDate"], "startDate")
    end = validate_date_string(p["endDate"], "endDate")
    validate_date_range(start, end)
    events = await s.calendar.get_calendar_view(start, end)
    return [sanitize_calendar_event(e) for e in events[: p.get("limit", 100)]]


# Planner reads
@tool("list_my_planner_tasks")
async def _list_my_planner_tasks(s: Services, p: Dict[str, Any]) -> Any:
    limit = p.get("limit")
    f = p.get("filter", "all")
    if f == "completed":
        tasks = await s.planner.get_completed_tasks(top=limit)
    elif f == "incomplete":
        tasks = await s.planner.get_incomplete_tasks(top=limit)
    else:
        tasks = await s.planner.get_my_tasks(top=limit)
    return [sanitize_planner_task(t) for t in tasks]


@tool("get_planner_plan")
async def _get_planner_plan(s: Services, p: Dict[str, Any]) -> Any:
    return sanitize_planner_plan(await s.planner.get_plan(p["planId"]))


@tool("list_plan_tasks")
async def _list_plan_tasks(s: Services, p: Dict[str, Any]) -> Any:
    tasks = await s.planner.get_plan_tasks(p["planId"], bucket_id=p.get("bucketId"), top=p.get("limit"))
    return [sanitize_planner_task(t) for t in tasks]


@tool("list_plan_buckets")
async def _list_plan_buckets(s: Services, p: Dict[str, Any]) -> Any:
    return [sanitize_planner_bucket(b) for b in await s.planner.get_plan_buckets(p["planId"])]


@tool("get_planner_task")
async def _get_planner_task(s: Services, p: Dict[str, Any]) -> Any:
    result = sanitize_planner_task(await s.planner.get_task(p["taskId"]))
    if p.get("includeDetails"):
        result["details"] = sanitize_planner_task_details(await s.planner.get_task_details(p["taskId"]))
    return result


# To Do writes
@tool("create_task")
async def _create_task(s: Services, p: Dict[str, Any]) -> Any:
    task = await s.todo.create_task(
        p.get("listId"),
        p["title"],
        due_date_time=p.get("dueDateTime"),
        importance=p.get("importance"),
        body=p.get("body"),
    )
    return {"message": "Task created successfully", "task": sanitize_task(task)}


@tool("update_task")
async def _update_task(s: Services, p: Dict[str, Any]) -> Any:
    task = await s.todo.update_task(
        p["listId"],
        p["taskId"],
        title=p.get("title"),
        due_date_time=p["dueDateTime"] if "dueDateTime" in p else UNSET,
        importance=p.get("importance"),
        status=p.get("status"),
        body=p.get("body"),
    )
    return {"message": "Task updated successfully", "task": sanitize_task(task)}


@tool("complete_task")
async def _complete_task(s: Services, p: Dict[str, Any]) -> Any:
    task = await s.todo.complete_task(p["listId"], p["taskId"])
    return {"message": "Task marked as completed", "task": sanitize_task(task)}


@tool("uncomplete_task")
async def _uncomplete_task(s: Services, p: Dict[str, Any]) -> Any:
    task = await s.todo.uncomplete_task(p["listId"], p["taskId"])
    return {"message": "Task marked as not started", "task": sanitize_task(task)}


@tool("delete_task")
async def _delete_task(s: Services, p: Dict[str, Any]) -> Any:
    await s.todo.delete_task(p["listId"], p["taskId"])
    return {"message": "Task deleted successfully"}


@tool("create_task_list")
async def _create_task_list(s: Services, p: Dict[str, Any]) -> Any:
    lst = await s.todo.create_task_list(p["displayName"])
    return {"message": "Task list created successfully", "list": {"id": lst.id, "displayName": lst.displayName}}


@tool("delete_task_list")
async def _delete_task_list(s: Services, p: Dict[str, Any]) -> Any:
    await s.todo.delete_task_list(p["listId"])
    return {"message": "Task list deleted successfully"}


# Planner writes (all but create need the current etag)
@tool("create_planner_task")
async def _create_planner_task(s: Services, p: Dict[str, Any]) -> Any:
    task = await s.planner.create_task(
        p["planId"],
        p["bucketId"],
        p["title"],
        due_date_time=p.get("dueDateTime"),
        priority=priority_code(p["priority"]) if p.get("priority") else None,
    )
    return {"message": "Planner task created successfully", "task": sanitize_planner_task(task)}


@tool("update_planner_task")
async def _update_planner_task(s: Services, p: Dict[str, Any]) -> Any:
    etag = await s.planner.get_etag(p["taskId"])
    task = await s.planner.update_task(
        p["taskId"],
        etag,
        title=p.get("title"),
        due_date_time=p["dueDateTime"] if "dueDateTime" in p else UNSET,
        priority=priority_code(p["priority"]) if p.get("priority") else None,
        percent_complete=p.get("percentComplete"),
        bucket_id=p.get("bucketId"),
    )
    return {"message": "Planner task updated successfully", "task": sanitize_planner_task(task)}


@tool("complete_planner_task")
async def _complete_planner_task(s: Services, p: Dict[str, Any]) -> Any:
    etag = await s.planner.get_etag(p["taskId"])
    task = await s.planner.complete_task(p["taskId"], etag)
    return {"message": "Planner task marked as completed", "task": sanitize_planner_task(task)}


@tool("uncomplete_planner_task")
async def _uncomplete_planner_task(s: Services, p: Dict[str, Any]) -> Any:
    etag = await s.planner.get_etag(p["taskId"])
    task = await s.planner.uncomplete_task(p["taskId"], etag)
    return {"message": "Planner task marked as not started", "task": sanitize_planner_task(task)}


@tool("delete_planner_task")
async def _delete_planner_task(s: Services, p: Dict[str, Any]) -> Any:
    etag = await s.planner.get_etag(p["taskId"])
    await s.planner.delete_task(p["taskId"], etag)
    return {"message": "Planner task deleted successfully"}


# -----------------------------
# Executor
# -----------------------------
def _text_result(payload: Any, is_error: bool = False) -> Dict[str, Any]:
    return {
        "content": [{"type": "text", "text": json.dumps(payload, ensure_ascii=False, indent=2)}],
        "isError": is_error,
    }


async def call_tool(services: Services, name: str, arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Execute tool and return result (tools/call).

    Unknown tool -> ValueError, schema violation -> TypeError (the protocol
    layer maps these to JSON-RPC errors). Everything else is a tool result.
    """
    if name not in TOOLS_BY_NAME:
        raise ValueError("Unknown tool")
    args = arguments or {}
    err = validate_params_by_schema(args, TOOLS_BY_NAME[name].get("inputSchema", {}))
    if err:
        raise TypeError(err)
    handler = HANDLERS.get(name)
    if handler is None:
        raise ValueError("No exec function mapped for tool")

    with request_context(name) as ctx:
        started = time.monotonic()
        logger.info(json.dumps({"event": "tool.call", "requestId": ctx.request_id, "tool": name, "argKeys": sorted(args)}))
        try:
            payload = await handler(services, args)
        except Exception as e:
            logger.warning(json.dumps({
                "event": "tool.error",
                "requestId": ctx.request_id,
                "tool": name,
                "errorType": type(e).__name__,
                "durationMs": int((time.monotonic() - started) * 1000),
            }))
            return _text_result(sanitize_error(e), is_error=True)
        logger.info(json.dumps({
            "event": "tool.ok",
            "requestId": ctx.request_id,
            "tool": name,
            "durationMs": int((time.monotonic() - started) * 1000),
        }))
        return _text_result(payload)
