import logging
from datetime import datetime, timedelta
from typing import Callable, List

from msgraph_mcp.graph.client import GraphClient
from msgraph_mcp.graph.models import CalendarEvent, collection
from msgraph_mcp.security.validators import validate_date_range, validate_event_id
from msgraph_mcp.usecases.todo_service import start_of_day, utc_now

logger = logging.getLogger(__name__)

EVENT_SELECT = "id,subject,start,end,location,organizer,attendees,isAllDay,webLink"
CALENDAR_VIEW_TOP = 100


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


class CalendarService:
    """Read-only calendar access. calendarView expands recurring events."""

    def __init__(self, client: GraphClient, *, now: Callable[[], datetime] = utc_now):
        self.client = client
        self._now = now

    async def _from_today(self, days: int) -> List[CalendarEvent]:
        today = start_of_day(self._now())
        return await self.get_calendar_view(today, today + timedelta(days=days))

    async def get_events_today(self) -> List[CalendarEvent]:
        return await self._from_today(1)

    async def get_events_this_week(self) -> List[CalendarEvent]:
        return await self._from_today(7)

    async def get_events_this_month(self) -> List[CalendarEvent]:
        return await self._from_today(30)

    async def get_calendar_view(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        validate_date_range(start, end)
        params = {
            "startDateTime": _iso(start),
            "endDateTime": _iso(end),
            "$select": EVENT_SELECT,
            "$orderby": "start/dateTime asc",
            "$top": str(CALENDAR_VIEW_TOP),
        }
        data = await self.client.get("/me/calendar/calendarView", query_params=params)
        events = [CalendarEvent.model_validate(x) for x in collection(data)]
        logger.info("calendar events retrieved count=%s days=%s", len(events), (end - start).days)
        return events

    async def get_event(self, event_id: str) -> CalendarEvent:
        event_id = validate_event_id(event_id)
        data = await self.client.get(f"/me/events/{event_id}", query_params={"$select": EVENT_SELECT})
        return CalendarEvent.model_validate(data)
