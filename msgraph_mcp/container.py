"""
Small composition root that wires token provider -> Graph client -> services
from a Config. Nothing here is a singleton; callers own what they build.
"""
from dataclasses import dataclass
from typing import Optional

import httpx

from msgraph_mcp.config import Config
from msgraph_mcp.graph.client import GraphClient
from msgraph_mcp.infrastructure.token_provider import FileTokenProvider, FileTokenStore, TokenProvider
from msgraph_mcp.infrastructure.token_provider_msal import MsalTokenProvider
from msgraph_mcp.usecases.calendar_service import CalendarService
from msgraph_mcp.usecases.planner_service import PlannerService
from msgraph_mcp.usecases.todo_service import TodoService

TOKEN_STORES = ("file", "msal")


@dataclass
class Services:
    token_provider: TokenProvider
    graph: GraphClient
    todo: TodoService
    planner: PlannerService
    calendar: CalendarService

    async def aclose(self) -> None:
        await self.graph.aclose()


def build_token_provider(cfg: Config) -> TokenProvider:
    if cfg.token_store == "msal":
        if not cfg.client_id:
            raise ValueError("CLIENT_ID is required when TOKEN_STORE=msal")
        return MsalTokenProvider(
            client_id=cfg.client_id,
            authority=cfg.authority,
            scopes=cfg.scopes,
            cache_file=cfg.msal_cache_file,
        )
    if cfg.token_store == "file":
        return FileTokenProvider(
            FileTokenStore(cfg.token_file),
            authority=cfg.authority,
            client_id=cfg.client_id,
            client_secret=cfg.client_secret,
            scopes=cfg.scopes,
            timeout=cfg.http_timeout,
        )
    raise ValueError(f"Unknown TOKEN_STORE: {cfg.token_store}. Allowed: {', '.join(TOKEN_STORES)}")


def build_services(
    cfg: Config,
    *,
    token_provider: Optional[TokenProvider] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    **client_kwargs,
) -> Services:
    """client_kwargs go to GraphClient (clock, sleep, rng) so tests can swap time."""
    tp = token_provider or build_token_provider(cfg)
    graph = GraphClient(tp, cfg.graph_client_config(), http_client=http_client, **client_kwargs)
    return Services(
        token_provider=tp,
        graph=graph,
        todo=TodoService(graph),
        planner=PlannerService(graph),
        calendar=CalendarService(graph),
    )
