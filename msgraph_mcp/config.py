import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

from msgraph_mcp.graph.circuit_breaker import CircuitBreakerConfig
from msgraph_mcp.graph.client import GraphClientConfig
from msgraph_mcp.graph.rate_limiter import RateLimiterConfig

# Load .env if present (local dev convenience; MCP hosts usually inject env)
load_dotenv()


def _get_env_bool(key: str, default: bool = False) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_list(key: str, default: List[str] | None = None) -> List[str]:
    raw = os.getenv(key)
    if raw is None:
        return default or []
    parts = [p.strip() for p in raw.split(",")]
    return [p for p in parts if p]


def _get_env_int(key: str) -> int | None:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return None
    return int(raw)


DEFAULT_SCOPES = "Tasks.ReadWrite Calendars.Read Group.ReadWrite.All User.Read offline_access"


@dataclass
class Config:
    # server
    server_name: str = os.getenv("SERVER_NAME", "msgraph-mcp")
    server_version: str = os.getenv("SERVER_VERSION", "1.0.0")
    protocol_revision: str = os.getenv("MCP_PROTOCOL_REV", "2025-06-18")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    port: int = int(os.getenv("PORT", "8081"))
    api_key: str | None = os.getenv("API_KEY")

    # cors
    allow_origins: List[str] = field(default_factory=lambda: _get_env_list("ALLOW_ORIGINS", []))

    # tool schema dir
    tool_schema_dir: str = os.getenv("TOOL_SCHEMA_DIR") or os.path.join(os.path.dirname(__file__), "tool_schemas")

    # http/client
    http_timeout: int = int(os.getenv("HTTP_TIMEOUT", "30"))
    http_max_retries: int = int(os.getenv("HTTP_MAX_RETRIES", "3"))
    http_backoff_base_ms: int = int(os.getenv("HTTP_BACKOFF_BASE_MS", "1000"))

    # graph
    graph_base_url: str = os.getenv("GRAPH_BASE_URL", "https://graph.microsoft.com/v1.0/")

    # rate limiter
    rate_limit_per_minute: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))
    rate_limit_burst: int | None = _get_env_int("RATE_LIMIT_BURST")

    # circuit breaker
    cb_failure_threshold: int = int(os.getenv("CB_FAILURE_THRESHOLD", "5"))
    cb_success_threshold: int = int(os.getenv("CB_SUCCESS_THRESHOLD", "2"))
    cb_timeout_ms: int = int(os.getenv("CB_TIMEOUT_MS", "60000"))

    # auth / token storage
    token_store: str = os.getenv("TOKEN_STORE", "file").strip().lower()
    token_file: str = os.getenv("TOKEN_FILE", "./.tokens.json")
    msal_cache_file: str = os.getenv("MSAL_CACHE_FILE", "./.msal-cache.bin")
    tenant_id: str = os.getenv("TENANT_ID", "common")
    client_id: str = os.getenv("CLIENT_ID", "").strip()
    client_secret: str | None = os.getenv("CLIENT_SECRET")
    scopes: List[str] = field(default_factory=lambda: os.getenv("SCOPES", DEFAULT_SCOPES).split())

    # features
    stdio_banner: bool = _get_env_bool("STDIO_BANNER", True)

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    def graph_client_config(self) -> GraphClientConfig:
        return GraphClientConfig(
            base_url=self.graph_base_url,
            rate_limiter=RateLimiterConfig(
                max_requests_per_minute=self.rate_limit_per_minute,
                burst_allowance=self.rate_limit_burst,
            ),
            circuit_breaker=CircuitBreakerConfig(
                failure_threshold=self.cb_failure_threshold,
                success_threshold=self.cb_success_threshold,
                timeout_ms=self.cb_timeout_ms,
            ),
            max_retries=self.http_max_retries,
            base_retry_delay_ms=self.http_backoff_base_ms,
            http_timeout=self.http_timeout,
        )


cfg = Config()
