from __future__ import annotations
import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from msgraph_mcp.errors import AuthenticationError, TokenStorageError

logger = logging.getLogger(__name__)

# refresh slightly before expiry
REFRESH_SKEW_SEC = 60


class TokenProvider(Protocol):
    async def get_valid_access_token(self) -> str: ...


class TokenSet(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: float
    scope: Optional[str] = None

    @classmethod
    def from_oauth_response(cls, js: Dict[str, Any], *, now: float, previous: Optional["TokenSet"] = None) -> "TokenSet":
        """Build from an OAuth2 token endpoint (or MSAL) result, keeping the old refresh token if none is returned."""
        return cls(
            access_token=js["access_token"],
            refresh_token=js.get("refresh_token") or (previous.refresh_token if previous else None),
            expires_at=now + int(js.get("expires_in") or 3600),
            scope=js.get("scope") or (previous.scope if previous else None),
        )


class FileTokenStore:
    """JSON file holding a single TokenSet."""

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path)

    def load(self) -> Optional[TokenSet]:
        if not self.path.exists():
            return None
        try:
            return TokenSet.model_validate_json(self.path.read_text(encoding="utf-8"))
        except OSError as e:
            logger.error("failed to read token file err=%s", type(e).__name__)
            raise TokenStorageError("Failed to read stored tokens") from e
        except (UnicodeDecodeError, PydanticValidationError) as e:
            logger.error("token file is corrupt")
            raise TokenStorageError("Stored tokens are corrupt") from e

    def save(self, tokens: TokenSet) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(tokens.model_dump_json(indent=2), encoding="utf-8")
            try:
                os.chmod(self.path, 0o600)
            except OSError:
                logger.debug("could not restrict token file permissions")
        except OSError as e:
            logger.error("failed to store tokens err=%s", type(e).__name__)
            raise TokenStorageError("Failed to store tokens") from e
        logger.info("tokens stored")

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise TokenStorageError("Failed to clear tokens") from e
        logger.info("tokens cleared")


class FileTokenProvider:
    """Token provider backed by FileTokenStore.

    Refreshes with the OAuth2 refresh-token grant shortly before expiry and
    persists the new token set. Missing or expired-and-unrefreshable tokens
    raise AuthenticationError.
    """

    def __init__(
        self,
        store: FileTokenStore,
        *,
        authority: str,
        client_id: str,
        scopes: List[str],
        client_secret: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.token_endpoint = f"{authority.rstrip('/')}/oauth2/v2.0/token"
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes
        self._http = http_client
        self._timeout = timeout
        self._clock = clock
        self._lock = asyncio.Lock()

    def _should_refresh(self, t: TokenSet) -> bool:
        return self._clock() >= t.expires_at - REFRESH_SKEW_SEC

    async def _post_refresh(self, data: Dict[str, str]) -> httpx.Response:
        if self._http is not None:
            return await self._http.post(self.token_endpoint, data=data)
        async with httpx.AsyncClient(timeout=self._timeout) as c:
            return await c.post(self.token_endpoint, data=data)

    async def _refresh(self, t: TokenSet) -> Optional[TokenSet]:
        if not (t.refresh_token and self.client_id):
            return None
        data = {
            "grant_type": "refresh_token",
            "refresh_token": t.refresh_token,
            "client_id": self.client_id,
            "scope": " ".join(self.scopes),
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret
        try:
            r = await self._post_refresh(data)
        except httpx.HTTPError as e:
            logger.warning("token refresh request failed err=%s", type(e).__name__)
            return None
        if r.status_code != 200:
            logger.warning("token refresh rejected status=%s", r.status_code)
            return None
        try:
            refreshed = TokenSet.from_oauth_response(r.json(), now=self._clock(), previous=t)
        except (ValueError, KeyError):
            logger.warning("token refresh returned an unexpected body")
            return None
        self.store.save(refreshed)
        logger.info("access token refreshed")
        return refreshed

    async def get_valid_access_token(self) -> str:
        async with self._lock:
            t = self.store.load()
            if t is None or not t.access_token:
                raise AuthenticationError("Not authenticated. Run 'msgraph-mcp auth login' first.")
            if not self._should_refresh(t):
                return t.access_token
            refreshed = await self._refresh(t)
            if refreshed:
                return refreshed.access_token
            if self._clock() < t.expires_at:
                return t.access_token
            raise AuthenticationError("Access token expired and could not be refreshed. Please sign in again.")


def describe_token_file(path: str | os.PathLike[str]) -> Dict[str, Any]:
    """Non-secret summary of a token file for `auth status`."""
    store = FileTokenStore(path)
    t = store.load()
    if t is None:
        return {"present": False}
    return {
        "present": True,
        "has_refresh": bool(t.refresh_token),
        "expires_at": int(t.expires_at),
        "expired": time.time() >= t.expires_at,
        "scope": t.scope,
    }
