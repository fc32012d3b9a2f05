import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import msal

from msgraph_mcp.errors import AuthenticationError, TokenStorageError
from msgraph_mcp.infrastructure.token_provider import TokenSet

logger = logging.getLogger(__name__)

# msal adds these itself and rejects them when passed explicitly
_RESERVED_SCOPES = {"openid", "profile", "offline_access"}


def msal_scopes(scopes: List[str]) -> List[str]:
    return [s for s in scopes if s not in _RESERVED_SCOPES]


class MsalTokenProvider:
    """Token provider backed by an msal PublicClientApplication and a
    SerializableTokenCache persisted to disk. msal refreshes silently."""

    def __init__(
        self,
        *,
        client_id: str,
        authority: str,
        scopes: List[str],
        cache_file: str | os.PathLike[str],
        app: Any = None,
    ):
        self.cache_file = Path(cache_file)
        self.scopes = msal_scopes(scopes)
        self.cache = msal.SerializableTokenCache()
        self._load_cache()
        self.app = app or msal.PublicClientApplication(
            client_id=client_id,
            authority=authority,
            token_cache=self.cache,
        )

    def _load_cache(self) -> None:
        if not self.cache_file.exists():
            return
        try:
            self.cache.deserialize(self.cache_file.read_text(encoding="utf-8"))
        except OSError as e:
            raise TokenStorageError("Failed to read token cache") from e
        except ValueError as e:
            raise TokenStorageError("Token cache is corrupt") from e

    def _persist_cache(self) -> None:
        if not self.cache.has_state_changed:
            return
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            self.cache_file.write_text(self.cache.serialize(), encoding="utf-8")
        except OSError as e:
            logger.error("failed to write msal cache err=%s", type(e).__name__)
            raise TokenStorageError("Failed to store token cache") from e

    def acquire_token_silent(self) -> Optional[Dict[str, Any]]:
        accounts = self.app.get_accounts()
        if not accounts:
            return None
        result = self.app.acquire_token_silent(self.scopes, account=accounts[0])
        if result and "access_token" in result:
            self._persist_cache()
            return result
        return None

    async def get_valid_access_token(self) -> str:
        # msal is synchronous and may hit the network to refresh
        result = await asyncio.to_thread(self.acquire_token_silent)
        if not result:
            raise AuthenticationError("Not authenticated. Run 'msgraph-mcp auth login' first.")
        return result["access_token"]

    # -----------------------------
    # Device code flow (CLI)
    # -----------------------------
    def start_device_code_flow(self) -> Dict[str, Any]:
        flow = self.app.initiate_device_flow(scopes=self.scopes)
        if "user_code" not in flow:
            raise AuthenticationError("Failed to start device code flow")
        return flow

    def complete_device_code_flow(self, flow: Dict[str, Any]) -> TokenSet:
        """Blocks until the user finishes signing in or the code expires."""
        result = self.app.acquire_token_by_device_flow(flow)
        if "access_token" not in result:
            logger.error("device code flow failed error=%s", result.get("error"))
            raise AuthenticationError("Sign-in did not complete")
        self._persist_cache()
        return TokenSet.from_oauth_response(result, now=time.time())

    def logout(self) -> None:
        for account in self.app.get_accounts():
            self.app.remove_account(account)
        try:
            self.cache_file.unlink(missing_ok=True)
        except OSError as e:
            raise TokenStorageError("Failed to clear token cache") from e
        logger.info("msal cache cleared")
