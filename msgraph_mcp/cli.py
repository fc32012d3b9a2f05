#!/usr/bin/env python3
"""
Command line entry point.
Usage examples:
  msgraph-mcp serve                 # STDIO JSON-RPC (for MCP hosts)
  msgraph-mcp serve --http          # FastAPI on PORT (default 8081)
  msgraph-mcp auth login            # device code sign-in, stores tokens for TOKEN_STORE
  msgraph-mcp auth status
  msgraph-mcp auth logout
  msgraph-mcp manifest --out .mcp.json
  msgraph-mcp tools call list_tasks --args '{"filter": "today"}'
Environment: see msgraph_mcp/config.py (TOKEN_STORE, CLIENT_ID, TENANT_ID, SCOPES, ...)
"""
import argparse
import asyncio
import json
import sys
import time
from typing import Any, Dict, List, Optional

from msgraph_mcp.config import Config, cfg
from msgraph_mcp.errors import GraphMCPError
from msgraph_mcp.infrastructure.token_provider import FileTokenStore, describe_token_file
from msgraph_mcp.infrastructure.token_provider_msal import MsalTokenProvider


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _msal_provider(c: Config, cache_file: Optional[str] = None) -> MsalTokenProvider:
    if not c.client_id:
        print("CLIENT_ID is not set. Register a public client app and set CLIENT_ID.", file=sys.stderr)
        sys.exit(2)
    return MsalTokenProvider(
        client_id=c.client_id,
        authority=c.authority,
        scopes=c.scopes,
        cache_file=cache_file or c.msal_cache_file,
    )


# -----------------------------
# serve
# -----------------------------
def cmd_serve(args: argparse.Namespace) -> None:
    if args.http:
        import uvicorn

        uvicorn.run("msgraph_mcp.main:app", host=args.host, port=args.port or cfg.port, log_level=cfg.log_level.lower())
        return

    from msgraph_mcp.container import build_services
    from msgraph_mcp.main import serve_stdio

    async def run() -> None:
        services = build_services(cfg)
        try:
            await serve_stdio(services)
        finally:
            await services.aclose()

    asyncio.run(run())


# -----------------------------
# auth
# -----------------------------
def cmd_auth_login(args: argparse.Namespace) -> None:
    provider = _msal_provider(cfg)
    flow = provider.start_device_code_flow()
    # the prompt goes to stderr so stdout stays parseable
    print(flow.get("message") or f"Open {flow.get('verification_uri')} and enter {flow.get('user_code')}", file=sys.stderr)
    tokens = provider.complete_device_code_flow(flow)
    if cfg.token_store == "file":
        FileTokenStore(cfg.token_file).save(tokens)
    _print_json({"status": "ok", "store": cfg.token_store, "expires_at": int(tokens.expires_at)})


def cmd_auth_status(args: argparse.Namespace) -> None:
    if cfg.token_store == "msal":
        provider = _msal_provider(cfg)
        accounts = provider.app.get_accounts()
        _print_json({"store": "msal", "present": bool(accounts), "accounts": len(accounts)})
        return
    _print_json({"store": "file", **describe_token_file(cfg.token_file)})


def cmd_auth_logout(args: argparse.Namespace) -> None:
    if cfg.token_store == "msal":
        _msal_provider(cfg).logout()
    else:
        FileTokenStore(cfg.token_file).clear()
    _print_json({"status": "ok"})


# -----------------------------
# manifest / tools
# -----------------------------
def write_manifest(path: str) -> Dict[str, Any]:
    from msgraph_mcp.tools import list_tools

    tools, _ = list_tools(None)
    manifest = {"tools": tools}
    with open(path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, ensure_ascii=False, indent=2)
    return manifest


def cmd_manifest(args: argparse.Namespace) -> None:
    manifest = write_manifest(args.out)
    print(f"{args.out} manifest generated ({len(manifest['tools'])} tools).", file=sys.stderr)


def cmd_tools_list(args: argparse.Namespace) -> None:
    from msgraph_mcp.tools import list_tools, tools_by_tags

    tools, _ = list_tools(None)
    names = tools_by_tags(args.tag) if args.tag else [t["name"] for t in tools]
    for n in names:
        print(n)


def cmd_tools_call(args: argparse.Namespace) -> None:
    from msgraph_mcp.container import build_services
    from msgraph_mcp.tools import call_tool

    try:
        arguments = json.loads(args.args) if args.args else {}
    except ValueError:
        print("--args must be a JSON object", file=sys.stderr)
        sys.exit(2)

    async def run() -> Dict[str, Any]:
        services = build_services(cfg)
        try:
            return await call_tool(services, args.name, arguments)
        finally:
            await services.aclose()

    t0 = time.monotonic()
    try:
        result = asyncio.run(run())
    except (TypeError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(2)
    for block in result["content"]:
        print(block.get("text", ""))
    print(f"({int((time.monotonic() - t0) * 1000)} ms)", file=sys.stderr)
    if result.get("isError"):
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="msgraph-mcp", description="Microsoft Graph MCP server")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="run the MCP server (STDIO by default)")
    sp.add_argument("--http", action="store_true", help="serve JSON-RPC over HTTP instead of STDIO")
    sp.add_argument("--host", default="127.0.0.1")
    sp.add_argument("--port", type=int, default=None)
    sp.set_defaults(func=cmd_serve)

    ap = sub.add_parser("auth", help="sign-in and token storage")
    asub = ap.add_subparsers(dest="auth_cmd", required=True)
    asub.add_parser("login", help="device code sign-in").set_defaults(func=cmd_auth_login)
    asub.add_parser("status", help="show stored token state (no secrets)").set_defaults(func=cmd_auth_status)
    asub.add_parser("logout", help="remove stored tokens").set_defaults(func=cmd_auth_logout)

    mp = sub.add_parser("manifest", help="write the tool manifest")
    mp.add_argument("--out", default=".mcp.json")
    mp.set_defaults(func=cmd_manifest)

    tp = sub.add_parser("tools", help="inspect or call tools in-process")
    tsub = tp.add_subparsers(dest="tools_cmd", required=True)
    tl = tsub.add_parser("list")
    tl.add_argument("--tag", action="append", help="filter by tag (repeatable)")
    tl.set_defaults(func=cmd_tools_list)
    tc = tsub.add_parser("call")
    tc.add_argument("name")
    tc.add_argument("--args", default=None, help="JSON object of tool arguments")
    tc.set_defaults(func=cmd_tools_call)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        args.func(args)
    except GraphMCPError as e:
        print(f"error: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
