# main.py
# - MCP server over JSON-RPC 2.0: FastAPI (POST /mcp) and STDIO share one dispatcher
# - Methods: initialize, tools/list, tools/call, notifications/*
# - Services (Graph client + domain services) are built once per app/process and passed down

import asyncio
import json
import logging
import secrets
import sys
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, TextIO

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from msgraph_mcp.config import cfg
from msgraph_mcp.container import Services, build_services
from msgraph_mcp.schemas.mcp import JSONRPC_VERSION, JsonRpcRequest, ManifestResponse, jsonrpc_err, jsonrpc_ok
from msgraph_mcp.tools import call_tool, list_tools

# Logging setup (stderr; stdout belongs to the STDIO transport)
logger = logging.getLogger("mcp")
logging.basicConfig(level=getattr(logging, cfg.log_level), stream=sys.stderr)

MCP_PROTOCOL_REV = cfg.protocol_revision

CAPABILITIES = {
    "capabilities": {"tools": {"listChanged": False}},
    "protocolRevision": MCP_PROTOCOL_REV,
    "server": {"name": cfg.server_name, "version": cfg.server_version},
}


# ---------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------
def _log_event(event: str, **fields: Any) -> None:
    logger.info(json.dumps({"event": event, **fields}))


async def dispatch(services: Services, payload: Any) -> Optional[Dict[str, Any]]:
    """Handle one decoded JSON-RPC message. Returns None for notifications."""
    if isinstance(payload, list):
        return jsonrpc_err(None, -32600, "Batch not supported")
    try:
        req = JsonRpcRequest.model_validate(payload)
    except ValidationError:
        return jsonrpc_err(None, -32600, "Invalid Request")
    if req.jsonrpc != JSONRPC_VERSION:
        return jsonrpc_err(req.id, -32600, "Invalid jsonrpc version")

    method = req.method or ""
    params = req.params or {}

    # notifications (no id), e.g. notifications/initialized
    if req.id is None:
        _log_event("notification", method=method)
        return None
    # some clients send notifications with an id
    if method.startswith("notifications/"):
        return jsonrpc_ok(req.id, {})

    t0 = time.monotonic()
    if method == "initialize":
        _log_event("rpc", stage="initialize")
        return jsonrpc_ok(req.id, {
            "capabilities": CAPABILITIES["capabilities"],
            "serverInfo": CAPABILITIES["server"],
            "protocolVersion": MCP_PROTOCOL_REV,
        })

    if method == "tools/list":
        tools, next_cursor = list_tools(params.get("cursor"))
        result: Dict[str, Any] = {"tools": tools}
        if next_cursor is not None:
            result["nextCursor"] = next_cursor
        _log_event("rpc", stage="tools/list", count=len(tools))
        return jsonrpc_ok(req.id, result)

    if method == "tools/call":
        name = params.get("name")
        arguments = params.get("arguments") or {}
        if not name or not isinstance(name, str) or not isinstance(arguments, dict):
            _log_event("rpc.error", reason="invalid_params")
            return jsonrpc_err(req.id, -32602, "Invalid params")
        try:
            result = await call_tool(services, name, arguments)
        except TypeError as te:
            _log_event("rpc.error", tool=name, reason="invalid_params")
            return jsonrpc_err(req.id, -32602, f"Invalid params: {te}")
        except ValueError:
            _log_event("rpc.error", tool=name, reason="unknown_tool")
            return jsonrpc_err(req.id, -32601, f"Unknown tool: {name}")
        except Exception:
            logger.exception("server error on tools/call")
            return jsonrpc_err(req.id, -32000, "Server error")
        _log_event("rpc", stage="tools/call", tool=name, ms=int((time.monotonic() - t0) * 1000), isError=result["isError"])
        return jsonrpc_ok(req.id, result)

    _log_event("rpc.error", reason="method_not_found", method=method)
    return jsonrpc_err(req.id, -32601, "Method not found")


# ---------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------
def _provided_key(x_api_key: Optional[str], authorization: Optional[str]) -> Optional[str]:
    if x_api_key:
        return x_api_key
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def create_app(services: Optional[Services] = None, *, api_key: Optional[str] = cfg.api_key) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "services", None) is None:
            owned = app.state.services = build_services(cfg)
        yield
        if owned is not None:
            await owned.aclose()

    app = FastAPI(title=cfg.server_name, version=cfg.server_version, lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allow_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        max_age=3600,
    )

    def require_api_key(x_api_key: Optional[str], authorization: Optional[str]) -> None:
        # no key configured -> open (local / STDIO-like use)
        if not api_key:
            return
        provided = _provided_key(x_api_key, authorization)
        if provided is None or not secrets.compare_digest(provided, api_key):
            raise HTTPException(status_code=401, detail="Invalid or missing API Key")

    @app.get("/health")
    def health(request: Request, x_api_key: Optional[str] = Header(None), authorization: Optional[str] = Header(None)):
        require_api_key(x_api_key, authorization)
        s: Services = request.app.state.services
        return {
            "status": "ok",
            "server": CAPABILITIES["server"],
            "protocolRevision": MCP_PROTOCOL_REV,
            "apiKeyRequired": bool(api_key),
            "circuitState": s.graph.get_circuit_state().value,
            "availableTokens": round(s.graph.get_available_tokens(), 2),
        }

    @app.get("/mcp/capabilities")
    def mcp_capabilities():
        return CAPABILITIES

    @app.get("/mcp/manifest", response_model=ManifestResponse)
    def mcp_manifest(x_api_key: Optional[str] = Header(None), authorization: Optional[str] = Header(None)):
        require_api_key(x_api_key, authorization)
        tools, _ = list_tools(None)
        return {"tools": tools}

    @app.post("/mcp")
    async def mcp_entry(request: Request, x_api_key: Optional[str] = Header(None), authorization: Optional[str] = Header(None)):
        require_api_key(x_api_key, authorization)
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        headers = {"x-correlation-id": correlation_id}
        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse(jsonrpc_err(None, -32700, "Parse error"), headers=headers)
        resp = await dispatch(request.app.state.services, payload)
        if resp is None:
            # Some clients warn on 204; return empty JSON 200 to be lenient
            return JSONResponse({}, headers=headers)
        return JSONResponse(resp, headers=headers)

    return app


app = create_app()


# ---------------------------------------------------------------------
# STDIO mode: newline-delimited JSON-RPC on stdin, responses on stdout
# ---------------------------------------------------------------------
def _write(out: TextIO, msg: Dict[str, Any]) -> None:
    out.write(json.dumps(msg, ensure_ascii=False) + "\n")
    out.flush()


async def serve_stdio(services: Services, stdin: TextIO = sys.stdin, stdout: TextIO = sys.stdout) -> None:
    if cfg.stdio_banner:
        print("[MCP STDIO mode] Ready for JSON-RPC requests via stdin.", file=sys.stderr)
    while True:
        line = await asyncio.to_thread(stdin.readline)
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except ValueError:
            _write(stdout, jsonrpc_err(None, -32700, "Parse error"))
            continue
        resp = await dispatch(services, payload)
        if resp is not None:
            _write(stdout, resp)
