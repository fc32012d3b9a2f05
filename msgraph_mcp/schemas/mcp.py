from __future__ import annotations
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field

JSONRPC_VERSION = "2.0"


class JsonRpcRequest(BaseModel):
    jsonrpc: str = Field(JSONRPC_VERSION)
    method: str
    id: Optional[Any] = None
    params: Optional[Dict[str, Any]] = None


class ToolDef(BaseModel):
    name: str
    description: Optional[str] = None
    inputSchema: Optional[Dict[str, Any]] = Field(default=None, description="JSON Schema for input")


class ManifestResponse(BaseModel):
    tools: List[ToolDef]


class JsonRpcErrorObj(BaseModel):
    code: int
    message: str


class JsonRpcSuccess(BaseModel):
    jsonrpc: str = Field(default=JSONRPC_VERSION, description="JSON-RPC version")
    id: Optional[Any] = Field(default=None, description="Request id (string/number/null)")
    result: Dict[str, Any] = Field(description="JSON-RPC success result")


class JsonRpcError(BaseModel):
    jsonrpc: str = Field(default=JSONRPC_VERSION, description="JSON-RPC version")
    id: Optional[Any] = Field(default=None, description="Request id (string/number/null)")
    error: JsonRpcErrorObj = Field(description="JSON-RPC error object")


def jsonrpc_ok(id_val: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return JsonRpcSuccess(id=id_val, result=result).model_dump()


def jsonrpc_err(id_val: Any, code: int, message: str) -> Dict[str, Any]:
    return JsonRpcError(id=id_val, error=JsonRpcErrorObj(code=code, message=message)).model_dump()
