import json
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from prbot.mcp.errors import DecodeError

JSONRPC_VERSION = "2.0"

CallId = Union[int, str]


class JsonRpcRequest(BaseModel):
    jsonrpc: str = JSONRPC_VERSION
    id: Optional[CallId] = None
    method: str = Field(..., min_length=1)
    params: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def to_line(self) -> bytes:
        payload: Dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if self.id is not None:
            payload["id"] = self.id
        payload["method"] = self.method
        payload["params"] = self.params
        return (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")


class JsonRpcErrorPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: Optional[int] = None
    message: str = ""
    data: Any = None


class JsonRpcResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: Optional[str] = None
    id: CallId
    result: Any = None
    error: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_error(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("error"), str):
            data = dict(data)
            data["error"] = {"message": data["error"]}
        return data

    @model_validator(mode="after")
    def _one_outcome(self) -> "JsonRpcResponse":
        has_result = "result" in self.model_fields_set
        has_error = self.error is not None
        if has_error and has_result and self.result is not None:
            raise ValueError("response carries both result and error")
        if not has_error and not has_result:
            raise ValueError("response carries neither result nor error")
        return self

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def error_payload(self) -> Dict[str, Any]:
        if self.error is None:
            return {}
        return JsonRpcErrorPayload.model_validate(self.error).model_dump()


def parse_response(line: str) -> JsonRpcResponse:
    """Parse one framed line as a response envelope.

    Raises DecodeError for anything that is not a response: free text,
    invalid JSON, notifications or requests sent by the server.
    """
    try:
        obj = json.loads(line)
    except ValueError as exc:
        raise DecodeError(f"not JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise DecodeError("envelope is not an object")
    if "method" in obj:
        raise DecodeError(f"server message {obj.get('method')!r} is not a response")
    if "id" not in obj or obj["id"] is None:
        raise DecodeError("envelope has no id")
    try:
        return JsonRpcResponse.model_validate(obj)
    except ValidationError as exc:
        raise DecodeError(f"invalid response envelope: {exc.errors()[0]['msg']}") from exc
