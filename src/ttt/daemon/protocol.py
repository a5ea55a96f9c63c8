"""
Wire protocol between the CLI and the daemon.

Newline-delimited UTF-8 JSON over a Unix socket:
- Request:  {"id": "<correlation id>", "method": "getTodos", "args": [...]}
- Response: {"id": "<same id>", "result": ...} or {"id": "<same id>", "error": "message"}

Responses carry no ordering guarantee; the id is the only link back to a request.
"""

import json
from typing import Any, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..errors import ProtocolError

UNKNOWN_ID = "unknown"

# Largest single line accepted on either side (batch operations can be big)
MAX_LINE_BYTES = 16 * 1024 * 1024


class Request(BaseModel):
    id: str
    method: str
    args: List[Any] = Field(default_factory=list)


class Response(BaseModel):
    id: str
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if self.error is not None:
            return {"id": self.id, "error": self.error}
        return {"id": self.id, "result": self.result}


def to_wire(value: Any) -> Any:
    """Convert store results (models, lists of models) into JSON-ready values."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (list, tuple)):
        return [to_wire(item) for item in value]
    if isinstance(value, dict):
        return {key: to_wire(item) for key, item in value.items()}
    return value


def encode_message(message: BaseModel) -> bytes:
    """Serialize a request or response as one newline-terminated line."""
    if isinstance(message, Response):
        payload = message.to_dict()
    else:
        payload = message.model_dump(mode="json")
    return (json.dumps(payload, separators=(",", ":")) + "\n").encode("utf-8")


def _load_object(line: bytes) -> dict:
    try:
        data = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError("Invalid JSON") from e
    if not isinstance(data, dict):
        raise ProtocolError("Invalid request")
    return data


def decode_request(line: bytes) -> Request:
    """
    Parse one request line.

    Raises:
        ProtocolError: "Invalid JSON" for unparseable lines, "Invalid request"
            for JSON that is not a request object.
    """
    data = _load_object(line)
    try:
        return Request.model_validate(data)
    except ValidationError as e:
        raise ProtocolError("Invalid request") from e


def decode_response(line: bytes) -> Response:
    data = _load_object(line)
    try:
        return Response.model_validate(data)
    except ValidationError as e:
        raise ProtocolError("Invalid response") from e


def request_id_of(line: bytes) -> str:
    """Best-effort id of a rejected request, for addressing the error response."""
    try:
        data = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return UNKNOWN_ID
    if isinstance(data, dict) and isinstance(data.get("id"), str):
        return data["id"]
    return UNKNOWN_ID
