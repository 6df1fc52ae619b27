"""
Request validation utilities
Body size capping and JSON body parsing for the raw-body endpoints
"""
import json
from typing import Any, Dict, Type, TypeVar

from fastapi import HTTPException, Request
from pydantic import BaseModel, ValidationError

M = TypeVar("M", bound=BaseModel)


async def read_limited_body(request: Request, max_bytes: int) -> bytes:
    """
    Read the raw request body, refusing anything over max_bytes.

    Checks Content-Length first, then counts streamed bytes (chunked uploads
    carry no length).

    Raises:
        HTTPException 413 if the body is too large
    """
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > max_bytes:
        raise HTTPException(status_code=413, detail="Request body too large")

    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_bytes:
            raise HTTPException(status_code=413, detail="Request body too large")
        chunks.append(chunk)
    return b"".join(chunks)


def parse_json_body(body: bytes, model: Type[M]) -> M:
    """
    Parse a JSON body into a pydantic model.

    Raises:
        HTTPException 400 on malformed JSON or schema mismatch
    """
    try:
        data: Dict[str, Any] = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
        )
