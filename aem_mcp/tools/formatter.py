"""Tool result formatting."""

import json
from typing import Any

from pydantic import BaseModel

from aem_mcp.services.errors import AEMError
from aem_mcp.services.response import sanitize


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    return value


def _result(text: str, is_error: bool) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


def success_result(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        return _result(value, False)
    text = json.dumps(sanitize(to_jsonable(value)), indent=2, ensure_ascii=False, default=str)
    return _result(text, False)


def format_error(error: AEMError) -> str:
    """Human-readable error text; an open circuit reads differently from a failed call."""
    if error.details.get("circuit_open"):
        retry_in = f" Retry in {error.retry_after:.0f}s." if error.retry_after is not None else ""
        return f"AEM is temporarily unavailable (circuit open).{retry_in} {error.message}"

    attempts = error.details.get("attempts")
    if attempts and "failed after" not in error.message:
        return f"{error.kind.value}: {error.message} (failed after {attempts} attempts)"

    return f"{error.kind.value}: {error.message}"


def error_result(error: AEMError) -> dict[str, Any]:
    return _result(format_error(error), True)
