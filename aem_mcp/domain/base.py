"""
Base AEM domain service.
"""

import posixpath
import re
from typing import Any

from pydantic import BaseModel

from aem_mcp.services.client import AEMClient
from aem_mcp.services.errors import ValidationError
from aem_mcp.services.response import AEMResponse

_PATH_SEGMENT = re.compile(r"^[^/\s*?\[\]|\"]+$")

# Repository roots that must never be deleted or moved
SYSTEM_PATHS = frozenset(
    {"/", "/content", "/content/dam", "/apps", "/libs", "/etc", "/conf", "/var", "/home", "/tmp"}
)


class OperationResult(BaseModel):
    """Outcome of a write operation."""

    path: str
    status: str
    message: str | None = None
    location: str | None = None


class AEMService:
    """
    Base class for services built on AEMClient.

    All services:
    - Receive their AEMClient explicitly (one per server process)
    - Validate input before any request is made
    - Return Pydantic models and raise AEMError on failure
    """

    def __init__(self, client: AEMClient):
        if client is None:
            raise ValueError(f"{type(self).__name__} requires an AEMClient")
        self.client = client

    @staticmethod
    def unwrap(response: AEMResponse[Any]) -> Any:
        """Return the payload of a successful envelope, raise its error otherwise."""
        return response.raise_for_error().data


def require_path(path: str, root: str | None = None, field: str = "path") -> str:
    """Validate and normalise an absolute repository path."""
    if not path or not isinstance(path, str):
        raise ValidationError(f"{field} is required")
    if not path.startswith("/"):
        raise ValidationError(f"{field} must be an absolute path: {path!r}")
    if ".." in path.split("/"):
        raise ValidationError(f"{field} must not contain '..': {path!r}")

    normalised = posixpath.normpath(path)
    if root is not None and normalised != root and not normalised.startswith(root + "/"):
        raise ValidationError(f"{field} must be below {root}: {path!r}")
    return normalised


def require_name(name: str, field: str = "name") -> str:
    """Validate a single node name."""
    if not name or not _PATH_SEGMENT.match(name):
        raise ValidationError(f"Invalid {field}: {name!r}")
    return name


def require_range(value: int, field: str, minimum: int, maximum: int) -> int:
    if not isinstance(value, int) or not minimum <= value <= maximum:
        raise ValidationError(f"{field} must be between {minimum} and {maximum}")
    return value


def is_system_path(path: str) -> bool:
    return posixpath.normpath(path) in SYSTEM_PATHS


def json_url(path: str, depth: int | str | None = None) -> str:
    """Sling GET URL for a node, e.g. /content/site.2.json."""
    if depth is None:
        return f"{path}.json"
    return f"{path}.{depth}.json"


def child_nodes(node: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Child nodes of a Sling JSON rendering (properties are skipped)."""
    return {k: v for k, v in node.items() if isinstance(v, dict)}
