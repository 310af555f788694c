"""
DAM assets: metadata lookup, upload and deletion.
"""

import posixpath
from datetime import timedelta
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from aem_mcp.domain.base import (
    AEMService,
    OperationResult,
    is_system_path,
    json_url,
    require_name,
    require_path,
)
from aem_mcp.services.errors import NotFoundError, ValidationError
from aem_mcp.services.response import RequestContext, RequestOptions
from aem_mcp.services.shapes import ResponseShape, parse_response

DAM_ROOT = "/content/dam"
MAX_UPLOAD_BYTES = 100 * 1024 * 1024


class Asset(BaseModel):
    path: str
    name: str
    mime_type: str | None = None
    title: str | None = None
    last_modified: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AssetService(AEMService):
    ASSET_TTL = timedelta(minutes=10)

    async def get_asset(self, path: str) -> Asset:
        path = require_path(path, root=DAM_ROOT)
        raw = self.unwrap(
            await self.client.get(
                json_url(path, 3),
                options=RequestOptions(
                    cache=True,
                    cache_ttl=self.ASSET_TTL,
                    context=RequestContext("getAsset", path),
                ),
            )
        )
        node = parse_response(raw, ResponseShape.JCR_NODE).model_dump()
        if node.get("jcr:primaryType") != "dam:Asset":
            raise NotFoundError(f"{path} is not an asset", details={"path": path})

        content = node.get("jcr:content") or {}
        metadata = content.get("metadata") or {}
        return Asset(
            path=path,
            name=posixpath.basename(path),
            mime_type=metadata.get("dc:format"),
            title=metadata.get("dc:title"),
            last_modified=content.get("jcr:lastModified"),
            metadata={k: v for k, v in metadata.items() if not isinstance(v, dict)},
        )

    async def upload_asset(
        self,
        folder: str,
        filename: str,
        content: bytes,
        mime_type: str = "application/octet-stream",
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult:
        """Upload a file into a DAM folder through the createasset servlet."""
        folder = require_path(folder, root=DAM_ROOT, field="folder")
        require_name(filename, field="filename")
        if not content:
            raise ValidationError("content must not be empty")
        if len(content) > MAX_UPLOAD_BYTES:
            raise ValidationError(f"content exceeds {MAX_UPLOAD_BYTES} bytes")

        path = posixpath.join(folder, filename)
        self.unwrap(
            await self.client.upload(
                f"{folder}.createasset.html",
                content,
                filename=filename,
                mime_type=mime_type,
                metadata=metadata,
                options=RequestOptions(context=RequestContext("uploadAsset", path)),
            )
        )
        logger.info(f"Uploaded asset {path} ({len(content)} bytes)")
        return OperationResult(path=path, status="uploaded", location=path)

    async def delete_asset(self, path: str) -> OperationResult:
        path = require_path(path, root=DAM_ROOT)
        if is_system_path(path):
            raise ValidationError(f"Refusing to delete protected path {path}")

        self.unwrap(
            await self.client.post(
                path,
                data={":operation": "delete"},
                options=RequestOptions(context=RequestContext("deleteAsset", path)),
            )
        )
        logger.info(f"Deleted asset {path}")
        return OperationResult(path=path, status="deleted")
