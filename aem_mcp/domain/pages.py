"""
Page write operations through the WCM command servlet and Sling POST.
"""

import posixpath
from typing import Any

from loguru import logger

from aem_mcp.domain.base import (
    AEMService,
    OperationResult,
    is_system_path,
    require_name,
    require_path,
)
from aem_mcp.services.errors import AEMError, ValidationError
from aem_mcp.services.response import RequestContext, RequestOptions

WCM_COMMAND = "/bin/wcmcommand"


def _already_exists(error: AEMError) -> bool:
    if error.status_code == 409:
        return True
    if error.details.get("exception") == "javax.jcr.ItemExistsException":
        return True
    text = f"{error.message} {error.details.get('body', '')}".lower()
    return "already exists" in text


class PageService(AEMService):
    """Create, update, move and delete pages."""

    async def create_page(
        self,
        parent: str,
        name: str,
        title: str,
        template: str,
    ) -> OperationResult:
        """
        Create a page below parent.

        Creating a page that already exists is reported as success, which
        makes the call safe to retry.
        """
        parent = require_path(parent, root="/content", field="parent")
        require_name(name)
        if not title:
            raise ValidationError("title is required")
        template = require_path(template, field="template")
        path = posixpath.join(parent, name)

        response = await self.client.post(
            WCM_COMMAND,
            data={
                "cmd": "createPage",
                "parentPath": parent,
                "label": name,
                "title": title,
                "template": template,
                "_charset_": "utf-8",
            },
            options=RequestOptions(
                retry_safe=True,
                context=RequestContext("createPage", path),
            ),
        )
        try:
            self.unwrap(response)
        except AEMError as e:
            if not _already_exists(e):
                raise
            logger.info(f"Page {path} already exists")
            return OperationResult(path=path, status="exists")

        logger.info(f"Created page {path}")
        return OperationResult(path=path, status="created")

    async def update_properties(self, path: str, properties: dict[str, Any]) -> OperationResult:
        """Set jcr:content properties of a page (None removes a property)."""
        path = require_path(path, root="/content")
        if not properties:
            raise ValidationError("properties must not be empty")

        data: dict[str, Any] = {}
        for key, value in properties.items():
            if not key or key.startswith(":"):
                raise ValidationError(f"Invalid property name: {key!r}")
            if value is None:
                data[f"{key}@Delete"] = ""
            elif isinstance(value, bool):
                data[key] = "true" if value else "false"
            else:
                data[key] = value

        self.unwrap(
            await self.client.post(
                f"{path}/jcr:content",
                data=data,
                options=RequestOptions(
                    retry_safe=True,
                    context=RequestContext("updateProperties", path),
                ),
            )
        )
        return OperationResult(
            path=path,
            status="updated",
            message=f"{len(properties)} properties written",
        )

    async def delete_page(self, path: str, force: bool = False) -> OperationResult:
        path = require_path(path, root="/content")
        if is_system_path(path) or posixpath.dirname(path) == "/content":
            raise ValidationError(f"Refusing to delete protected path {path}")

        self.unwrap(
            await self.client.post(
                WCM_COMMAND,
                data={
                    "cmd": "deletePage",
                    "path": path,
                    "force": "true" if force else "false",
                    "_charset_": "utf-8",
                },
                options=RequestOptions(context=RequestContext("deletePage", path)),
            )
        )
        logger.info(f"Deleted page {path}")
        return OperationResult(path=path, status="deleted")

    async def move_page(self, source: str, destination: str) -> OperationResult:
        """Move (or rename) a page; destination is the full new path."""
        source = require_path(source, root="/content", field="source")
        destination = require_path(destination, root="/content", field="destination")
        if is_system_path(source):
            raise ValidationError(f"Refusing to move protected path {source}")
        if destination == source or destination.startswith(source + "/"):
            raise ValidationError("destination must not be the page itself or below it")

        self.unwrap(
            await self.client.post(
                WCM_COMMAND,
                data={
                    "cmd": "movePage",
                    "srcPath": source,
                    "destParentPath": posixpath.dirname(destination),
                    "destName": posixpath.basename(destination),
                    "_charset_": "utf-8",
                },
                options=RequestOptions(
                    context=RequestContext("movePage", source),
                    invalidate=[destination],
                ),
            )
        )
        logger.info(f"Moved page {source} to {destination}")
        return OperationResult(path=destination, status="moved", location=destination)
