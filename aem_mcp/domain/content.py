"""
Content discovery: pages, nodes and full-text search.
"""

import posixpath
from datetime import timedelta
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from aem_mcp.domain.base import (
    AEMService,
    child_nodes,
    json_url,
    require_path,
    require_range,
)
from aem_mcp.services.errors import NotFoundError, ValidationError
from aem_mcp.services.response import RequestContext, RequestOptions
from aem_mcp.services.shapes import (
    JcrNode,
    QueryBuilderResult,
    ResponseShape,
    parse_response,
)

PAGE_TYPE = "cq:Page"
QUERY_BUILDER = "/bin/querybuilder.json"


class PageSummary(BaseModel):
    path: str
    name: str
    title: str | None = None
    template: str | None = None
    last_modified: Any = None


class Page(PageSummary):
    properties: dict[str, Any] = Field(default_factory=dict)
    children: list[str] = Field(default_factory=list)


class ChildNode(BaseModel):
    name: str
    path: str
    primary_type: str | None = None


class ContentService(AEMService):
    """Read-only access to the content tree."""

    PAGE_TTL = timedelta(minutes=5)
    SEARCH_TTL = timedelta(minutes=1)

    async def list_pages(self, root: str = "/content", depth: int = 1) -> list[PageSummary]:
        """List pages below root, down to the given depth."""
        root = require_path(root, field="root")
        require_range(depth, "depth", 1, 5)

        raw = self.unwrap(
            await self.client.get(
                json_url(root, depth),
                options=RequestOptions(
                    cache=True,
                    cache_ttl=self.PAGE_TTL,
                    context=RequestContext("listPages", root),
                ),
            )
        )
        node = parse_response(raw, ResponseShape.JCR_NODE).model_dump()

        pages: list[PageSummary] = []
        self._collect_pages(root, node, pages)
        logger.debug(f"Found {len(pages)} pages below {root}")
        return pages

    def _collect_pages(self, path: str, node: dict[str, Any], pages: list[PageSummary]) -> None:
        for name, child in child_nodes(node).items():
            if child.get("jcr:primaryType") != PAGE_TYPE:
                continue
            child_path = posixpath.join(path, name)
            pages.append(self._summary(child_path, child))
            self._collect_pages(child_path, child, pages)

    @staticmethod
    def _summary(path: str, node: dict[str, Any]) -> PageSummary:
        content = node.get("jcr:content") or {}
        return PageSummary(
            path=path,
            name=posixpath.basename(path),
            title=content.get("jcr:title"),
            template=content.get("cq:template"),
            last_modified=content.get("cq:lastModified"),
        )

    async def get_page(self, path: str) -> Page:
        path = require_path(path, root="/content")
        raw = self.unwrap(
            await self.client.get(
                json_url(path, 2),
                options=RequestOptions(
                    cache=True,
                    cache_ttl=self.PAGE_TTL,
                    context=RequestContext("getPage", path),
                ),
            )
        )
        node = parse_response(raw, ResponseShape.JCR_NODE).model_dump()
        if node.get("jcr:primaryType") != PAGE_TYPE:
            raise NotFoundError(f"{path} is not a page", details={"path": path})

        summary = self._summary(path, node)
        return Page(
            **summary.model_dump(),
            properties=node.get("jcr:content") or {},
            children=[
                posixpath.join(path, name)
                for name, child in child_nodes(node).items()
                if child.get("jcr:primaryType") == PAGE_TYPE
            ],
        )

    async def get_node(self, path: str, depth: int = 0) -> JcrNode:
        """Raw Sling JSON rendering of a node."""
        path = require_path(path)
        require_range(depth, "depth", 0, 10)
        raw = self.unwrap(
            await self.client.get(
                json_url(path, depth or None),
                options=RequestOptions(
                    cache=True,
                    context=RequestContext("getNode", path),
                ),
            )
        )
        return parse_response(raw, ResponseShape.JCR_NODE)

    async def list_children(self, path: str) -> list[ChildNode]:
        path = require_path(path)
        raw = self.unwrap(
            await self.client.get(
                json_url(path, 1),
                options=RequestOptions(
                    cache=True,
                    context=RequestContext("listChildren", path),
                ),
            )
        )
        node = parse_response(raw, ResponseShape.JCR_NODE).model_dump()
        return [
            ChildNode(
                name=name,
                path=posixpath.join(path, name),
                primary_type=child.get("jcr:primaryType"),
            )
            for name, child in child_nodes(node).items()
        ]

    async def search(
        self,
        text: str,
        root: str = "/content",
        limit: int = 20,
        offset: int = 0,
    ) -> QueryBuilderResult:
        """Full-text search through the QueryBuilder."""
        if not text or not text.strip():
            raise ValidationError("Search text is required")
        root = require_path(root, field="root")
        require_range(limit, "limit", 1, 1000)
        require_range(offset, "offset", 0, 1_000_000)

        raw = self.unwrap(
            await self.client.get(
                QUERY_BUILDER,
                params={
                    "path": root,
                    "fulltext": text.strip(),
                    "p.limit": limit,
                    "p.offset": offset,
                },
                options=RequestOptions(
                    cache=True,
                    cache_ttl=self.SEARCH_TTL,
                    context=RequestContext("search", root),
                ),
            )
        )
        return parse_response(raw, ResponseShape.QUERY_BUILDER)
