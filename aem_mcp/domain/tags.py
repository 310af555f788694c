"""
Tag namespaces and tags under /content/cq:tags.
"""

import re
from datetime import timedelta
from typing import Any

from loguru import logger
from pydantic import BaseModel

from aem_mcp.domain.base import AEMService, OperationResult, child_nodes, json_url
from aem_mcp.services.cache import cacheable, make_fingerprint
from aem_mcp.services.client import AEMClient
from aem_mcp.services.errors import ValidationError
from aem_mcp.services.response import RequestContext, RequestOptions
from aem_mcp.services.shapes import ResponseShape, parse_response

TAG_ROOT = "/content/cq:tags"
TAG_COMMAND = "/bin/tagcommand"
TAG_TYPE = "cq:Tag"

_TAG_ID = re.compile(r"^[a-z0-9][a-z0-9_-]*(:[a-z0-9_-]+(/[a-z0-9_-]+)*)?$")


class Tag(BaseModel):
    id: str
    path: str
    title: str | None = None
    description: str | None = None


def tag_path(tag_id: str) -> str:
    """'ns:a/b' -> '/content/cq:tags/ns/a/b'; a bare namespace maps to its root."""
    namespace, _, local = tag_id.partition(":")
    return f"{TAG_ROOT}/{namespace}/{local}" if local else f"{TAG_ROOT}/{namespace}"


def _tag_id(namespace: str, local: list[str]) -> str:
    return f"{namespace}:{'/'.join(local)}" if local else namespace


class TagService(AEMService):
    TREE_TTL = timedelta(minutes=10)

    def __init__(self, client: AEMClient):
        super().__init__(client)
        self._load = self._load_tree
        if client.cache is not None:
            # Keys sit under the tag path, so writes below it invalidate them
            self._load = cacheable(
                client.cache,
                lambda path: make_fingerprint("TREE", path),
                ttl=self.TREE_TTL,
            )(self._load_tree)

    async def list_tags(self, namespace: str | None = None) -> list[Tag]:
        """All tags of a namespace, or the namespaces themselves."""
        if namespace is not None and not _TAG_ID.match(namespace):
            raise ValidationError(f"Invalid tag namespace: {namespace!r}")
        if namespace and ":" in namespace:
            raise ValidationError("namespace must not contain ':'")

        path = tag_path(namespace) if namespace else TAG_ROOT
        return await self._load(path)

    async def _load_tree(self, path: str) -> list[Tag]:
        depth = "infinity" if path != TAG_ROOT else 1
        raw = self.unwrap(
            await self.client.get(
                json_url(path, depth),
                options=RequestOptions(context=RequestContext("listTags", path)),
            )
        )
        node = parse_response(raw, ResponseShape.JCR_NODE).model_dump()

        tags: list[Tag] = []
        if path == TAG_ROOT:
            for name, child in child_nodes(node).items():
                if child.get("jcr:primaryType") == TAG_TYPE:
                    tags.append(self._tag(name, [], child))
        else:
            namespace = path.rsplit("/", 1)[-1]
            self._walk(namespace, [], node, tags)
        logger.debug(f"Loaded {len(tags)} tags from {path}")
        return tags

    def _walk(self, namespace: str, local: list[str], node: dict[str, Any], tags: list[Tag]) -> None:
        for name, child in child_nodes(node).items():
            if child.get("jcr:primaryType") != TAG_TYPE:
                continue
            child_local = local + [name]
            tags.append(self._tag(namespace, child_local, child))
            self._walk(namespace, child_local, child, tags)

    @staticmethod
    def _tag(namespace: str, local: list[str], node: dict[str, Any]) -> Tag:
        tag_id = _tag_id(namespace, local)
        return Tag(
            id=tag_id,
            path=tag_path(tag_id),
            title=node.get("jcr:title"),
            description=node.get("jcr:description"),
        )

    async def create_tag(
        self,
        tag_id: str,
        title: str | None = None,
        description: str | None = None,
    ) -> OperationResult:
        """Create a namespace ('ns') or a tag ('ns:a/b')."""
        if not tag_id or not _TAG_ID.match(tag_id):
            raise ValidationError(
                "Invalid tag id: use lowercase letters, digits, '-' and '_' as 'namespace:path'"
            )

        path = tag_path(tag_id)
        data = {
            "cmd": "createTagByTitle",
            "tag": tag_id,
            "title": title or tag_id.rsplit("/", 1)[-1].split(":")[-1],
            "locale": "en",
        }
        if description:
            data["description"] = description

        self.unwrap(
            await self.client.post(
                TAG_COMMAND,
                data=data,
                options=RequestOptions(context=RequestContext("createTag", path)),
            )
        )
        logger.info(f"Created tag {tag_id}")
        return OperationResult(path=path, status="created")
