"""
Publishing through the replication servlet.
"""

from typing import Any

from loguru import logger

from aem_mcp.domain.base import AEMService, OperationResult, child_nodes, json_url, require_path
from aem_mcp.services.response import RequestContext, RequestOptions
from aem_mcp.services.shapes import ReplicationAgentList, ResponseShape, parse_response

REPLICATE = "/bin/replicate.json"
TREE_ACTIVATION = "/libs/replication/treeactivation.html"
AGENTS_ROOT = "/etc/replication/agents.author"


class ReplicationService(AEMService):
    async def publish(self, path: str, deep: bool = False) -> OperationResult:
        """Activate a path, or the whole subtree when deep is set."""
        path = require_path(path)
        if deep:
            url = TREE_ACTIVATION
            data = {"cmd": "activate", "path": path, "ignoredeactivated": "true", "onlymodified": "false"}
        else:
            url = REPLICATE
            data = {"cmd": "activate", "path": path}

        await self._replicate(url, data, "publish", path)
        return OperationResult(path=path, status="published")

    async def unpublish(self, path: str) -> OperationResult:
        path = require_path(path)
        await self._replicate(REPLICATE, {"cmd": "deactivate", "path": path}, "unpublish", path)
        return OperationResult(path=path, status="unpublished")

    async def _replicate(self, url: str, data: dict[str, Any], operation: str, path: str) -> None:
        # Replication state lives in jcr:content, so the resource itself is invalidated
        self.unwrap(
            await self.client.post(
                url,
                data=data,
                options=RequestOptions(context=RequestContext(operation, path)),
            )
        )
        logger.info(f"Replication {data['cmd']} queued for {path}")

    async def list_agents(self) -> ReplicationAgentList:
        raw = self.unwrap(
            await self.client.get(
                json_url(AGENTS_ROOT, 2),
                options=RequestOptions(
                    cache=True,
                    context=RequestContext("listReplicationAgents", AGENTS_ROOT),
                ),
            )
        )
        if isinstance(raw, dict) and "agents" not in raw:
            raw = {"agents": [self._agent(name, node) for name, node in child_nodes(raw).items()]}
        return parse_response(raw, ResponseShape.REPLICATION_AGENTS)

    @staticmethod
    def _agent(name: str, node: dict[str, Any]) -> dict[str, Any]:
        content = node.get("jcr:content") or {}
        enabled = content.get("enabled")
        return {
            "name": name,
            "title": content.get("jcr:title"),
            "description": content.get("jcr:description"),
            "enabled": str(enabled).lower() == "true" if enabled is not None else None,
            "transportUri": content.get("transportUri"),
        }
