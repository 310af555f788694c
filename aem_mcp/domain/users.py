"""
Users and groups, looked up through the QueryBuilder.
"""

from datetime import timedelta
from typing import Any

from pydantic import BaseModel

from aem_mcp.domain.base import AEMService, require_range
from aem_mcp.services.response import RequestContext, RequestOptions
from aem_mcp.services.shapes import QueryHit, ResponseShape, parse_response

QUERY_BUILDER = "/bin/querybuilder.json"
USERS_ROOT = "/home/users"
GROUPS_ROOT = "/home/groups"


class Authorizable(BaseModel):
    id: str
    path: str
    name: str | None = None


class UserService(AEMService):
    LIST_TTL = timedelta(minutes=5)

    async def list_users(self, query: str | None = None, limit: int = 50) -> list[Authorizable]:
        return await self._list(USERS_ROOT, "rep:User", "listUsers", query, limit)

    async def list_groups(self, limit: int = 50) -> list[Authorizable]:
        return await self._list(GROUPS_ROOT, "rep:Group", "listGroups", None, limit)

    async def _list(
        self,
        root: str,
        node_type: str,
        operation: str,
        query: str | None,
        limit: int,
    ) -> list[Authorizable]:
        require_range(limit, "limit", 1, 1000)
        params: dict[str, Any] = {
            "path": root,
            "type": node_type,
            "p.limit": limit,
            "p.hits": "full",
            "p.nodedepth": 0,
            "orderby": "@rep:principalName",
        }
        if query:
            params["fulltext"] = query

        raw = self.unwrap(
            await self.client.get(
                QUERY_BUILDER,
                params=params,
                options=RequestOptions(
                    cache=True,
                    cache_ttl=self.LIST_TTL,
                    context=RequestContext(operation, root),
                ),
            )
        )
        if isinstance(raw, dict) and isinstance(raw.get("hits"), list):
            # Full hits carry the node path as jcr:path
            raw = {
                **raw,
                "hits": [
                    {**hit, "path": hit.get("path") or hit.get("jcr:path")}
                    for hit in raw["hits"]
                    if isinstance(hit, dict)
                ],
            }
        result = parse_response(raw, ResponseShape.QUERY_BUILDER)
        return [self._authorizable(hit) for hit in result.hits]

    @staticmethod
    def _authorizable(hit: QueryHit) -> Authorizable:
        extra = hit.model_extra or {}
        return Authorizable(
            id=extra.get("rep:authorizableId") or hit.path.rsplit("/", 1)[-1],
            path=hit.path,
            name=extra.get("rep:principalName"),
        )
