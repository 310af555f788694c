"""
Tool catalogues of the read and write servers.
"""

import base64
import binascii
from typing import Any

from aem_mcp.domain import (
    AssetService,
    ContentService,
    PackageService,
    PageService,
    ReplicationService,
    TagService,
    UserService,
    WorkflowService,
)
from aem_mcp.services.client import AEMClient
from aem_mcp.services.errors import ValidationError
from aem_mcp.tools.registry import ToolRegistry


def _str(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}


def _int(description: str, default: int) -> dict[str, Any]:
    return {"type": "integer", "description": description, "default": default}


def _bool(description: str) -> dict[str, Any]:
    return {"type": "boolean", "description": description, "default": False}


PATH = _str("Absolute repository path")


def _add_client_tools(registry: ToolRegistry, client: AEMClient) -> None:
    async def get_client_stats() -> dict[str, Any]:
        return client.get_stats()

    registry.add(
        "get_client_stats",
        "Cache, circuit breaker and request statistics of this server",
        get_client_stats,
    )


def build_read_tools(client: AEMClient) -> ToolRegistry:
    registry = ToolRegistry("aem-read")
    content = ContentService(client)
    assets = AssetService(client)
    packages = PackageService(client)
    tags = TagService(client)
    workflows = WorkflowService(client)
    replication = ReplicationService(client)
    users = UserService(client)

    registry.add(
        "list_pages",
        "List pages below a root path",
        content.list_pages,
        {"root": _str("Root path, default /content"), "depth": _int("Levels to descend (1-5)", 1)},
    )
    registry.add("get_page", "Get a page with its properties", content.get_page, {"path": PATH}, ["path"])
    registry.add(
        "get_node",
        "Get the JSON rendering of any node",
        content.get_node,
        {"path": PATH, "depth": _int("Levels to include (0-10)", 0)},
        ["path"],
    )
    registry.add("list_children", "List child nodes", content.list_children, {"path": PATH}, ["path"])
    registry.add(
        "search_content",
        "Full-text search with the QueryBuilder",
        content.search,
        {
            "text": _str("Search text"),
            "root": _str("Root path, default /content"),
            "limit": _int("Maximum hits (1-1000)", 20),
            "offset": _int("Hits to skip", 0),
        },
        ["text"],
    )
    registry.add("get_asset", "Get DAM asset metadata", assets.get_asset, {"path": PATH}, ["path"])
    registry.add(
        "list_packages",
        "List CRX packages",
        packages.list_packages,
        {"group": _str("Package group filter")},
    )
    registry.add(
        "list_tags",
        "List tag namespaces, or all tags of one namespace",
        tags.list_tags,
        {"namespace": _str("Tag namespace")},
    )
    registry.add("list_workflow_models", "List workflow models", workflows.list_models)
    registry.add(
        "list_workflow_instances",
        "List workflow instances",
        workflows.list_instances,
        {"state": _str("RUNNING, COMPLETED, ABORTED, SUSPENDED or STALE")},
    )
    registry.add("list_replication_agents", "List replication agents", replication.list_agents)
    registry.add(
        "list_users",
        "List users",
        users.list_users,
        {"query": _str("Full-text filter"), "limit": _int("Maximum results (1-1000)", 50)},
    )
    registry.add(
        "list_groups",
        "List groups",
        users.list_groups,
        {"limit": _int("Maximum results (1-1000)", 50)},
    )
    _add_client_tools(registry, client)
    return registry


def build_write_tools(client: AEMClient) -> ToolRegistry:
    registry = ToolRegistry("aem-write")
    pages = PageService(client)
    assets = AssetService(client)
    packages = PackageService(client)
    tags = TagService(client)
    workflows = WorkflowService(client)
    replication = ReplicationService(client)

    registry.add(
        "create_page",
        "Create a page (succeeds if it already exists)",
        pages.create_page,
        {
            "parent": _str("Parent page path"),
            "name": _str("Node name of the new page"),
            "title": _str("Page title"),
            "template": _str("Template path"),
        },
        ["parent", "name", "title", "template"],
    )
    registry.add(
        "update_page_properties",
        "Set jcr:content properties of a page; null removes a property",
        pages.update_properties,
        {"path": PATH, "properties": {"type": "object", "description": "Property values"}},
        ["path", "properties"],
    )
    registry.add(
        "delete_page",
        "Delete a page",
        pages.delete_page,
        {"path": PATH, "force": _bool("Delete even if referenced")},
        ["path"],
    )
    registry.add(
        "move_page",
        "Move or rename a page",
        pages.move_page,
        {"source": _str("Current page path"), "destination": _str("New page path")},
        ["source", "destination"],
    )

    async def upload_asset(
        folder: str,
        filename: str,
        content: str,
        mime_type: str = "application/octet-stream",
        metadata: dict[str, Any] | None = None,
    ):
        try:
            data = base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError("content must be base64 encoded", cause=e) from e
        return await assets.upload_asset(folder, filename, data, mime_type, metadata)

    registry.add(
        "upload_asset",
        "Upload a file into a DAM folder",
        upload_asset,
        {
            "folder": _str("DAM folder path"),
            "filename": _str("File name"),
            "content": _str("Base64 encoded file content"),
            "mime_type": _str("MIME type"),
            "metadata": {"type": "object", "description": "Extra form fields"},
        },
        ["folder", "filename", "content"],
    )
    registry.add("delete_asset", "Delete a DAM asset", assets.delete_asset, {"path": PATH}, ["path"])
    registry.add(
        "build_package",
        "Build a CRX package",
        packages.build_package,
        {"path": _str("Package path below /etc/packages")},
        ["path"],
    )
    registry.add(
        "install_package",
        "Install a CRX package",
        packages.install_package,
        {"path": _str("Package path below /etc/packages")},
        ["path"],
    )
    registry.add(
        "create_tag",
        "Create a tag namespace or tag",
        tags.create_tag,
        {
            "tag_id": _str("'namespace' or 'namespace:path/to/tag'"),
            "title": _str("Tag title"),
            "description": _str("Tag description"),
        },
        ["tag_id"],
    )
    registry.add(
        "start_workflow",
        "Start a workflow on a payload path",
        workflows.start_workflow,
        {"model": _str("Workflow model path"), "payload": _str("Payload path")},
        ["model", "payload"],
    )
    registry.add(
        "publish",
        "Publish a path",
        replication.publish,
        {"path": PATH, "deep": _bool("Publish the whole subtree")},
        ["path"],
    )
    registry.add("unpublish", "Unpublish a path", replication.unpublish, {"path": PATH}, ["path"])

    async def clear_cache(pattern: str | None = None) -> dict[str, Any]:
        removed = await client.clear_cache(pattern)
        return {"cleared": removed}

    async def reset_circuit_breaker() -> dict[str, Any]:
        client.reset_circuit_breaker()
        return client.circuit_breaker.get_status()

    registry.add(
        "clear_cache",
        "Clear cached responses, optionally only keys matching a pattern",
        clear_cache,
        {"pattern": _str("Glob or substring")},
    )
    registry.add(
        "reset_circuit_breaker",
        "Close the circuit breaker after AEM has recovered",
        reset_circuit_breaker,
    )
    _add_client_tools(registry, client)
    return registry
