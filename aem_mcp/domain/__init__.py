"""
AEM domain services. Each takes the server's AEMClient explicitly.
"""

from aem_mcp.domain.assets import Asset, AssetService
from aem_mcp.domain.base import AEMService, OperationResult
from aem_mcp.domain.content import ChildNode, ContentService, Page, PageSummary
from aem_mcp.domain.packages import PackageService
from aem_mcp.domain.pages import PageService
from aem_mcp.domain.replication import ReplicationService
from aem_mcp.domain.tags import Tag, TagService
from aem_mcp.domain.users import Authorizable, UserService
from aem_mcp.domain.workflows import WorkflowService

__all__ = [
    "AEMService",
    "OperationResult",
    # Read
    "ContentService",
    "Page",
    "PageSummary",
    "ChildNode",
    "UserService",
    "Authorizable",
    # Read / write
    "AssetService",
    "Asset",
    "PackageService",
    "TagService",
    "Tag",
    "WorkflowService",
    "ReplicationService",
    # Write
    "PageService",
]
