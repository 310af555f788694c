"""
Tool surface of the read and write servers.
"""

from aem_mcp.tools.catalog import build_read_tools, build_write_tools
from aem_mcp.tools.formatter import error_result, format_error, success_result
from aem_mcp.tools.registry import Tool, ToolRegistry

__all__ = [
    "Tool",
    "ToolRegistry",
    "build_read_tools",
    "build_write_tools",
    "error_result",
    "format_error",
    "success_result",
]
