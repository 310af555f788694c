"""Tool registry, catalogues and the command line entry point."""

import base64
import json

import httpx
import pytest

from aem_mcp.services.errors import CircuitOpenError, NotFoundError, ServerError
from aem_mcp.tools import ToolRegistry, build_read_tools, build_write_tools, format_error
from main import build_parser
from tests.conftest import json_response


def _text(result: dict) -> str:
    return result["content"][0]["text"]


class TestToolRegistry:
    @pytest.fixture()
    def registry(self) -> ToolRegistry:
        registry = ToolRegistry("test")

        async def echo(word: str, times: int = 1) -> dict:
            return {"echo": word * times, "token": "secret"}

        async def missing() -> None:
            raise NotFoundError("/content/x does not exist")

        async def broken() -> None:
            raise RuntimeError("bug")

        registry.add(
            "echo",
            "Echo a word",
            echo,
            {"word": {"type": "string"}, "times": {"type": "integer"}},
            ["word"],
        )
        registry.add("missing", "Always missing", missing)
        registry.add("broken", "Always broken", broken)
        return registry

    @pytest.mark.asyncio
    async def test_success_result(self, registry: ToolRegistry) -> None:
        result = await registry.call("echo", {"word": "ab", "times": 2})
        assert result["isError"] is False
        assert json.loads(_text(result)) == {"echo": "abab", "token": "***"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry: ToolRegistry) -> None:
        result = await registry.call("nope", {})
        assert result["isError"] is True
        assert "Unknown tool" in _text(result)

    @pytest.mark.parametrize(
        "arguments, message",
        [
            ({}, "Missing required arguments: word"),
            ({"word": "a", "extra": 1}, "Unknown arguments: extra"),
            ({"word": 1}, "must be of type string"),
            ({"word": "a", "times": True}, "must be of type integer"),
        ],
    )
    @pytest.mark.asyncio
    async def test_argument_validation(self, registry: ToolRegistry, arguments: dict, message: str) -> None:
        result = await registry.call("echo", arguments)
        assert result["isError"] is True
        assert message in _text(result)
        assert _text(result).startswith("VALIDATION_ERROR")

    @pytest.mark.asyncio
    async def test_domain_error(self, registry: ToolRegistry) -> None:
        result = await registry.call("missing")
        assert result["isError"] is True
        assert _text(result) == "NOT_FOUND_ERROR: /content/x does not exist"

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, registry: ToolRegistry) -> None:
        result = await registry.call("broken")
        assert result["isError"] is True
        assert "Internal error in broken" in _text(result)

    def test_duplicate_names_rejected(self, registry: ToolRegistry) -> None:
        async def handler() -> None:
            return None

        with pytest.raises(ValueError):
            registry.add("echo", "again", handler)

    def test_list_tools(self, registry: ToolRegistry) -> None:
        tools = {tool["name"]: tool for tool in registry.list_tools()}
        assert tools["echo"]["inputSchema"]["required"] == ["word"]


class TestFormatError:
    def test_circuit_open(self) -> None:
        text = format_error(CircuitOpenError("aem.test:4502", 42.0))
        assert text.startswith("AEM is temporarily unavailable (circuit open). Retry in 42s.")

    def test_exhausted(self) -> None:
        error = ServerError("GET /content.json returned HTTP 503", details={"attempts": 4})
        assert format_error(error) == (
            "SERVER_ERROR: GET /content.json returned HTTP 503 (failed after 4 attempts)"
        )

    def test_single_failure(self) -> None:
        assert format_error(ServerError("boom")) == "SERVER_ERROR: boom"


class TestCatalogues:
    @pytest.mark.asyncio
    async def test_read_and_write_tool_names(self, make_client) -> None:
        async with make_client(lambda request: json_response({})) as client:
            read = build_read_tools(client)
            write = build_write_tools(client)

        assert {"list_pages", "get_page", "search_content", "list_users", "get_client_stats"} <= {
            tool["name"] for tool in read.list_tools()
        }
        assert {"create_page", "delete_page", "publish", "upload_asset", "clear_cache"} <= {
            tool["name"] for tool in write.list_tools()
        }
        assert "delete_page" not in read
        assert "get_page" not in write

    @pytest.mark.asyncio
    async def test_get_page_tool(self, make_client) -> None:
        page = {"jcr:primaryType": "cq:Page", "jcr:content": {"jcr:title": "Home"}}

        def handler(request: httpx.Request) -> httpx.Response:
            return json_response(page)

        async with make_client(handler) as client:
            result = await build_read_tools(client).call("get_page", {"path": "/content/site/en"})

        assert result["isError"] is False
        assert json.loads(_text(result))["title"] == "Home"

    @pytest.mark.asyncio
    async def test_open_circuit_and_exhausted_retries_read_differently(self, make_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return json_response({}, status=503)

        async with make_client(handler, retry_attempts=1, failure_threshold=1) as client:
            tools = build_read_tools(client)
            exhausted = await tools.call("get_node", {"path": "/content"})
            rejected = await tools.call("get_node", {"path": "/content"})

        assert "failed after 2 attempts" in _text(exhausted)
        assert "circuit open" not in _text(exhausted)
        assert _text(rejected).startswith("AEM is temporarily unavailable (circuit open)")

    @pytest.mark.asyncio
    async def test_upload_tool_decodes_base64(self, make_client) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        async with make_client(handler) as client:
            tools = build_write_tools(client)
            ok = await tools.call(
                "upload_asset",
                {
                    "folder": "/content/dam/site",
                    "filename": "a.txt",
                    "content": base64.b64encode(b"hello").decode(),
                },
            )
            bad = await tools.call(
                "upload_asset",
                {"folder": "/content/dam/site", "filename": "a.txt", "content": "%%%"},
            )

        assert ok["isError"] is False
        assert b"hello" in requests[0].content
        assert bad["isError"] is True
        assert "base64" in _text(bad)
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_client_stats_tool(self, make_client) -> None:
        async with make_client(lambda request: json_response({})) as client:
            result = await build_write_tools(client).call("get_client_stats")
        stats = json.loads(_text(result))
        assert stats["circuit_breaker"]["state"] == "CLOSED"


class TestCommandLine:
    def test_call_arguments(self) -> None:
        args = build_parser().parse_args(["read", "call", "get_page", '{"path": "/content"}'])
        assert args.server == "read"
        assert args.command == "call"
        assert json.loads(args.arguments) == {"path": "/content"}

    def test_list(self) -> None:
        args = build_parser().parse_args(["write", "list"])
        assert args.command == "list"

    def test_unknown_server(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["admin", "list"])
