"""
CRX package manager.
"""

from datetime import timedelta

from loguru import logger

from aem_mcp.domain.base import AEMService, OperationResult, require_path
from aem_mcp.services.errors import ValidationError
from aem_mcp.services.response import RequestContext, RequestOptions
from aem_mcp.services.shapes import PackageList, ResponseShape, parse_response

PACKAGE_ROOT = "/etc/packages"
LIST_URL = "/crx/packmgr/list.jsp"
SERVICE_URL = "/crx/packmgr/service/.json"
_DONE = {"build": "built", "install": "installed"}


def _require_package(path: str) -> str:
    path = require_path(path, root=PACKAGE_ROOT)
    if not path.endswith(".zip"):
        raise ValidationError(f"Package path must end with .zip: {path!r}")
    return path


class PackageService(AEMService):
    LIST_TTL = timedelta(minutes=2)

    async def list_packages(self, group: str | None = None) -> PackageList:
        params = {"group": group} if group else None
        raw = self.unwrap(
            await self.client.get(
                LIST_URL,
                params=params,
                options=RequestOptions(
                    cache=True,
                    cache_ttl=self.LIST_TTL,
                    context=RequestContext("listPackages", PACKAGE_ROOT),
                ),
            )
        )
        return parse_response(raw, ResponseShape.PACKAGE_LIST)

    async def build_package(self, path: str) -> OperationResult:
        return await self._command(path, "build")

    async def install_package(self, path: str) -> OperationResult:
        return await self._command(path, "install")

    async def _command(self, path: str, cmd: str) -> OperationResult:
        path = _require_package(path)
        body = self.unwrap(
            await self.client.post(
                f"{SERVICE_URL}{path}",
                data={"cmd": cmd},
                options=RequestOptions(
                    context=RequestContext(f"{cmd}Package", path),
                    invalidate=[PACKAGE_ROOT, LIST_URL],
                ),
            )
        )
        message = body.get("msg") if isinstance(body, dict) else None
        logger.info(f"Package {cmd} finished for {path}")
        return OperationResult(path=path, status=_DONE[cmd], message=message)
