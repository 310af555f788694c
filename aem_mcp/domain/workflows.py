"""
Granite workflows.
"""

from datetime import timedelta

from loguru import logger

from aem_mcp.domain.base import AEMService, OperationResult, require_path
from aem_mcp.services.errors import ValidationError
from aem_mcp.services.response import RequestContext, RequestOptions
from aem_mcp.services.shapes import (
    ResponseShape,
    WorkflowInstanceList,
    WorkflowModelList,
    parse_response,
)

MODELS_URL = "/etc/workflow/models.json"
INSTANCES = "/etc/workflow/instances"
INSTANCE_STATES = ("RUNNING", "COMPLETED", "ABORTED", "SUSPENDED", "STALE")


class WorkflowService(AEMService):
    MODELS_TTL = timedelta(minutes=10)

    async def list_models(self) -> WorkflowModelList:
        raw = self.unwrap(
            await self.client.get(
                MODELS_URL,
                options=RequestOptions(
                    cache=True,
                    cache_ttl=self.MODELS_TTL,
                    context=RequestContext("listWorkflowModels", "/etc/workflow/models"),
                ),
            )
        )
        return parse_response(raw, ResponseShape.WORKFLOW_MODELS)

    async def list_instances(self, state: str | None = None) -> WorkflowInstanceList:
        params = None
        if state is not None:
            state = state.upper()
            if state not in INSTANCE_STATES:
                raise ValidationError(
                    f"state must be one of {', '.join(INSTANCE_STATES)}"
                )
            params = {"state": state}

        # Instances change constantly, never cached
        raw = self.unwrap(
            await self.client.get(
                f"{INSTANCES}.json",
                params=params,
                options=RequestOptions(context=RequestContext("listWorkflowInstances", INSTANCES)),
            )
        )
        return parse_response(raw, ResponseShape.WORKFLOW_INSTANCES)

    async def start_workflow(self, model: str, payload: str) -> OperationResult:
        """Start a workflow model on a JCR payload path."""
        model = require_path(model, field="model")
        if not (model.startswith("/var/workflow/models/") or model.startswith("/etc/workflow/models/")):
            raise ValidationError(f"Not a workflow model path: {model!r}")
        payload = require_path(payload, field="payload")

        body = self.unwrap(
            await self.client.post(
                INSTANCES,
                data={
                    "model": model,
                    "payloadType": "JCR_PATH",
                    "payload": payload,
                },
                options=RequestOptions(
                    context=RequestContext("startWorkflow", payload),
                    invalidate=[INSTANCES],
                ),
            )
        )
        location = body.get("location") if isinstance(body, dict) else None
        logger.info(f"Started workflow {model} on {payload}")
        return OperationResult(path=payload, status="started", location=location)
