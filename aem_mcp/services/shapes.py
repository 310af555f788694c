"""
Known AEM response shapes.

AEM endpoints answer with several incompatible layouts (QueryBuilder
``hits``, package manager ``results``, workflow and replication lists,
Sling POST status bodies, plain JCR nodes). Each layout has a model here
and an explicit tag; anything that does not fit the requested shape is
an UnrecognizedResponseError instead of a best-effort guess.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from aem_mcp.services.errors import (
    AEMError,
    UnrecognizedResponseError,
    classify_jcr_exception,
    classify_status,
)


class ResponseShape(str, Enum):
    """Tag of a recognised AEM payload layout."""

    QUERY_BUILDER = "query_builder"
    PACKAGE_LIST = "package_list"
    WORKFLOW_INSTANCES = "workflow_instances"
    WORKFLOW_MODELS = "workflow_models"
    REPLICATION_AGENTS = "replication_agents"
    SLING_POST = "sling_post"
    NODE_LIST = "node_list"
    JCR_NODE = "jcr_node"


class _AEMModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class QueryHit(_AEMModel):
    path: str
    title: str | None = None
    excerpt: str | None = None
    last_modified: str | None = Field(default=None, alias="lastModified")
    score: float | None = None


class QueryBuilderResult(_AEMModel):
    success: bool = True
    total: int = 0
    offset: int = 0
    more: bool = False
    hits: list[QueryHit] = Field(default_factory=list)


class PackageInfo(_AEMModel):
    name: str
    group: str | None = None
    version: str | None = None
    path: str | None = None
    size: int | None = None
    created: Any = None
    last_modified: Any = Field(default=None, alias="lastModified")
    installed: bool = False
    built_with: str | None = Field(default=None, alias="builtWith")


class PackageList(_AEMModel):
    results: list[PackageInfo] = Field(default_factory=list)
    total: int | None = None


class WorkflowInstance(_AEMModel):
    id: str
    model: str | None = None
    payload: str | None = None
    state: str | None = None
    start_time: Any = Field(default=None, alias="startTime")
    end_time: Any = Field(default=None, alias="endTime")
    initiator: str | None = None


class WorkflowInstanceList(_AEMModel):
    workflow_instances: list[WorkflowInstance] = Field(
        default_factory=list, alias="workflowInstances"
    )


class WorkflowModel(_AEMModel):
    uri: str | None = None
    path: str | None = None
    title: str | None = None
    description: str | None = None
    version: str | None = None


class WorkflowModelList(_AEMModel):
    workflow_models: list[WorkflowModel] = Field(
        default_factory=list, alias="workflowModels"
    )


class ReplicationAgent(_AEMModel):
    name: str
    title: str | None = None
    description: str | None = None
    enabled: bool | None = None
    valid: bool | None = None
    queue: Any = None


class ReplicationAgentList(_AEMModel):
    agents: list[ReplicationAgent] = Field(default_factory=list)


class SlingPostResult(_AEMModel):
    """Status body returned by the Sling POST servlet with ``:status=browser`` off."""

    status_code: int = Field(alias="status.code")
    status_message: str | None = Field(default=None, alias="status.message")
    title: str | None = None
    path: str | None = None
    location: str | None = None
    parent_location: str | None = Field(default=None, alias="parentLocation")
    referer: str | None = None
    changes: list[dict[str, Any]] = Field(default_factory=list)
    error: Any = None


class NodeList(_AEMModel):
    items: list[dict[str, Any]] = Field(default_factory=list)


class JcrNode(_AEMModel):
    """Any JSON object rendered by the default Sling GET servlet."""


SHAPE_MODELS: dict[ResponseShape, type[BaseModel]] = {
    ResponseShape.QUERY_BUILDER: QueryBuilderResult,
    ResponseShape.PACKAGE_LIST: PackageList,
    ResponseShape.WORKFLOW_INSTANCES: WorkflowInstanceList,
    ResponseShape.WORKFLOW_MODELS: WorkflowModelList,
    ResponseShape.REPLICATION_AGENTS: ReplicationAgentList,
    ResponseShape.SLING_POST: SlingPostResult,
    ResponseShape.NODE_LIST: NodeList,
    ResponseShape.JCR_NODE: JcrNode,
}


def detect_shape(raw: Any) -> ResponseShape | None:
    """Return the tag of a payload, or None if it matches no known layout."""
    if isinstance(raw, list):
        if raw and all(isinstance(item, dict) for item in raw):
            if all("uri" in item or "modelId" in item for item in raw):
                return ResponseShape.WORKFLOW_MODELS
            return ResponseShape.NODE_LIST
        if not raw:
            return ResponseShape.NODE_LIST
        return None

    if not isinstance(raw, dict):
        return None

    if "hits" in raw and isinstance(raw["hits"], list):
        return ResponseShape.QUERY_BUILDER
    if "results" in raw and isinstance(raw["results"], list):
        return ResponseShape.PACKAGE_LIST
    if "workflowInstances" in raw:
        return ResponseShape.WORKFLOW_INSTANCES
    if "workflowModels" in raw:
        return ResponseShape.WORKFLOW_MODELS
    if "agents" in raw or "distributionAgents" in raw:
        return ResponseShape.REPLICATION_AGENTS
    if "status.code" in raw:
        return ResponseShape.SLING_POST
    return ResponseShape.JCR_NODE


def _normalize(raw: Any, shape: ResponseShape) -> Any:
    """Fold the accepted variants of a layout into its model's field names."""
    if shape == ResponseShape.WORKFLOW_MODELS and isinstance(raw, list):
        return {"workflowModels": raw}
    if shape == ResponseShape.NODE_LIST and isinstance(raw, list):
        return {"items": raw}
    if shape == ResponseShape.REPLICATION_AGENTS and isinstance(raw, dict):
        if "agents" not in raw and "distributionAgents" in raw:
            return {**raw, "agents": raw["distributionAgents"]}
    if shape == ResponseShape.PACKAGE_LIST and isinstance(raw, dict):
        results = [
            {**pkg, "installed": str(pkg.get("installed", "")).lower() == "true"}
            if isinstance(pkg, dict)
            else pkg
            for pkg in raw.get("results", [])
        ]
        return {**raw, "results": results}
    return raw


def parse_response(raw: Any, shape: ResponseShape) -> BaseModel:
    """
    Parse a payload as the requested shape.

    Raises:
        UnrecognizedResponseError: payload has another layout or fails validation
    """
    detected = detect_shape(raw)
    if detected != shape:
        raise UnrecognizedResponseError(
            f"Expected {shape.value} response, got "
            f"{detected.value if detected else type(raw).__name__}",
            details={"expected": shape.value, "detected": detected.value if detected else None},
        )

    model = SHAPE_MODELS[shape]
    try:
        return model.model_validate(_normalize(raw, shape))
    except PydanticValidationError as e:
        raise UnrecognizedResponseError(
            f"Malformed {shape.value} response: {e.error_count()} validation errors",
            cause=e,
            details={"expected": shape.value},
        ) from e


def extract_body_error(raw: Any) -> AEMError | None:
    """Return the error an AEM body reports despite a successful HTTP status."""
    if not isinstance(raw, dict):
        return None

    status_code = raw.get("status.code")
    if isinstance(status_code, int) and status_code >= 400:
        message = raw.get("status.message") or f"AEM reported status {status_code}"
        error = raw.get("error")
        if isinstance(error, dict) and error.get("class"):
            jcr_error = classify_jcr_exception(error["class"], error.get("message") or message)
            jcr_error.status_code = status_code
            return jcr_error
        return classify_status(status_code, message)

    exception = raw.get("exception")
    if exception:
        if isinstance(exception, dict):
            return classify_jcr_exception(
                exception.get("class"), exception.get("message") or "AEM raised an exception"
            )
        return classify_jcr_exception(None, str(exception))

    error = raw.get("error")
    if error and raw.get("success") is not True:
        if isinstance(error, dict):
            return classify_jcr_exception(
                error.get("type") or error.get("code") or error.get("class"),
                error.get("message") or "AEM operation failed",
            )
        return classify_jcr_exception(None, str(error))

    if raw.get("success") is False:
        message = raw.get("msg") or raw.get("message") or "AEM operation failed"
        return classify_jcr_exception(None, str(message))

    return None
