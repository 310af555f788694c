"""Unit tests for error classification, envelopes and response shapes."""

import httpx
import pytest

from aem_mcp.services.errors import (
    AEMError,
    AuthorizationError,
    CircuitOpenError,
    ErrorKind,
    NotFoundError,
    ServerError,
    UnrecognizedResponseError,
    ValidationError,
    classify_exception,
    classify_status,
    parse_retry_after,
)
from aem_mcp.services.response import AEMResponse, ResponseMetadata, sanitize
from aem_mcp.services.shapes import (
    PackageList,
    ResponseShape,
    WorkflowModelList,
    detect_shape,
    extract_body_error,
    parse_response,
)


class TestClassifyStatus:
    @pytest.mark.parametrize(
        "status, kind, recoverable",
        [
            (400, ErrorKind.VALIDATION_ERROR, False),
            (401, ErrorKind.AUTHENTICATION_ERROR, False),
            (403, ErrorKind.AUTHORIZATION_ERROR, False),
            (404, ErrorKind.NOT_FOUND_ERROR, False),
            (409, ErrorKind.VALIDATION_ERROR, False),
            (408, ErrorKind.SERVER_ERROR, True),
            (429, ErrorKind.SERVER_ERROR, True),
            (500, ErrorKind.SERVER_ERROR, True),
            (503, ErrorKind.SERVER_ERROR, True),
        ],
    )
    def test_mapping(self, status: int, kind: ErrorKind, recoverable: bool) -> None:
        error = classify_status(status)
        assert error.kind == kind
        assert error.recoverable is recoverable
        assert error.status_code == status

    def test_retry_after_only_for_429(self) -> None:
        assert classify_status(429, retry_after=7.0).retry_after == 7.0
        assert classify_status(503, retry_after=7.0).retry_after is None

    def test_parse_retry_after(self) -> None:
        assert parse_retry_after("12") == 12.0
        assert parse_retry_after(None) is None
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None


class TestClassifyException:
    def test_timeout(self) -> None:
        error = classify_exception(httpx.ConnectTimeout("slow"), target="aem.test", timeout=5)
        assert error.kind == ErrorKind.SERVER_ERROR
        assert error.recoverable is True
        assert "timed out" in error.message

    def test_connection_failure(self) -> None:
        error = classify_exception(httpx.ConnectError("refused"))
        assert error.recoverable is True

    def test_unknown(self) -> None:
        error = classify_exception(ValueError("bad"))
        assert error.kind == ErrorKind.UNKNOWN_ERROR
        assert error.recoverable is False
        assert isinstance(error.__cause__, ValueError)

    def test_aem_error_passes_through(self) -> None:
        original = NotFoundError("gone")
        assert classify_exception(original) is original


class TestCircuitOpenError:
    def test_message_names_target_and_wait(self) -> None:
        error = CircuitOpenError("aem.test:4502", 12.5)
        assert "aem.test:4502" in error.message
        assert "12.5s" in error.message
        assert error.recoverable is True
        assert error.retry_after == 12.5
        assert error.details["circuit_open"] is True


class TestEnvelope:
    def test_raise_for_error_rebuilds_type(self) -> None:
        info = AuthorizationError("denied", status_code=403).to_info()
        response = AEMResponse.fail(info, ResponseMetadata())
        with pytest.raises(AuthorizationError):
            response.raise_for_error()

    def test_ok_returns_self(self) -> None:
        response = AEMResponse.ok({"a": 1}, ResponseMetadata())
        assert response.raise_for_error() is response

    def test_to_dict_masks_secrets(self) -> None:
        response = AEMResponse.ok({"password": "x", "authorizableId": "admin"}, ResponseMetadata())
        data = response.to_dict()
        assert data["data"] == {"password": "***", "authorizableId": "admin"}
        assert set(data["metadata"]) >= {"timestamp", "request_id", "duration", "cached"}

    def test_sanitize_nested(self) -> None:
        payload = {"items": [{"apiKey": "k", "name": "n"}], "Authorization": "Basic x"}
        assert sanitize(payload) == {"items": [{"apiKey": "***", "name": "n"}], "Authorization": "***"}


class TestShapes:
    @pytest.mark.parametrize(
        "raw, shape",
        [
            ({"hits": [], "total": 0}, ResponseShape.QUERY_BUILDER),
            ({"results": []}, ResponseShape.PACKAGE_LIST),
            ({"workflowInstances": []}, ResponseShape.WORKFLOW_INSTANCES),
            ({"workflowModels": []}, ResponseShape.WORKFLOW_MODELS),
            ([{"uri": "/var/workflow/models/x"}], ResponseShape.WORKFLOW_MODELS),
            ({"agents": []}, ResponseShape.REPLICATION_AGENTS),
            ({"status.code": 200}, ResponseShape.SLING_POST),
            ({"jcr:primaryType": "cq:Page"}, ResponseShape.JCR_NODE),
            ("<html/>", None),
        ],
    )
    def test_detect(self, raw, shape) -> None:
        assert detect_shape(raw) == shape

    def test_parse_package_list(self) -> None:
        result = parse_response(
            {"results": [{"name": "site", "group": "my", "installed": "true"}], "total": 1},
            ResponseShape.PACKAGE_LIST,
        )
        assert isinstance(result, PackageList)
        assert result.results[0].installed is True

    def test_parse_bare_model_list(self) -> None:
        result = parse_response([{"uri": "/var/workflow/models/a", "title": "A"}], ResponseShape.WORKFLOW_MODELS)
        assert isinstance(result, WorkflowModelList)
        assert result.workflow_models[0].title == "A"

    def test_wrong_shape_is_reported(self) -> None:
        with pytest.raises(UnrecognizedResponseError) as exc_info:
            parse_response({"jcr:primaryType": "nt:unstructured"}, ResponseShape.QUERY_BUILDER)
        assert exc_info.value.details["expected"] == "query_builder"

    def test_malformed_payload_is_reported(self) -> None:
        with pytest.raises(UnrecognizedResponseError):
            parse_response({"hits": [{"title": "no path"}]}, ResponseShape.QUERY_BUILDER)


class TestBodyErrors:
    def test_success_body_has_no_error(self) -> None:
        assert extract_body_error({"success": True, "msg": "ok"}) is None
        assert extract_body_error("plain text") is None

    def test_sling_status_with_jcr_class(self) -> None:
        error = extract_body_error(
            {
                "status.code": 500,
                "status.message": "failed",
                "error": {"class": "javax.jcr.AccessDeniedException", "message": "denied"},
            }
        )
        assert isinstance(error, AuthorizationError)
        assert error.status_code == 500

    def test_sling_status_without_class(self) -> None:
        error = extract_body_error({"status.code": 404, "status.message": "nope"})
        assert isinstance(error, NotFoundError)

    def test_exception_field(self) -> None:
        error = extract_body_error(
            {"exception": {"class": "java.net.SocketTimeoutException", "message": "slow"}}
        )
        assert isinstance(error, ServerError)
        assert error.recoverable is True

    def test_success_false_is_not_recoverable(self) -> None:
        error = extract_body_error({"success": False, "msg": "package not found"})
        assert isinstance(error, AEMError)
        assert error.recoverable is False
        assert "package not found" in error.message

    def test_item_exists(self) -> None:
        error = extract_body_error({"error": {"class": "javax.jcr.ItemExistsException", "message": "exists"}})
        assert isinstance(error, ValidationError)
