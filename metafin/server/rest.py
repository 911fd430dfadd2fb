"""REST routes mounted on the FastMCP HTTP app."""

from __future__ import annotations

import json
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, TYPE_CHECKING

import pydantic
from pydantic import BaseModel
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..common.errors import MetafinError, ValidationError
from ..common.types import ITEM_TYPES
from ..curation.misclassification import BulkReviewRequest, ReviewAction
from ..operations.models import ExecuteOperationRequest

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from . import MetafinServer

logger = logging.getLogger("metafin.server.rest")

Handler = Callable[[Request], Awaitable[Any]]

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_SEVERITIES = frozenset({"low", "medium", "high"})


def _json(result: Any, status_code: int = 200) -> JSONResponse:
    if isinstance(result, BaseModel):
        result = result.model_dump(mode="json")
    elif isinstance(result, list):
        result = [
            entry.model_dump(mode="json") if isinstance(entry, BaseModel) else entry
            for entry in result
        ]
    return JSONResponse(result, status_code=status_code)


def error_response(error: MetafinError) -> JSONResponse:
    return JSONResponse(error.to_dict(), status_code=error.status_code)


def _endpoint(handler: Handler, *, status_code: int = 200) -> Callable[[Request], Awaitable[Response]]:
    @wraps(handler)
    async def _wrapped(request: Request) -> Response:
        try:
            result = await handler(request)
        except pydantic.ValidationError as exc:
            return error_response(ValidationError.from_pydantic(exc))
        except MetafinError as exc:
            if exc.status_code >= 500:
                logger.error("%s %s failed: %s", request.method, request.url.path, exc)
            return error_response(exc)
        return _json(result, status_code)

    return _wrapped


async def _read_json(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        raise ValidationError("Request body must be valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _query_int(request: Request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(
            f"{name} must be an integer", details={name: raw}
        ) from exc


def _query_flag(request: Request, name: str) -> bool:
    return (request.query_params.get(name) or "").strip().lower() in _TRUE_VALUES


def _query_types(request: Request) -> list[str] | None:
    raw = request.query_params.get("types")
    if not raw:
        return None
    types = [value.strip() for value in raw.split(",") if value.strip()]
    unknown = [value for value in types if value not in ITEM_TYPES]
    if unknown:
        raise ValidationError(
            "Unknown item types: " + ", ".join(unknown), details={"types": unknown}
        )
    return types or None


def register_rest_routes(server: "MetafinServer") -> None:
    """Attach the operations and misclassification routes to *server*."""

    def _route(path: str, method: str, *, status_code: int = 200):
        def _register(handler: Handler) -> Handler:
            server.custom_route(path, methods=[method])(
                _endpoint(handler, status_code=status_code)
            )
            return handler

        return _register

    @_route("/operations/preview", "POST")
    async def preview_operation(request: Request) -> Any:
        return await server.operation_service.generate_preview(await _read_json(request))

    @_route("/operations/execute", "POST", status_code=202)
    async def execute_operation(request: Request) -> Any:
        body = ExecuteOperationRequest.model_validate(await _read_json(request))
        return await server.operation_service.execute_operation(body.preview_token)

    @_route("/operations/jobs/{job_id}", "GET")
    async def get_job_status(request: Request) -> Any:
        return await server.operation_service.get_job_status(
            request.path_params["job_id"],
            include_details=_query_flag(request, "include_details")
            or _query_flag(request, "includeDetails"),
        )

    @_route("/operations/jobs", "GET")
    async def list_jobs(request: Request) -> Any:
        return await server.operation_service.list_jobs(
            limit=request.query_params.get("limit"),
            job_type=request.query_params.get("type") or None,
            status=request.query_params.get("status") or None,
        )

    @_route("/misclassifications/scan", "POST")
    async def scan_misclassifications(request: Request) -> Any:
        return await server.scanner.scan(
            library_id=request.query_params.get("library") or None,
            item_types=_query_types(request),
        )

    @_route("/misclassifications", "GET")
    async def list_misclassifications(request: Request) -> Any:
        severity = request.query_params.get("severity") or None
        if severity is not None and severity not in _SEVERITIES:
            raise ValidationError(
                "severity must be one of low, medium, high", details={"severity": severity}
            )
        return await server.misclassification_service.get_misclassified_items(
            library_id=request.query_params.get("library") or None,
            severity=severity,
            limit=_query_int(request, "limit", 50),
            offset=_query_int(request, "offset", 0),
        )

    @_route("/misclassifications", "DELETE")
    async def clear_misclassifications(request: Request) -> Any:
        count = await server.misclassification_service.mark_all_as_reviewed(
            request.query_params.get("library") or None
        )
        return {
            "success": True,
            "message": f"Marked {count} items as reviewed",
            "items_cleared": count,
        }

    @_route("/misclassifications/stats", "GET")
    async def review_queue_stats(request: Request) -> Any:
        return await server.misclassification_service.get_review_queue_stats(
            request.query_params.get("library") or None
        )

    @_route("/misclassifications/review", "POST")
    async def bulk_review(request: Request) -> Any:
        body = BulkReviewRequest.model_validate(await _read_json(request))
        return await server.misclassification_service.bulk_review(body.item_ids, body.action)

    @_route("/misclassifications/{item_id}/review", "POST")
    async def review_item(request: Request) -> Any:
        action = ReviewAction.model_validate(await _read_json(request))
        item = await server.misclassification_service.review_item(
            request.path_params["item_id"], action
        )
        return {"success": True, "message": "Item reviewed", "item_id": item.id, "type": item.type}

    @_route("/misclassifications/{item_id}/analysis", "GET")
    async def analyze_item(request: Request) -> Any:
        return await server.misclassification_service.analyze_item(
            request.path_params["item_id"]
        )

    @_route("/misclassifications/{item_id}", "DELETE")
    async def dismiss_misclassification(request: Request) -> Any:
        await server.misclassification_service.dismiss_misclassification(
            request.path_params["item_id"]
        )
        return {"success": True, "message": "Misclassification dismissed"}

    @_route("/providers/search", "GET")
    async def search_providers(request: Request) -> Any:
        query = (request.query_params.get("q") or "").strip()
        if not query:
            raise ValidationError("q is required")
        raw_year = request.query_params.get("year")
        year = _query_int(request, "year", 0) if raw_year else None
        return await server.provider_registry.search_ranked(query, year=year)


__all__ = ["error_response", "register_rest_routes"]
