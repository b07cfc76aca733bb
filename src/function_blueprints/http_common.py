import functools
from typing import Any, Callable, Optional

import azure.functions as func
from pydantic import BaseModel

from src.campaigns.services import CampaignServices
from src.shared.config import Settings
from src.shared.logging_utils import error as log_error, warning as log_warning
from src.specs.common.errors import CampaignStoreError, UnauthorizedError, ValidationError
from src.specs.models.http import ErrorResponse

JSON_MIMETYPE = "application/json"


def json_response(body: BaseModel, status_code: int = 200, headers: Optional[dict] = None) -> func.HttpResponse:
    return func.HttpResponse(
        body=body.model_dump_json(exclude_none=True),
        mimetype=JSON_MIMETYPE,
        status_code=status_code,
        headers=headers,
    )


def error_response(exc: CampaignStoreError) -> func.HttpResponse:
    payload = exc.to_dict()
    err = ErrorResponse(message=payload["message"], errorCode=payload["code"], details=payload["details"] or None)
    return json_response(err, status_code=exc.status_code)


def tenant_id(req: func.HttpRequest, settings: Settings) -> str:
    value = (req.headers.get(settings.tenant_header) or "").strip()
    if not value:
        raise UnauthorizedError()
    return value


def route_param(req: func.HttpRequest, name: str) -> str:
    value = req.route_params.get(name)
    if not value:
        raise ValidationError.for_field(name, "is required")
    return value


def read_json(req: func.HttpRequest) -> Any:
    try:
        return req.get_json()
    except ValueError:
        raise ValidationError.for_field("body", "must be valid JSON")


def services_from_env() -> CampaignServices:
    return CampaignServices.build(Settings.from_env())


def _unexpected(req: func.HttpRequest, exc: Exception) -> func.HttpResponse:
    log_error(None, "http:unhandled_error", route=req.url, error=str(exc))
    err = ErrorResponse(message="Internal server error", errorCode="INTERNAL_ERROR")
    return json_response(err, status_code=500)


def _known(req: func.HttpRequest, exc: CampaignStoreError) -> func.HttpResponse:
    if exc.status_code >= 500:
        log_error(None, "http:request_failed", route=req.url, code=exc.code, error=str(exc))
    else:
        log_warning(None, "http:request_rejected", route=req.url, code=exc.code, status=exc.status_code)
    return error_response(exc)


def handles_errors(fn: Callable[..., func.HttpResponse]) -> Callable[..., func.HttpResponse]:
    """Map domain errors raised by a handler to JSON error responses."""

    @functools.wraps(fn)
    def wrapper(req: func.HttpRequest, *args: Any, **kwargs: Any) -> func.HttpResponse:
        try:
            return fn(req, *args, **kwargs)
        except CampaignStoreError as exc:
            return _known(req, exc)
        except Exception as exc:  # pylint: disable=broad-except
            return _unexpected(req, exc)

    return wrapper


def handles_errors_async(fn):
    @functools.wraps(fn)
    async def wrapper(req: func.HttpRequest, *args: Any, **kwargs: Any) -> func.HttpResponse:
        try:
            return await fn(req, *args, **kwargs)
        except CampaignStoreError as exc:
            return _known(req, exc)
        except Exception as exc:  # pylint: disable=broad-except
            return _unexpected(req, exc)

    return wrapper


@handles_errors
def with_services(req: func.HttpRequest, handler: Callable[..., func.HttpResponse], *args: Any) -> func.HttpResponse:
    """Build the invocation's services from app settings and run ``handler``."""
    return handler(req, services_from_env(), *args)


@handles_errors_async
async def with_services_async(req: func.HttpRequest, handler, *args: Any) -> func.HttpResponse:
    return await handler(req, services_from_env(), *args)
