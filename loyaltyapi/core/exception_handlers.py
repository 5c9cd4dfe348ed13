import logging
import traceback
from typing import Any, Dict, List

from fastapi import Request
from fastapi.responses import JSONResponse

from .exceptions import InternalServerError, ReconciliationError

logger = logging.getLogger("loyaltyapi")


def _request_context(request: Request) -> Dict[str, Any]:
    client = request.client.host if request.client else "-"
    return {
        "method": request.method,
        "url": str(request.url),
        "client": client,
    }


def _error_body(code: str, message: str, details: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {"code": code, "message": message, "details": details},
    }


async def handle_base_api_exception(request, exc):
    ctx = _request_context(request)
    summary = f"[{type(exc).__name__}] {ctx['method']} {ctx['url']} from {ctx['client']} -> {exc.status_code}: {exc.message}"
    if isinstance(exc, ReconciliationError):
        logger.critical(f"{summary} {exc.details}")
    elif exc.status_code >= 500:
        logger.error(summary)
    else:
        logger.warning(summary)
    return JSONResponse(status_code=exc.status_code, content=exc.detail)  # type: ignore[arg-type]


async def handle_http_exception(request, exc):
    ctx = _request_context(request)
    error_msg = f"[HTTPException] {ctx['method']} {ctx['url']} from {ctx['client']} -> {exc.status_code}: {exc.detail}"

    if exc.status_code >= 500:
        tb_str = "".join(traceback.format_tb(exc.__traceback__))
        logger.error(f"{error_msg}\n\nStack Trace:\n{tb_str}")
    else:
        logger.warning(error_msg)

    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = _error_body("HTTP_ERROR", str(exc.detail), {})
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


def _simplify_validation_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # ctx 에 예외 객체가 들어있을 수 있어 직렬화 가능한 필드만 남김
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in errors
    ]


async def handle_validation_error(request, exc):
    ctx = _request_context(request)
    errors = _simplify_validation_errors(exc.errors())
    logger.warning(
        f"[ValidationError] {ctx['method']} {ctx['url']} from {ctx['client']} -> 422: {errors}"
    )
    content = _error_body("VALIDATION_001", "Validation failed", {"errors": errors})
    return JSONResponse(status_code=422, content=content)


async def handle_unexpected_error(request, exc):
    ctx = _request_context(request)
    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(
        f"\n{'=' * 80}\n"
        f"[Unhandled Error] {ctx['method']} {ctx['url']} from {ctx['client']}\n"
        f"Exception Type: {type(exc).__name__}\n"
        f"Exception Message: {str(exc)}\n\n"
        f"Full Stack Trace:\n{tb_str}"
        f"{'=' * 80}"
    )

    internal = InternalServerError()
    return JSONResponse(status_code=internal.status_code, content=internal.detail)  # type: ignore[arg-type]
