import logging
import traceback
from typing import Any, Dict

from fastapi import Request
from fastapi.responses import JSONResponse

from .exceptions import InternalServerError

logger = logging.getLogger("payapi")


def _request_context(request: Request) -> str:
    client = request.client.host if request.client else "-"
    context = f"{request.method} {request.url.path} from {client}"
    # 결제 재시도는 같은 Idempotency-Key 로 묶어서 추적
    idempotency_key = request.headers.get("Idempotency-Key")
    if idempotency_key:
        context += f" key={idempotency_key}"
    return context


def _log(tag: str, request: Request, status_code: int, message: Any) -> None:
    line = f"[{tag}] {_request_context(request)} -> {status_code}: {message}"
    if status_code >= 500:
        logger.error(line)
    else:
        logger.warning(line)


def _error_body(code: str, message: str, details: Dict[str, Any] = None) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {"code": code, "message": message, "details": details or {}},
    }


async def handle_base_api_exception(request, exc):
    _log(exc.error_code, request, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.detail)  # type: ignore[arg-type]


async def handle_http_exception(request, exc):
    _log("HTTPException", request, exc.status_code, exc.detail)
    if exc.status_code >= 500:
        logger.error("".join(traceback.format_tb(exc.__traceback__)))

    if isinstance(exc.detail, dict) and "error" in exc.detail:  # type: ignore[truthy-bool]
        content = exc.detail  # type: ignore[assignment]
    else:
        content = _error_body("HTTP_ERROR", str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None)
    )


async def handle_validation_error(request, exc):
    errors = jsonable_errors(exc.errors())
    _log("ValidationError", request, 422, errors)
    return JSONResponse(
        status_code=422,
        content=_error_body("VALIDATION_001", "Validation failed", {"errors": errors}),
    )


def jsonable_errors(errors) -> list:
    # pydantic v2 의 ctx 에는 예외 객체가 들어갈 수 있어 문자열로 변환
    cleaned = []
    for err in errors:
        item = dict(err)
        if "ctx" in item:
            item["ctx"] = {k: str(v) for k, v in item["ctx"].items()}
        item.pop("url", None)
        cleaned.append(item)
    return cleaned


async def handle_unexpected_error(request, exc):
    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(
        f"[Unhandled Error] {_request_context(request)}\n"
        f"{type(exc).__name__}: {exc}\n\n{tb_str}"
    )

    internal = InternalServerError()
    return JSONResponse(status_code=internal.status_code, content=internal.detail)  # type: ignore[arg-type]
