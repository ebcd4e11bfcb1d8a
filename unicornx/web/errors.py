# unicornx/web/errors.py
from __future__ import annotations
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from unicornx.errors import AppError
from unicornx.models.user import UserRole

log = logging.getLogger("unicornx.errors")


def _rid(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


def _caller_is_admin(request: Request) -> bool:
    # роль кладёт get_current_user после загрузки пользователя из БД
    return getattr(request.state, "user_role", None) == UserRole.ADMIN


def error_response(request: Request, status_code: int, code: str, detail: Optional[Any] = None) -> JSONResponse:
    body: dict[str, Any] = {"ok": False, "error": code, "rid": _rid(request)}
    if detail is not None:
        body["detail"] = detail
    return JSONResponse(jsonable_encoder(body), status_code=status_code)


async def app_error_handler(request: Request, exc: AppError):
    log.info("app_error %s %s: %s", exc.status_code, exc.code, exc.message)
    return error_response(request, exc.status_code, exc.code, exc.message)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    log.warning("validation_error path=%s detail=%s", request.url.path, exc.errors())
    return error_response(request, 422, "validation_error", exc.errors())


async def unhandled_exception_handler(request: Request, exc: Exception):
    log.error("unhandled_exception path=%s error=%r", request.url.path, exc, exc_info=exc)
    # детали наружу только админу
    detail = str(exc) if _caller_is_admin(request) else None
    return error_response(request, 500, "internal_error", detail)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
