# unicornx/web/middleware_logging.py
from __future__ import annotations
import logging, time, uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from unicornx.core.logging import request_id_var

log = logging.getLogger("unicornx.http")

SAFE_HEADERS = {"content-type", "user-agent", "x-request-id", "x-real-ip", "x-forwarded-for"}

class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = request_id_var.set(rid)
        start = time.perf_counter()
        scope = request.scope
        method = scope.get("method")
        path = scope.get("path")
        client = scope.get("client")
        addr = f"{client[0]}:{client[1]}" if client else "?:?"

        headers = {k.lower(): v for k, v in request.headers.items() if k.lower() in SAFE_HEADERS}
        ctype = headers.get("content-type", "")

        # размер body без чтения
        try:
            clen = int(request.headers.get("content-length", "0"))
        except ValueError:
            clen = 0

        log.info("http_request %s %s client=%s ctype=%s clen=%s", method, path, addr, ctype, clen)

        # прокидываем request-id дальше
        request.state.request_id = rid

        try:
            response: Response = await call_next(request)
            elapsed = (time.perf_counter() - start) * 1000
            log.info("http_response %s %s status=%s ms=%.2f", method, path, response.status_code, elapsed)
            response.headers["x-request-id"] = rid
            return response
        except Exception:
            elapsed = (time.perf_counter() - start) * 1000
            log.exception("http_error %s %s ms=%.2f", method, path, elapsed)
            raise
        finally:
            request_id_var.reset(token)
