# unicornx/errors.py
from __future__ import annotations


class AppError(Exception):
    """Базовая доменная ошибка. status_code/code уходят в JSON-ответ."""
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class UnauthorizedError(AppError):
    status_code = 401
    code = "unauthorized"


class ValidationFailed(AppError):
    status_code = 400
    code = "bad_request"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


class ProviderError(AppError):
    """Платёжный провайдер ответил ошибкой."""
    status_code = 502
    code = "provider_error"
