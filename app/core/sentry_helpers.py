import sentry_sdk
from fastapi import Request
from typing import Any


def set_user_context(user_id: int):
    sentry_sdk.set_user({"id": user_id})


def set_request_context(request: Request):
    sentry_sdk.set_context(
        "request",
        {
            "url": str(request.url),
            "method": request.method,
            "query_params": dict(request.query_params),
        },
    )


def capture_exception_with_context(
    error: Exception, context: dict[str, Any] | None = None, level: str = "error"
):
    with sentry_sdk.new_scope() as scope:
        scope.level = level
        if context:
            for key, value in context.items():
                scope.set_context(key, value)
        sentry_sdk.capture_exception(error)


def add_breadcrumb(
    message: str,
    category: str = "default",
    level: str = "info",
    data: dict[str, Any] | None = None,
):
    sentry_sdk.add_breadcrumb(
        message=message, category=category, level=level, data=data or {}
    )
