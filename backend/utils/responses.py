from typing import Any, Optional

from fastapi.responses import JSONResponse

from core.config import settings

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


def api_response(data: Any = None, message: str = "Success", status_code: int = 200) -> JSONResponse:
    """Success envelope with no-store caching headers."""
    content = {
        "statusCode": status_code,
        "data": data if data is not None else {},
        "message": message,
        "success": True,
    }
    return JSONResponse(content=content, status_code=status_code, headers=NO_STORE_HEADERS)


def error_response(status_code: int, message: str, error: str, reason: Optional[str] = None) -> JSONResponse:
    """Failure envelope; never carries a data payload."""
    content = {
        "statusCode": status_code,
        "message": message,
        "error": error,
        "success": False,
    }
    if reason:
        content["reason"] = reason
    return JSONResponse(content=content, status_code=status_code, headers=NO_STORE_HEADERS)


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": settings.COOKIE_SECURE,
        "samesite": settings.COOKIE_SAMESITE,
        "path": "/",
    }


def set_auth_cookies(response: JSONResponse, access_token: str, refresh_token: str) -> JSONResponse:
    options = _cookie_options()
    response.set_cookie(
        settings.ACCESS_COOKIE_NAME,
        access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        **options,
    )
    response.set_cookie(
        settings.REFRESH_COOKIE_NAME,
        refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600,
        **options,
    )
    return response


def clear_auth_cookies(response: JSONResponse) -> JSONResponse:
    options = _cookie_options()
    response.delete_cookie(settings.ACCESS_COOKIE_NAME, **options)
    response.delete_cookie(settings.REFRESH_COOKIE_NAME, **options)
    return response
