"""
tenantbook/errors.py

Application-wide exception handlers and the persistent error log.

- HTTPException keeps FastAPI's {"detail": ...} body (and its headers)
- Unknown routes get a JSON 404 with the path
- Validation errors are 400 "Data validation failed" with field errors
- sqlite3 integrity errors are 409, other sqlite3 errors 503
- Anything else is a 500 envelope; 5xx responses are written to error_logs
"""

from __future__ import annotations

import sqlite3
import traceback
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenantbook.activity import client_ip
from tenantbook.config import IS_DEV
from tenantbook.db import get_db, now_iso


def persist_error(request: Optional[Request], exc: BaseException, message: Optional[str] = None) -> None:
    """Print and store an error. Never raises."""
    route = request.url.path if request is not None else None
    method = request.method if request is not None else None
    user_key = getattr(request.state, "user_key", None) if request is not None else None
    message = message or str(exc) or type(exc).__name__
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    print(f"[ERROR] {method} {route}: {type(exc).__name__}: {message}")
    if IS_DEV:
        print(stack)

    try:
        conn = get_db()
        try:
            conn.execute(
                """
                INSERT INTO error_logs (message, name, stack, route, method, ip, user_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (message, type(exc).__name__, stack, route, method, client_ip(request), user_key, now_iso()),
            )
            conn.commit()
        finally:
            conn.close()
    except sqlite3.Error as e:
        print(f"[ERROR] Could not persist error log: {e}")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404 and exc.detail == "Not Found":
        # Raised by the router itself: no route matched
        return JSONResponse(
            status_code=404,
            content={"statusCode": 404, "message": "Route not found", "path": request.url.path},
        )
    if exc.status_code >= 500:
        persist_error(request, exc, message=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    if IS_DEV:
        print(f"[ERROR] Validation failed on {request.method} {request.url.path}: {len(exc.errors())} error(s)")
    return JSONResponse(
        status_code=400,
        content={"detail": "Data validation failed", "errors": jsonable_encoder(exc.errors())},
    )


async def integrity_error_handler(request: Request, exc: sqlite3.IntegrityError) -> JSONResponse:
    print(f"[ERROR] Integrity error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"detail": "Duplicate or conflicting record"})


async def database_error_handler(request: Request, exc: sqlite3.Error) -> JSONResponse:
    persist_error(request, exc)
    return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    persist_error(request, exc)
    return JSONResponse(
        status_code=500,
        content={
            "status": "Error",
            "statusCode": 500,
            "message": "Internal server error",
            "name": type(exc).__name__,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(sqlite3.IntegrityError, integrity_error_handler)
    app.add_exception_handler(sqlite3.Error, database_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
