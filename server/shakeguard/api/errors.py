"""Shared request parsing and rejection responses for the API routers."""

from __future__ import annotations

import json
import math

from fastapi import Request
from fastapi.responses import JSONResponse


class InvalidPayload(ValueError):
    """A request body failed validation. The message is returned to the client."""

    status_code = 422


class MalformedBody(InvalidPayload):
    status_code = 400


def rejected(error: str, status_code: int = 422) -> JSONResponse:
    return JSONResponse(content={"accepted": False, "error": error}, status_code=status_code)


async def read_json(request: Request) -> dict:
    """Parse the body as a JSON object or raise InvalidPayload."""
    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedBody("invalid JSON")
    if not isinstance(body, dict):
        raise MalformedBody("expected a JSON object")
    return body


def number(body: dict, key: str, default: float | None = None) -> float:
    """Fetch a finite number from ``body`` or raise InvalidPayload."""
    value = body.get(key, default)
    if value is None:
        raise InvalidPayload(f"missing {key}")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidPayload(f"{key} must be a number")
    if not math.isfinite(value):
        raise InvalidPayload(f"{key} must be finite")
    return float(value)


def coordinates(body: dict) -> tuple[float, float]:
    lat = number(body, "latitude")
    lon = number(body, "longitude")
    if not -90.0 <= lat <= 90.0:
        raise InvalidPayload("latitude out of range")
    if not -180.0 <= lon <= 180.0:
        raise InvalidPayload("longitude out of range")
    return lat, lon
