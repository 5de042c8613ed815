"""JSON envelope shared by every API response."""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

VALIDATION_MESSAGE = "The given data was invalid."

_LOCATION_PREFIXES = {"body", "query", "path", "header", "cookie"}


def success(data: Any = None, message: str = "Operation successful", status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "success", "message": message, "data": jsonable_encoder(data)},
    )


def error(message: str = "Error occurred", status_code: int = status.HTTP_400_BAD_REQUEST, data: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "message": message, "data": jsonable_encoder(data)},
    )


def validation_error(errors: Mapping[str, Sequence[str]]) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "status": "error",
            "message": VALIDATION_MESSAGE,
            "errors": {field: list(messages) for field, messages in errors.items()},
        },
    )


def _field_name(loc: Sequence[object]) -> str:
    parts = [str(part) for part in loc]
    if parts and parts[0] in _LOCATION_PREFIXES:
        parts = parts[1:]
    return ".".join(parts) or "body"


def _describe(field: str, detail: Mapping[str, Any]) -> str:
    label = field.replace("_", " ")
    kind = detail.get("type", "")
    ctx = detail.get("ctx") or {}

    if kind == "missing":
        return f"The {label} field is required."
    if kind == "string_too_short":
        minimum = ctx.get("min_length", 1)
        if minimum <= 1:
            return f"The {label} field is required."
        return f"The {label} field must be at least {minimum} characters."
    if kind == "string_too_long":
        return f"The {label} field must not be greater than {ctx.get('max_length')} characters."
    if kind in {"string_type", "int_type", "int_parsing", "dict_type", "model_attributes_type"}:
        return f"The {label} field has an invalid type."
    if kind == "literal_error":
        return f"The selected {label} is invalid."
    if kind == "greater_than_equal":
        return f"The {label} field must be at least {ctx.get('ge')}."
    if kind == "value_error":
        reason = str(detail.get("msg", "")).removeprefix("Value error, ")
        return f"The {label} field {reason}."
    if kind == "json_invalid":
        return "The request body must be valid JSON."
    return str(detail.get("msg", "Invalid value."))


def format_validation_errors(details: Sequence[Mapping[str, Any]]) -> Dict[str, List[str]]:
    """Group pydantic error details by field name with readable messages."""

    errors: Dict[str, List[str]] = {}
    for detail in details:
        field = _field_name(detail.get("loc", ()))
        message = _describe(field, detail)
        bucket = errors.setdefault(field, [])
        if message not in bucket:
            bucket.append(message)
    return errors


__all__ = [
    "VALIDATION_MESSAGE",
    "error",
    "format_validation_errors",
    "success",
    "validation_error",
]
