from datetime import datetime, timezone
from typing import Any, Sequence

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from medtrack.errors import InvalidField, MedtrackError, MissingRequiredField

_LOCATIONS = {"body", "query", "path", "header", "cookie"}


def send_success(message: str, data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "success",
            "message": message,
            "data": jsonable_encoder({} if data is None else data, by_alias=True),
        },
    )


def send_error(error: MedtrackError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={
            "status": "error",
            **error.to_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


def validation_error(errors: Sequence[dict]) -> MedtrackError:
    """Map request validation details onto MissingRequiredField / InvalidField."""
    missing = [e for e in errors if e.get("type") == "missing"]
    first = (missing or list(errors) or [{}])[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in _LOCATIONS)

    if missing:
        return MissingRequiredField(f"Field {field} is required." if field else "Request body is required.")
    message = first.get("msg") or InvalidField.default_message
    return InvalidField(f"{field}: {message}" if field else message)
