"""JSON envelopes for CLI output.

Every command prints exactly one JSON object: ``{"success": true, "data": ...}``
or ``{"success": false, "error": ...}``. Errors exit with status 1.
"""

import json
from typing import Any, Dict, NoReturn, Optional

import click

from content_pipeline.core.errors import error_to_dict


def emit_success(data: Dict[str, Any]) -> None:
    click.echo(json.dumps({"success": True, "data": data}, indent=2, default=str))


def emit_error(
    message: str,
    *,
    code: str = "INTERNAL_ERROR",
    error_type: str = "internal",
    details: Optional[Dict[str, Any]] = None,
) -> NoReturn:
    """Print an error envelope and exit non-zero."""
    error: Dict[str, Any] = {"error_code": code, "error_type": error_type, "message": message}
    if details:
        error["details"] = details
    click.echo(json.dumps({"success": False, "error": error}, indent=2, default=str))
    raise SystemExit(1)


def emit_exception(exc: Exception) -> NoReturn:
    """Print a mapped exception (see ``error_to_dict``) and exit non-zero."""
    payload = error_to_dict(exc)
    message = payload.pop("message")
    code = payload.pop("error_code")
    error_type = payload.pop("error_type")
    emit_error(message, code=code, error_type=error_type, details=payload or None)
