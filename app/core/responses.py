"""
Response envelope helpers.
"""
from typing import Any


def error_response(message: str, code: str, details: Any = None) -> dict[str, Any]:
    """Build the failure envelope: {"success": false, "error": {"message", "code"}}."""
    error: dict[str, Any] = {"message": message, "code": code}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}


def page_count(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if limit > 0 else 0
