from __future__ import annotations
import enum
from typing import Any, Dict

class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    INVALID_TRANSITION = "invalid_transition"

CODE_KINDS: Dict[str, ErrorKind] = {
    "MISSING_FIELDS":      ErrorKind.VALIDATION,
    "INVALID_COPIES":      ErrorKind.VALIDATION,
    "INVALID_PRICE":       ErrorKind.VALIDATION,
    "INVALID_RATING":      ErrorKind.VALIDATION,
    "ISBN_EXISTS":         ErrorKind.VALIDATION,
    "BOOK_NOT_FOUND":      ErrorKind.NOT_FOUND,
    "LOAN_NOT_FOUND":      ErrorKind.NOT_FOUND,
    "NO_AVAILABLE_COPIES": ErrorKind.CONFLICT,
    "ALREADY_BORROWED":    ErrorKind.CONFLICT,
    "ALREADY_RETURNED":    ErrorKind.CONFLICT,
    "FORBIDDEN":           ErrorKind.FORBIDDEN,
    "NOT_LOAN_OWNER":      ErrorKind.FORBIDDEN,
    "INVALID_DUE_DATE":    ErrorKind.INVALID_TRANSITION,
}

HTTP_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_TRANSITION: 422,
}

def ok(msg: str, **data) -> Dict[str, Any]:
    return {"ok": True, "message": msg, **({"data": data} if data else {})}

def err(msg: str, code: str, **data) -> Dict[str, Any]:
    kind = CODE_KINDS[code]
    return {"ok": False, "message": msg, "code": code, "kind": kind.value, **({"data": data} if data else {})}

def http_status(result: Dict[str, Any]) -> int:
    kind = result.get("kind")
    return HTTP_STATUS.get(ErrorKind(kind), 400) if kind else 400
