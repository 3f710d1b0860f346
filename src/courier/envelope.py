"""The response envelope - the one JSON shape every caller sees."""

from dataclasses import dataclass
from typing import Any

from .errors import FailureClassification
from .headers import filter_response_headers
from .models import UpstreamResult

INVALID_SECRET = "Invalid Secret"
TARGET_URL_REQUIRED = "Target URL required"
INVALID_BODY = "Invalid request body"
PAYLOAD_TOO_LARGE = "Payload Too Large"
INTERNAL_FAULT = "InternalFault"


@dataclass
class ResponseEnvelope:
    """HTTP status plus JSON body. `success` is True iff upstream answered."""

    status: int
    body: dict[str, Any]

    @property
    def success(self) -> bool:
        return bool(self.body.get("success"))


def rejected(status: int, error: str, request_id: str) -> ResponseEnvelope:
    """Refused before any upstream contact (bad secret, missing URL, bad body)."""
    return ResponseEnvelope(
        status=status,
        body={
            "success": False,
            "status": status,
            "error": error,
            "meta": {"requestId": request_id},
        },
    )


def succeeded(result: UpstreamResult, request_id: str, target: str) -> ResponseEnvelope:
    return ResponseEnvelope(
        status=result.status_code,
        body={
            "success": True,
            "status": result.status_code,
            "statusText": result.status_text,
            "data": result.body,
            "headers": filter_response_headers(result.headers),
            "meta": {
                "requestId": request_id,
                "durationMs": result.duration_ms,
                "target": target,
            },
        },
    )


def failed(failure: FailureClassification, request_id: str) -> ResponseEnvelope:
    body: dict[str, Any] = {
        "success": False,
        "status": failure.http_status,
        "error": failure.error_type.value,
        "message": failure.message,
        "code": failure.code,
        "meta": {"requestId": request_id},
    }
    if failure.details is not None:
        body["details"] = failure.details
    return ResponseEnvelope(status=failure.http_status, body=body)


def internal_fault(request_id: str, message: str = "Internal proxy error") -> ResponseEnvelope:
    return ResponseEnvelope(
        status=500,
        body={
            "success": False,
            "status": 500,
            "error": INTERNAL_FAULT,
            "message": message,
            "code": "INTERNAL_ERROR",
            "meta": {"requestId": request_id},
        },
    )
