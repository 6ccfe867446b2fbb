"""Exceptions raised by the detection engine.

Fetch and browser failures never surface as exceptions; they degrade to empty
evidence. What remains here are input errors, record validation errors,
persistence failures and illegal scan-phase moves.
"""

from typing import Any, Dict, Optional


class StackProbeError(Exception):
    """Base exception for all stackprobe errors.

    Carries a machine-readable ``error_code`` and optional ``details`` so a
    caller (CLI or API layer) can render a single clear error.
    """

    error_code: str = "STACKPROBE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Return structured error dict."""
        response = {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            response["details"] = self.details
        return response


# ============ Input / validation errors ============


class InvalidURLError(StackProbeError):
    """URL missing or unusable; no scan is attempted."""

    error_code = "INVALID_URL"

    def __init__(self, url: Any, reason: str = "URL is required"):
        super().__init__(f"{reason}: {url!r}", details={"url": url, "reason": reason})


class RecordValidationError(StackProbeError):
    """Outbound scan record failed validation before persistence."""

    error_code = "RECORD_INVALID"

    def __init__(self, problems: list):
        super().__init__(
            "Scan record failed validation: " + "; ".join(problems),
            details={"problems": list(problems)},
        )


# ============ Persistence errors ============


class StorageError(StackProbeError):
    """Persistence store operation failed."""

    error_code = "STORAGE_ERROR"


class ScanNotFoundError(StackProbeError):
    """No scan record exists for the requested id."""

    error_code = "SCAN_NOT_FOUND"

    def __init__(self, scan_id: str):
        super().__init__(f"Scan not found: {scan_id}", details={"scan_id": scan_id})


# ============ Phase / job errors ============


class PhaseTransitionError(StackProbeError):
    """A scan phase was asked to move along an edge the state machine forbids."""

    error_code = "ILLEGAL_PHASE_TRANSITION"

    def __init__(self, phase: str, current: str, target: str):
        super().__init__(
            f"Phase '{phase}' cannot move from {current} to {target}",
            details={"phase": phase, "from": current, "to": target},
        )


class ProbeLockedError(StackProbeError):
    """Probe requested before the render phase finished."""

    error_code = "PROBE_LOCKED"

    def __init__(self, scan_id: str, render_status: str):
        super().__init__(
            f"Probe for scan {scan_id} is locked until render finishes (render={render_status})",
            details={"scan_id": scan_id, "render": render_status},
        )


class ProbeAlreadyRunningError(StackProbeError):
    """Probe re-triggered while one is already running for the scan."""

    error_code = "PROBE_ALREADY_RUNNING"

    def __init__(self, scan_id: str):
        super().__init__(f"Probe already running for scan {scan_id}", details={"scan_id": scan_id})


class JobAlreadyRunningError(StackProbeError):
    """A background job with the same key is still in flight."""

    error_code = "JOB_ALREADY_RUNNING"

    def __init__(self, key: str):
        super().__init__(f"Job already in flight: {key}", details={"key": key})
