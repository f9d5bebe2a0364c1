"""Map Cloud Controller resource JSON onto the generic `OperationStatus`.

Each asynchronous resource reports progress with its own field and
vocabulary. The tables below reduce those to the four states the waiter
understands; anything unrecognised raises `UnknownOperationStateError`
rather than being guessed at.
"""

from typing import Optional
from urllib.parse import urlparse

from cloud_controller_client.errors import UnknownOperationStateError
from cloud_controller_client.models import OperationReference, OperationState, OperationStatus

V2_JOB_STATES = {
    "queued": OperationState.pending,
    "running": OperationState.running,
    "finished": OperationState.succeeded,
    "failed": OperationState.failed,
}

V3_JOB_STATES = {
    "PROCESSING": OperationState.running,
    "POLLING": OperationState.running,
    "COMPLETE": OperationState.succeeded,
    "FAILED": OperationState.failed,
}

LAST_OPERATION_STATES = {
    "initial": OperationState.running,
    "in progress": OperationState.running,
    "succeeded": OperationState.succeeded,
    "failed": OperationState.failed,
}

BUILD_STATES = {
    "STAGING": OperationState.running,
    "STAGED": OperationState.succeeded,
    "FAILED": OperationState.failed,
}

PACKAGE_STATES = {
    "AWAITING_UPLOAD": OperationState.pending,
    "PROCESSING_UPLOAD": OperationState.running,
    "COPYING": OperationState.running,
    "READY": OperationState.succeeded,
    "FAILED": OperationState.failed,
    "EXPIRED": OperationState.failed,
}


def _lookup(table: dict, resource: str, value) -> OperationState:
    try:
        return table[value]
    except (KeyError, TypeError):
        raise UnknownOperationStateError(resource, value) from None


def v2_job_status(body: dict) -> OperationStatus:
    entity = body.get("entity", {})
    state = _lookup(V2_JOB_STATES, "v2 job", entity.get("status"))

    error_detail = None
    if state == OperationState.failed:
        details = entity.get("error_details") or {}
        error_detail = details.get("description") or details.get("error_code")

    return OperationStatus(
        state=state,
        error_detail=error_detail,
        progress_hint=entity.get("status"),
        raw_response=body,
    )


def v3_job_status(body: dict) -> OperationStatus:
    state = _lookup(V3_JOB_STATES, "v3 job", body.get("state"))

    error_detail = None
    if state == OperationState.failed:
        errors = body.get("errors") or []
        error_detail = "; ".join(
            error.get("detail") or error.get("title", "") for error in errors
        ) or None

    return OperationStatus(
        state=state,
        error_detail=error_detail,
        progress_hint=body.get("operation"),
        raw_response=body,
    )


def service_instance_status(body: dict) -> OperationStatus:
    """Works for both the v2 (`entity.last_operation`) and v3 (`last_operation`) shapes"""
    resource = body.get("entity", body)
    last_operation = resource.get("last_operation")

    # User-provided instances and old brokers report no last operation at all
    if not last_operation:
        return OperationStatus(state=OperationState.succeeded, raw_response=body)

    state = _lookup(LAST_OPERATION_STATES, "service instance", last_operation.get("state"))
    return OperationStatus(
        state=state,
        error_detail=last_operation.get("description") if state == OperationState.failed else None,
        progress_hint=last_operation.get("type"),
        raw_response=body,
    )


def build_status(body: dict) -> OperationStatus:
    state = _lookup(BUILD_STATES, "build", body.get("state"))
    return OperationStatus(
        state=state,
        error_detail=body.get("error") if state == OperationState.failed else None,
        progress_hint=body.get("state"),
        raw_response=body,
    )


def package_status(body: dict) -> OperationStatus:
    value = body.get("state")
    state = _lookup(PACKAGE_STATES, "package", value)

    error_detail = None
    if value == "EXPIRED":
        error_detail = "Package expired before it could be used"
    elif state == OperationState.failed:
        error_detail = "Package processing failed"

    return OperationStatus(
        state=state,
        error_detail=error_detail,
        progress_hint=value,
        raw_response=body,
    )


def job_reference_from_v2(body: dict) -> OperationReference:
    reference = body.get("metadata", {}).get("guid") or body.get("entity", {}).get("guid")
    if not reference:
        raise ValueError("Response does not contain a job GUID")
    return reference


def job_reference_from_location(location: Optional[str]) -> OperationReference:
    """Extract the job GUID from a `Location: .../v3/jobs/<guid>` header"""
    if not location:
        raise ValueError("Response does not contain a job Location header")

    segments = [segment for segment in urlparse(location).path.split("/") if segment]
    if len(segments) < 2 or segments[-2] != "jobs":
        raise ValueError(f"Location {location!r} does not point at a job")
    return segments[-1]
