from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cloud_controller_client.errors import OperationFailed, WaitCancelled, WaitTimedOut

# Job, build, package or service instance GUID
OperationReference = str


class OperationState(str, Enum):
    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationState.succeeded, OperationState.failed)


class OperationStatus(BaseModel):
    """Snapshot of a remote operation taken by a single poll"""

    model_config = ConfigDict(frozen=True)

    state: OperationState
    error_detail: Optional[str] = None
    progress_hint: Optional[str] = None
    raw_response: dict = Field(default_factory=dict)


class WaitPolicy(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    initial_interval: float = Field(default=1.0, gt=0)
    max_interval: float = Field(default=15.0, gt=0)
    overall_timeout: float = Field(default=300.0, gt=0)  # 5 minutes
    backoff_factor: float = Field(default=2.0, ge=1.0)

    @model_validator(mode="after")
    def _check_intervals(self) -> "WaitPolicy":
        if self.initial_interval > self.max_interval:
            raise ValueError(
                f"initial_interval ({self.initial_interval}) must not exceed "
                f"max_interval ({self.max_interval})"
            )
        return self


class Completed(BaseModel):
    outcome: Literal["completed"] = "completed"
    reference: OperationReference
    status: OperationStatus
    elapsed: float
    polls: int

    def raise_for_outcome(self) -> OperationStatus:
        return self.status


class Failed(BaseModel):
    outcome: Literal["failed"] = "failed"
    reference: OperationReference
    error_detail: Optional[str] = None
    status: OperationStatus
    elapsed: float
    polls: int

    def raise_for_outcome(self) -> OperationStatus:
        raise OperationFailed(self.reference, self.error_detail, self.status)


class TimedOut(BaseModel):
    outcome: Literal["timed_out"] = "timed_out"
    reference: OperationReference
    elapsed: float
    last_status: Optional[OperationStatus] = None
    polls: int

    def raise_for_outcome(self) -> OperationStatus:
        raise WaitTimedOut(self.reference, self.elapsed, self.last_status)


class Cancelled(BaseModel):
    outcome: Literal["cancelled"] = "cancelled"
    reference: OperationReference
    elapsed: float
    last_status: Optional[OperationStatus] = None
    polls: int

    def raise_for_outcome(self) -> OperationStatus:
        raise WaitCancelled(self.reference, self.elapsed, self.last_status)


WaitOutcome = Annotated[
    Union[Completed, Failed, TimedOut, Cancelled], Field(discriminator="outcome")
]


class ClientConfig(BaseModel):
    api_url: str
    access_token: Optional[str] = None
    request_timeout: float = Field(default=30.0, gt=0)
    results_per_page: int = Field(default=50, ge=1, le=5000)
