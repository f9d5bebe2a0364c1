from typing import Any, Optional


class CloudControllerClientError(Exception):
    pass


class OperationFailed(CloudControllerClientError):
    """The remote operation reached its failed state"""

    def __init__(self, reference: str, error_detail: Optional[str], status: Any = None):
        self.reference = reference
        self.error_detail = error_detail
        self.status = status
        super().__init__(
            f"Operation {reference} failed: {error_detail or 'no error detail reported'}"
        )


class WaitTimedOut(CloudControllerClientError, TimeoutError):
    def __init__(self, reference: str, elapsed: float, last_status: Any = None):
        self.reference = reference
        self.elapsed = elapsed
        self.last_status = last_status
        super().__init__(
            f"Operation {reference} did not complete within {elapsed:.1f} seconds"
        )


class WaitCancelled(CloudControllerClientError):
    def __init__(self, reference: str, elapsed: float, last_status: Any = None):
        self.reference = reference
        self.elapsed = elapsed
        self.last_status = last_status
        super().__init__(f"Wait for operation {reference} cancelled after {elapsed:.1f}s")


class UnknownOperationStateError(CloudControllerClientError, ValueError):
    def __init__(self, resource: str, state: Any):
        self.resource = resource
        self.state = state
        super().__init__(f"Unknown {resource} state: {state!r}")
