class SupermodelError(Exception):
    """Base class for errors raised while waiting on a graph job"""


class JobFailedError(SupermodelError):
    def __init__(self, job_id: str, error_message: str):
        self.job_id = job_id
        self.error_message = error_message
        super().__init__(f"Job {job_id} failed: {error_message}")


class PollingTimeoutError(SupermodelError, TimeoutError):
    def __init__(self, job_id: str, timeout_ms: int, attempts: int):
        self.job_id = job_id
        self.timeout_ms = timeout_ms
        self.attempts = attempts
        super().__init__(
            f"Polling timed out for job {job_id} after {timeout_ms}ms ({attempts} attempts)"
        )


class ProtocolViolationError(SupermodelError):
    """The server sent an envelope that breaks the job contract"""

    def __init__(self, job_id: str, message: str):
        self.job_id = job_id
        super().__init__(message)


class PollingAbortedError(SupermodelError):
    def __init__(self, message: str = "Polling aborted"):
        super().__init__(message)
