import asyncio
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed)


class AsyncEnvelope(BaseModel, Generic[T]):
    """One poll response: job status plus either a result or an error"""

    model_config = ConfigDict(populate_by_name=True)

    status: JobStatus
    job_id: str = Field(alias="jobId")
    retry_after: Optional[float] = Field(default=None, alias="retryAfter")
    error: Optional[str] = None
    result: Optional[T] = None


class CodeGraph(BaseModel):
    model_config = ConfigDict(extra="allow")

    nodes: list[dict[str, Any]] = []
    relationships: list[dict[str, Any]] = []


class CodeGraphEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    graph: CodeGraph
    stats: Optional[dict[str, Any]] = None


class DomainClassificationResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    domains: list[dict[str, Any]] = []
    stats: Optional[dict[str, Any]] = None


class SupermodelIR(BaseModel):
    model_config = ConfigDict(extra="allow")

    repo: str
    version: str
    graph: CodeGraph
    domains: list[dict[str, Any]] = []


class PollingProgress(BaseModel):
    job_id: str
    status: JobStatus
    attempt: int
    max_attempts: int
    elapsed_ms: int
    next_retry_ms: Optional[int] = None


class AsyncClientConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    timeout_ms: int = Field(default=900000, gt=0)  # 15 minutes
    default_retry_interval_ms: int = Field(default=10000, gt=0)
    max_polling_attempts: int = Field(default=90, gt=0)
    on_polling_progress: Optional[Callable[[PollingProgress], Any]] = None
    generate_idempotency_key: Optional[Callable[[], str]] = None
    signal: Optional[asyncio.Event] = None


class GraphRequestOptions(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    idempotency_key: Optional[str] = None
    signal: Optional[asyncio.Event] = None
    headers: Optional[dict[str, str]] = None
