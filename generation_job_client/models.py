import random
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from generation_job_client.errors import (
    JobCancelledError,
    JobFailedError,
    JobTimeoutError,
)

TIMED_OUT_REASON = "timed out"


class MediaKind(str, Enum):
    image = "image"
    video = "video"
    audio = "audio"


class OutcomeStatus(str, Enum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"


class BackoffStrategy(str, Enum):
    fixed = "fixed"
    linear = "linear"
    exponential = "exponential"


class JobRequest(BaseModel):
    """A single generation job: opaque provider payload plus the media it produces"""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    payload: Dict[str, Any]
    media_kind: MediaKind
    model: Optional[str] = None


class JobHandle(BaseModel):
    """Identifier of an in-flight job, only valid for the provider that issued it"""

    model_config = ConfigDict(frozen=True)

    provider: str
    request_id: str
    extra: Dict[str, Any] = Field(default_factory=dict)


class ImmediateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    media_kind: MediaKind
    urls: List[str]
    raw_response: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("urls")
    @classmethod
    def _at_least_one_url(cls, urls: List[str]) -> List[str]:
        if not urls:
            raise ValueError("an immediate result needs at least one url")
        return urls


class HttpRequestSpec(BaseModel):
    url: str
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    json_body: Optional[Dict[str, Any]] = None


class PollOutcome(BaseModel):
    status: OutcomeStatus
    media_kind: Optional[MediaKind] = None
    urls: List[str] = Field(default_factory=list)
    reason: Optional[str] = None
    timed_out: bool = False
    raw_response: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    elapsed_time: float = 0.0

    @classmethod
    def pending(cls, raw_response: Optional[Dict[str, Any]] = None) -> "PollOutcome":
        return cls(status=OutcomeStatus.pending, raw_response=raw_response or {})

    @classmethod
    def succeeded(
        cls,
        media_kind: MediaKind,
        urls: List[str],
        raw_response: Optional[Dict[str, Any]] = None,
    ) -> "PollOutcome":
        return cls(
            status=OutcomeStatus.succeeded,
            media_kind=media_kind,
            urls=urls,
            raw_response=raw_response or {},
        )

    @classmethod
    def failed(
        cls, reason: str, raw_response: Optional[Dict[str, Any]] = None
    ) -> "PollOutcome":
        return cls(
            status=OutcomeStatus.failed, reason=reason, raw_response=raw_response or {}
        )

    @classmethod
    def timeout(cls) -> "PollOutcome":
        return cls(status=OutcomeStatus.failed, reason=TIMED_OUT_REASON, timed_out=True)

    @classmethod
    def cancelled(cls) -> "PollOutcome":
        return cls(status=OutcomeStatus.cancelled, reason="cancelled")

    @property
    def is_terminal(self) -> bool:
        return self.status != OutcomeStatus.pending

    @property
    def url(self) -> Optional[str]:
        return self.urls[0] if self.urls else None

    def to_response(self) -> Dict[str, Any]:
        """Render the outcome in the `{imageUrl | videoUrl | audioUrl, error?}` shape"""
        if self.status == OutcomeStatus.succeeded and self.media_kind is not None:
            return {f"{self.media_kind.value}Url": self.url}
        if self.status == OutcomeStatus.pending:
            return {"done": False}
        return {"error": self.reason or self.status.value}

    def raise_for_outcome(self) -> "PollOutcome":
        """Return self when succeeded, raise the matching typed error otherwise"""
        if self.status == OutcomeStatus.succeeded:
            return self
        if self.status == OutcomeStatus.cancelled:
            raise JobCancelledError("job was cancelled before it finished")
        if self.timed_out:
            raise JobTimeoutError(
                f"job did not finish after {self.attempts} polls "
                f"({self.elapsed_time:.1f}s)"
            )
        if self.status == OutcomeStatus.failed:
            raise JobFailedError(self.reason or "unknown failure")
        raise JobFailedError("job is still pending")


class PollPolicy(BaseModel):
    interval: float = 3.0
    max_attempts: int = 60
    timeout: Optional[float] = None
    backoff: BackoffStrategy = BackoffStrategy.fixed
    backoff_factor: float = 2.0
    max_interval: float = 32.0
    jitter: bool = False
    tolerate_transient_errors: bool = False

    @field_validator("max_attempts")
    @classmethod
    def _positive_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_attempts must be at least 1")
        return value

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before poll number `attempt` (1-based)"""
        if self.backoff == BackoffStrategy.linear:
            delay = self.interval * attempt
        elif self.backoff == BackoffStrategy.exponential:
            delay = self.interval * (self.backoff_factor ** (attempt - 1))
        else:
            delay = self.interval

        delay = max(min(delay, self.max_interval), self.interval)

        # Add random jitter between 0-20% of the delay
        if self.jitter:
            delay *= 1 + 0.2 * random.random()
        return delay
