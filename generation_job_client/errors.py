from typing import Any, Dict, Optional


class JobClientError(Exception):
    """Base class for every failure surfaced by the job client"""


class ConfigurationError(JobClientError):
    """A credential is missing or an adapter cannot serve the request"""


class ProviderError(JobClientError):
    """The provider rejected a request or answered with an unreadable body"""

    def __init__(self, status: int, body: str, message: Optional[str] = None):
        self.status = status
        self.body = body
        self.message = message or f"provider returned HTTP {status}"
        super().__init__(self.message)

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_out_of_credits(self) -> bool:
        return self.status == 402

    def __repr__(self) -> str:
        return f"ProviderError(status={self.status}, message={self.message!r})"


class MalformedResponseError(JobClientError):
    """A successful response did not contain the field the provider documents"""

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        self.payload = payload or {}
        super().__init__(message)


class JobFailedError(JobClientError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class JobTimeoutError(JobClientError, TimeoutError):
    """The poll budget ran out before the provider finished"""


class JobCancelledError(JobClientError):
    pass
