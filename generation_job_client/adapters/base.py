from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Union

from generation_job_client.errors import (
    ConfigurationError,
    MalformedResponseError,
    ProviderError,
)
from generation_job_client.models import (
    HttpRequestSpec,
    ImmediateResult,
    JobHandle,
    JobRequest,
    PollOutcome,
)

SubmitResult = Union[JobHandle, ImmediateResult]


class ProviderAdapter(ABC):
    """Translates between the generic job client and one provider's API.

    The four methods are pure: they build request descriptions or parse
    decoded JSON bodies, and never touch the network themselves.
    """

    name: str = "provider"

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key or ""

    def _require_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError(f"{self.name}: missing API key")
        return self.api_key

    def _check_handle(self, handle: JobHandle) -> None:
        if handle.provider != self.name:
            raise ConfigurationError(
                f"{self.name} cannot poll a handle issued by {handle.provider}"
            )

    @abstractmethod
    def build_submit_request(self, request: JobRequest) -> HttpRequestSpec:
        """Describe the HTTP call that starts the job"""

    @abstractmethod
    def parse_submit_response(
        self, request: JobRequest, payload: Dict[str, Any]
    ) -> SubmitResult:
        """Turn the submit body into a handle to poll, or the finished artifact"""

    @abstractmethod
    def build_poll_request(self, handle: JobHandle) -> HttpRequestSpec:
        """Describe the HTTP call that checks on a running job"""

    @abstractmethod
    def parse_poll_response(
        self, handle: JobHandle, payload: Dict[str, Any]
    ) -> PollOutcome:
        """Interpret a status body as pending, succeeded or failed"""

    def build_result_request(
        self, handle: JobHandle, payload: Dict[str, Any]
    ) -> Optional[HttpRequestSpec]:
        """Describe the call that fetches a finished job's artifact.

        Providers whose status body already carries the result return None,
        and the status body goes to `parse_poll_response`.
        """
        return None

    def parse_result_response(
        self, handle: JobHandle, payload: Dict[str, Any]
    ) -> PollOutcome:
        return self.parse_poll_response(handle, payload)

    def classify_poll_error(
        self, handle: JobHandle, error: ProviderError
    ) -> Optional[PollOutcome]:
        """Map a non-2xx poll reply to an outcome, or None to let it propagate"""
        return None


def dig(payload: Any, *path: Union[str, int]) -> Any:
    """Walk nested dicts/lists along `path`, returning None at the first gap"""
    node = payload
    for key in path:
        if isinstance(key, int):
            if not isinstance(node, list) or len(node) <= key:
                return None
        elif not isinstance(node, dict):
            return None
        node = node[key] if isinstance(key, int) else node.get(key)
        if node is None:
            return None
    return node


def first_url(payload: Dict[str, Any], paths: Sequence[Sequence[Union[str, int]]]) -> Optional[str]:
    for path in paths:
        value = dig(payload, *path)
        if isinstance(value, str) and value:
            return value
    return None


def require_urls(
    payload: Dict[str, Any],
    paths: Sequence[Sequence[Union[str, int]]],
    provider: str,
) -> List[str]:
    url = first_url(payload, paths)
    if url is None:
        documented = ", ".join(".".join(str(p) for p in path) for path in paths)
        raise MalformedResponseError(
            f"{provider}: no result url at any of [{documented}]", payload
        )
    return [url]
