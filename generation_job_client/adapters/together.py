from typing import Any, Dict, Optional

from generation_job_client.adapters.base import ProviderAdapter, SubmitResult, require_urls
from generation_job_client.errors import ConfigurationError
from generation_job_client.models import (
    HttpRequestSpec,
    ImmediateResult,
    JobHandle,
    JobRequest,
    MediaKind,
    PollOutcome,
)

TOGETHER_API_BASE = "https://api.together.xyz/v1"
DEFAULT_TOGETHER_MODEL = "black-forest-labs/FLUX.1-schnell"


class TogetherImageAdapter(ProviderAdapter):
    """Together AI image generation, which always answers synchronously"""

    name = "together"

    def __init__(self, api_key: Optional[str], base_url: str = TOGETHER_API_BASE):
        super().__init__(api_key)
        self.base_url = base_url.rstrip("/")

    def build_submit_request(self, request: JobRequest) -> HttpRequestSpec:
        payload = request.payload
        width, height = payload.get("width"), payload.get("height")
        body = {
            "model": request.model or DEFAULT_TOGETHER_MODEL,
            "prompt": payload.get("prompt", ""),
            "n": 1,
            "size": f"{width}x{height}" if width and height else "1024x768",
            "steps": payload.get("steps", 4),
            "response_format": "url",
        }
        return HttpRequestSpec(
            url=f"{self.base_url}/images/generations",
            method="POST",
            headers={
                "Authorization": f"Bearer {self._require_key()}",
                "Content-Type": "application/json",
            },
            json_body=body,
        )

    def parse_submit_response(
        self, request: JobRequest, payload: Dict[str, Any]
    ) -> SubmitResult:
        return ImmediateResult(
            media_kind=MediaKind.image,
            urls=require_urls(payload, [("data", 0, "url")], self.name),
            raw_response=payload,
        )

    def build_poll_request(self, handle: JobHandle) -> HttpRequestSpec:
        raise ConfigurationError("together image jobs finish on submit and cannot be polled")

    def parse_poll_response(
        self, handle: JobHandle, payload: Dict[str, Any]
    ) -> PollOutcome:
        raise ConfigurationError("together image jobs finish on submit and cannot be polled")
