from typing import Any, Dict, Optional

from generation_job_client.adapters.base import (
    ProviderAdapter,
    SubmitResult,
    require_urls,
)
from generation_job_client.errors import ConfigurationError, MalformedResponseError
from generation_job_client.models import (
    HttpRequestSpec,
    ImmediateResult,
    JobHandle,
    JobRequest,
    MediaKind,
    PollOutcome,
)

SILICONFLOW_API_BASE = "https://api.siliconflow.com/v1"
DEFAULT_IMAGE_MODEL = "black-forest-labs/FLUX.1-schnell"
DEFAULT_VIDEO_MODEL = "genmo/mochi-1-preview"

# SiliconFlow expects "WIDTHxHEIGHT"
ASPECT_RATIO_SIZES = {
    "1:1": "1024x1024",
    "16:9": "1024x576",
    "9:16": "576x1024",
    "4:3": "1024x768",
    "3:4": "768x1024",
}

VIDEO_URL_PATHS = [("results", "video"), ("results", "videos", 0, "url")]


class _SiliconFlowAdapter(ProviderAdapter):
    name = "siliconflow"

    def __init__(self, api_key: Optional[str], base_url: str = SILICONFLOW_API_BASE):
        super().__init__(api_key)
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._require_key()}",
            "Content-Type": "application/json",
        }


class SiliconFlowImageAdapter(_SiliconFlowAdapter):
    def build_submit_request(self, request: JobRequest) -> HttpRequestSpec:
        payload = request.payload
        if payload.get("width") and payload.get("height"):
            size = f"{payload['width']}x{payload['height']}"
        else:
            size = ASPECT_RATIO_SIZES.get(payload.get("aspect_ratio", ""), "1024x768")
        return HttpRequestSpec(
            url=f"{self.base_url}/images/generations",
            method="POST",
            headers=self._headers(),
            json_body={
                "model": request.model or DEFAULT_IMAGE_MODEL,
                "prompt": payload.get("prompt", ""),
                "image_size": size,
                "batch_size": 1,
                "num_inference_steps": payload.get("num_inference_steps", 4),
            },
        )

    def parse_submit_response(
        self, request: JobRequest, payload: Dict[str, Any]
    ) -> SubmitResult:
        return ImmediateResult(
            media_kind=MediaKind.image,
            urls=require_urls(payload, [("images", 0, "url")], self.name),
            raw_response=payload,
        )

    def build_poll_request(self, handle: JobHandle) -> HttpRequestSpec:
        raise ConfigurationError("siliconflow image jobs finish on submit and cannot be polled")

    def parse_poll_response(
        self, handle: JobHandle, payload: Dict[str, Any]
    ) -> PollOutcome:
        raise ConfigurationError("siliconflow image jobs finish on submit and cannot be polled")


class SiliconFlowVideoAdapter(_SiliconFlowAdapter):
    """Hunyuan / Mochi video jobs: submit returns a requestId, get-result reports progress"""

    def build_submit_request(self, request: JobRequest) -> HttpRequestSpec:
        payload = request.payload
        body: Dict[str, Any] = {
            "model": request.model or DEFAULT_VIDEO_MODEL,
            "prompt": payload.get("prompt", ""),
        }
        image = payload.get("image") or payload.get("image_url")
        if image:
            body["image"] = image
        return HttpRequestSpec(
            url=f"{self.base_url}/video/generations",
            method="POST",
            headers=self._headers(),
            json_body=body,
        )

    def parse_submit_response(
        self, request: JobRequest, payload: Dict[str, Any]
    ) -> SubmitResult:
        request_id = payload.get("requestId") or payload.get("id")
        if not request_id:
            raise MalformedResponseError(
                "siliconflow: video submit returned no requestId", payload
            )
        return JobHandle(provider=self.name, request_id=str(request_id))

    def build_poll_request(self, handle: JobHandle) -> HttpRequestSpec:
        self._check_handle(handle)
        return HttpRequestSpec(
            url=f"{self.base_url}/video/get-result",
            method="POST",
            headers=self._headers(),
            json_body={"requestId": handle.request_id},
        )

    def parse_poll_response(
        self, handle: JobHandle, payload: Dict[str, Any]
    ) -> PollOutcome:
        # older responses wrap the job in {code, message, data}
        job = payload["data"] if isinstance(payload.get("data"), dict) else payload

        status = job.get("status")
        if status is None:
            raise MalformedResponseError("siliconflow: result has no status", payload)
        if status == "Succeed":
            urls = require_urls(job, VIDEO_URL_PATHS, self.name)
            return PollOutcome.succeeded(MediaKind.video, urls, payload)
        if status == "Failed":
            return PollOutcome.failed(job.get("reason") or "siliconflow job failed", payload)
        return PollOutcome.pending(payload)
