"""
fal.ai adapters.

fal serves the same model paths two ways:
  POST https://fal.run/{model}        -> usually the finished result
  POST https://queue.fal.run/{model}  -> { request_id }, then
  GET  https://queue.fal.run/{model}/requests/{request_id}/status until COMPLETED,
  GET  https://queue.fal.run/{model}/requests/{request_id} for the result

Whether a given model answers synchronously is only known once the response
arrives, so both adapters inspect the submit body before deciding.
"""
from typing import Any, Dict, List, Optional

from generation_job_client.adapters.base import (
    ProviderAdapter,
    SubmitResult,
    first_url,
    require_urls,
)
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
    MediaKind,
    PollOutcome,
)

FAL_RUN_BASE = "https://fal.run"
FAL_QUEUE_BASE = "https://queue.fal.run"

PENDING_STATUSES = {"IN_QUEUE", "IN_PROGRESS", "PENDING"}
FAILED_STATUSES = {"FAILED", "ERROR"}
COMPLETED_STATUS = "COMPLETED"
# "Request is still in progress" replies from the result endpoint
IN_PROGRESS_HTTP_STATUSES = {202, 400}

MEDIA_URL_PATHS = {
    MediaKind.image: [("image", "url"), ("image_url",), ("output", "url")],
    MediaKind.video: [("video", "url"), ("video_url",)],
    MediaKind.audio: [
        ("audio_file", "url"),
        ("audio", "url"),
        ("audio_url", "url"),
        ("audio_url",),
    ],
}


def _image_list_urls(payload: Dict[str, Any]) -> List[str]:
    images = payload.get("images")
    if not isinstance(images, list):
        return []
    return [
        image["url"]
        for image in images
        if isinstance(image, dict) and isinstance(image.get("url"), str)
    ]


def extract_media_urls(payload: Dict[str, Any], media_kind: MediaKind) -> List[str]:
    """Pull result urls for `media_kind` out of a fal result body"""
    if media_kind == MediaKind.image:
        urls = _image_list_urls(payload)
        if urls:
            return urls
    return require_urls(payload, MEDIA_URL_PATHS[media_kind], "fal")


def has_media(payload: Dict[str, Any], media_kind: MediaKind) -> bool:
    if media_kind == MediaKind.image and _image_list_urls(payload):
        return True
    return first_url(payload, MEDIA_URL_PATHS[media_kind]) is not None


def _error_reason(payload: Dict[str, Any]) -> str:
    error = payload.get("error") or payload.get("detail")
    if isinstance(error, dict):
        error = error.get("message")
    return str(error) if error else "fal job failed"


class FalQueueAdapter(ProviderAdapter):
    name = "fal"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = FAL_QUEUE_BASE,
        queue_url: Optional[str] = None,
    ):
        super().__init__(api_key)
        self.base_url = base_url.rstrip("/")
        self.queue_url = (queue_url or base_url).rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Key {self._require_key()}",
            "Content-Type": "application/json",
        }

    def build_submit_request(self, request: JobRequest) -> HttpRequestSpec:
        if not request.model:
            raise ConfigurationError("fal jobs need a model path")
        return HttpRequestSpec(
            url=f"{self.base_url}/{request.model}",
            method="POST",
            headers=self._headers(),
            json_body=request.payload,
        )

    def parse_submit_response(
        self, request: JobRequest, payload: Dict[str, Any]
    ) -> SubmitResult:
        request_id = payload.get("request_id")
        if request_id:
            extra = {"model": request.model, "media_kind": request.media_kind.value}
            # the queue reports where to poll; older replies leave it to us
            for key in ("status_url", "response_url"):
                if payload.get(key):
                    extra[key] = payload[key]
            return JobHandle(provider=self.name, request_id=str(request_id), extra=extra)
        if has_media(payload, request.media_kind):
            return ImmediateResult(
                media_kind=request.media_kind,
                urls=extract_media_urls(payload, request.media_kind),
                raw_response=payload,
            )
        raise MalformedResponseError(
            "fal: submit response has neither request_id nor a result", payload
        )

    def _auth_only(self) -> Dict[str, str]:
        return {"Authorization": f"Key {self._require_key()}"}

    def _response_url(self, handle: JobHandle) -> str:
        return handle.extra.get("response_url") or (
            f"{self.queue_url}/{handle.extra['model']}/requests/{handle.request_id}"
        )

    def build_poll_request(self, handle: JobHandle) -> HttpRequestSpec:
        self._check_handle(handle)
        url = handle.extra.get("status_url") or f"{self._response_url(handle)}/status"
        return HttpRequestSpec(url=url, method="GET", headers=self._auth_only())

    def parse_poll_response(
        self, handle: JobHandle, payload: Dict[str, Any]
    ) -> PollOutcome:
        status = str(payload.get("status", "")).upper()
        if status in PENDING_STATUSES:
            return PollOutcome.pending(payload)
        if status in FAILED_STATUSES:
            return PollOutcome.failed(_error_reason(payload), payload)

        media_kind = MediaKind(handle.extra["media_kind"])
        return PollOutcome.succeeded(
            media_kind, extract_media_urls(payload, media_kind), payload
        )

    def build_result_request(
        self, handle: JobHandle, payload: Dict[str, Any]
    ) -> Optional[HttpRequestSpec]:
        status = str(payload.get("status", "")).upper()
        if status != COMPLETED_STATUS:
            return None
        if has_media(payload, MediaKind(handle.extra["media_kind"])):
            return None
        return HttpRequestSpec(
            url=self._response_url(handle), method="GET", headers=self._auth_only()
        )

    def parse_result_response(
        self, handle: JobHandle, payload: Dict[str, Any]
    ) -> PollOutcome:
        media_kind = MediaKind(handle.extra["media_kind"])
        return PollOutcome.succeeded(
            media_kind, extract_media_urls(payload, media_kind), payload
        )

    def classify_poll_error(
        self, handle: JobHandle, error: ProviderError
    ) -> Optional[PollOutcome]:
        # the result endpoint can lag the status endpoint by a moment
        if error.status in IN_PROGRESS_HTTP_STATUSES and (
            "in progress" in error.message.lower() or "in progress" in error.body.lower()
        ):
            return PollOutcome.pending()
        return None


class FalSyncAdapter(FalQueueAdapter):
    """Calls fal.run directly; falls back to queue polling if handed a request_id"""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = FAL_RUN_BASE,
        queue_url: str = FAL_QUEUE_BASE,
    ):
        super().__init__(api_key, base_url=base_url, queue_url=queue_url)
