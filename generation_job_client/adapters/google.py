import json
from typing import Any, Dict, List, Optional

from generation_job_client.adapters.base import ProviderAdapter, SubmitResult, dig
from generation_job_client.errors import MalformedResponseError, ProviderError
from generation_job_client.models import (
    HttpRequestSpec,
    ImmediateResult,
    JobHandle,
    JobRequest,
    MediaKind,
    OutcomeStatus,
    PollOutcome,
)

GOOGLE_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_VEO_MODEL = "veo-2.0-generate-001"


class VeoAdapter(ProviderAdapter):
    """Google Veo video generation through predictLongRunning operations"""

    name = "google"

    def __init__(self, api_key: Optional[str], base_url: str = GOOGLE_API_BASE):
        super().__init__(api_key)
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self._require_key()}

    @staticmethod
    def _request_body(payload: Dict[str, Any]) -> Dict[str, Any]:
        if "instances" in payload:
            return payload
        parameters = dict(payload)
        instance = {"prompt": parameters.pop("prompt", "")}
        if "image" in parameters:
            instance["image"] = parameters.pop("image")
        body: Dict[str, Any] = {"instances": [instance]}
        if parameters:
            body["parameters"] = parameters
        return body

    def build_submit_request(self, request: JobRequest) -> HttpRequestSpec:
        model = request.model or DEFAULT_VEO_MODEL
        return HttpRequestSpec(
            url=f"{self.base_url}/models/{model}:predictLongRunning",
            method="POST",
            headers={**self._headers(), "Content-Type": "application/json"},
            json_body=self._request_body(request.payload),
        )

    def parse_submit_response(
        self, request: JobRequest, payload: Dict[str, Any]
    ) -> SubmitResult:
        if payload.get("done"):
            outcome = self._finished(payload)
            if outcome.status != OutcomeStatus.succeeded:
                # rejected before any handle existed
                raise ProviderError(200, json.dumps(payload), outcome.reason)
            return ImmediateResult(
                media_kind=MediaKind.video, urls=outcome.urls, raw_response=payload
            )

        name = payload.get("name")
        if not name:
            raise MalformedResponseError("google: operation has no name", payload)
        return JobHandle(provider=self.name, request_id=str(name))

    def build_poll_request(self, handle: JobHandle) -> HttpRequestSpec:
        self._check_handle(handle)
        # operation names look like models/<model>/operations/<id>
        return HttpRequestSpec(
            url=f"{self.base_url}/{handle.request_id}",
            method="GET",
            headers=self._headers(),
        )

    def parse_poll_response(
        self, handle: JobHandle, payload: Dict[str, Any]
    ) -> PollOutcome:
        if not payload.get("done"):
            return PollOutcome.pending(payload)
        return self._finished(payload)

    def _finished(self, payload: Dict[str, Any]) -> PollOutcome:
        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            return PollOutcome.failed(message or "google operation failed", payload)

        video_response = dig(payload, "response", "generateVideoResponse")
        if not isinstance(video_response, dict):
            raise MalformedResponseError(
                "google: finished operation has no generateVideoResponse", payload
            )

        filtered = video_response.get("raiMediaFilteredReasons")
        urls = self._sample_uris(video_response)
        if not urls and filtered:
            return PollOutcome.failed("; ".join(str(r) for r in filtered), payload)
        if not urls:
            raise MalformedResponseError(
                "google: no generatedSamples[].video.uri in response", payload
            )
        return PollOutcome.succeeded(MediaKind.video, urls, payload)

    @staticmethod
    def _sample_uris(video_response: Dict[str, Any]) -> List[str]:
        samples = video_response.get("generatedSamples") or []
        return [
            uri
            for uri in (dig(sample, "video", "uri") for sample in samples)
            if isinstance(uri, str) and uri
        ]
