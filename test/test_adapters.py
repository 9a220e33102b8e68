import pytest
from generation_job_client.adapters.fal import FalQueueAdapter, FalSyncAdapter
from generation_job_client.adapters.google import VeoAdapter
from generation_job_client.adapters.siliconflow import (
    SiliconFlowImageAdapter,
    SiliconFlowVideoAdapter,
)
from generation_job_client.adapters.together import TogetherImageAdapter
from generation_job_client.errors import (
    ConfigurationError,
    MalformedResponseError,
    ProviderError,
)
from generation_job_client.models import (
    ImmediateResult,
    JobHandle,
    JobRequest,
    MediaKind,
    OutcomeStatus,
)


def _request(kind: MediaKind, model: str = "fal-ai/some-model", **payload) -> JobRequest:
    return JobRequest(payload=payload or {"prompt": "p"}, media_kind=kind, model=model)


def _fal_handle(kind: MediaKind, model: str = "fal-ai/some-model") -> JobHandle:
    return JobHandle(
        provider="fal", request_id="abc", extra={"model": model, "media_kind": kind.value}
    )


class TestFal:
    def test_submit_request(self):
        adapter = FalQueueAdapter("secret")
        spec = adapter.build_submit_request(
            _request(MediaKind.image, "fal-ai/idm-vton", human_image_url="h", garment_image_url="g")
        )
        assert spec.url == "https://queue.fal.run/fal-ai/idm-vton"
        assert spec.method == "POST"
        assert spec.headers["Authorization"] == "Key secret"
        assert spec.json_body == {"human_image_url": "h", "garment_image_url": "g"}

    def test_missing_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            FalQueueAdapter("").build_submit_request(_request(MediaKind.image))

    def test_missing_model_is_configuration_error(self):
        request = JobRequest(payload={"prompt": "p"}, media_kind=MediaKind.image)
        with pytest.raises(ConfigurationError):
            FalQueueAdapter("secret").build_submit_request(request)

    def test_submit_with_request_id_gives_handle(self):
        adapter = FalQueueAdapter("secret")
        request = _request(MediaKind.video, "fal-ai/kling-video/v1/standard/text-to-video")
        handle = adapter.parse_submit_response(request, {"request_id": "abc"})

        assert isinstance(handle, JobHandle)
        assert handle.request_id == "abc"
        poll = adapter.build_poll_request(handle)
        assert poll.url == (
            "https://queue.fal.run/fal-ai/kling-video/v1/standard/text-to-video/requests/abc/status"
        )
        assert poll.method == "GET"
        assert poll.json_body is None

    def test_sync_endpoint_polls_on_queue(self):
        adapter = FalSyncAdapter("secret")
        request = _request(MediaKind.audio, "fal-ai/f5-tts")
        assert adapter.build_submit_request(request).url == "https://fal.run/fal-ai/f5-tts"

        handle = adapter.parse_submit_response(request, {"request_id": "r1"})
        assert adapter.build_poll_request(handle).url == (
            "https://queue.fal.run/fal-ai/f5-tts/requests/r1/status"
        )

    def test_sync_image_result(self):
        adapter = FalSyncAdapter("secret")
        payload = {"images": [{"url": "https://cdn/a.png"}, {"url": "https://cdn/b.png"}]}
        result = adapter.parse_submit_response(_request(MediaKind.image), payload)

        assert isinstance(result, ImmediateResult)
        assert result.urls == ["https://cdn/a.png", "https://cdn/b.png"]

    def test_submit_without_id_or_result_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            FalSyncAdapter("secret").parse_submit_response(
                _request(MediaKind.image), {"seed": 1}
            )

    @pytest.mark.parametrize(
        "kind,payload,url",
        [
            (MediaKind.video, {"video": {"url": "https://x/y.mp4"}}, "https://x/y.mp4"),
            (MediaKind.video, {"video_url": "https://x/z.mp4"}, "https://x/z.mp4"),
            (MediaKind.image, {"image": {"url": "https://x/cut.png"}}, "https://x/cut.png"),
            (MediaKind.image, {"images": [{"url": "https://x/1.png"}]}, "https://x/1.png"),
            (MediaKind.audio, {"audio_file": {"url": "https://x/s.wav"}}, "https://x/s.wav"),
            (MediaKind.audio, {"audio_url": {"url": "https://x/t.wav"}}, "https://x/t.wav"),
            (MediaKind.audio, {"audio_url": "https://x/u.wav"}, "https://x/u.wav"),
        ],
    )
    def test_poll_result_urls(self, kind, payload, url):
        outcome = FalQueueAdapter("secret").parse_poll_response(_fal_handle(kind), payload)

        assert outcome.status == OutcomeStatus.succeeded
        assert outcome.media_kind == kind
        assert outcome.url == url

    @pytest.mark.parametrize("status", ["IN_QUEUE", "IN_PROGRESS", "pending"])
    def test_poll_pending(self, status):
        outcome = FalQueueAdapter("secret").parse_poll_response(
            _fal_handle(MediaKind.video), {"status": status}
        )
        assert outcome.status == OutcomeStatus.pending

    def test_poll_failed(self):
        outcome = FalQueueAdapter("secret").parse_poll_response(
            _fal_handle(MediaKind.video), {"status": "FAILED", "error": "out of memory"}
        )
        assert outcome.status == OutcomeStatus.failed
        assert outcome.reason == "out of memory"

    def test_video_job_returning_image_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            FalQueueAdapter("secret").parse_poll_response(
                _fal_handle(MediaKind.video), {"images": [{"url": "https://x/1.png"}]}
            )

    def test_foreign_handle_rejected(self):
        handle = JobHandle(provider="siliconflow", request_id="abc")
        with pytest.raises(ConfigurationError):
            FalQueueAdapter("secret").build_poll_request(handle)

    def test_urls_from_submit_reply_are_used(self):
        adapter = FalQueueAdapter("secret")
        payload = {
            "request_id": "abc",
            "status_url": "https://queue.fal.run/fal-ai/kling-video/requests/abc/status",
            "response_url": "https://queue.fal.run/fal-ai/kling-video/requests/abc",
        }
        handle = adapter.parse_submit_response(_request(MediaKind.video), payload)

        assert adapter.build_poll_request(handle).url == payload["status_url"]
        result = adapter.build_result_request(handle, {"status": "COMPLETED"})
        assert result.url == payload["response_url"]
        assert result.method == "GET"

    def test_completed_status_fetches_result(self):
        spec = FalQueueAdapter("secret").build_result_request(
            _fal_handle(MediaKind.video), {"status": "COMPLETED", "request_id": "abc"}
        )
        assert spec.url == "https://queue.fal.run/fal-ai/some-model/requests/abc"
        assert spec.headers == {"Authorization": "Key secret"}

    @pytest.mark.parametrize(
        "payload",
        [
            {"status": "IN_PROGRESS"},
            {"status": "FAILED", "error": "boom"},
            {"status": "COMPLETED", "video": {"url": "https://x/y.mp4"}},
        ],
    )
    def test_no_result_fetch_needed(self, payload):
        adapter = FalQueueAdapter("secret")
        assert adapter.build_result_request(_fal_handle(MediaKind.video), payload) is None

    def test_result_body_parsed_as_success(self):
        outcome = FalQueueAdapter("secret").parse_result_response(
            _fal_handle(MediaKind.video), {"video": {"url": "https://x/y.mp4"}}
        )
        assert outcome.to_response() == {"videoUrl": "https://x/y.mp4"}

    def test_still_in_progress_reply_is_pending(self):
        error = ProviderError(
            400,
            '{"detail": "Request is still in progress"}',
            "Request is still in progress",
        )
        outcome = FalQueueAdapter("secret").classify_poll_error(
            _fal_handle(MediaKind.video), error
        )
        assert outcome.status == OutcomeStatus.pending

    @pytest.mark.parametrize(
        "status,message",
        [(400, "invalid model"), (404, "Request not found"), (500, "still in progress?")],
    )
    def test_other_poll_errors_propagate(self, status, message):
        error = ProviderError(status, "{}", message)
        outcome = FalQueueAdapter("secret").classify_poll_error(
            _fal_handle(MediaKind.video), error
        )
        assert outcome is None


class TestVeo:
    def test_submit_request_wraps_prompt(self):
        adapter = VeoAdapter("g-key")
        request = JobRequest(
            payload={"prompt": "sunset", "aspectRatio": "16:9"},
            media_kind=MediaKind.video,
            model="veo-2.0-generate-001",
        )
        spec = adapter.build_submit_request(request)

        assert spec.url.endswith("/v1beta/models/veo-2.0-generate-001:predictLongRunning")
        assert spec.headers["x-goog-api-key"] == "g-key"
        assert spec.json_body == {
            "instances": [{"prompt": "sunset"}],
            "parameters": {"aspectRatio": "16:9"},
        }

    def test_operation_name_is_handle(self):
        adapter = VeoAdapter("g-key")
        name = "models/veo-2.0-generate-001/operations/op123"
        handle = adapter.parse_submit_response(_request(MediaKind.video), {"name": name})

        assert handle.provider == "google"
        assert adapter.build_poll_request(handle).url == (
            f"https://generativelanguage.googleapis.com/v1beta/{name}"
        )

    def test_not_done_is_pending(self):
        handle = JobHandle(provider="google", request_id="operations/1")
        outcome = VeoAdapter("g-key").parse_poll_response(handle, {"name": "operations/1"})
        assert outcome.status == OutcomeStatus.pending

    def test_done_with_sample(self):
        handle = JobHandle(provider="google", request_id="operations/1")
        payload = {
            "done": True,
            "response": {
                "generateVideoResponse": {
                    "generatedSamples": [{"video": {"uri": "https://g/v.mp4"}}]
                }
            },
        }
        outcome = VeoAdapter("g-key").parse_poll_response(handle, payload)

        assert outcome.to_response() == {"videoUrl": "https://g/v.mp4"}

    def test_done_with_error(self):
        handle = JobHandle(provider="google", request_id="operations/1")
        payload = {"done": True, "error": {"code": 3, "message": "prompt blocked"}}
        outcome = VeoAdapter("g-key").parse_poll_response(handle, payload)

        assert outcome.status == OutcomeStatus.failed
        assert outcome.reason == "prompt blocked"

    def test_filtered_samples_fail(self):
        handle = JobHandle(provider="google", request_id="operations/1")
        payload = {
            "done": True,
            "response": {
                "generateVideoResponse": {"raiMediaFilteredReasons": ["unsafe content"]}
            },
        }
        outcome = VeoAdapter("g-key").parse_poll_response(handle, payload)
        assert outcome.reason == "unsafe content"

    def test_done_without_response_is_malformed(self):
        handle = JobHandle(provider="google", request_id="operations/1")
        with pytest.raises(MalformedResponseError):
            VeoAdapter("g-key").parse_poll_response(handle, {"done": True})

    def test_done_on_submit_is_immediate(self):
        payload = {
            "name": "operations/1",
            "done": True,
            "response": {
                "generateVideoResponse": {
                    "generatedSamples": [{"video": {"uri": "https://g/v.mp4"}}]
                }
            },
        }
        result = VeoAdapter("g-key").parse_submit_response(_request(MediaKind.video), payload)

        assert isinstance(result, ImmediateResult)
        assert result.urls == ["https://g/v.mp4"]

    def test_error_on_submit_raises(self):
        payload = {
            "name": "operations/1",
            "done": True,
            "error": {"code": 3, "message": "prompt blocked"},
        }
        with pytest.raises(ProviderError) as exc_info:
            VeoAdapter("g-key").parse_submit_response(_request(MediaKind.video), payload)

        assert exc_info.value.message == "prompt blocked"
        assert '"prompt blocked"' in exc_info.value.body

    def test_filtered_on_submit_raises(self):
        payload = {
            "done": True,
            "response": {
                "generateVideoResponse": {"raiMediaFilteredReasons": ["unsafe content"]}
            },
        }
        with pytest.raises(ProviderError):
            VeoAdapter("g-key").parse_submit_response(_request(MediaKind.video), payload)


class TestTogether:
    def test_submit_body(self):
        spec = TogetherImageAdapter("t-key").build_submit_request(
            _request(MediaKind.image, "black-forest-labs/FLUX.1-schnell", prompt="fox", width=512, height=512)
        )
        assert spec.url == "https://api.together.xyz/v1/images/generations"
        assert spec.headers["Authorization"] == "Bearer t-key"
        assert spec.json_body["size"] == "512x512"
        assert spec.json_body["response_format"] == "url"

    def test_result_is_immediate(self):
        result = TogetherImageAdapter("t-key").parse_submit_response(
            _request(MediaKind.image), {"data": [{"url": "https://t/1.png"}]}
        )
        assert isinstance(result, ImmediateResult)
        assert result.urls == ["https://t/1.png"]

    def test_missing_data_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            TogetherImageAdapter("t-key").parse_submit_response(
                _request(MediaKind.image), {"data": []}
            )

    def test_cannot_poll(self):
        with pytest.raises(ConfigurationError):
            TogetherImageAdapter("t-key").build_poll_request(
                JobHandle(provider="together", request_id="x")
            )


class TestSiliconFlow:
    def test_image_size_from_aspect_ratio(self):
        spec = SiliconFlowImageAdapter("s-key").build_submit_request(
            _request(MediaKind.image, None, prompt="fox", aspect_ratio="9:16")
        )
        assert spec.url == "https://api.siliconflow.com/v1/images/generations"
        assert spec.json_body["image_size"] == "576x1024"
        assert spec.json_body["model"] == "black-forest-labs/FLUX.1-schnell"

    def test_image_result(self):
        result = SiliconFlowImageAdapter("s-key").parse_submit_response(
            _request(MediaKind.image), {"images": [{"url": "https://sf/1.png"}]}
        )
        assert result.urls == ["https://sf/1.png"]

    def test_video_submit_and_poll_request(self):
        adapter = SiliconFlowVideoAdapter("s-key")
        request = _request(MediaKind.video, "tencent/HunyuanVideo", prompt="waves", image_url="https://i/1.png")

        assert adapter.build_submit_request(request).json_body == {
            "model": "tencent/HunyuanVideo",
            "prompt": "waves",
            "image": "https://i/1.png",
        }
        handle = adapter.parse_submit_response(request, {"requestId": "sf-1"})
        poll = adapter.build_poll_request(handle)
        assert poll.method == "POST"
        assert poll.url == "https://api.siliconflow.com/v1/video/get-result"
        assert poll.json_body == {"requestId": "sf-1"}

    def test_video_submit_without_id_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            SiliconFlowVideoAdapter("s-key").parse_submit_response(
                _request(MediaKind.video), {"message": "ok"}
            )

    @pytest.mark.parametrize(
        "payload",
        [
            {"code": 20000, "data": {"status": "Succeed", "results": {"video": "https://sf/v.mp4"}}},
            {"status": "Succeed", "results": {"videos": [{"url": "https://sf/v.mp4"}]}},
        ],
    )
    def test_video_succeeded(self, payload):
        handle = JobHandle(provider="siliconflow", request_id="sf-1")
        outcome = SiliconFlowVideoAdapter("s-key").parse_poll_response(handle, payload)
        assert outcome.url == "https://sf/v.mp4"

    def test_video_failed_and_pending(self):
        adapter = SiliconFlowVideoAdapter("s-key")
        handle = JobHandle(provider="siliconflow", request_id="sf-1")

        failed = adapter.parse_poll_response(handle, {"status": "Failed", "reason": "quota"})
        pending = adapter.parse_poll_response(handle, {"status": "InProgress"})

        assert failed.reason == "quota"
        assert pending.status == OutcomeStatus.pending

    def test_video_without_status_is_malformed(self):
        handle = JobHandle(provider="siliconflow", request_id="sf-1")
        with pytest.raises(MalformedResponseError):
            SiliconFlowVideoAdapter("s-key").parse_poll_response(handle, {"code": 20000})
