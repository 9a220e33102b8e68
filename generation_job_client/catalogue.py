"""Tool catalogue: which provider, model and media kind serve each tool."""
from typing import Any, Dict, NamedTuple, Optional, Tuple

from loguru import logger
from generation_job_client.adapters.base import ProviderAdapter
from generation_job_client.adapters.fal import FalQueueAdapter, FalSyncAdapter
from generation_job_client.adapters.google import DEFAULT_VEO_MODEL, VeoAdapter
from generation_job_client.adapters.siliconflow import (
    SiliconFlowImageAdapter,
    SiliconFlowVideoAdapter,
)
from generation_job_client.adapters.together import TogetherImageAdapter
from generation_job_client.config import ProviderKeys
from generation_job_client.errors import ConfigurationError
from generation_job_client.models import JobRequest, MediaKind


class ToolSpec(NamedTuple):
    model: str
    media_kind: MediaKind
    queued: bool = False
    provider: str = "fal"


FLUX_PRO = "fal-ai/flux-pro/v1.1-ultra"
FLUX_DEV = "fal-ai/flux/dev"
FLUX_INPAINT = "fal-ai/flux/dev/inpainting"
OPEN_FLUX_SCHNELL = "black-forest-labs/FLUX.1-schnell"
KLING_TEXT = "fal-ai/kling-video/v1/standard/text-to-video"
KLING_IMAGE = "fal-ai/kling-video/v1/standard/image-to-video"

TOOLS: Dict[str, ToolSpec] = {
    "text-to-image": ToolSpec(FLUX_PRO, MediaKind.image),
    "composer": ToolSpec("fal-ai/flux-pro/v1.1-ultra/redux", MediaKind.image),
    "inpaint": ToolSpec(FLUX_INPAINT, MediaKind.image),
    "outpaint": ToolSpec(FLUX_INPAINT, MediaKind.image),
    "change-background": ToolSpec(FLUX_INPAINT, MediaKind.image),
    "style-transfer": ToolSpec("fal-ai/image-apps-v2/style-transfer", MediaKind.image),
    "upscale": ToolSpec("fal-ai/aura-sr", MediaKind.image),
    "virtual-try-on": ToolSpec("fal-ai/idm-vton", MediaKind.image, queued=True),
    "relight": ToolSpec("fal-ai/ic-light", MediaKind.image),
    "tuner": ToolSpec(FLUX_DEV, MediaKind.image),
    "remove-background": ToolSpec("fal-ai/birefnet", MediaKind.image),
    "text-to-video": ToolSpec(KLING_TEXT, MediaKind.video, queued=True),
    "image-to-video": ToolSpec(KLING_IMAGE, MediaKind.video, queued=True),
    "video-extend": ToolSpec(
        "fal-ai/kling-video/v1.6/pro/video-extend", MediaKind.video, queued=True
    ),
    "lip-sync": ToolSpec("fal-ai/sync-lipsync", MediaKind.video, queued=True),
    "talking-avatar": ToolSpec("fal-ai/hello-meme", MediaKind.video, queued=True),
    "veo-video": ToolSpec(DEFAULT_VEO_MODEL, MediaKind.video, queued=True, provider="google"),
    "sound-effects": ToolSpec("fal-ai/stable-audio", MediaKind.audio),
    "music": ToolSpec("fal-ai/musicgen", MediaKind.audio),
    "speech": ToolSpec("fal-ai/f5-tts", MediaKind.audio, queued=True),
}

# Models used when the caller asks to route around the primary one
FALLBACK_MODELS = {
    "virtual-try-on": "fal-ai/catvton",
    "upscale": "fal-ai/aura-sr",
    "style-transfer": FLUX_DEV,
    "text-to-video": "fal-ai/mochi-1",
    "image-to-video": "fal-ai/mochi-1",
    "lip-sync": "fal-ai/wav2lip-gan",
}

# Prompt-only image tools can fall back to other providers entirely
PROMPT_ONLY_IMAGE_TOOLS = {"text-to-image", "composer", "tuner"}
SILICONFLOW_VIDEO_MODELS = {
    "text-to-video": "genmo/mochi-1-preview",
    "image-to-video": "tencent/HunyuanVideo",
}


def _fal_adapter(spec: ToolSpec, keys: ProviderKeys) -> ProviderAdapter:
    adapter_cls = FalQueueAdapter if spec.queued else FalSyncAdapter
    return adapter_cls(keys.require("fal"))


def _prompt_only_fallback(
    tool: str, payload: Dict[str, Any], keys: ProviderKeys
) -> Tuple[JobRequest, ProviderAdapter]:
    if keys.siliconflow:
        adapter: ProviderAdapter = SiliconFlowImageAdapter(keys.siliconflow)
    elif keys.together:
        adapter = TogetherImageAdapter(keys.together)
    else:
        raise ConfigurationError(
            "No fallback API keys available (SiliconFlow or Together)"
        )
    logger.info(f"[{adapter.name}] Fallback for {tool}")
    request = JobRequest(
        payload=payload, media_kind=MediaKind.image, model=OPEN_FLUX_SCHNELL
    )
    return request, adapter


def build_job(
    tool: str,
    payload: Dict[str, Any],
    keys: ProviderKeys,
    use_fallback: bool = False,
) -> Tuple[JobRequest, ProviderAdapter]:
    """Pick the model and adapter for `tool` and wrap `payload` into a JobRequest"""
    spec: Optional[ToolSpec] = TOOLS.get(tool)
    if spec is None:
        raise ConfigurationError(f"unknown tool: {tool}")

    # an input image turns a text-to-video request into image-to-video
    if tool == "text-to-video" and payload.get("image_url"):
        tool, spec = "image-to-video", TOOLS["image-to-video"]

    if use_fallback:
        if tool in PROMPT_ONLY_IMAGE_TOOLS:
            return _prompt_only_fallback(tool, payload, keys)
        if tool in SILICONFLOW_VIDEO_MODELS and keys.siliconflow:
            logger.info(f"[siliconflow] Video fallback for {tool}")
            request = JobRequest(
                payload=payload,
                media_kind=MediaKind.video,
                model=SILICONFLOW_VIDEO_MODELS[tool],
            )
            return request, SiliconFlowVideoAdapter(keys.siliconflow)
        if tool in FALLBACK_MODELS:
            logger.info(f"[fal] Switching {tool} to {FALLBACK_MODELS[tool]}")
            spec = spec._replace(model=FALLBACK_MODELS[tool])

    request = JobRequest(payload=payload, media_kind=spec.media_kind, model=spec.model)
    if spec.provider == "google":
        return request, VeoAdapter(keys.require("google"))
    return request, _fal_adapter(spec, keys)
