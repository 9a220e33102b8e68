import os
from typing import Mapping, Optional

from pydantic import BaseModel

from generation_job_client.errors import ConfigurationError

# Environment variables checked for each provider, first match wins
ENV_VARS = {
    "fal": ("FAL_KEY", "FAL_API_KEY"),
    "google": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "together": ("TOGETHER_API_KEY",),
    "siliconflow": ("SILICONFLOW_API_KEY",),
}


class ProviderKeys(BaseModel):
    fal: Optional[str] = None
    google: Optional[str] = None
    together: Optional[str] = None
    siliconflow: Optional[str] = None

    def require(self, provider: str) -> str:
        key = getattr(self, provider, None)
        if not key:
            names = " or ".join(ENV_VARS.get(provider, (provider,)))
            raise ConfigurationError(f"{names} is not configured")
        return key


def load_provider_keys(environ: Optional[Mapping[str, str]] = None) -> ProviderKeys:
    """Collect provider API keys from the process environment (or `environ`)"""
    environ = os.environ if environ is None else environ
    found = {}
    for provider, names in ENV_VARS.items():
        found[provider] = next((environ[n] for n in names if environ.get(n)), None)
    return ProviderKeys(**found)
