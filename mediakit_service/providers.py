"""
Static catalog of background-removal providers.

Remote providers are paid HTTP APIs keyed by a short name; local models are
on-device matting capabilities with no network dependency. The registry is
pure data built once from settings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from .config import Settings
from .errors import Unconfigured, UnknownProvider


@dataclass(frozen=True)
class ProviderDescriptor:
    key: str
    name: str
    endpoint_url: str
    credential: Optional[str]
    cost_per_image: float

    @property
    def is_configured(self) -> bool:
        return bool(self.credential)


@dataclass(frozen=True)
class LocalModelDescriptor:
    key: str
    name: str
    description: str
    approximate_weight_size: str
    homepage: str


LOCAL_MODELS: Dict[str, LocalModelDescriptor] = {
    "u2net": LocalModelDescriptor(
        key="u2net",
        name="U^2-Net",
        description="Salient object detection",
        approximate_weight_size="176MB",
        homepage="https://github.com/xuebinqin/U-2-Net",
    ),
    "rembg": LocalModelDescriptor(
        key="rembg",
        name="Rembg",
        description="Python library bundling several segmentation models",
        approximate_weight_size="Various",
        homepage="https://github.com/danielgatis/rembg",
    ),
    "modnet": LocalModelDescriptor(
        key="modnet",
        name="MODNet",
        description="Real-time portrait matting",
        approximate_weight_size="24MB",
        homepage="https://github.com/ZHKKKe/MODNet",
    ),
}


class ProviderRegistry:
    """Ordered lookup from provider key to descriptor."""

    def __init__(
        self,
        remote: List[ProviderDescriptor],
        local_models: Optional[Dict[str, LocalModelDescriptor]] = None,
    ) -> None:
        self._remote: Dict[str, ProviderDescriptor] = {p.key: p for p in remote}
        self._local = dict(local_models if local_models is not None else LOCAL_MODELS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderRegistry":
        return cls(
            remote=[
                ProviderDescriptor(
                    key="removebg",
                    name="Remove.bg",
                    endpoint_url=settings.removebg_url,
                    credential=settings.removebg_api_key,
                    cost_per_image=0.02,
                ),
                ProviderDescriptor(
                    key="backgrounds",
                    name="BackgroundRemover.ai",
                    endpoint_url=settings.backgrounds_url,
                    credential=settings.backgrounds_api_key,
                    cost_per_image=0.03,
                ),
                ProviderDescriptor(
                    key="clipdrop",
                    name="Clipdrop by Stability AI",
                    endpoint_url=settings.clipdrop_url,
                    credential=settings.clipdrop_api_key,
                    cost_per_image=0.10,
                ),
            ]
        )

    def remote_keys(self) -> List[str]:
        return list(self._remote)

    def remote_keys_by_cost(self) -> List[str]:
        return [p.key for p in sorted(self._remote.values(), key=lambda p: p.cost_per_image)]

    def configured_remote_keys(self) -> List[str]:
        return [key for key, p in self._remote.items() if p.is_configured]

    def remote(self, key: str) -> ProviderDescriptor:
        try:
            return self._remote[key]
        except KeyError:
            raise UnknownProvider(f"Service {key} not configured", provider=key) from None

    def require_configured(self, key: str) -> ProviderDescriptor:
        """Return the descriptor, or raise Unconfigured when it has no credential."""
        descriptor = self.remote(key)
        if not descriptor.is_configured:
            raise Unconfigured(f"API key for {descriptor.name} is required", provider=key)
        return descriptor

    def local_model(self, key: str) -> LocalModelDescriptor:
        try:
            return self._local[key]
        except KeyError:
            raise UnknownProvider(f"Local model {key} not available", provider=key) from None

    def local_models(self) -> List[LocalModelDescriptor]:
        return list(self._local.values())

    def describe(self) -> Dict[str, list]:
        """Catalog without credentials, for the HTTP layer."""
        return {
            "remote": [
                {
                    "key": p.key,
                    "name": p.name,
                    "costPerImage": p.cost_per_image,
                    "configured": p.is_configured,
                }
                for p in self._remote.values()
            ],
            "local": [
                {
                    "key": m.key,
                    "name": m.name,
                    "description": m.description,
                    "size": m.approximate_weight_size,
                }
                for m in self.local_models()
            ],
        }
