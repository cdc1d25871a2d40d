"""
Provider clients: one removal attempt against one backend.

Remote providers and the local model share the `RemovalBackend` interface so
the orchestrator can walk a priority list without branching on provider type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import Callable, Optional

import requests

from .config import Settings
from .errors import PaymentRequired, ProviderFailure, RateLimited, ServiceError, Unconfigured
from .providers import LocalModelDescriptor, ProviderDescriptor
from .schemas import RemovalRequest, RemovalResult

logger = logging.getLogger(__name__)


class RemovalBackend(ABC):
    """A single place a background can be removed."""

    key: str
    name: str
    cost_per_image: float = 0.0

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    def try_remove(self, request: RemovalRequest) -> RemovalResult:
        """
        Remove the background once.

        Raises:
            ServiceError subclass describing why this backend failed.
        """


class RemoteProviderClient(RemovalBackend):
    """Multipart POST to a paid removal API; expects a binary image back."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        session: Optional[requests.Session] = None,
        timeout_seconds: int = 30,
    ) -> None:
        self.descriptor = descriptor
        self.key = descriptor.key
        self.name = descriptor.name
        self.cost_per_image = descriptor.cost_per_image
        self._session = session or requests.Session()
        self._timeout = (5, timeout_seconds)

    @property
    def is_configured(self) -> bool:
        return self.descriptor.is_configured

    def try_remove(self, request: RemovalRequest) -> RemovalResult:
        if not self.is_configured:
            raise Unconfigured(f"API key for {self.name} is required", provider=self.key)

        files = {"image_file": ("image.jpg", request.image_bytes, "image/jpeg")}
        try:
            resp = self._session.post(
                self.descriptor.endpoint_url,
                files=files,
                data=request.options.form_fields(),
                headers={"X-Api-Key": self.descriptor.credential},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise ProviderFailure(f"{self.name} failed: {exc}", provider=self.key) from exc
        except UnicodeError as exc:
            # http.client encodes header values as latin-1
            raise ProviderFailure(f"{self.name} failed: credential is not latin-1 encodable", provider=self.key) from exc

        if resp.status_code == 402:
            raise PaymentRequired(f"{self.name}: Payment required or insufficient credits", provider=self.key)
        if resp.status_code == 429:
            raise RateLimited(f"{self.name}: Rate limit exceeded", provider=self.key)
        if not 200 <= resp.status_code < 300:
            detail = resp.text[:200] if resp.content else resp.reason
            raise ProviderFailure(
                f"{self.name} failed: HTTP {resp.status_code} {detail}",
                provider=self.key,
                status=resp.status_code,
            )

        return RemovalResult(
            success=True,
            provider_name=self.name,
            output_bytes=resp.content,
            content_type=resp.headers.get("content-type") or "image/png",
            cost_incurred=self.cost_per_image,
        )


def _default_local_runner(settings: Settings) -> Callable[[bytes], bytes]:
    def run(image_bytes: bytes) -> bytes:
        # torch is only imported once a local model is actually used
        from .local_model import remove_background_bytes

        return remove_background_bytes(image_bytes, settings=settings)

    return run


class LocalModelClient(RemovalBackend):
    """On-device inference; blocking, so callers run it on worker threads."""

    cost_per_image = 0.0

    def __init__(
        self,
        descriptor: LocalModelDescriptor,
        settings: Settings,
        runner: Optional[Callable[[bytes], bytes]] = None,
    ) -> None:
        self.descriptor = descriptor
        self.key = "local"
        self.name = f"Local: {descriptor.name}"
        self._configured = runner is not None or settings.local_model_path is not None
        self._runner = runner or _default_local_runner(settings)

    @property
    def is_configured(self) -> bool:
        return self._configured

    def try_remove(self, request: RemovalRequest) -> RemovalResult:
        if not self.is_configured:
            raise Unconfigured(f"Local model {self.descriptor.name} has no checkpoint", provider=self.key)
        logger.debug("Running local model %s on %d bytes", self.descriptor.key, len(request.image_bytes))
        try:
            output = self._runner(request.image_bytes)
        except ServiceError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ProviderFailure(f"{self.name} failed: {exc}", provider=self.key) from exc

        return RemovalResult(
            success=True,
            provider_name=self.name,
            output_bytes=output,
            content_type="image/png",
            cost_incurred=0.0,
            note=f"Processed on-device with {self.descriptor.name}",
        )
