"""
Provider fallback chain.

`FallbackOrchestrator.auto_remove` walks the priority list and returns the
first successful removal. Later providers are never contacted once one
succeeds, so ordering local-first keeps costs down. When every provider fails
the deterministic basic-transparency transform makes the chain total.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import requests

from . import codec
from .clients import LocalModelClient, RemovalBackend, RemoteProviderClient
from .config import Settings
from .errors import AllProvidersFailed, ProviderFailure, ServiceError, SizeExceeded, Unconfigured, UnknownProvider
from .providers import ProviderRegistry
from .schemas import ItemError, RemovalRequest, RemovalResult

logger = logging.getLogger(__name__)

LOCAL_KEY = "local"


def build_backends(
    settings: Settings,
    registry: ProviderRegistry,
    session: Optional[requests.Session] = None,
) -> Dict[str, RemovalBackend]:
    """One backend per priority key: every remote provider plus `local`."""
    session = session or requests.Session()
    backends: Dict[str, RemovalBackend] = {
        key: RemoteProviderClient(
            registry.remote(key),
            session=session,
            timeout_seconds=settings.request_timeout_seconds,
        )
        for key in registry.remote_keys()
    }
    backends[LOCAL_KEY] = LocalModelClient(registry.local_model(settings.local_model_name), settings)
    return backends


class FallbackOrchestrator:
    def __init__(
        self,
        settings: Settings,
        registry: Optional[ProviderRegistry] = None,
        backends: Optional[Dict[str, RemovalBackend]] = None,
    ) -> None:
        self.settings = settings
        self.registry = registry or ProviderRegistry.from_settings(settings)
        self.backends = backends if backends is not None else build_backends(settings, self.registry)

    def auto_remove(
        self,
        request: RemovalRequest,
        priority: Optional[Sequence[str]] = None,
        max_input_size: Optional[int] = None,
        fallback_to_local: Optional[bool] = None,
    ) -> RemovalResult:
        """
        Remove the background with the first provider that succeeds.

        Raises:
            SizeExceeded: input is larger than `max_input_size`; no provider is contacted.
            AllProvidersFailed: every provider failed and the fallback is disabled.
        """
        limit = max_input_size if max_input_size is not None else self.settings.max_input_bytes
        if len(request.image_bytes) > limit:
            raise SizeExceeded(
                f"File too large. Maximum size is {limit / 1024 / 1024:g}MB",
                size=len(request.image_bytes),
                limit=limit,
            )

        order = list(priority) if priority is not None else self.settings.priority_list()
        fallback = self.settings.fallback_to_local if fallback_to_local is None else fallback_to_local
        failures: List[Tuple[str, ItemError]] = []

        for key in order:
            backend = self.backends.get(key)
            if backend is None:
                logger.warning("Skipping unknown provider '%s'", key)
                failures.append((key, ItemError.from_exception(UnknownProvider(f"Unknown provider {key}"))))
                continue
            if not backend.is_configured:
                logger.info("Skipping unconfigured provider '%s'", key)
                failures.append((key, ItemError.from_exception(Unconfigured(f"{backend.name} is not configured"))))
                continue
            try:
                result = backend.try_remove(request)
            except ServiceError as exc:
                logger.warning("%s failed: %s", key, exc.message)
                failures.append((key, ItemError.from_exception(exc)))
                continue
            except Exception as exc:  # noqa: BLE001
                logger.exception("%s raised unexpectedly", key)
                failure = ProviderFailure(f"{backend.name} failed: {exc!r}", provider=key)
                failures.append((key, ItemError.from_exception(failure)))
                continue
            result.failures = tuple(failures)
            return result

        if fallback:
            logger.info("All providers failed (%d tried); applying basic transparency", len(order))
            return self.basic_transparency(request, failures)

        raise AllProvidersFailed(
            "All background removal services failed",
            failures=[{"provider": key, **err.to_dict()} for key, err in failures],
        )

    def basic_transparency(
        self,
        request: RemovalRequest,
        failures: Sequence[Tuple[str, ItemError]] = (),
    ) -> RemovalResult:
        output = codec.basic_transparency(request.image_bytes, self.settings.basic_transparency_threshold)
        return RemovalResult(
            success=True,
            provider_name=codec.BASIC_TRANSPARENCY_NAME,
            output_bytes=output,
            content_type="image/png",
            cost_incurred=0.0,
            note="Basic threshold-based transparency applied",
            failures=tuple(failures),
        )

    def remove_with_service(self, key: str, request: RemovalRequest) -> RemovalResult:
        """Single remote provider, no fallback."""
        self.registry.require_configured(key)
        return self.backends[key].try_remove(request)
