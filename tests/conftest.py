"""
Pytest fixtures for the mediakit service tests.

Backends are stubbed in-process; no network calls or external tools run.
"""

from io import BytesIO
from pathlib import Path
import threading
from typing import Callable, Optional

import pytest
from PIL import Image

from mediakit_service.clients import RemovalBackend
from mediakit_service.config import Settings
from mediakit_service.schemas import RemovalRequest, RemovalResult


# =============================================================================
# Settings
# =============================================================================

@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the process environment and .env."""
    return Settings(
        _env_file=None,
        removebg_api_key="rb-key",
        backgrounds_api_key="bg-key",
        clipdrop_api_key=None,
        local_model_path=None,
        batch_delay_seconds=0.0,
        pdf_temp_dir=tmp_path / "temp",
        r2_endpoint=None,
        r2_access_key_id=None,
        r2_secret_access_key=None,
        r2_bucket_name=None,
        r2_public_base_url=None,
    )


# =============================================================================
# Images
# =============================================================================

def png_bytes(size=(8, 6), color=(255, 255, 255), mode="RGB") -> bytes:
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    return png_bytes


@pytest.fixture
def image_bytes() -> bytes:
    """Half white, half dark test image."""
    image = Image.new("RGB", (10, 4), (255, 255, 255))
    for x in range(5, 10):
        for y in range(4):
            image.putpixel((x, y), (20, 40, 60))
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


# =============================================================================
# Backends
# =============================================================================

class StubBackend(RemovalBackend):
    """Configurable backend that counts calls."""

    def __init__(
        self,
        key: str,
        cost: float = 0.0,
        error: Optional[Exception] = None,
        configured: bool = True,
        output: Optional[bytes] = None,
        handler: Optional[Callable[[RemovalRequest], RemovalResult]] = None,
    ) -> None:
        self.key = key
        self.name = key.upper()
        self.cost_per_image = cost
        self.error = error
        self.configured = configured
        self.output = output if output is not None else f"out-{key}".encode()
        self.handler = handler
        self.calls = 0
        self._lock = threading.Lock()

    @property
    def is_configured(self) -> bool:
        return self.configured

    def try_remove(self, request: RemovalRequest) -> RemovalResult:
        with self._lock:
            self.calls += 1
        if self.handler is not None:
            return self.handler(request)
        if self.error is not None:
            raise self.error
        return RemovalResult(
            success=True,
            provider_name=self.name,
            output_bytes=self.output,
            cost_incurred=self.cost_per_image,
        )


@pytest.fixture
def make_backend() -> Callable[..., StubBackend]:
    return StubBackend


@pytest.fixture
def no_sleep():
    """Recording replacement for time.sleep."""
    calls = []

    def sleep(seconds: float) -> None:
        calls.append(seconds)

    sleep.calls = calls
    return sleep
