"""Background replacement: cut out the foreground and layer it over a new background."""

from __future__ import annotations

import logging
from typing import Any

from . import codec
from .errors import CompositeError, UnsupportedOption
from .orchestrator import FallbackOrchestrator
from .schemas import CompositeResult, RemovalRequest

logger = logging.getLogger(__name__)


class CompositionStage:
    def __init__(self, orchestrator: FallbackOrchestrator) -> None:
        self.orchestrator = orchestrator

    def composite_onto_background(
        self,
        request: RemovalRequest,
        background_bytes: bytes,
        output_format: str = "jpeg",
        quality: int = 90,
        **auto_remove_kwargs: Any,
    ) -> CompositeResult:
        """
        Replace the background of `request.image_bytes` with `background_bytes`.

        The background is cover-fitted to the foreground size (crop-to-fill,
        aspect ratio preserved).

        Raises:
            UnsupportedOption: unknown output format.
            DecodeError: either image cannot be decoded.
            CompositeError: layering or encoding failed.
        """
        try:
            codec.resolve_format(output_format)
        except ValueError as exc:
            raise UnsupportedOption(str(exc), format=output_format) from exc

        # Decode the background before paying for a removal.
        background = codec.decode_image(background_bytes)
        foreground_result = self.orchestrator.auto_remove(request, **auto_remove_kwargs)
        foreground = codec.decode_image(foreground_result.output_bytes)

        size = foreground.size
        if background.size != size:
            logger.debug("Cover-fitting background %s to %s", background.size, size)

        try:
            layered = codec.composite_over(codec.cover_fit(background.convert("RGBA"), size), foreground)
            output, content_type = codec.encode_image(layered, output_format, quality=quality)
        except Exception as exc:  # noqa: BLE001
            raise CompositeError(f"Background replacement failed: {exc}") from exc

        return CompositeResult(
            output_bytes=output,
            content_type=content_type,
            width=size[0],
            height=size[1],
            foreground=foreground_result,
        )
