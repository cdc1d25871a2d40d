"""
On-device matting model.

The loader:
 - loads a TorchScript matting checkpoint from `LOCAL_MODEL_PATH`,
 - keeps a single shared instance per checkpoint path,
 - exposes `remove_background_bytes()` as the local provider runner.
"""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Dict, Optional

import numpy as np
import torch
import torch.nn.functional as F

from . import config
from .errors import Unconfigured
from .matting import PreparedInput, compose_rgba_png, prepare_input, refine_alpha

logger = logging.getLogger(__name__)

_MODELS: Dict[Path, torch.nn.Module] = {}
# Prefer CUDA -> Apple MPS -> CPU to support both GPU servers and local macOS dev.
if torch.cuda.is_available():
    _DEVICE = torch.device("cuda")
elif torch.backends.mps.is_available():  # type: ignore[attr-defined]
    _DEVICE = torch.device("mps")
else:
    _DEVICE = torch.device("cpu")
_LOCK = Lock()


def _load_torchscript(model_path: Path) -> torch.nn.Module:
    if not model_path.exists():
        raise FileNotFoundError(f"Matting checkpoint not found at {model_path}")
    model = torch.jit.load(str(model_path), map_location=_DEVICE)
    model.eval()
    return model


def get_matting_model(model_path: Path) -> torch.nn.Module:
    """
    Return the shared model for `model_path`, loading it on first access.

    The model is kept in device memory to avoid re-initialization costs
    across requests or batch items.
    """
    model = _MODELS.get(model_path)
    if model is not None:
        return model

    with _LOCK:
        if model_path not in _MODELS:
            logger.info("Loading matting model from %s", model_path)
            _MODELS[model_path] = _load_torchscript(model_path)
            logger.info("Matting model loaded on device: %s", _DEVICE)
        return _MODELS[model_path]


def predict_alpha(prepared: PreparedInput, model: torch.nn.Module) -> np.ndarray:
    """Run the model and return an alpha matte at the original resolution."""
    tensor = torch.from_numpy(prepared.array).to(_DEVICE)
    with torch.no_grad():
        output = model(tensor, inference=True)
    # MODNet-style graphs return (semantic, detail, matte); plain graphs return the matte.
    matte = output[-1] if isinstance(output, (tuple, list)) else output
    matte = F.interpolate(
        matte,
        size=(prepared.orig_size[1], prepared.orig_size[0]),
        mode="bilinear",
        align_corners=False,
    )
    alpha = matte[0, 0].detach().cpu().numpy()
    return np.clip(alpha, 0.0, 1.0)


def remove_background_bytes(image_bytes: bytes, settings: Optional[config.Settings] = None) -> bytes:
    """
    Full local pipeline from raw bytes to RGBA PNG bytes.

    Raises:
        Unconfigured: when no checkpoint path is configured.
        DecodeError: when the input is not an image.
    """
    settings = settings or config.get_settings()
    if settings.local_model_path is None:
        raise Unconfigured("LOCAL_MODEL_PATH is not set", provider="local")

    model = get_matting_model(Path(settings.local_model_path))
    prepared = prepare_input(image_bytes, settings.local_max_long_edge)
    alpha = refine_alpha(predict_alpha(prepared, model))
    return compose_rgba_png(prepared.original_image, alpha)
