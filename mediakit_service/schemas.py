"""Request/result dataclasses shared by the removal and compression pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import ServiceError


@dataclass(frozen=True)
class RemovalOptions:
    size: Optional[str] = None
    type: Optional[str] = None
    output_format: Optional[str] = None
    background_color: Optional[str] = None  # "RRGGBB" or a color name

    def form_fields(self) -> Dict[str, str]:
        """Multipart fields understood by the remote removal APIs."""
        fields = {
            "size": self.size,
            "type": self.type,
            "format": self.output_format,
            "bg_color": self.background_color,
        }
        return {k: v for k, v in fields.items() if v}


@dataclass(frozen=True)
class RemovalRequest:
    image_bytes: bytes
    options: RemovalOptions = field(default_factory=RemovalOptions)


@dataclass(frozen=True)
class ItemError:
    code: str
    message: str

    @classmethod
    def from_exception(cls, exc: Exception) -> "ItemError":
        if isinstance(exc, ServiceError):
            return cls(code=exc.code, message=exc.message)
        return cls(code="UNEXPECTED_ERROR", message=str(exc))

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass
class RemovalResult:
    success: bool
    provider_name: str
    output_bytes: bytes
    content_type: str = "image/png"
    cost_incurred: float = 0.0
    note: Optional[str] = None
    failures: Tuple[Tuple[str, ItemError], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Metadata only; buffers are encoded by the HTTP layer."""
        return {
            "success": self.success,
            "provider": self.provider_name,
            "contentType": self.content_type,
            "cost": self.cost_incurred,
            "note": self.note,
            "sizeBytes": len(self.output_bytes),
            "failures": [{"provider": name, **err.to_dict()} for name, err in self.failures],
        }


@dataclass
class BatchItemResult:
    index: int
    result: Optional[RemovalResult] = None
    error: Optional[ItemError] = None

    @property
    def success(self) -> bool:
        return self.result is not None


@dataclass
class BatchOutcome:
    total: int
    successful_count: int
    failed_count: int
    items: List[BatchItemResult]
    estimated_total_cost: float


@dataclass
class CompositeResult:
    output_bytes: bytes
    content_type: str
    width: int
    height: int
    foreground: RemovalResult

    @property
    def dimensions(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class CompressionAttempt:
    method_name: str
    quality: Optional[str]
    input_size_bytes: int
    output_size_bytes: int
    reduction_percent: float
    succeeded: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method_name,
            "quality": self.quality,
            "inputSize": self.input_size_bytes,
            "outputSize": self.output_size_bytes,
            "reduction": self.reduction_percent,
            "inBudget": self.succeeded,
        }


@dataclass
class CompressionOutcome:
    output_bytes: bytes
    attempts: List[CompressionAttempt]
    in_budget: bool
    method_name: str
    quality: Optional[str]
    original_size_bytes: int
    compressed_size_bytes: int
    reduction_percent: float
