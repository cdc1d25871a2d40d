"""
FastAPI layer exposing background removal and PDF tools.

Endpoints:
 - GET  /health
 - GET  /providers
 - POST /remove-bg
 - POST /remove-bg/batch
 - POST /replace-bg
 - POST /compress-pdf
 - POST /pdf/info
 - POST /pdf/merge
 - POST /pdf/split
 - POST /image/analyze
 - POST /image/optimize
"""

from __future__ import annotations

import base64
from functools import lru_cache
import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import codec, config, pdf_tools, storage
from .batch import BatchRunner
from .composition import CompositionStage
from .errors import (
    AllProvidersFailed,
    CompositeError,
    DecodeError,
    PaymentRequired,
    ProviderFailure,
    RateLimited,
    ServiceError,
    SizeExceeded,
    ToolInvocationFailure,
    Unconfigured,
    UnknownProvider,
    UnsupportedOption,
)
from .orchestrator import FallbackOrchestrator
from .pdf_compression import PDFCompressionOrchestrator
from .schemas import RemovalOptions, RemovalRequest

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Mediakit Background Removal Service", version="0.1.0")

_STATUS_BY_ERROR = {
    SizeExceeded: 413,
    DecodeError: 400,
    UnsupportedOption: 400,
    UnknownProvider: 400,
    Unconfigured: 503,
    PaymentRequired: 402,
    RateLimited: 429,
    AllProvidersFailed: 502,
    ProviderFailure: 502,
    ToolInvocationFailure: 500,
    CompositeError: 500,
}


class RemoveBgResponse(BaseModel):
    provider: str
    contentType: str
    cost: float
    note: Optional[str] = None
    failures: List[Dict[str, str]] = []
    imageBase64: Optional[str] = None
    outputUrl: Optional[str] = None


class CompressPdfResponse(BaseModel):
    success: bool
    inBudget: bool
    method: str
    quality: Optional[str] = None
    originalSize: int
    compressedSize: int
    reduction: float
    attempts: List[Dict[str, Any]]
    pdfBase64: str


@lru_cache()
def get_orchestrator() -> FallbackOrchestrator:
    return FallbackOrchestrator(settings)


@lru_cache()
def get_pdf_compressor() -> PDFCompressionOrchestrator:
    return PDFCompressionOrchestrator(settings)


@app.exception_handler(ServiceError)
def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status = _STATUS_BY_ERROR.get(type(exc), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


def _read_upload(upload: UploadFile) -> bytes:
    data = upload.file.read()
    if not data:
        raise HTTPException(status_code=400, detail=f"Empty upload: {upload.filename}")
    return data


def _split_csv(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/providers")
def providers(orchestrator: FallbackOrchestrator = Depends(get_orchestrator)):
    catalog = orchestrator.registry.describe()
    catalog["priority"] = settings.priority_list()
    catalog["configured"] = orchestrator.registry.configured_remote_keys()
    catalog["byCost"] = orchestrator.registry.remote_keys_by_cost()
    return catalog


@app.post("/remove-bg", response_model=RemoveBgResponse)
def remove_bg(
    image: UploadFile = File(...),
    size: Optional[str] = Form(None),
    type: Optional[str] = Form(None),
    format: Optional[str] = Form(None),
    bg_color: Optional[str] = Form(None),
    priority: Optional[str] = Form(None),
    fallback: Optional[bool] = Form(None),
    store: bool = Form(False),
    orchestrator: FallbackOrchestrator = Depends(get_orchestrator),
):
    request = RemovalRequest(
        image_bytes=_read_upload(image),
        options=RemovalOptions(size=size, type=type, output_format=format, background_color=bg_color),
    )
    result = orchestrator.auto_remove(request, priority=_split_csv(priority), fallback_to_local=fallback)

    response = RemoveBgResponse(
        provider=result.provider_name,
        contentType=result.content_type,
        cost=result.cost_incurred,
        note=result.note,
        failures=[{"provider": key, **err.to_dict()} for key, err in result.failures],
    )
    if not store:
        response.imageBase64 = _b64(result.output_bytes)
        return response

    try:
        response.outputUrl = storage.upload_result(settings, result.output_bytes, result.content_type, prefix="cutouts")
    except Unconfigured:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to upload cutout to R2: %s", exc)
        raise HTTPException(status_code=500, detail="Upload to storage failed") from exc
    return response


@app.post("/remove-bg/batch")
def remove_bg_batch(
    images: List[UploadFile] = File(...),
    concurrency: Optional[int] = Form(None),
    priority: Optional[str] = Form(None),
    fallback: Optional[bool] = Form(None),
    orchestrator: FallbackOrchestrator = Depends(get_orchestrator),
):
    if len(images) > settings.batch_max_files:
        raise HTTPException(status_code=400, detail=f"At most {settings.batch_max_files} images per batch")
    if concurrency is not None and concurrency < 1:
        raise HTTPException(status_code=400, detail="concurrency must be at least 1")

    requests = [RemovalRequest(image_bytes=_read_upload(upload)) for upload in images]
    outcome = BatchRunner(orchestrator).process_batch(
        requests,
        concurrency_limit=concurrency,
        priority=_split_csv(priority),
        fallback_to_local=fallback,
    )

    results = []
    for item in outcome.items:
        entry: Dict[str, Any] = {"index": item.index, "success": item.success, "filename": images[item.index].filename}
        if item.result is not None:
            entry.update(item.result.to_dict())
            entry["imageBase64"] = _b64(item.result.output_bytes)
        else:
            entry["error"] = item.error.to_dict()
        results.append(entry)

    return {
        "total": outcome.total,
        "successful": outcome.successful_count,
        "failed": outcome.failed_count,
        "estimatedCost": outcome.estimated_total_cost,
        "results": results,
    }


@app.post("/replace-bg")
def replace_bg(
    image: UploadFile = File(...),
    background: UploadFile = File(...),
    format: str = Form("jpeg"),
    priority: Optional[str] = Form(None),
    orchestrator: FallbackOrchestrator = Depends(get_orchestrator),
):
    request = RemovalRequest(image_bytes=_read_upload(image))
    result = CompositionStage(orchestrator).composite_onto_background(
        request,
        _read_upload(background),
        output_format=format,
        priority=_split_csv(priority),
    )
    return {
        "success": True,
        "contentType": result.content_type,
        "dimensions": result.dimensions,
        "foreground": result.foreground.to_dict(),
        "imageBase64": _b64(result.output_bytes),
    }


@app.post("/compress-pdf", response_model=CompressPdfResponse)
def compress_pdf(
    pdf: UploadFile = File(...),
    target_max_mb: Optional[float] = Form(None),
    quality: Optional[str] = Form(None),
    method: Optional[str] = Form(None),
    compressor: PDFCompressionOrchestrator = Depends(get_pdf_compressor),
):
    if target_max_mb is not None and target_max_mb < 0:
        raise HTTPException(status_code=400, detail="target_max_mb must not be negative")
    target = int(target_max_mb * 1024 * 1024) if target_max_mb is not None else None
    outcome = compressor.compress(_read_upload(pdf), target_max_bytes=target, starting_quality=quality, method=method)
    return CompressPdfResponse(
        success=True,
        inBudget=outcome.in_budget,
        method=outcome.method_name,
        quality=outcome.quality,
        originalSize=outcome.original_size_bytes,
        compressedSize=outcome.compressed_size_bytes,
        reduction=outcome.reduction_percent,
        attempts=[a.to_dict() for a in outcome.attempts],
        pdfBase64=_b64(outcome.output_bytes),
    )


@app.post("/pdf/info")
def pdf_info(pdf: UploadFile = File(...)):
    return pdf_tools.pdf_info(_read_upload(pdf), settings)


@app.post("/pdf/merge")
def pdf_merge(pdfs: List[UploadFile] = File(...)):
    merged = pdf_tools.merge_pdfs([_read_upload(upload) for upload in pdfs])
    return {"success": True, "pageCount": merged["pageCount"], "size": merged["size"], "pdfBase64": _b64(merged["buffer"])}


@app.post("/pdf/split")
def pdf_split(
    pdf: UploadFile = File(...),
    ranges: Optional[str] = Form(None),
    individual: bool = Form(False),
):
    split = pdf_tools.split_pdf(_read_upload(pdf), page_ranges=_split_csv(ranges), individual_pages=individual)
    return {
        "success": True,
        "totalPages": split["totalPages"],
        "results": [
            {"range": part["range"], "pages": part["pages"], "size": part["size"], "pdfBase64": _b64(part["buffer"])}
            for part in split["results"]
        ],
    }


@app.post("/image/analyze")
def image_analyze(image: UploadFile = File(...)):
    return codec.validate_image(_read_upload(image))


@app.post("/image/optimize")
def image_optimize(
    image: UploadFile = File(...),
    max_width: int = Form(2000),
    max_height: int = Form(2000),
    quality: int = Form(80),
    format: str = Form("webp"),
):
    if max_width < 1 or max_height < 1 or not 1 <= quality <= 100:
        raise HTTPException(status_code=400, detail="max_width/max_height must be positive and quality 1-100")
    try:
        codec.resolve_format(format)
    except ValueError as exc:
        raise UnsupportedOption(str(exc), format=format) from exc

    optimized = codec.optimize_for_web(
        _read_upload(image),
        max_width=max_width,
        max_height=max_height,
        quality=quality,
        fmt=format,
    )
    buffer = optimized.pop("buffer")
    optimized["imageBase64"] = _b64(buffer)
    return optimized
