"""Page-level PDF helpers: info, merge and split."""

from __future__ import annotations

from io import BytesIO
import logging
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from pypdf import PdfReader, PdfWriter

from .config import Settings
from .errors import DecodeError, UnsupportedOption
from .pdf_compression import scoped_temp_files

logger = logging.getLogger(__name__)


def _read_pdf(pdf_bytes: bytes) -> PdfReader:
    try:
        reader = PdfReader(BytesIO(pdf_bytes))
        len(reader.pages)
    except Exception as exc:  # noqa: BLE001
        raise DecodeError(f"Invalid PDF data: {exc}") from exc
    return reader


def _write_pdf(writer: PdfWriter) -> bytes:
    buf = BytesIO()
    writer.write(buf)
    return buf.getvalue()


def pdf_info(
    pdf_bytes: bytes,
    settings: Settings,
    run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> Dict[str, Any]:
    """Page count via `qpdf --show-npages`, falling back to pypdf."""
    with scoped_temp_files(Path(settings.pdf_temp_dir), "info") as (temp_path,):
        temp_path.write_bytes(pdf_bytes)
        try:
            completed = run(
                [settings.qpdf_binary, "--show-npages", str(temp_path)],
                capture_output=True,
                timeout=settings.tool_timeout_seconds,
                check=True,
            )
            page_count = int(completed.stdout.decode().strip())
            return {"pageCount": page_count, "fileSize": len(pdf_bytes), "isValid": page_count > 0}
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            logger.info("qpdf page count unavailable (%s); falling back to pypdf", exc)

    try:
        reader = _read_pdf(pdf_bytes)
    except DecodeError:
        return {"pageCount": 1, "fileSize": len(pdf_bytes), "isValid": False, "error": "Could not parse PDF"}
    return {"pageCount": len(reader.pages), "fileSize": len(pdf_bytes), "isValid": True}


def merge_pdfs(pdf_buffers: Sequence[bytes]) -> Dict[str, Any]:
    writer = PdfWriter()
    for pdf_bytes in pdf_buffers:
        for page in _read_pdf(pdf_bytes).pages:
            writer.add_page(page)
    merged = _write_pdf(writer)
    return {"buffer": merged, "pageCount": len(writer.pages), "size": len(merged)}


def _parse_range(page_range: str, total_pages: int) -> List[int]:
    start_str, _, end_str = page_range.partition("-")
    try:
        start = int(start_str) - 1
        end = int(end_str) - 1 if end_str else start
    except ValueError:
        raise UnsupportedOption(f"Invalid page range: {page_range}") from None
    if start < 0 or start >= total_pages or end < start:
        raise UnsupportedOption(f"Invalid page range: {page_range}")
    return list(range(start, min(end, total_pages - 1) + 1))


def split_pdf(
    pdf_bytes: bytes,
    page_ranges: Optional[Sequence[str]] = None,
    individual_pages: bool = False,
) -> Dict[str, Any]:
    """
    Split a PDF by 1-indexed ranges like "1-3" or "5", or into single pages.
    """
    reader = _read_pdf(pdf_bytes)
    total = len(reader.pages)
    parts: List[Dict[str, Any]] = []

    if individual_pages:
        groups = [(str(i + 1), [i]) for i in range(total)]
    else:
        ranges = list(page_ranges) if page_ranges else [f"1-{total}"]
        groups = [(r, _parse_range(r, total)) for r in ranges]

    for label, indices in groups:
        writer = PdfWriter()
        for i in indices:
            writer.add_page(reader.pages[i])
        part = _write_pdf(writer)
        parts.append({"range": label, "pages": len(indices), "buffer": part, "size": len(part)})

    return {"results": parts, "totalPages": total}
