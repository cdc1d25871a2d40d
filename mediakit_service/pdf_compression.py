"""
PDF compression through external tools.

Ghostscript downsamples images according to a named quality preset; qpdf only
rewrites streams. When a Ghostscript result is still over the size budget the
next, more aggressive preset is tried until one fits or the ladder runs out.
An over-budget result at the last preset is returned, not raised.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
from pathlib import Path
import subprocess
import time
from typing import Callable, Iterator, List, Optional, Sequence, Tuple
import uuid

from .config import PDF_METHODS, PDF_QUALITY_LEVELS, Settings
from .errors import ToolInvocationFailure, UnsupportedOption
from .schemas import CompressionAttempt, CompressionOutcome

logger = logging.getLogger(__name__)

# qpdf exits with 3 when it succeeded but emitted warnings.
_OK_EXIT_CODES = {"ghostscript": {0}, "qpdf": {0, 3}}


@contextmanager
def scoped_temp_files(temp_dir: Path, *prefixes: str, suffix: str = ".pdf") -> Iterator[Tuple[Path, ...]]:
    """
    Yield unique paths under `temp_dir`, one per prefix, and delete them on exit.

    Names combine a millisecond timestamp with a random suffix so concurrent
    requests never collide. Cleanup failures are logged and swallowed.
    """
    temp_dir.mkdir(parents=True, exist_ok=True)
    stamp = f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
    paths = tuple(temp_dir / f"{prefix}_{stamp}{suffix}" for prefix in prefixes)
    try:
        yield paths
    finally:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Failed to delete temp file %s: %s", path, exc)


def reduction_percent(original: int, compressed: int) -> float:
    if original <= 0:
        return 0.0
    return round((original - compressed) / original * 100.0, 2)


class PDFCompressionOrchestrator:
    def __init__(
        self,
        settings: Settings,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.settings = settings
        self.temp_dir = Path(settings.pdf_temp_dir)
        self._run = run

    def _ghostscript_command(self, input_path: Path, output_path: Path, quality: str) -> List[str]:
        dpi = 72 if quality == "screen" else 150
        return [
            self.settings.ghostscript_binary,
            "-sDEVICE=pdfwrite",
            "-dCompatibilityLevel=1.4",
            f"-dPDFSETTINGS=/{quality}",
            "-dNOPAUSE",
            "-dQUIET",
            "-dBATCH",
            f"-dColorImageResolution={dpi}",
            f"-dGrayImageResolution={dpi}",
            f"-dMonoImageResolution={dpi}",
            f"-sOutputFile={output_path}",
            str(input_path),
        ]

    def _qpdf_command(self, input_path: Path, output_path: Path) -> List[str]:
        return [
            self.settings.qpdf_binary,
            str(input_path),
            str(output_path),
            "--linearize",
            "--remove-unreferenced-resources=yes",
            "--compress-streams=y",
            "--object-streams=generate",
        ]

    def _invoke(self, method: str, command: Sequence[str]) -> None:
        label = "Ghostscript" if method == "ghostscript" else "qpdf"
        try:
            completed = self._run(
                list(command),
                capture_output=True,
                timeout=self.settings.tool_timeout_seconds,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ToolInvocationFailure(f"{label} not found: {command[0]}", method=method) from exc
        except subprocess.TimeoutExpired as exc:
            raise ToolInvocationFailure(f"{label} compression timed out", method=method) from exc

        if completed.returncode not in _OK_EXIT_CODES[method]:
            stderr = completed.stderr.decode(errors="replace").strip() if completed.stderr else ""
            raise ToolInvocationFailure(
                f"{label} compression failed: exit {completed.returncode} {stderr}".strip(),
                method=method,
                returncode=completed.returncode,
            )

    def _attempt(self, pdf_bytes: bytes, method: str, quality: Optional[str]) -> bytes:
        with scoped_temp_files(self.temp_dir, "input", "compressed") as (input_path, output_path):
            input_path.write_bytes(pdf_bytes)
            if method == "ghostscript":
                command = self._ghostscript_command(input_path, output_path, quality or "ebook")
            else:
                command = self._qpdf_command(input_path, output_path)
            self._invoke(method, command)
            if not output_path.exists():
                raise ToolInvocationFailure(f"{method} produced no output file", method=method)
            return output_path.read_bytes()

    def compress(
        self,
        pdf_bytes: bytes,
        target_max_bytes: Optional[int] = None,
        starting_quality: Optional[str] = None,
        method: Optional[str] = None,
    ) -> CompressionOutcome:
        """
        Compress `pdf_bytes`, escalating the quality preset while over budget.

        Raises:
            UnsupportedOption: unknown method or quality preset.
            ToolInvocationFailure: the external tool failed; no retry at the same preset.
        """
        method = (method or self.settings.pdf_method).lower()
        if method not in PDF_METHODS:
            raise UnsupportedOption(f"Unsupported method: {method}", method=method)
        quality = (starting_quality or self.settings.pdf_start_quality).lower()
        if quality not in PDF_QUALITY_LEVELS:
            raise UnsupportedOption(f"Unsupported quality: {quality}", quality=quality)
        target = target_max_bytes if target_max_bytes is not None else self.settings.pdf_target_max_bytes

        # qpdf has no quality dimension, so it gets a single attempt.
        if method == "ghostscript":
            ladder: List[Optional[str]] = list(PDF_QUALITY_LEVELS[PDF_QUALITY_LEVELS.index(quality):])
        else:
            ladder = [None]

        original_size = len(pdf_bytes)
        attempts: List[CompressionAttempt] = []
        output = b""
        for level in ladder:
            output = self._attempt(pdf_bytes, method, level)
            attempt = CompressionAttempt(
                method_name=method,
                quality=level,
                input_size_bytes=original_size,
                output_size_bytes=len(output),
                reduction_percent=reduction_percent(original_size, len(output)),
                succeeded=len(output) <= target,
            )
            attempts.append(attempt)
            if attempt.succeeded:
                break
            logger.info(
                "PDF still too large at %s (%.2fMB > %.2fMB)",
                level or method,
                len(output) / 1024 / 1024,
                target / 1024 / 1024,
            )

        last = attempts[-1]
        if not last.succeeded:
            logger.info("Most aggressive setting still over budget; returning best effort")
        return CompressionOutcome(
            output_bytes=output,
            attempts=attempts,
            in_budget=last.succeeded,
            method_name=method,
            quality=last.quality,
            original_size_bytes=original_size,
            compressed_size_bytes=last.output_size_bytes,
            reduction_percent=last.reduction_percent,
        )
