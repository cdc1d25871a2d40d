"""
Quick local helper: runs the removal chain or PDF compression on a local file
and writes the result to disk. This bypasses the API and storage layers.
"""

from __future__ import annotations

import argparse
from pathlib import Path

# Ensure project root is importable when running from scripts/
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mediakit_service.config import get_settings
from mediakit_service.orchestrator import FallbackOrchestrator
from mediakit_service.pdf_compression import PDFCompressionOrchestrator
from mediakit_service.schemas import RemovalRequest


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run background removal or PDF compression on a local file")
    sub = parser.add_subparsers(dest="command", required=True)

    remove = sub.add_parser("remove-bg", help="Remove an image background")
    remove.add_argument("--input", required=True, help="Path to the input image")
    remove.add_argument("--output", required=True, help="Path to write the result")
    remove.add_argument("--priority", default=None, help="Comma-separated provider order")
    remove.add_argument("--no-fallback", action="store_true", help="Fail instead of applying basic transparency")

    pdf = sub.add_parser("compress-pdf", help="Compress a PDF")
    pdf.add_argument("--input", required=True, help="Path to the input PDF")
    pdf.add_argument("--output", required=True, help="Path to write the compressed PDF")
    pdf.add_argument("--target-mb", type=float, default=None, help="Size budget in MB")
    pdf.add_argument("--quality", default=None, choices=["prepress", "printer", "default", "ebook", "screen"])
    pdf.add_argument("--method", default=None, choices=["ghostscript", "qpdf"])
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    input_path = Path(args.input)
    output_path = Path(args.output)
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")
    settings = get_settings()

    if args.command == "remove-bg":
        priority = [p.strip() for p in args.priority.split(",")] if args.priority else None
        result = FallbackOrchestrator(settings).auto_remove(
            RemovalRequest(image_bytes=input_path.read_bytes()),
            priority=priority,
            fallback_to_local=False if args.no_fallback else None,
        )
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(result.output_bytes)
        print(f"Wrote {result.content_type} from {result.provider_name} (cost ${result.cost_incurred:.2f}) to {output_path}")
        return

    target = int(args.target_mb * 1024 * 1024) if args.target_mb else None
    outcome = PDFCompressionOrchestrator(settings).compress(
        input_path.read_bytes(),
        target_max_bytes=target,
        starting_quality=args.quality,
        method=args.method,
    )
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(outcome.output_bytes)
    status = "within budget" if outcome.in_budget else "over budget"
    print(f"Wrote {outcome.compressed_size_bytes} bytes ({outcome.reduction_percent}% smaller, {status}) to {output_path}")


if __name__ == "__main__":
    main()
