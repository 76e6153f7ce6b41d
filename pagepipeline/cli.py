#!/usr/bin/env python3
"""
Command-line interface for pagepipeline.

Usage:
    # OCR a single page image
    pagepipeline extract ./pages/page_0012.jpg --language ara

    # Score a summary against its source text
    pagepipeline score source.txt summary.md

    # Run the quality gate (with repair through the configured LLM)
    pagepipeline gate source.txt summary.md --ocr-confidence 0.8 --repair

    # Process a directory of page images, skipping pages already done
    pagepipeline run ./pages --title "Biology 1" --store ./store --start 5 --end 9

    # Start the control server
    pagepipeline serve --title "Biology 1" --store ./store --port 8787

LLM and embedding endpoints are read from PAGEPIPELINE_* environment variables.
"""

import argparse
import logging
import sys
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _read_text(path: str) -> str | None:
    file_path = Path(path)
    if not file_path.exists():
        print(f"Input file not found: {file_path}", file=sys.stderr)
        return None
    return file_path.read_text(encoding="utf-8")


def _build_config(args: argparse.Namespace):
    from .config import AutomationOptions, GateOptions, OcrOptions, PipelineConfig, RetrievalOptions, ServiceConfig

    return PipelineConfig(
        store_dir=Path(args.store),
        book_title=args.title,
        language=args.language,
        ocr=OcrOptions(language="ara+eng" if args.language == "ar" else "eng"),
        gate=GateOptions(enable_repair=args.repair),
        retrieval=RetrievalOptions(enabled=args.retrieval),
        automation=AutomationOptions(
            skip_processed=not args.reprocess,
            dry_run=getattr(args, "dry_run", False),
            settle_delay=args.settle_delay,
        ),
        services=ServiceConfig.from_env(),
    )


def cmd_extract(args: argparse.Namespace) -> int:
    """OCR one image and print the text."""
    from .config import OcrOptions
    from .errors import InputError
    from .ocr import OcrEnsembleExtractor, TesseractEngine

    options = OcrOptions(
        language=args.language,
        preferred_segmentation_mode=args.psm,
        auto_rotate=True if args.rotate else None,
        preprocess_variants=False if args.no_preprocess else None,
    )
    extractor = OcrEnsembleExtractor(TesseractEngine(), options)

    try:
        result = extractor.extract_file(Path(args.input))
    except InputError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(result.text, encoding="utf-8")
    else:
        print(result.text)

    print(
        f"✓ OCR: {len(result.text)} chars, confidence {result.confidence:.1%} "
        f"({result.strategy_id or 'no strategy succeeded'})",
        file=sys.stderr,
    )
    return 0 if result.success else 1


def cmd_score(args: argparse.Namespace) -> int:
    """Score a summary against its source."""
    from .confidence import analyze_keywords, score

    source = _read_text(args.source)
    summary = _read_text(args.summary)
    if source is None or summary is None:
        return 1

    rtl = args.language == "ar"
    value, meta = score(source, summary, ocr_quality=args.ocr_confidence, is_rtl=rtl)
    keywords = analyze_keywords(source, summary, rtl=rtl, use_synonyms=True)

    print(f"Confidence: {value:.1%}")
    print(f"  {meta.describe()}")
    if keywords.missing_keywords:
        print(f"  Missing keywords: {', '.join(keywords.missing_keywords)}")
    return 0


def cmd_gate(args: argparse.Namespace) -> int:
    """Run the quality gate on a summary."""
    from .clients import LLMClient
    from .config import GateOptions, ServiceConfig
    from .quality_gate import GateContext, run_gate

    source = _read_text(args.source)
    summary = _read_text(args.summary)
    if source is None or summary is None:
        return 1

    generator = LLMClient(ServiceConfig.from_env()) if args.repair else None
    try:
        result = run_gate(
            source,
            summary,
            args.ocr_confidence,
            GateContext(page_number=args.page, book_title=args.title, language=args.language, generator=generator),
            GateOptions(enable_repair=args.repair),
        )
    finally:
        if generator is not None:
            generator.close()

    for line in result.logs:
        print(f"  {line}")
    for deficiency in result.deficiencies:
        print(f"  {deficiency}")

    if result.repair_successful and args.output:
        Path(args.output).write_text(result.final_text, encoding="utf-8")
        print(f"  Repaired summary: {args.output}")

    marker = "✓" if result.passed else "✗"
    print(f"{marker} {result.state.value}: {result.final_confidence:.1%}")
    return 0 if result.passed else 1


def cmd_run(args: argparse.Namespace) -> int:
    """Process a directory of page images."""
    from .automation import watch_run
    from .pipeline import PagePipeline, number_pages
    from .preprocessor import discover_images
    from .progress import ProgressReporter, summarize_outcomes

    input_dir = Path(args.input)
    if not input_dir.is_dir():
        print(f"Input directory not found: {input_dir}", file=sys.stderr)
        return 1

    config = _build_config(args)
    images = number_pages(discover_images(input_dir, config.supported_extensions), first_page=args.first_page)
    if not images:
        print("No images found", file=sys.stderr)
        return 1

    start = args.start if args.start is not None else min(images)
    end = args.end if args.end is not None else max(images)
    if start < 0 or end < start:
        print(f"Invalid page range: {start}-{end}", file=sys.stderr)
        return 1

    results = []
    with PagePipeline(config) as pipeline, ProgressReporter(end - start + 1, desc="Pages", unit="pages") as reporter:
        controller = pipeline.create_controller(images, on_progress=reporter.on_progress)
        worker = threading.Thread(
            target=lambda: results.append(controller.run(config.document_id, start, end)),
            name="pagepipeline-run",
            daemon=True,
        )
        worker.start()
        try:
            watch_run(controller, worker)
        except KeyboardInterrupt:
            controller.request_stop()
            worker.join()

    progress = results[0] if results else controller.snapshot()

    print(summarize_outcomes(progress))
    return 0 if progress.error_count == 0 and progress.error_message is None else 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the control server."""
    from .pipeline import PagePipeline
    from .server import serve

    with PagePipeline(_build_config(args)) as pipeline:
        serve(pipeline, host=args.host, port=args.port)
    return 0


def _add_book_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-t", "--title", required=True, help="Book title")
    parser.add_argument("-s", "--store", default="./store", help="Page record directory")
    parser.add_argument("-l", "--language", default="en", choices=["en", "ar"], help="Book language")
    parser.add_argument("--repair", action="store_true", help="Repair weak summaries through the LLM")
    parser.add_argument("--retrieval", action="store_true", help="Add context from similar earlier pages")
    parser.add_argument("--reprocess", action="store_true", help="Process pages even if already done")
    parser.add_argument("--settle-delay", type=float, default=2.0, help="Seconds to wait after navigation")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="pagepipeline",
        description="OCR, summarize and quality-check scanned book pages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # extract command
    p_extract = subparsers.add_parser("extract", help="OCR a single page image")
    p_extract.add_argument("input", help="Page image")
    p_extract.add_argument("-o", "--output", help="Write text to file instead of stdout")
    p_extract.add_argument("-l", "--language", default="eng", help="Tesseract language (eng, ara, ara+eng)")
    p_extract.add_argument("--psm", type=int, default=6, help="Preferred page segmentation mode")
    p_extract.add_argument("--rotate", action="store_true", help="Detect orientation for any language")
    p_extract.add_argument("--no-preprocess", action="store_true", help="Only OCR the original image")
    p_extract.set_defaults(func=cmd_extract)

    # score command
    p_score = subparsers.add_parser("score", help="Score a summary against its source text")
    p_score.add_argument("source", help="Source text file")
    p_score.add_argument("summary", help="Summary file")
    p_score.add_argument("--ocr-confidence", type=float, default=None, help="OCR confidence 0-1")
    p_score.add_argument("-l", "--language", default="en", choices=["en", "ar"], help="Text language")
    p_score.set_defaults(func=cmd_score)

    # gate command
    p_gate = subparsers.add_parser("gate", help="Run the quality gate on a summary")
    p_gate.add_argument("source", help="Source text file")
    p_gate.add_argument("summary", help="Summary file")
    p_gate.add_argument("--ocr-confidence", type=float, default=0.8, help="OCR confidence 0-1")
    p_gate.add_argument("-l", "--language", default="en", choices=["en", "ar"], help="Text language")
    p_gate.add_argument("-t", "--title", default="", help="Book title (for the repair prompt)")
    p_gate.add_argument("-p", "--page", type=int, default=None, help="Page number (for the repair prompt)")
    p_gate.add_argument("--repair", action="store_true", help="Attempt repair through the LLM")
    p_gate.add_argument("-o", "--output", help="Write the repaired summary here")
    p_gate.set_defaults(func=cmd_gate)

    # run command
    p_run = subparsers.add_parser("run", help="Process a directory of page images")
    p_run.add_argument("input", help="Directory with page images")
    _add_book_arguments(p_run)
    p_run.add_argument("--start", type=int, default=None, help="First page to process")
    p_run.add_argument("--end", type=int, default=None, help="Last page to process")
    p_run.add_argument("--first-page", type=int, default=1, help="Page number of the first image")
    p_run.add_argument("--dry-run", action="store_true", help="Walk the pages without processing")
    p_run.set_defaults(func=cmd_run)

    # serve command
    p_serve = subparsers.add_parser("serve", help="Start the control server")
    _add_book_arguments(p_serve)
    p_serve.add_argument("--host", default="127.0.0.1", help="Bind address")
    p_serve.add_argument("--port", type=int, default=8787, help="Port")
    p_serve.set_defaults(func=cmd_serve)

    args = parser.parse_args()
    setup_logging(args.verbose)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
