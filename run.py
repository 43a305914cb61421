#!/usr/bin/env python3
"""
Command line runner for the Document Intelligence Engine
"""
import argparse
import json
import logging
import sys
from pathlib import Path

from config import settings


def setup_cli_logging(verbose: bool = False):
    """Setup logging for command line use"""
    from utils.logging import setup_logging

    setup_logging(
        log_level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file
    )


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _read_page(path: str, page_number: int) -> str:
    """Text of one page, rejecting page numbers the file does not have"""
    from services.dependencies import get_pdf_processor
    from utils.exceptions import ValidationError

    processor = get_pdf_processor()
    data = Path(path).read_bytes()
    page_count = processor.get_page_count(data, filename=path)
    if not 1 <= page_number <= page_count:
        raise ValidationError(
            f"--page must be between 1 and {page_count}",
            field_name="page",
            field_value=page_number
        )
    return processor.extract_page_text(data, page_number, filename=path)


def _open_session(args):
    from services.dependencies import create_study_session

    session = create_study_session(
        user_id=args.user,
        document_id=Path(args.file).name,
        document_name=Path(args.file).name
    )
    session.open_page(args.page, _read_page(args.file, args.page))
    return session


def run_ingest(args) -> bool:
    """Ingest PDF files and print the final queue state"""
    from services.dependencies import get_ingestion_queue
    from services.ingestion_queue import SourceFile

    files = [SourceFile(name=Path(p).name, data=Path(p).read_bytes()) for p in args.files]
    ingestion_queue = get_ingestion_queue()
    items = ingestion_queue.submit(files, user_id=args.user, known_subjects=args.subjects)
    ingestion_queue.shutdown()

    _print_json([item.model_dump(mode="json") for item in items])
    return all(item.status.value == "completed" for item in items)


def run_ask(args) -> bool:
    """Answer a question about one page"""
    answer = _open_session(args).ask(args.question)
    _print_json({
        "answer": answer.text,
        "model": answer.model_used,
        "sources": [chunk.model_dump() for chunk in answer.source_passages]
    })
    return True


def run_summarize(args) -> bool:
    """Summarize one page"""
    summary = _open_session(args).summarize()
    _print_json({"page": args.page, "summary": summary})
    return summary is not None


def run_quiz(args) -> bool:
    """Generate a quiz for one page"""
    from models.quiz import QuizOptions

    session = _open_session(args)
    engine = session.generate_quiz(QuizOptions(count=args.count, tone=args.tone, subject=args.subject))
    _print_json({
        str(ordinal): question.model_dump()
        for ordinal, question in engine.questions.items()
    })
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Document Intelligence Engine")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--user", default="local", help="Owner id for created records")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Classify and store PDF files")
    ingest.add_argument("files", nargs="+", help="PDF files to ingest")
    ingest.add_argument("--subjects", nargs="*", default=[], help="Known subject labels")
    ingest.set_defaults(handler=run_ingest)

    for name, handler, help_text in (
        ("ask", run_ask, "Ask a question about a page"),
        ("summarize", run_summarize, "Summarize a page"),
        ("quiz", run_quiz, "Generate a quiz for a page"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("file", help="PDF file")
        sub.add_argument("--page", type=int, default=1, help="1-based page number")
        sub.set_defaults(handler=handler)
        if name == "ask":
            sub.add_argument("question", help="Question to answer")
        if name == "quiz":
            sub.add_argument("--count", type=int, default=settings.quiz_default_count)
            sub.add_argument("--tone", default=settings.quiz_default_tone)
            sub.add_argument("--subject", default="General")

    return parser


def main(argv=None):
    """Main entry point"""
    args = build_parser().parse_args(argv)
    setup_cli_logging(args.verbose)
    logger = logging.getLogger(__name__)

    from utils.exceptions import DocIntelException

    try:
        success = args.handler(args)
    except DocIntelException as e:
        logger.error(f"{args.command} failed: {e}")
        _print_json({"error": e.to_dict()})
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
