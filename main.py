"""
CLI entry point for the physician job matching pipeline.
"""

from __future__ import annotations

import argparse
import logging
import sys
from concurrent.futures import wait
from pathlib import Path
from typing import List, Optional

from candidate_loader import load_candidate, load_sites
from config import DEFAULT_CONFIG_PATH, Settings, load_settings
from data_models import CandidateStatus
from dispatcher import PipelineDispatcher
from matcher import CandidateMatcher
from record_store import JsonFileStore
from reporting import write_matches_json, write_run_log


class TruncatingFormatter(logging.Formatter):
    """Formatter that truncates log messages to a maximum length."""

    def __init__(self, max_length: int = 200, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_length = max_length

    def format(self, record):
        formatted = super().format(record)
        if len(formatted) > self.max_length:
            formatted = formatted[:self.max_length] + "... (truncated)"
        return formatted


def configure_logging(settings: Settings) -> None:
    """
    Configure logging according to settings.

    Args:
        settings: Application settings dataclass.
    """
    log_format = settings.log_format or "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = settings.log_date_format or "%Y-%m-%d %H:%M:%S"

    console_formatter = TruncatingFormatter(max_length=200, fmt=log_format, datefmt=datefmt)
    file_formatter = logging.Formatter(fmt=log_format, datefmt=datefmt)

    handlers = []
    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    handlers.append(console_handler)

    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Suppress verbose HTTP and SDK logging
    for name in ("urllib3", "urllib3.connectionpool", "httpx", "httpcore", "google", "grpc"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(description="Match physician candidates to scraped job listings")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="JSON configuration file")
    commands = parser.add_subparsers(dest="command", required=True)

    add_candidate = commands.add_parser("add-candidate", help="Store a candidate profile from JSON")
    add_candidate.add_argument("path", type=Path)

    add_sites = commands.add_parser("add-sites", help="Store site records from a JSON list")
    add_sites.add_argument("path", type=Path)

    for name, help_text in (
        ("run", "Run the matching pipeline for a candidate"),
        ("reprocess", "Clear previous results and run the pipeline again"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("candidate_id")
        command.add_argument("--owner", required=True, help="Owner id used for site visibility")
        command.add_argument("--matches-json", type=Path, help="Write ranked matches to this file")
        command.add_argument("--run-log", type=Path, help="Write the run summary and log to this file")

    run_pending = commands.add_parser("run-pending", help="Run every pending candidate of an owner on the worker pool")
    run_pending.add_argument("--owner", required=True, help="Owner whose pending candidates are run")

    status = commands.add_parser("status", help="Show a candidate's processing status")
    status.add_argument("candidate_id")
    return parser


def _run_pipeline(args: argparse.Namespace, matcher: CandidateMatcher) -> int:
    if args.command == "reprocess":
        matcher.reprocess(args.candidate_id)
    summary = matcher.run(args.candidate_id, args.owner)

    if args.run_log:
        write_run_log(summary, args.run_log)
    if args.matches_json and summary.status is CandidateStatus.COMPLETE:
        store = matcher.store
        write_matches_json(
            store.list_matches(args.candidate_id),
            store.list_listings(args.candidate_id),
            args.matches_json,
        )

    logging.info(
        "Run finished: status=%s, listings=%d, matches=%d, ai_failures=%d",
        summary.status.value,
        summary.listings_found,
        summary.matches_created,
        summary.ai_failures,
    )
    if summary.error_message:
        logging.info("Message: %s", summary.error_message)
    return 1 if summary.status is CandidateStatus.ERROR else 0


def _run_pending(owner_id: str, settings: Settings, matcher: CandidateMatcher) -> int:
    """Run all pending candidates of an owner concurrently and wait for them."""
    pending = [
        candidate.id
        for candidate in matcher.store.list_candidates(owner_id)
        if candidate.status is CandidateStatus.PENDING
    ]
    if not pending:
        logging.info("No pending candidates for owner %s", owner_id)
        return 0

    dispatcher = PipelineDispatcher(
        matcher,
        max_workers=settings.max_workers,
        stale_after_seconds=settings.stale_after_minutes * 60,
    )
    try:
        futures = [dispatcher.submit(candidate_id, owner_id) for candidate_id in pending]
        _, not_done = wait(futures, timeout=dispatcher.stale_after_seconds)
        if not_done:
            for candidate_id in dispatcher.find_stale():
                logging.warning(
                    "Candidate %s still unfinished after %d minutes",
                    candidate_id,
                    settings.stale_after_minutes,
                )
    finally:
        dispatcher.shutdown(wait=True)

    summaries = [future.result() for future in futures]
    failed = [s.candidate_id for s in summaries if s.status is CandidateStatus.ERROR]
    logging.info("Processed %d candidates (%d failed)", len(summaries), len(failed))
    for summary in summaries:
        if summary.status is CandidateStatus.ERROR:
            logging.error("Candidate %s failed: %s", summary.candidate_id, summary.error_message)
    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    """Execute the requested command and return the process exit code."""
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError) as exc:
        logging.error("Configuration error: %s", exc)
        return 1

    configure_logging(settings)
    store = JsonFileStore(settings.store_path)

    if args.command == "add-candidate":
        candidate = store.add_candidate(load_candidate(args.path))
        logging.info("Stored candidate %s (%s)", candidate.id, candidate.specialty)
        return 0

    if args.command == "add-sites":
        sites = load_sites(args.path)
        for site in sites:
            store.add_site(site)
        logging.info("Stored %d sites", len(sites))
        return 0

    if args.command == "status":
        candidate = store.get_candidate(args.candidate_id)
        if candidate is None:
            logging.error("Candidate not found: %s", args.candidate_id)
            return 1
        logging.info(
            "Candidate %s: %s%s",
            candidate.id,
            candidate.status.value,
            f" ({candidate.error_message})" if candidate.error_message else "",
        )
        return 0

    try:
        matcher = CandidateMatcher(settings, store)
        if args.command == "run-pending":
            return _run_pending(args.owner, settings, matcher)
        return _run_pipeline(args, matcher)
    except Exception as exc:
        logging.exception("Fatal error occurred: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
