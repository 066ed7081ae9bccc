"""Command line entry-point for the knowledge capture interviewer."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .articles_cli import run_articles_cli, run_sessions_cli
from .config import AppSettings
from .errors import (
    FinalizationError,
    InterviewStateError,
    SetupValidationError,
    StorageError,
)
from .gateway import AIGateway
from .models import (
    KnowledgeArticle,
    Message,
    MessageRole,
    SessionMode,
    SessionSetup,
)
from .observability import initialize_tracing
from .sessions import FinalizationStep, InterviewOrchestrator
from .storage import build_seed_articles, create_store

logger = logging.getLogger(__name__)

_VERBOSE_FLAGS = {"-v", "--verbose"}
_ROLE_PREFIXES = {
    MessageRole.INTERVIEWER: "Interviewer",
    MessageRole.RESPONDENT: "Respondent",
    MessageRole.SYSTEM: "System",
    MessageRole.AI_SUGGESTION: "Suggestion",
}

_AI_HELP = "Type your answer. Commands: /done to finish, /draft to save and exit."
_MANUAL_HELP = (
    "Prefix lines with 'q:' for the interviewer's question or 'a:' for the "
    "respondent's answer. Commands: /use N, /done, /draft."
)


def _parse_interview_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="knowledge-sync interview",
        description=(
            "Interview an expert and turn the conversation into a "
            "knowledge article"
        ),
    )
    parser.add_argument("--title", help="Interview title")
    parser.add_argument("--interviewee", help="Name of the expert being interviewed")
    parser.add_argument("--category", help="Topic category, e.g. Sales")
    parser.add_argument(
        "--mode",
        choices=["ai", "manual", *[mode.value for mode in SessionMode]],
        default="ai",
        help="ai: the model asks questions; manual: record a human interview",
    )
    parser.add_argument(
        "--resume",
        metavar="ID",
        help="Continue a stored draft or in-progress session",
    )
    return parser.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _ask(label: str) -> str:
    return input(f"{label}: ").strip()  # noqa: PLW1514 - intentional CLI input


def _print_message(message: Message) -> None:
    print(f"{_ROLE_PREFIXES[message.role]}: {message.content}")  # noqa: T201


def _print_progress(step: FinalizationStep, label: str) -> None:
    print(f"  ... {label}")  # noqa: T201 - CLI progress output


def _print_suggestions(suggestions: List[str]) -> None:
    if not suggestions:
        return
    print("Suggested follow-ups:")  # noqa: T201
    for index, suggestion in enumerate(suggestions, start=1):
        print(f"  [{index}] {suggestion}")  # noqa: T201


def _print_article(article: KnowledgeArticle) -> None:
    print()  # noqa: T201 - CLI UX newline
    print(f"Knowledge article saved: {article.title} ({article.id})")  # noqa: T201
    print(article.summary)  # noqa: T201
    for index, insight in enumerate(article.key_insights, start=1):
        print(f"  {index}. {insight}")  # noqa: T201
    if article.tags:
        print(f"Tags: {', '.join(article.tags)}")  # noqa: T201


async def _finalize_with_retry(orchestrator: InterviewOrchestrator) -> bool:
    """Finalize, offering retries; returns False when the user keeps chatting."""

    while True:
        try:
            article = await orchestrator.finalize()
        except FinalizationError as exc:
            print(f"Could not save the article: {exc}")  # noqa: T201
        else:
            _print_article(article)
            return True
        while True:
            choice = _ask("Retry (r), back to chat (c) or save draft (d)").lower()
            if choice.startswith("r"):
                break
            if choice.startswith("d"):
                try:
                    draft = orchestrator.save_draft()
                except StorageError as exc:
                    print(f"Could not save the draft: {exc}")  # noqa: T201
                    continue
                print(f"Draft saved as session {draft.id}.")  # noqa: T201
                return True
            orchestrator.return_to_chat()
            return False


async def _handle_manual_line(orchestrator: InterviewOrchestrator, line: str) -> None:
    lowered = line.lower()
    if lowered.startswith("/use"):
        parts = line.split()
        try:
            index = int(parts[1]) - 1
            text = orchestrator.use_suggestion(index)
        except (IndexError, ValueError):
            print("Choose a listed suggestion number, e.g. /use 1.")  # noqa: T201
            return
        message = orchestrator.record_interviewer_question(text)
        if message:
            _print_message(message)
        return
    if lowered.startswith("q:"):
        message = orchestrator.record_interviewer_question(line[2:])
        if message:
            _print_message(message)
        return
    if lowered.startswith("a:"):
        answer = await orchestrator.record_respondent_reply(line[2:])
        if answer:
            _print_message(answer)
            _print_suggestions(orchestrator.suggestions)
        return
    print(_MANUAL_HELP)  # noqa: T201


async def run_interview(settings: AppSettings, args: argparse.Namespace) -> None:
    store = create_store(settings)
    gateway = AIGateway.from_settings(settings)
    orchestrator = InterviewOrchestrator(
        gateway,
        store,
        step_delay=settings.finalize_step_delay,
        on_progress=_print_progress,
    )
    status = gateway.get_ai_status()
    print(status.message)  # noqa: T201

    if args.resume:
        stored = store.get_session(args.resume)
        if stored is None:
            raise SystemExit(f"Session '{args.resume}' not found.")
        try:
            session = orchestrator.resume(stored)
        except InterviewStateError as exc:
            raise SystemExit(str(exc)) from exc
    else:
        setup = SessionSetup(
            title=args.title or _ask("Title"),
            interviewee=args.interviewee or _ask("Interviewee"),
            category=args.category or _ask("Category"),
            mode=SessionMode.from_string(args.mode, default=SessionMode.AI_INTERVIEWER),
        )
        try:
            session = orchestrator.start(setup)
        except SetupValidationError as exc:
            raise SystemExit(str(exc)) from exc

    print()  # noqa: T201 - CLI UX newline
    for message in session.messages:
        _print_message(message)
    manual = session.mode is SessionMode.MANUAL_RECORDING
    print(_MANUAL_HELP if manual else _AI_HELP)  # noqa: T201

    while True:
        try:
            line = input("> ").strip()  # noqa: PLW1514 - intentional CLI input
        except EOFError:
            line = "/draft"
        if orchestrator.storage_warning:
            print(f"(warning: {orchestrator.storage_warning})")  # noqa: T201
        if not line:
            continue
        if line == "/draft":
            try:
                draft = orchestrator.save_draft()
            except StorageError as exc:
                print(f"Could not save the draft: {exc}")  # noqa: T201
                continue
            print(f"Draft saved as session {draft.id}.")  # noqa: T201
            return
        if line == "/done":
            if not orchestrator.can_finalize:
                print("Record at least one answer before finishing.")  # noqa: T201
                continue
            if await _finalize_with_retry(orchestrator):
                return
            continue
        if manual:
            await _handle_manual_line(orchestrator, line)
            continue
        exchanged = await orchestrator.submit_response(line)
        if exchanged:
            _print_message(exchanged[-1])


def _run_status(settings: AppSettings) -> None:
    gateway = AIGateway.from_settings(settings)
    status = gateway.get_ai_status()
    print(f"AI available: {'yes' if status.available else 'no'}")  # noqa: T201
    print(status.message)  # noqa: T201
    print(f"Model: {settings.model.provider} / {settings.model.model}")  # noqa: T201
    print(f"Language: {gateway.language}")  # noqa: T201
    print(f"Storage: {settings.storage_backend.value}")  # noqa: T201


def _run_seed(settings: AppSettings) -> None:
    store = create_store(settings)
    inserted = store.seed_articles(build_seed_articles())
    if inserted:
        print(f"Seeded {inserted} example articles.")  # noqa: T201
    else:
        print("Articles already exist; nothing seeded.")  # noqa: T201


def run_cli(argv: Optional[List[str]] = None) -> None:
    """Entry-point invoked from ``python -m knowledge_sync``."""

    arg_list = list(argv) if argv is not None else sys.argv[1:]
    verbose = any(arg in _VERBOSE_FLAGS for arg in arg_list)
    arg_list = [arg for arg in arg_list if arg not in _VERBOSE_FLAGS]
    _configure_logging(verbose)

    settings = AppSettings.load()
    if settings.otlp_endpoint:
        initialize_tracing(endpoint=settings.otlp_endpoint)

    command = arg_list[0] if arg_list else "interview"
    rest = arg_list[1:]
    if command == "status":
        _run_status(settings)
        return
    try:
        if command == "articles":
            run_articles_cli(settings, create_store(settings), rest)
            return
        if command == "sessions":
            run_sessions_cli(create_store(settings), rest)
            return
        if command == "seed":
            _run_seed(settings)
            return
    except StorageError as exc:
        raise SystemExit(f"Storage error: {exc}") from exc
    if command != "interview":
        rest = arg_list
    args = _parse_interview_args(rest)
    try:
        asyncio.run(run_interview(settings, args))
    except KeyboardInterrupt:
        logger.info("Interview interrupted by user.")


if __name__ == "__main__":  # pragma: no cover - manual execution hook
    run_cli()
