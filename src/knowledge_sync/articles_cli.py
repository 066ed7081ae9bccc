"""Command-line utilities for browsing, exporting and reporting on articles."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Callable, List, Optional

from .config import AppSettings
from .exporter import (
    ArticlePDFExporter,
    PDFExportError,
    export_filename,
    render_article_html,
    render_article_markdown,
)
from .knowledge_base import DashboardStats, KnowledgeBase, article_snippet
from .models import KnowledgeArticle, MessageRole
from .prompts import get_language_pack
from .storage import KnowledgeStore

CommandHandler = Callable[[KnowledgeBase, AppSettings, argparse.Namespace], None]

EXPORT_FORMATS = ("md", "html", "pdf")


def run_articles_cli(
    settings: AppSettings,
    store: KnowledgeStore,
    argv: Optional[List[str]] = None,
) -> None:
    """Entry point for article-related CLI commands."""

    knowledge_base = KnowledgeBase(store)
    parser = argparse.ArgumentParser(
        prog="knowledge-sync articles",
        description="Browse, search and export knowledge articles.",
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    list_parser = subparsers.add_parser(
        "list",
        help="Show the most recent articles",
    )
    list_parser.add_argument(
        "-n",
        "--limit",
        type=int,
        default=10,
        help="Maximum number of articles to display (default: 10)",
    )
    list_parser.set_defaults(func=_handle_list)

    show_parser = subparsers.add_parser(
        "show",
        help="Display an article with its transcript",
    )
    show_parser.add_argument("id", help="Article identifier")
    show_parser.set_defaults(func=_handle_show)

    search_parser = subparsers.add_parser(
        "search",
        help="Find articles by title, tag or summary",
    )
    search_parser.add_argument("query", help="Keyword or phrase to search for")
    search_parser.add_argument(
        "-n",
        "--limit",
        type=int,
        default=10,
        help="Maximum number of matches to return (default: 10)",
    )
    search_parser.set_defaults(func=_handle_search)

    delete_parser = subparsers.add_parser(
        "delete",
        help="Remove an article from the knowledge base",
    )
    delete_parser.add_argument("id", help="Article identifier")
    delete_parser.set_defaults(func=_handle_delete)

    export_parser = subparsers.add_parser(
        "export",
        help="Write an article as Markdown, HTML or PDF",
    )
    export_parser.add_argument("id", help="Article identifier")
    export_parser.add_argument(
        "--format",
        choices=EXPORT_FORMATS,
        default="pdf",
        help="Output format (default: pdf)",
    )
    export_parser.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        help="Destination directory (default: KSYNC_OUTPUT_DIR)",
    )
    export_parser.set_defaults(func=_handle_export)

    stats_parser = subparsers.add_parser(
        "stats",
        help="Show dashboard statistics",
    )
    stats_parser.set_defaults(func=_handle_stats)

    args = parser.parse_args(argv)
    handler: CommandHandler = args.func
    handler(knowledge_base, settings, args)


def run_sessions_cli(
    store: KnowledgeStore,
    argv: Optional[List[str]] = None,
) -> None:
    """Entry point for interview session listings."""

    parser = argparse.ArgumentParser(
        prog="knowledge-sync sessions",
        description="List stored interview sessions.",
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True
    list_parser = subparsers.add_parser(
        "list",
        help="Show sessions, most recently updated first",
    )
    list_parser.add_argument(
        "-n",
        "--limit",
        type=int,
        default=10,
        help="Maximum number of sessions to display (default: 10)",
    )
    args = parser.parse_args(argv)

    sessions = store.get_sessions()[: args.limit]
    if not sessions:
        print("No sessions found.")
        return
    print(f"Showing {len(sessions)} sessions:")
    for session in sessions:
        print(
            f" - {session.id} | {session.status.value} | {session.mode.value} | "
            f"{session.title} | {session.interviewee} | "
            f"{session.updated_at.isoformat()} | {len(session.messages)} messages"
        )


def _print_summary_line(article: KnowledgeArticle) -> None:
    print(
        f" - {article.id} | {article.category} | "
        f"{article.created_at.isoformat()} | {article.title}"
    )


def _handle_list(
    knowledge_base: KnowledgeBase,
    settings: AppSettings,
    args: argparse.Namespace,
) -> None:
    articles = knowledge_base.list(limit=args.limit)
    if not articles:
        print("No articles found.")
        return
    print(f"Showing {len(articles)} articles:")
    for article in articles:
        _print_summary_line(article)


def _handle_show(
    knowledge_base: KnowledgeBase,
    settings: AppSettings,
    args: argparse.Namespace,
) -> None:
    article = knowledge_base.get(args.id)
    if not article:
        print(f"Article '{args.id}' not found.")
        return
    print(f"Article ID: {article.id}")
    print(f"Title: {article.title}")
    print(f"Author: {article.author}")
    print(f"Category: {article.category}")
    print(f"Created: {article.created_at.isoformat()}")
    if article.tags:
        print(f"Tags: {', '.join(article.tags)}")
    print("\nSummary:\n" + article.summary)
    print("\nOverview:\n" + (article.overview or article.summary))
    _print_list("Key insights", article.key_insights, numbered=True)
    _print_list("Planning notes", article.planning_notes)
    _print_list("Execution notes", article.execution_notes)
    turns = [
        message for message in article.full_transcript
        if message.role in {MessageRole.INTERVIEWER, MessageRole.RESPONDENT}
    ]
    for message in turns:
        print("\n" + "-" * 40)
        print(f"{message.role.value}:\n{message.content}")


def _print_list(title: str, items: List[str], *, numbered: bool = False) -> None:
    if not items:
        return
    print(f"\n{title}:")
    for index, item in enumerate(items, start=1):
        prefix = f"{index}." if numbered else "-"
        print(f" {prefix} {item}")


def _handle_search(
    knowledge_base: KnowledgeBase,
    settings: AppSettings,
    args: argparse.Namespace,
) -> None:
    matches = knowledge_base.search(args.query, limit=args.limit)
    if not matches:
        print("No articles matched that query.")
        return
    print(f"Found {len(matches)} article(s):")
    for article in matches:
        _print_summary_line(article)
        snippet = article_snippet(article, args.query).strip()
        if snippet:
            print(f"   {snippet}")


def _handle_delete(
    knowledge_base: KnowledgeBase,
    settings: AppSettings,
    args: argparse.Namespace,
) -> None:
    if knowledge_base.delete(args.id):
        print(f"Deleted article '{args.id}'.")
    else:
        print(f"Article '{args.id}' not found.")


def _handle_export(
    knowledge_base: KnowledgeBase,
    settings: AppSettings,
    args: argparse.Namespace,
) -> None:
    article = knowledge_base.get(args.id)
    if not article:
        print(f"Article '{args.id}' not found.")
        return
    language, pack = get_language_pack(settings.language)
    output_dir: Path = args.output_dir or settings.output_dir
    destination = output_dir / f"{export_filename(article)}.{args.format}"
    if args.format == "pdf":
        exporter = ArticlePDFExporter(settings.pdf_font_path)
        try:
            exporter.export(article, destination, pack)
        except PDFExportError as exc:
            raise SystemExit(str(exc)) from exc
    else:
        if args.format == "html":
            content = render_article_html(article, pack, lang=language)
        else:
            content = render_article_markdown(article, pack)
        output_dir.mkdir(parents=True, exist_ok=True)
        destination.write_text(content, encoding="utf-8")
    print(f"Exported article to {destination}")


def _handle_stats(
    knowledge_base: KnowledgeBase,
    settings: AppSettings,
    args: argparse.Namespace,
) -> None:
    _print_stats(knowledge_base.report())


def _print_stats(stats: DashboardStats) -> None:
    print("Knowledge Base Dashboard")
    print("=" * 24)
    print(f"Total articles: {stats.total_articles}")
    print(f"Total sessions: {stats.total_sessions}")
    print(f"Completed sessions: {stats.completed_sessions}")
    if stats.top_tags:
        print("Top tags:")
        for tag, count in stats.top_tags:
            print(f" - {tag}: {count}")
