"""Render knowledge articles as Markdown, printable HTML and PDF."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from html import escape as html_escape
from pathlib import Path
from string import Template
from typing import Any, Iterator, List, Optional

from .models import KnowledgeArticle, MessageRole
from .prompts import LanguagePack

logger = logging.getLogger(__name__)

FILENAME_MAX_CHARS = 30

_FILENAME_UNSAFE_RE = re.compile(
    r"[^\w　-〿぀-ゟ゠-ヿ＀-ﾟ一-龯]+"
)


class PDFExportError(RuntimeError):
    """Raised when an article PDF cannot be generated."""


def export_filename(article: KnowledgeArticle) -> str:
    """Derive a filesystem-safe base name from the article title."""

    cleaned = _FILENAME_UNSAFE_RE.sub("_", article.title)[:FILENAME_MAX_CHARS]
    cleaned = cleaned.strip("_")
    return cleaned or f"article_{article.id[:8]}"


def _transcript_lines(article: KnowledgeArticle, pack: LanguagePack) -> List[tuple[str, str]]:
    lines: List[tuple[str, str]] = []
    for message in article.full_transcript:
        if message.role is MessageRole.INTERVIEWER:
            lines.append((pack.export.question, message.content))
        elif message.role is MessageRole.RESPONDENT:
            lines.append((pack.export.answer, message.content))
    return lines


def _date_label(article: KnowledgeArticle) -> str:
    return article.created_at.strftime("%Y-%m-%d")


def render_article_markdown(article: KnowledgeArticle, pack: LanguagePack) -> str:
    """Lay out an article as Markdown, skipping empty sections."""

    labels = pack.export
    lines: List[str] = [f"# {article.title}", ""]
    lines.append(
        f"**{labels.expert}:** {article.author} | "
        f"**{labels.category}:** {article.category} | "
        f"**{labels.date}:** {_date_label(article)}"
    )
    lines.extend(["", f"## {labels.overview}", ""])
    lines.append(article.overview or article.summary)

    if article.key_insights:
        lines.extend(["", f"## {labels.key_insights}", ""])
        for index, insight in enumerate(article.key_insights, start=1):
            lines.append(f"{index}. {insight}")
    if article.planning_notes:
        lines.extend(["", f"## {labels.planning_notes}", ""])
        lines.extend(f"- {note}" for note in article.planning_notes)
    if article.execution_notes:
        lines.extend(["", f"## {labels.execution_notes}", ""])
        lines.extend(f"- {note}" for note in article.execution_notes)
    if article.tags:
        lines.extend(["", f"## {labels.tags}", ""])
        lines.append(", ".join(article.tags))

    transcript = _transcript_lines(article, pack)
    if transcript:
        lines.extend(["", f"## {labels.transcript}", ""])
        for role_label, content in transcript:
            lines.append(f"**{role_label}:** {content}")
            lines.append("")
    return "\n".join(lines).rstrip() + "\n"


_HTML_TEMPLATE = Template(
    """<!DOCTYPE html>
<html lang="$lang">
<head>
<meta charset="UTF-8">
<title>$title</title>
<style>
  * { box-sizing: border-box; margin: 0; padding: 0; }
  body { font-family: 'Noto Sans JP', 'Inter', sans-serif; padding: 48px;
         max-width: 800px; margin: 0 auto; color: #1a1a1a; line-height: 1.6; }
  h1 { font-size: 24px; margin-bottom: 16px; }
  .meta { color: #666; font-size: 12px; margin-bottom: 32px;
          border-bottom: 2px solid #e5e7eb; padding-bottom: 16px; }
  .section { margin-bottom: 24px; }
  .section-title { font-size: 16px; font-weight: 700; margin-bottom: 12px;
                   padding-left: 12px; border-left: 4px solid #6366f1; }
  .section-title.insights { border-color: #10b981; }
  .section-title.planning { border-color: #3b82f6; }
  .section-title.execution { border-color: #f59e0b; }
  .overview { background: #f8fafc; padding: 16px; border-radius: 8px;
              white-space: pre-wrap; }
  .insight { display: flex; gap: 12px; margin-bottom: 12px; }
  .insight-num { width: 24px; height: 24px; background: #dcfce7;
                 border-radius: 50%; text-align: center; font-size: 12px;
                 font-weight: 700; color: #166534; }
  .note { margin-bottom: 8px; padding-left: 16px; position: relative; }
  .note::before { content: "\\2022"; position: absolute; left: 0; }
  .tags { margin-top: 24px; border-top: 1px solid #e5e7eb; padding-top: 16px; }
  .tag { display: inline-block; background: #f1f5f9; padding: 4px 12px;
         border-radius: 16px; font-size: 11px; margin: 0 8px 8px 0; }
  .transcript { margin-top: 32px; border-top: 2px solid #e5e7eb; padding-top: 24px; }
  .transcript-title { font-size: 14px; color: #666; text-transform: uppercase;
                      margin-bottom: 16px; }
  .transcript-item { display: flex; gap: 16px; margin-bottom: 12px; }
  .transcript-role { width: 48px; font-size: 10px; font-weight: 700;
                     color: #666; text-align: right; }
  .transcript-content { flex: 1; font-size: 13px; padding-bottom: 12px;
                        border-bottom: 1px solid #f1f5f9; white-space: pre-wrap; }
  @media print { body { padding: 24px; } }
</style>
</head>
<body>
<h1>$title</h1>
<div class="meta">$meta</div>
<div class="section">
  <div class="section-title">$overview_label</div>
  <div class="overview">$overview</div>
</div>
$sections
</body>
</html>
"""
)


def render_article_html(
    article: KnowledgeArticle,
    pack: LanguagePack,
    *,
    lang: str = "en",
) -> str:
    """Build a standalone, print-ready HTML document for an article."""

    labels = pack.export
    meta = " | ".join(
        [
            f"<strong>{html_escape(labels.expert)}:</strong> {html_escape(article.author)}",
            f"<strong>{html_escape(labels.category)}:</strong> {html_escape(article.category)}",
            f"<strong>{html_escape(labels.date)}:</strong> {_date_label(article)}",
        ]
    )
    sections: List[str] = []
    if article.key_insights:
        items = "\n".join(
            f'  <div class="insight"><div class="insight-num">{index}</div>'
            f"<div>{html_escape(insight)}</div></div>"
            for index, insight in enumerate(article.key_insights, start=1)
        )
        sections.append(
            '<div class="section">\n'
            f'  <div class="section-title insights">{html_escape(labels.key_insights)}</div>\n'
            f"{items}\n</div>"
        )
    for css_class, title, notes in (
        ("planning", labels.planning_notes, article.planning_notes),
        ("execution", labels.execution_notes, article.execution_notes),
    ):
        if not notes:
            continue
        items = "\n".join(
            f'  <div class="note">{html_escape(note)}</div>' for note in notes
        )
        sections.append(
            '<div class="section">\n'
            f'  <div class="section-title {css_class}">{html_escape(title)}</div>\n'
            f"{items}\n</div>"
        )
    if article.tags:
        tags = "".join(
            f'<span class="tag">{html_escape(tag)}</span>' for tag in article.tags
        )
        sections.append(f'<div class="tags">{tags}</div>')
    transcript = _transcript_lines(article, pack)
    if transcript:
        items = "\n".join(
            '  <div class="transcript-item">'
            f'<div class="transcript-role">{html_escape(role)}</div>'
            f'<div class="transcript-content">{html_escape(content)}</div></div>'
            for role, content in transcript
        )
        sections.append(
            '<div class="transcript">\n'
            f'  <div class="transcript-title">{html_escape(labels.transcript)}</div>\n'
            f"{items}\n</div>"
        )
    return _HTML_TEMPLATE.substitute(
        lang=html_escape(lang),
        title=html_escape(article.title),
        meta=meta,
        overview_label=html_escape(labels.overview),
        overview=html_escape(article.overview or article.summary),
        sections="\n".join(sections),
    )


@dataclass(slots=True)
class _RenderBlock:
    """Represents a logical block of content to render."""

    kind: str
    text: str = ""
    extra: str = ""


class ArticlePDFExporter:
    """Render article Markdown to an A4 PDF using a minimal layout."""

    _BULLET_RE = re.compile(r"^\s*[-*]\s+(?P<text>.+)$")
    _ORDERED_RE = re.compile(r"^\s*(?P<number>\d+)\.\s+(?P<text>.+)$")

    _UNICODE_TRANSLATION = str.maketrans(
        {
            " ": " ",  # non-breaking space
            "­": "-",  # soft hyphen
            "‐": "-",  # hyphen
            "‑": "-",  # non-breaking hyphen
            "–": "-",  # en dash
            "—": "-",  # em dash
            "‘": "'",  # left single quote
            "’": "'",  # right single quote
            "“": '"',  # left double quote
            "”": '"',  # right double quote
            "−": "-",  # minus sign
        }
    )

    _FONT_FAMILY = "ArticleFont"

    def __init__(self, font_path: Optional[Path] = None) -> None:
        self._font_path = Path(font_path) if font_path else None

    def export(
        self,
        article: KnowledgeArticle,
        destination: Path,
        pack: LanguagePack,
    ) -> Path:
        markdown_text = render_article_markdown(article, pack)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:  # pragma: no cover - filesystem guard
            raise PDFExportError(
                f"Unable to create directory for PDF export: {destination}"
            ) from exc

        try:
            from fpdf import FPDF  # type: ignore[import]
        except ImportError as exc:  # pragma: no cover - declared dependency
            raise PDFExportError(
                "fpdf2 is required to export articles as PDF."
            ) from exc

        pdf: Any = FPDF(unit="mm", format="A4")
        pdf.set_auto_page_break(auto=True, margin=15)
        pdf.set_margin(15)
        family = self._register_font(pdf)
        pdf.add_page()
        pdf.set_title(self._safe_text(article.title))

        for block in self._iter_blocks(markdown_text):
            self._render_block(pdf, block, family)

        try:
            pdf.output(str(destination))
        except (OSError, RuntimeError) as exc:
            raise PDFExportError(
                f"Unable to write article PDF: {destination}"
            ) from exc
        return destination

    def _register_font(self, pdf: Any) -> str:
        if self._font_path is None:
            return "Helvetica"
        if not self._font_path.exists():
            raise PDFExportError(f"PDF font not found: {self._font_path}")
        for style in ("", "B"):
            pdf.add_font(self._FONT_FAMILY, style, str(self._font_path))
        return self._FONT_FAMILY

    def _iter_blocks(self, markdown_text: str) -> Iterator[_RenderBlock]:
        for raw_line in markdown_text.splitlines():
            stripped = raw_line.strip()
            if not stripped:
                yield _RenderBlock(kind="blank")
                continue
            if stripped.startswith("## "):
                yield _RenderBlock(kind="heading2", text=self._clean_inline(stripped[3:]))
                continue
            if stripped.startswith("# "):
                yield _RenderBlock(kind="heading1", text=self._clean_inline(stripped[2:]))
                continue
            bullet_match = self._BULLET_RE.match(raw_line)
            if bullet_match:
                yield _RenderBlock(
                    kind="bullet",
                    text=self._clean_inline(bullet_match.group("text")),
                )
                continue
            ordered_match = self._ORDERED_RE.match(raw_line)
            if ordered_match:
                yield _RenderBlock(
                    kind="numbered",
                    text=self._clean_inline(ordered_match.group("text")),
                    extra=ordered_match.group("number"),
                )
                continue
            yield _RenderBlock(kind="paragraph", text=self._clean_inline(stripped))

    def _render_block(self, pdf: Any, block: _RenderBlock, family: str) -> None:
        if block.kind == "blank":
            pdf.ln(3)
            return

        if block.kind in {"heading1", "heading2"}:
            font_size = 18 if block.kind == "heading1" else 14
            pdf.set_font(family, "B", size=font_size)
            self._reset_to_margin(pdf)
            pdf.multi_cell(0, 8, self._safe_text(block.text))
            pdf.ln(1)
            pdf.set_font(family, size=11)
            return

        if block.kind == "paragraph":
            pdf.set_font(family, size=11)
            self._reset_to_margin(pdf)
            pdf.multi_cell(0, 6, self._safe_text(block.text))
            pdf.ln(1)
            return

        if block.kind in {"bullet", "numbered"}:
            pdf.set_font(family, size=11)
            pdf.set_x(pdf.l_margin + 4)
            prefix = f"{block.extra}." if block.kind == "numbered" else "-"
            pdf.multi_cell(0, 6, self._safe_text(f"{prefix} {block.text}"))
            pdf.ln(1)
            return

        logger.debug("Unhandled render block kind: %s", block.kind)

    def _clean_inline(self, text: str) -> str:
        cleaned = text.replace("**", "").replace("__", "").replace("`", "")
        return self._normalize_text(cleaned.strip())

    def _safe_text(self, text: str) -> str:
        text = self._normalize_text(text)
        if self._font_path is not None:
            return text
        try:
            text.encode("latin-1")
        except UnicodeEncodeError:
            return text.encode("latin-1", "replace").decode("latin-1")
        return text

    @classmethod
    def _normalize_text(cls, text: str) -> str:
        return text.translate(cls._UNICODE_TRANSLATION)

    @staticmethod
    def _reset_to_margin(pdf: Any) -> None:
        """Ensure the cursor is positioned at the left margin."""

        pdf.set_x(pdf.l_margin)
