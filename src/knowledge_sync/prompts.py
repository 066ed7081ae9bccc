"""Prompt scaffolding and localized text for the knowledge interview."""

from __future__ import annotations

from dataclasses import dataclass
from string import Template
from typing import Dict, Iterable, Tuple

from .models import Message, MessageRole, SessionMode

DEFAULT_LANGUAGE = "en"
SUPPORTED_LANGUAGES: Tuple[str, ...] = ("en", "ja")

EARLY_STAGE_MAX_TURNS = 2
MIDDLE_STAGE_MAX_TURNS = 5


@dataclass(slots=True)
class StageHints:
    """Instruction fragments that change with interview depth."""

    early: str
    middle: str
    late: str

    def for_turns(self, respondent_turns: int) -> str:
        if respondent_turns <= EARLY_STAGE_MAX_TURNS:
            return self.early
        if respondent_turns <= MIDDLE_STAGE_MAX_TURNS:
            return self.middle
        return self.late


@dataclass(slots=True)
class AnalysisTexts:
    """Deterministic analysis content used when the model cannot help."""

    fallback_title: Template
    fallback_summary: str
    fallback_overview_intro: str
    fallback_insights: Tuple[str, ...]
    fallback_planning: str
    fallback_execution: str
    manual_review_tag: str
    insufficient_title: Template
    insufficient_summary: str
    insufficient_overview: str
    insufficient_insights: Tuple[str, ...]
    insufficient_tag: str
    error_summary: str
    error_tag: str
    default_summary: str
    default_insight: str
    default_planning: str
    default_execution: str


@dataclass(slots=True)
class ExportLabels:
    """Headings used by the article exporters."""

    expert: str
    category: str
    date: str
    overview: str
    key_insights: str
    planning_notes: str
    execution_notes: str
    tags: str
    transcript: str
    question: str
    answer: str


@dataclass(slots=True)
class LanguagePack:
    """Aggregated prompt assets for a supported language."""

    interviewer_label: str
    respondent_label: str
    empty_transcript: str
    opening_greeting: Template
    recording_started: str
    interviewer_names: Dict[SessionMode, str]
    stage_hints: StageHints
    next_question_prompt: Template
    follow_up_prompt: Template
    analysis_prompt: Template
    missing_key_question: str
    canned_questions: Tuple[str, ...]
    degraded_marker: str
    fallback_suggestions: Tuple[str, str, str]
    analysis: AnalysisTexts
    progress_labels: Dict[str, str]
    export: ExportLabels
    ai_available_message: str
    ai_unavailable_message: str


_EN_NEXT_QUESTION = Template(
    """
Context: you are a professional interviewer drawing out tacit knowledge
(rules of thumb, tricks of the trade, judgement criteria) from $interviewee
about "$topic".

Conversation so far:
$transcript

Stage: $stage_hint

Instructions:
1. Building on the respondent's latest answer, write exactly one specific,
   probing follow-up question.
2. Avoid abstract questions. Ask things like "What exactly did you look at?",
   "Why did you decide that?", or "Can you describe a time it went wrong?".
3. Keep the tone polite and natural.

Output only the question text. Do not return JSON.
""".strip()
)

_EN_FOLLOW_UP = Template(
    """
Context: you assist an experienced interviewer who is drawing out tacit
knowledge about "$topic" from an employee.

Conversation so far:
$transcript

Task: based on the latest answer, propose three concise follow-up questions
that dig into hidden details, the reasons behind decisions, or practical
know-how from the field.
Format: return JSON with a "questions" array holding exactly three strings.
Example: {"questions": ["Which numbers did you check before deciding?",
"What would you have done if the budget had run short?",
"How did you share this with the team?"]}
""".strip()
)

_EN_ANALYSIS = Template(
    """
Analyze the interview transcript below about "$category" and turn it into a
knowledge article that others in the organization can reuse.

Transcript:
$transcript

Goal: extract tacit knowledge, best practices, lessons from failures and the
criteria used to make decisions. Keep cautions for the planning phase
separate from cautions for the execution phase.

Respond ONLY with JSON in exactly this shape, without markdown fences:
{
  "suggestedTitle": "specific, professional title that captures the content",
  "summary": "short summary for list views (under 150 characters)",
  "overview": "detailed overview with background and context",
  "keyInsights": ["key point", "success tip", "decision criterion"],
  "planningNotes": ["caution for planning and preparation"],
  "executionNotes": ["caution for hands-on execution", "troubleshooting"],
  "tags": ["category tag", "tag"]
}
""".strip()
)

_JA_NEXT_QUESTION = Template(
    """
コンテキスト: あなたは「$topic」について、${interviewee}さんから暗黙知（経験則、コツ、判断基準）を引き出すプロのインタビュアーです。

現在の対話ログ:
$transcript

段階: $stage_hint

指示:
1. 直前の回答を踏まえ、具体的に深掘りする次の質問を1つだけ作成してください。
2. 抽象的な質問は避け、「具体的には？」「なぜそう判断したのですか？」「失敗例はありますか？」のように現場の知恵を引き出してください。
3. 丁寧で自然な日本語で話しかけてください。

出力: 質問のテキストのみを出力してください。JSONは不要です。
""".strip()
)

_JA_FOLLOW_UP = Template(
    """
コンテキスト: あなたは熟練インタビュアーのアシスタントです。従業員から「$topic」に関する暗黙知を引き出す手助けをしています。

現在の対話ログ:
$transcript

タスク: 直前の回答に基づき、隠れた詳細、判断の理由、現場のコツを掘り下げる簡潔なフォローアップ質問を3つ提案してください。
フォーマット: "questions" 配列に3つの文字列を持つJSONを日本語で返してください。
例: {"questions": ["その時、どの数値を見て判断しましたか？", "予算が足りなかったらどうしていましたか？", "チームにはどのように共有しましたか？"]}
""".strip()
)

_JA_ANALYSIS = Template(
    """
「$category」に関する以下のインタビュー記録を分析し、組織内で再利用できるナレッジ記事を作成してください。

インタビュー記録:
$transcript

目的: 暗黙知、ベストプラクティス、失敗からの教訓、意思決定の基準を抽出すること。「計画時の注意点」と「実務時の注意点」は区別してください。

次の形のJSONのみを返してください。Markdownのコードブロックは含めないでください。
{
  "suggestedTitle": "内容を体現する具体的なタイトル",
  "summary": "一覧表示用の短い要約（150文字以内）",
  "overview": "詳細な概要・背景・文脈",
  "keyInsights": ["重要なポイント", "成功のコツ", "判断基準"],
  "planningNotes": ["計画・準備段階の注意点"],
  "executionNotes": ["実務・実行段階の注意点", "トラブルシューティング"],
  "tags": ["カテゴリタグ", "タグ"]
}
""".strip()
)


LANGUAGE_PACKS: Dict[str, LanguagePack] = {
    "en": LanguagePack(
        interviewer_label="Interviewer",
        respondent_label="Respondent",
        empty_transcript="(no conversation recorded)",
        opening_greeting=Template(
            "Hello, $interviewee. Today I'd like to talk with you about "
            "\"$category\". To start, what do you pay the most attention to "
            "when it comes to this topic?"
        ),
        recording_started="Interview recording started.",
        interviewer_names={
            SessionMode.AI_INTERVIEWER: "AI Interviewer",
            SessionMode.MANUAL_RECORDING: "Recorder",
        },
        stage_hints=StageHints(
            early=(
                "The interview has just started. Build rapport and ask for a "
                "concrete recent example."
            ),
            middle=(
                "The interview is under way. Dig into the reasons behind "
                "decisions, thresholds and trade-offs."
            ),
            late=(
                "The interview is well advanced. Probe failures, exceptions "
                "and advice for newcomers, and check for anything missed."
            ),
        ),
        next_question_prompt=_EN_NEXT_QUESTION,
        follow_up_prompt=_EN_FOLLOW_UP,
        analysis_prompt=_EN_ANALYSIS,
        missing_key_question=(
            "Thank you. Could you tell me more about that? (AI question "
            "generation is paused because no API key is configured.)"
        ),
        canned_questions=(
            "Could you walk me through a specific situation where this came up?",
            "What made you decide to handle it that way?",
            "Has this ever gone wrong? What did you learn from it?",
            "What would you tell a newcomer to watch out for here?",
            "Which signals tell you that something needs your attention?",
        ),
        degraded_marker="(fallback question: the AI service is unavailable)",
        fallback_suggestions=(
            "Could not generate suggestions.",
            "Could you describe that more specifically?",
            "Why did you make that judgement?",
        ),
        analysis=AnalysisTexts(
            fallback_title=Template("[Unanalyzed] $category interview ($date)"),
            fallback_summary=(
                "AI analysis failed, so only the record was saved. Please "
                "edit it later."
            ),
            fallback_overview_intro=(
                "A detailed analysis was not performed because of an API "
                "connection problem or an error during analysis."
            ),
            fallback_insights=(
                "Automatic AI analysis failed",
                "Summarize and edit the article manually",
            ),
            fallback_planning="Not captured yet; add planning notes manually.",
            fallback_execution="Not captured yet; add execution notes manually.",
            manual_review_tag="needs manual review",
            insufficient_title=Template("$category interview (insufficient content)"),
            insufficient_summary=(
                "The interview has too few answers to analyze."
            ),
            insufficient_overview=(
                "At least two respondent answers are needed before the "
                "conversation can be turned into an article."
            ),
            insufficient_insights=(
                "Continue the interview to collect more answers",
            ),
            insufficient_tag="insufficient content",
            error_summary="Analysis failed.",
            error_tag="Error",
            default_summary="Summary pending review.",
            default_insight="Review the transcript to capture key insights.",
            default_planning="No planning notes were identified.",
            default_execution="No execution notes were identified.",
        ),
        progress_labels={
            "analyze": "Analyzing the interview...",
            "extract": "Extracting overview, key points and cautions...",
            "generate": "Generating the knowledge article...",
            "save": "Saving...",
            "done": "Done!",
        },
        export=ExportLabels(
            expert="Expert",
            category="Category",
            date="Date",
            overview="Overview",
            key_insights="Key Insights",
            planning_notes="Planning Notes",
            execution_notes="Execution Notes",
            tags="Tags",
            transcript="Interview Transcript",
            question="Q",
            answer="A",
        ),
        ai_available_message="AI features are available.",
        ai_unavailable_message=(
            "No API key is configured; AI features run in fallback mode."
        ),
    ),
    "ja": LanguagePack(
        interviewer_label="インタビュアー",
        respondent_label="回答者",
        empty_transcript="（会話記録なし）",
        opening_greeting=Template(
            "こんにちは、${interviewee}さん。「$category」についてお話を伺います。"
            "まずは、このトピックに関して、あなたが普段最も意識していることから"
            "教えていただけますか？"
        ),
        recording_started="インタビュー記録を開始しました。",
        interviewer_names={
            SessionMode.AI_INTERVIEWER: "AI インタビュアー",
            SessionMode.MANUAL_RECORDING: "記録者",
        },
        stage_hints=StageHints(
            early="インタビューは始まったばかりです。最近の具体例を尋ねてください。",
            middle="インタビューは中盤です。判断の理由や基準、トレードオフを掘り下げてください。",
            late="インタビューは終盤です。失敗例や例外、新人への助言を尋ね、聞き漏らしがないか確認してください。",
        ),
        next_question_prompt=_JA_NEXT_QUESTION,
        follow_up_prompt=_JA_FOLLOW_UP,
        analysis_prompt=_JA_ANALYSIS,
        missing_key_question=(
            "ありがとうございます。詳しく教えていただけますか？"
            "（※APIキー未設定のため、AIによる自動質問生成は停止中です。）"
        ),
        canned_questions=(
            "それが起きた具体的な場面を教えていただけますか？",
            "なぜそのように対応しようと判断したのですか？",
            "うまくいかなかった経験はありますか？そこから何を学びましたか？",
            "新人にはどんな点に注意するよう伝えますか？",
            "どのような兆候があると注意が必要だと感じますか？",
        ),
        degraded_marker="（AIサービスに接続できないため、定型の質問を表示しています）",
        fallback_suggestions=(
            "提案を生成できませんでした。",
            "具体的に教えていただけますか？",
            "なぜそう判断したのですか？",
        ),
        analysis=AnalysisTexts(
            fallback_title=Template("[未分析] ${category}に関するインタビュー記録 ($date)"),
            fallback_summary="AI分析に失敗したため、記録のみ保存されました。後ほど編集してください。",
            fallback_overview_intro=(
                "API接続の問題、または解析中のエラーにより、詳細な分析は行われませんでした。"
            ),
            fallback_insights=("AIによる自動分析失敗", "手動での要約・編集を推奨"),
            fallback_planning="未抽出です。計画時の注意点を手動で追加してください。",
            fallback_execution="未抽出です。実務時の注意点を手動で追加してください。",
            manual_review_tag="要編集",
            insufficient_title=Template("${category}に関するインタビュー記録（内容不足）"),
            insufficient_summary="分析するには回答が不足しています。",
            insufficient_overview="記事を作成するには、回答者の発言が2件以上必要です。",
            insufficient_insights=("インタビューを続けて回答を集めてください",),
            insufficient_tag="内容不足",
            error_summary="分析に失敗しました",
            error_tag="Error",
            default_summary="要約は確認待ちです。",
            default_insight="記録を確認し、重要なポイントを追記してください。",
            default_planning="計画時の注意点は抽出されませんでした。",
            default_execution="実務時の注意点は抽出されませんでした。",
        ),
        progress_labels={
            "analyze": "インタビュー内容を分析中...",
            "extract": "「概要」「ポイント」「注意点」を抽出しています...",
            "generate": "ナレッジ記事を生成中...",
            "save": "保存中...",
            "done": "完了しました！",
        },
        export=ExportLabels(
            expert="Expert",
            category="Category",
            date="Date",
            overview="概要・背景",
            key_insights="重要ポイント",
            planning_notes="計画時の注意点",
            execution_notes="実務時の注意点",
            tags="タグ",
            transcript="インタビュー記録",
            question="質問",
            answer="回答",
        ),
        ai_available_message="AI機能は利用可能です。",
        ai_unavailable_message="APIキーが未設定のため、AI機能は代替モードで動作します。",
    ),
}


def _normalize_language_code(language: object | None) -> str | None:
    if isinstance(language, str):
        normalized = language.strip().lower()
        if not normalized:
            return None
        normalized = normalized.replace("_", "-")
        normalized = normalized.split("-")[0]
        if normalized in LANGUAGE_PACKS:
            return normalized
    return None


def resolve_language_code(language: object | None) -> str:
    """Return a supported language code, falling back to the default."""

    return _normalize_language_code(language) or DEFAULT_LANGUAGE


def get_language_pack(language: object | None) -> Tuple[str, LanguagePack]:
    """Resolve and return the language resources for the given code."""

    code = resolve_language_code(language)
    return code, LANGUAGE_PACKS[code]


def format_transcript(messages: Iterable[Message], pack: LanguagePack) -> str:
    """Render interviewer/respondent turns as ``Label: content`` lines."""

    lines = []
    for message in messages:
        if message.role is MessageRole.INTERVIEWER:
            lines.append(f"{pack.interviewer_label}: {message.content}")
        elif message.role is MessageRole.RESPONDENT:
            lines.append(f"{pack.respondent_label}: {message.content}")
    if not lines:
        return pack.empty_transcript
    return "\n".join(lines)


def count_respondent_turns(messages: Iterable[Message]) -> int:
    return sum(1 for message in messages if message.role is MessageRole.RESPONDENT)
