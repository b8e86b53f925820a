"""Summarization / entity extraction: transcript text -> SummaryResult via an OpenAI JSON-mode chat completion."""
import json
import logging
from typing import Any, Dict, List, Tuple

from openai import OpenAIError

from reel_ingest.core.config import settings
from reel_ingest.core.errors import SummarizationError
from reel_ingest.core.openai_client import classify_openai_error, get_openai_client
from reel_ingest.pipeline.models import (
    GlossaryEntry,
    Pitfall,
    QuickReferenceCard,
    QuizQuestion,
    SummaryResult,
)
from reel_ingest.prompts.loader import get_system_prompt, get_user_prompt

logger = logging.getLogger(__name__)


def _safe_json_loads(raw: str) -> Dict[str, Any]:
    """Parse the LLM output as JSON. If parsing fails, tries the first {...} block; otherwise returns {}.
    Why available: Makes summary extraction robust to malformed or mixed LLM output."""
    raw = (raw or "").strip()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
        return data if isinstance(data, dict) else {}
    except ValueError:
        # fallback: try to extract the first {...} block
        start = raw.find("{")
        end = raw.rfind("}")
        if start != -1 and end != -1 and end > start:
            try:
                data = json.loads(raw[start : end + 1])
                return data if isinstance(data, dict) else {}
            except ValueError:
                pass
    return {}


def normalize_tags(tags: Any) -> Tuple[str, ...]:
    """Lower-case, trim, drop empties and de-duplicate while keeping first-seen order."""
    out: List[str] = []
    for t in tags if isinstance(tags, list) else []:
        tag = str(t).strip().lower()
        if tag and tag not in out:
            out.append(tag)
    return tuple(out)


def _str_list(val: Any) -> Tuple[str, ...]:
    return tuple(str(x).strip() for x in (val or []) if x and str(x).strip()) if isinstance(val, list) else ()


def _text(val: Any) -> str:
    return val.strip() if isinstance(val, str) else ""


def _quiz(val: Any) -> Tuple[QuizQuestion, ...]:
    out = []
    for it in val if isinstance(val, list) else []:
        if isinstance(it, dict) and _text(it.get("question")):
            out.append(QuizQuestion(_text(it.get("question")), _str_list(it.get("options")), _text(str(it.get("answer") or ""))))
    return tuple(out)


def _pitfalls(val: Any) -> Tuple[Pitfall, ...]:
    out = []
    for it in val if isinstance(val, list) else []:
        if isinstance(it, dict) and _text(it.get("pitfall")):
            out.append(Pitfall(_text(it.get("pitfall")), _text(it.get("solution"))))
        elif isinstance(it, str) and it.strip():
            out.append(Pitfall(it.strip()))
    return tuple(out)


def _glossary(val: Any) -> Tuple[GlossaryEntry, ...]:
    out = []
    for it in val if isinstance(val, list) else []:
        if isinstance(it, dict) and _text(it.get("term")):
            out.append(GlossaryEntry(_text(it.get("term")), _text(it.get("definition"))))
    return tuple(out)


def _card(val: Any) -> QuickReferenceCard:
    if not isinstance(val, dict):
        return QuickReferenceCard()
    return QuickReferenceCard(
        facts=_str_list(val.get("facts")),
        definitions=_str_list(val.get("definitions")),
        formulas=_str_list(val.get("formulas")),
    )


def parse_summary(raw: str) -> SummaryResult:
    """Turn model output into a SummaryResult. summary, tags (a list) and folder are required."""
    data = _safe_json_loads(raw)
    summary = _text(data.get("summary"))
    folder = _text(data.get("folder") or data.get("suggested_folder"))
    tags = data.get("tags")
    if not summary or not folder or not isinstance(tags, list):
        logger.warning("summary_parse_failed", extra={"preview": (raw or "")[:200]})
        raise SummarizationError("Failed to parse summary response: missing summary, tags or folder")

    return SummaryResult(
        summary=summary,
        tags=normalize_tags(tags),
        suggested_folder=folder,
        title=_text(data.get("title")),
        detailed_explanation=_text(data.get("detailed_explanation")),
        key_points=_str_list(data.get("key_points")),
        examples=_str_list(data.get("examples")),
        related_topics=_str_list(data.get("related_topics")),
        actionable_checklist=_str_list(data.get("actionable_checklist")),
        quiz_questions=_quiz(data.get("quiz_questions")),
        quick_reference_card=_card(data.get("quick_reference_card")),
        learning_path=_str_list(data.get("learning_path")),
        common_pitfalls=_pitfalls(data.get("common_pitfalls")),
        glossary=_glossary(data.get("glossary")),
        interactive_prompt_suggestions=_str_list(data.get("interactive_prompt_suggestions")),
    )


async def summarize_transcript(transcript: str) -> SummaryResult:
    """Summarize a transcript into study notes. Empty or over-long transcripts are rejected; long inputs are truncated."""
    text = (transcript or "").strip()
    if not text:
        raise SummarizationError("Transcript is empty")
    if len(transcript) > settings.max_transcript_chars:
        raise SummarizationError(
            f"Transcript too long: {len(transcript)} characters (max {settings.max_transcript_chars})"
        )
    if len(text) > settings.summary_input_chars:
        logger.info("summary_input_truncated", extra={"chars": len(text), "limit": settings.summary_input_chars})
        text = text[: settings.summary_input_chars]

    user_msg = get_user_prompt("summarize_reel").replace("<<TRANSCRIPT>>", text)
    client = get_openai_client()
    try:
        resp = await client.chat.completions.create(
            model=settings.chat_model,
            messages=[
                {"role": "system", "content": get_system_prompt("summarize_reel")},
                {"role": "user", "content": user_msg},
            ],
            temperature=0.3,
            response_format={"type": "json_object"},
        )
    except OpenAIError as e:
        raise classify_openai_error(e, SummarizationError, "Summarization") from e

    return parse_summary(resp.choices[0].message.content or "")
