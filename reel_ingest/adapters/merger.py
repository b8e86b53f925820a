"""Multimodal merge: audio transcript + on-screen text + caption metadata -> one prioritized text view."""
import re
from typing import Dict, List, Tuple

from reel_ingest.pipeline.models import MergedContent, VisualEntity
from reel_ingest.prompts.loader import get_system_prompt

SECTION_SEPARATOR = "\n\n---\n\n"

# visual text wins over metadata, metadata over audio
SOURCE_PRIORITY = ("visual", "metadata", "audio")

_URL_PATH = r"(?:/[\w\-._~:/?#\[\]@!$&'()*+,;=%]*)?"
# bare domains need a known TLD so sentence joins like "tips.Check" stay plain text
_BARE_TLDS = "com|org|net|io|co|dev|app|ai|me|ly|gg|tv|in|us|uk|ca|de|fr|au|shop|store|link|info|xyz|edu|gov"

_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("url", re.compile(
        r"https?://[\w-]+(?:\.[\w-]+)+" + _URL_PATH
        + r"|(?<![\w@.])www\.[\w-]+(?:\.[\w-]+)+" + _URL_PATH
        + r"|(?<![\w@.])[\w-]+(?:\.[\w-]+)*\.(?i:" + _BARE_TLDS + r")(?![\w-])" + _URL_PATH
    )),
    ("handle", re.compile(r"(?<![\w.])@[\w.]+\w")),
    ("hashtag", re.compile(r"(?<!\w)#\w+")),
    ("number", re.compile(r"[$€£₹]\s?\d[\d,]*(?:\.\d+)?|\b\d+(?:\.\d+)?%")),
)


def extract_entities(text: str, source: str) -> List[VisualEntity]:
    """Regex pass for URLs/domains, @handles, #hashtags and prices/percentages, in order of appearance."""
    found: List[Tuple[int, VisualEntity]] = []
    for kind, pattern in _PATTERNS:
        for m in pattern.finditer(text or ""):
            value = m.group(0).rstrip(".,;:!?)")
            if kind == "url" and "@" in value.split("/")[0]:
                continue
            found.append((m.start(), VisualEntity(kind=kind, value=value, source=source)))
    found.sort(key=lambda p: p[0])
    return [e for _, e in found]


def dedupe_entities(groups: Dict[str, List[VisualEntity]]) -> Tuple[VisualEntity, ...]:
    """Keep one entity per (kind, case-folded value), preferring the higher-priority source."""
    seen = set()
    out: List[VisualEntity] = []
    for source in SOURCE_PRIORITY:
        for entity in groups.get(source, []):
            key = (entity.kind, entity.value.casefold())
            if key in seen:
                continue
            seen.add(key)
            out.append(entity)
    return tuple(out)


def merge_multimodal(
    transcript: str = "",
    visual_text: str = "",
    caption: str = "",
    description: str = "",
) -> MergedContent:
    """Build the sectioned text view; empty sections are omitted."""
    transcript = (transcript or "").strip()
    visual_text = (visual_text or "").strip()
    caption = (caption or "").strip()
    description = (description or "").strip()

    sections = []
    if transcript:
        sections.append(f"AUDIO TRANSCRIPT:\n{transcript}")
    if visual_text:
        sections.append(f"VISUAL TEXT:\n{visual_text}")
    if caption:
        sections.append(f"CAPTION:\n{caption}")
    if description:
        sections.append(f"DESCRIPTION:\n{description}")

    metadata_text = "\n".join(t for t in (caption, description) if t)
    entities = dedupe_entities({
        "visual": extract_entities(visual_text, "visual"),
        "metadata": extract_entities(metadata_text, "metadata"),
        "audio": extract_entities(transcript, "audio"),
    })

    return MergedContent(
        merged_text=SECTION_SEPARATOR.join(sections),
        has_audio_transcript=bool(transcript),
        has_visual_text=bool(visual_text),
        has_metadata=bool(caption or description),
        entities=entities,
    )


def build_multimodal_prompt(merged: MergedContent, base_prompt: str = "") -> str:
    """Preamble telling a model which source to trust for what, followed by the merged text and the task prompt."""
    flags = [
        "AUDIO: what was spoken" if merged.has_audio_transcript else "No audio transcript",
        "VISUAL: text shown on screen" if merged.has_visual_text else "No visual text",
        "METADATA: caption/description" if merged.has_metadata else "No metadata",
    ]
    parts = [get_system_prompt("multimodal_context"), "Sources present:\n" + "\n".join(f"- {f}" for f in flags)]
    if merged.entities:
        parts.append("Named entities:\n" + "\n".join(f"- {e.kind}: {e.value} ({e.source})" for e in merged.entities))
    parts.append(merged.merged_text)
    if base_prompt:
        parts.append(base_prompt.strip())
    return SECTION_SEPARATOR.join(p for p in parts if p)
