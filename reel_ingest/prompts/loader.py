"""
Versioned prompt loader: reads prompts from reel_ingest/prompts/{version}/{component}.yaml.
Use PROMPT_VERSION (default v1) to select version.
"""
from functools import lru_cache
from pathlib import Path

import yaml

# Base path: reel_ingest/prompts/ (next to this file)
_PROMPTS_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=32)
def _read_yaml(path: Path) -> dict:
    with path.open(encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_prompts(
    component: str,
    version: str | None = None,
) -> dict[str, str]:
    """Load prompt templates for a component. Returns dict with keys "system", "user" (either optional); values may contain placeholders like <<TRANSCRIPT>>.
    Why available: Centralizes versioned prompts so summarization, frame OCR and the multimodal preamble can be tuned without code changes."""
    if version is None:
        from reel_ingest.core.config import settings
        version = settings.prompt_version or "v1"

    path = _PROMPTS_DIR / version / f"{component}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"Prompt file not found: {path}")

    data = _read_yaml(path)

    out: dict[str, str] = {}
    for key in ("system", "user"):
        val = data.get(key)
        if val is not None:
            out[key] = val.strip() if isinstance(val, str) else str(val).strip()
    return out


def get_system_prompt(component: str, version: str | None = None) -> str:
    """Load and return the 'system' prompt template for the given component (e.g. summarize_reel, ocr_frame). Raises ValueError if the component has no system prompt in the specified version."""
    prompts = load_prompts(component, version=version)
    if "system" not in prompts:
        raise ValueError(f"Component {component} has no 'system' prompt in version {version}")
    return prompts["system"]


def get_user_prompt(component: str, version: str | None = None) -> str:
    """Load and return the 'user' prompt template for the given component. Raises ValueError if the component has no user prompt in the specified version."""
    prompts = load_prompts(component, version=version)
    if "user" not in prompts:
        raise ValueError(f"Component {component} has no 'user' prompt in version {version}")
    return prompts["user"]
