"""Visual text extraction: hosted image URL(s) -> on-screen text via an OpenAI vision model."""
import asyncio
import base64
import logging
import re
from typing import Optional, Sequence

import httpx
from openai import OpenAIError

from reel_ingest.core.config import settings
from reel_ingest.core.errors import OcrError
from reel_ingest.core.openai_client import classify_openai_error, get_openai_client
from reel_ingest.pipeline.models import VisualText
from reel_ingest.prompts.loader import get_system_prompt, get_user_prompt

logger = logging.getLogger(__name__)

NO_TEXT = "No text found"


def clean_ocr_text(raw: str) -> str:
    """Strip surrounding quotes, normalize newlines, collapse 3+ blank lines; the no-text sentinel becomes ""."""
    text = (raw or "").strip()
    text = re.sub(r"^[\"']|[\"']$", "", text)
    text = text.replace("\r\n", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    if text.rstrip(".").lower() == NO_TEXT.lower():
        return ""
    return text


async def _image_as_data_url(url: str, client: httpx.AsyncClient) -> str:
    resp = await client.get(url)
    if resp.status_code != 200:
        raise OcrError(f"Failed to fetch image (status {resp.status_code})", transient=resp.status_code >= 500)
    ctype = (resp.headers.get("Content-Type") or "image/jpeg").split(";")[0].strip()
    return f"data:{ctype};base64,{base64.b64encode(resp.content).decode('ascii')}"


async def extract_text_from_image(image_url: str, http: Optional[httpx.AsyncClient] = None) -> str:
    """OCR one image. Empty URL or a "No text found" answer returns ""; provider faults raise OcrError."""
    if not image_url:
        return ""

    owns_http = http is None
    if owns_http:
        http = httpx.AsyncClient(follow_redirects=True, timeout=settings.ocr_image_timeout_s)
    try:
        data_url = await _image_as_data_url(image_url, http)
    except httpx.HTTPError as e:
        raise OcrError(f"Failed to fetch image: {e}", transient=True) from e
    finally:
        if owns_http:
            await http.aclose()

    client = get_openai_client()
    try:
        resp = await client.chat.completions.create(
            model=settings.vision_model,
            messages=[
                {"role": "system", "content": get_system_prompt("ocr_frame")},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": get_user_prompt("ocr_frame")},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                },
            ],
            temperature=0.1,
            max_tokens=1024,
        )
    except OpenAIError as e:
        raise classify_openai_error(e, OcrError, "OCR") from e

    text = clean_ocr_text(resp.choices[0].message.content or "")
    logger.info("ocr_done", extra={"chars": len(text)})
    return text


async def extract_visual_text(image_urls: Sequence[str]) -> VisualText:
    """OCR several images concurrently and join the non-empty texts with blank lines."""
    urls = [u for u in image_urls if u]
    if not urls:
        return VisualText(text="")
    texts = await asyncio.gather(*(extract_text_from_image(u) for u in urls))
    return VisualText(text="\n\n".join(t for t in texts if t))
