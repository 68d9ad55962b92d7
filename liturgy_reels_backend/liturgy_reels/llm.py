import os, json, logging
from typing import Any, Dict

from .errors import ScriptGenerationError, SourceFetchError
from .models import IntroStyle, SourceCategory, SourceText, VisualStyle
from .prompts import (
    INTRO_LITURGICAL,
    INTRO_VIRAL,
    SCRIPT_SCHEMA,
    SCRIPT_SYSTEM_PROMPT,
    SOURCE_SYSTEM_PROMPT,
    SOURCE_USER_TEMPLATE,
)
from .settings import OPENAI_MODEL

logger = logging.getLogger(__name__)

# Source text is truncated before it goes into the prompt
MAX_SOURCE_CHARS = 3000

_client = None

def _get_client():
    global _client
    if _client is None:
        from openai import AsyncOpenAI
        api_key = os.getenv("OPENAI_API_KEY", "")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set; please configure your .env")
        _client = AsyncOpenAI(api_key=api_key)
    return _client

def _strip_fences(content: str) -> str:
    return content.replace("```json", "").replace("```", "").strip()

async def _complete_json(messages, temperature: float) -> Dict[str, Any]:
    client = _get_client()
    resp = await client.chat.completions.create(
        model=OPENAI_MODEL,
        messages=messages,
        temperature=temperature,
        response_format={"type": "json_object"},
    )
    content = resp.choices[0].message.content or "{}"
    return json.loads(_strip_fences(content))

async def fetch_source_fallback(date: str, category: SourceCategory) -> SourceText:
    category = SourceCategory(category)
    logger.info(f"Fetching liturgy via model fallback for {date} ({category.value})")
    messages = [
        {"role": "system", "content": SOURCE_SYSTEM_PROMPT},
        {"role": "user", "content": SOURCE_USER_TEMPLATE.format(date=date, category=category.value.replace("_", " "))},
    ]
    try:
        result = await _complete_json(messages, temperature=0)
    except Exception as e:
        logger.error(f"Model fallback lookup failed: {e}")
        raise SourceFetchError("Unable to find liturgy via model fallback") from e
    if not isinstance(result, dict):
        raise SourceFetchError("Model fallback returned a non-object response")
    text = (result.get("text") or "").strip()
    if not text:
        raise SourceFetchError("Model fallback returned no reading text")
    return SourceText(
        reference=result.get("reference") or "Reference not found",
        text=text,
        title=result.get("liturgical_title") or "Liturgia Diária",
        provider="model",
    )

async def generate_script(reference: str, text: str, visual_style: VisualStyle, intro_style: IntroStyle) -> Dict[str, Any]:
    """Ask the model for hook/reflection/application/prayer blocks and the reading image prompt."""
    logger.info(f"Generating script for {reference} ({VisualStyle(visual_style).value}, {IntroStyle(intro_style).value})")
    system = SCRIPT_SYSTEM_PROMPT.format(
        reference=reference,
        text=text[:MAX_SOURCE_CHARS],
        visual_style=VisualStyle(visual_style).value,
        intro=INTRO_VIRAL if IntroStyle(intro_style) == IntroStyle.VIRAL else INTRO_LITURGICAL,
    )
    messages = [
        {"role": "system", "content": system},
        {"role": "user", "content": f"Generate the JSON script for: {reference}\n\nSchema:\n{SCRIPT_SCHEMA}"},
    ]
    try:
        result = await _complete_json(messages, temperature=0.7)
    except Exception as e:
        logger.error(f"OpenAI script generation failed: {str(e)}")
        raise ScriptGenerationError(f"Script generation failed: {e}") from e
    if not isinstance(result, dict):
        raise ScriptGenerationError("Script generation returned a non-object response")
    logger.info("Script generated successfully")
    return result
