import os, httpx, asyncio, logging
from typing import Optional

from .errors import AssetGenerationError, QuotaExceededError
from .settings import AUDIO_SAMPLE_RATE, ELEVENLABS_MODEL_ID

logger = logging.getLogger(__name__)

# Raw 16-bit mono PCM so clip durations can be measured exactly
OUTPUT_FORMAT = f"pcm_{AUDIO_SAMPLE_RATE}"

def _voice_id(voice_id: Optional[str]) -> str:
    vid = voice_id or os.getenv("ELEVENLABS_VOICE_ID", "")
    if not vid:
        raise RuntimeError("ELEVENLABS_VOICE_ID is not set; please configure your .env")
    return vid

def _headers():
    api_key = os.getenv("ELEVENLABS_API_KEY", "")
    if not api_key:
        raise RuntimeError("ELEVENLABS_API_KEY is not set; please configure your .env")
    return {
        "xi-api-key": api_key,
        "Content-Type": "application/json"
    }

def _is_quota_body(response: httpx.Response) -> bool:
    try:
        detail = response.json().get("detail")
    except ValueError:
        return False
    return isinstance(detail, dict) and detail.get("status") == "quota_exceeded"

async def _asleep(sec: float):
    await asyncio.sleep(sec)

async def _post(client: httpx.AsyncClient, url: str, payload: dict) -> httpx.Response:
    return await client.post(url, headers=_headers(), params={"output_format": OUTPUT_FORMAT}, json=payload)

async def tts_to_bytes(text: str, voice_id: Optional[str] = None, max_retries: int = 3,
                       client: Optional[httpx.AsyncClient] = None) -> bytes:
    payload = {
        "text": text,
        "model_id": ELEVENLABS_MODEL_ID,
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
    }
    url = f"https://api.elevenlabs.io/v1/text-to-speech/{_voice_id(voice_id)}"

    for attempt in range(max_retries + 1):
        if client is not None:
            r = await _post(client, url, payload)
        else:
            async with httpx.AsyncClient(timeout=60) as own_client:
                r = await _post(own_client, url, payload)

        if r.status_code == 429:  # Rate limited
            if attempt < max_retries:
                # Exponential backoff: wait 2^attempt seconds
                wait_time = 2 ** attempt
                logger.warning(f"ElevenLabs rate limited (429). Retrying in {wait_time} seconds... (attempt {attempt + 1}/{max_retries + 1})")
                await _asleep(wait_time)
                continue
            logger.error(f"ElevenLabs rate limit exceeded after {max_retries + 1} attempts")
            raise QuotaExceededError("ElevenLabs", r.text)
        if r.status_code in (401, 402) and _is_quota_body(r):
            raise QuotaExceededError("ElevenLabs", r.text)
        if r.status_code >= 400:
            # Other HTTP errors, don't retry
            logger.error(f"ElevenLabs TTS failed {r.status_code}: {r.text}")
            raise AssetGenerationError(f"ElevenLabs TTS failed {r.status_code}: {r.text[:200]}")
        if not r.content:
            raise AssetGenerationError("ElevenLabs returned no audio data")
        return r.content
    raise AssertionError("unreachable")
