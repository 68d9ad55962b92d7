import io, os, time, httpx, asyncio, logging
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .errors import AssetGenerationError, QuotaExceededError
from .models import VisualStyle
from .settings import REPLICATE_POLL_INTERVAL_MS, REPLICATE_POLL_TIMEOUT_S, REPLICATE_MODEL_VERSION

logger = logging.getLogger(__name__)

API_BASE = "https://api.replicate.com/v1"
# 402: account out of credit, 429: rate limit
QUOTA_STATUS_CODES = (402, 429)

def _headers():
    token = os.getenv("REPLICATE_API_TOKEN", "")
    if not token:
        raise RuntimeError("REPLICATE_API_TOKEN is not set; please configure your .env")
    return {"Authorization": f"Token {token}"}

def _model_selector() -> str:
    # Prefer explicit version from env for stability; fall back to a public model alias (latest).
    return REPLICATE_MODEL_VERSION or "black-forest-labs/flux-schnell"

def _parse_selector(selector: str):
    # mode == "version": data={"version": <hash>}
    # mode == "model": data={"owner": <owner>, "name": <name>}
    if "/" in selector:
        owner_name, _, _version_alias = selector.partition(":")
        if "/" in owner_name:
            owner, name = owner_name.split("/", 1)
            return "model", {"owner": owner, "name": name}
    return "version", {"version": selector}

def build_prompt(prompt: str, style: VisualStyle) -> str:
    style_name = style.value if isinstance(style, VisualStyle) else str(style)
    return f"{prompt}. Art Style: {style_name}. High resolution, detailed, cinematic lighting, no text."

def _check(r: httpx.Response, action: str):
    if r.status_code in QUOTA_STATUS_CODES:
        logger.error(f"Replicate {action} hit quota {r.status_code}: {r.text}")
        raise QuotaExceededError("Replicate", r.text)
    if r.status_code >= 400:
        logger.error(f"Replicate {action} failed {r.status_code}: {r.text}")
        raise AssetGenerationError(f"Replicate {action} failed {r.status_code}: {r.text[:200]}")

async def _asleep(sec: float):
    await asyncio.sleep(sec)

async def create_and_wait_image(prompt: str, style: VisualStyle, aspect_ratio: str,
                                client: Optional[httpx.AsyncClient] = None) -> str:
    logger.info(f"Starting Replicate image generation for prompt: {prompt[:50]}...")
    if client is None:
        async with httpx.AsyncClient(timeout=30) as own_client:
            return await create_and_wait_image(prompt, style, aspect_ratio, client=own_client)

    selector = _model_selector()
    json_body = {
        "input": {
            "prompt": build_prompt(prompt, style),
            "aspect_ratio": aspect_ratio,
            "num_outputs": 1,
        }
    }
    mode, data = _parse_selector(selector)
    if mode == "version":
        json_body["version"] = data["version"]
        url = f"{API_BASE}/predictions"
    else:
        url = f"{API_BASE}/models/{data['owner']}/{data['name']}/predictions"

    r = await client.post(url, headers={**_headers(), "Content-Type": "application/json"}, json=json_body)
    _check(r, "create")
    pred_id = r.json()["id"]
    logger.info(f"Replicate prediction created with ID: {pred_id}")

    start = time.time()
    while True:
        s = await client.get(f"{API_BASE}/predictions/{pred_id}", headers=_headers())
        if s.status_code == 429:
            # Rate limited while polling; the prediction itself is still running
            logger.warning(f"Replicate status poll rate limited for {pred_id}, backing off")
            if time.time() - start > REPLICATE_POLL_TIMEOUT_S:
                raise AssetGenerationError("Replicate polling timeout")
            await _asleep(REPLICATE_POLL_INTERVAL_MS / 1000.0 * 2)
            continue
        _check(s, "status")
        body = s.json()
        status = body.get("status")
        logger.info(f"Replicate prediction {pred_id} status: {status}")

        if status in ("succeeded", "failed", "canceled"):
            if status != "succeeded":
                error_detail = body.get("error")
                raise AssetGenerationError(f"Replicate failed: {status}. error={error_detail}")
            output = body.get("output")
            if isinstance(output, list) and output:
                return output[0]
            if isinstance(output, str) and output:
                return output
            raise AssetGenerationError("Replicate succeeded but no output URL")
        if time.time() - start > REPLICATE_POLL_TIMEOUT_S:
            raise AssetGenerationError("Replicate polling timeout")
        await _asleep(REPLICATE_POLL_INTERVAL_MS / 1000.0)

async def image_to_bytes(prompt: str, style: VisualStyle, aspect_ratio: str,
                         client: Optional[httpx.AsyncClient] = None) -> bytes:
    if client is None:
        async with httpx.AsyncClient(timeout=30) as own_client:
            return await image_to_bytes(prompt, style, aspect_ratio, client=own_client)
    url = await create_and_wait_image(prompt, style, aspect_ratio, client=client)
    img = await client.get(url)
    if img.status_code >= 400:
        raise AssetGenerationError(f"Image download failed {img.status_code}")
    return to_png(img.content)

def to_png(image_data: bytes) -> bytes:
    """Convert WebP output to PNG; other formats pass through untouched."""
    try:
        with Image.open(io.BytesIO(image_data)) as pil_img:
            if pil_img.format != "WEBP":
                return image_data
            logger.info("Converting WebP image to PNG")
            # Flatten transparency onto a white background
            if pil_img.mode in ("RGBA", "LA"):
                rgba = pil_img.convert("RGBA")
                converted = Image.new("RGB", rgba.size, (255, 255, 255))
                converted.paste(rgba, mask=rgba.split()[-1])
            else:
                converted = pil_img.convert("RGB")
            png_buffer = io.BytesIO()
            converted.save(png_buffer, format="PNG")
            return png_buffer.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Image conversion failed: {e}, keeping original bytes")
        return image_data
