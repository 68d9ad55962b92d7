from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
import logging
from typing import Optional

from pydantic import BaseModel

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import has_all_keys, ALLOWED_ORIGINS, ELEVENLABS_VOICE_ID
from .elevenlabs_client import tts_to_bytes
from .errors import (
    PrerequisiteError,
    QuotaExceededError,
    StateTransitionError,
    StudioError,
    TimelineGenerationError,
)
from .job_store import JobStore
from .models import BlockId, GenerationConfig, IntroStyle, JobMetadata, SourceCategory, VisualStyle
from .replicate_client import image_to_bytes
from .studio import Studio

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Liturgy Reels Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

studio = Studio(speech=tts_to_bytes, image=image_to_bytes, store=JobStore())


class FetchSourceRequest(BaseModel):
    date: str
    category: SourceCategory = SourceCategory.GOSPEL


class ScriptRequest(BaseModel):
    visual_style: VisualStyle = VisualStyle.CINEMATIC
    intro_style: IntroStyle = IntroStyle.VIRAL


class BlockEdit(BaseModel):
    text: Optional[str] = None
    image_prompt: Optional[str] = None


class MediaRequest(BaseModel):
    visual_style: VisualStyle = VisualStyle.CINEMATIC
    voice_id: str = ""
    video_resolution: str = "9:16 (Vertical/Stories)"

    def config(self) -> GenerationConfig:
        return GenerationConfig(
            visual_style=self.visual_style,
            voice_id=self.voice_id or ELEVENLABS_VOICE_ID,
            aspect_ratio=GenerationConfig.aspect_ratio_for(self.video_resolution),
        )


class ProduceRequest(MediaRequest):
    date: Optional[str] = None
    reference: Optional[str] = None


def _http_error(e: StudioError) -> HTTPException:
    if isinstance(e, StateTransitionError):
        return HTTPException(409, str(e))
    if isinstance(e, PrerequisiteError):
        return HTTPException(400, str(e))
    if isinstance(e, QuotaExceededError):
        return HTTPException(429, {"error": str(e), "quota_exceeded": True, "remediation": e.remediation})
    if isinstance(e, TimelineGenerationError):
        return HTTPException(422, str(e))
    return HTTPException(502, str(e))


@app.get("/health")
def health():
    keys_ok = has_all_keys()
    logger.info(f"Health check: API keys present = {keys_ok}")
    return {"ok": True, "has_keys": keys_ok, "state": studio.machine.state.value}


@app.post("/v1/source:fetch")
async def fetch_source(req: FetchSourceRequest):
    try:
        source = await studio.fetch_source(req.date, req.category)
    except StudioError as e:
        raise _http_error(e)
    return source.model_dump()


@app.post("/v1/script:generate")
async def generate_script(req: ScriptRequest):
    try:
        script = await studio.generate_script(req.visual_style, req.intro_style)
    except StudioError as e:
        raise _http_error(e)
    return {"script": script.to_wire()}


@app.patch("/v1/script/blocks/{block_id}")
def edit_block(block_id: BlockId, edit: BlockEdit):
    try:
        script = studio.update_block(block_id, text=edit.text, image_prompt=edit.image_prompt)
    except StudioError as e:
        raise _http_error(e)
    return {"script": script.to_wire()}


@app.post("/v1/media:generate")
async def generate_media(req: MediaRequest):
    try:
        result = await studio.generate_media(req.config())
    except StudioError as e:
        raise _http_error(e)
    return {"failures": [f.summary() for f in result.failures], "status": studio.status()}


@app.post("/v1/media/blocks/{block_id}:regenerate")
async def regenerate_block(block_id: BlockId, req: MediaRequest):
    try:
        result = await studio.regenerate_block(block_id, req.config())
    except StudioError as e:
        raise _http_error(e)
    return {"failures": [f.summary() for f in result.failures], "status": studio.status()}


@app.delete("/v1/media/cache")
def clear_cache():
    try:
        studio.clear_cache()
    except StudioError as e:
        raise _http_error(e)
    return {"ok": True}


@app.post("/v1/jobs:produce")
async def produce(req: ProduceRequest):
    metadata = None
    if req.date and req.reference:
        metadata = JobMetadata(date=req.date, reference=req.reference)
    try:
        result = await studio.produce(req.config(), metadata)
    except StudioError as e:
        raise _http_error(e)
    return {
        "job_id": result.job_id,
        "asset_count": result.asset_count,
        "failures": [f.summary() for f in result.failures],
    }


@app.get("/v1/jobs")
async def list_jobs():
    try:
        jobs = await studio.list_jobs()
    except StudioError as e:
        raise _http_error(e)
    return {"jobs": [j.model_dump() for j in jobs]}


@app.post("/v1/jobs/{job_id}:resume")
async def resume_job(job_id: str):
    try:
        script = await studio.resume_job(job_id)
    except StudioError as e:
        raise _http_error(e)
    return {"job_id": job_id, "script": script.to_wire(), "status": studio.status()}


@app.get("/v1/state")
def state():
    return studio.status()


@app.post("/v1/state:acknowledge")
def acknowledge():
    try:
        studio.acknowledge()
    except StudioError as e:
        raise _http_error(e)
    return studio.status()


@app.get("/v1/logs", response_class=PlainTextResponse)
def logs():
    return studio.log.render()
