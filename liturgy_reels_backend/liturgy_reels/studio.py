"""
Production session: source -> script -> media -> upload.

Studio owns the script, the asset cache (through the orchestrator) and the
processing state machine. Every phase is gated by the machine, so a second
cycle cannot start while one is running. The full production cycle runs as a
three-node graph: media, assemble, upload.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from langgraph.graph import StateGraph, END
from pydantic import BaseModel, Field

from .assembler import PayloadAssembler
from .audio import probe_duration_ms
from .errors import (
    AssetGenerationError,
    PrerequisiteError,
    QuotaExceededError,
    ScriptGenerationError,
    SourceFetchError,
    StateTransitionError,
)
from .job_store import JobStore
from .liturgy_source import fetch_from_api, format_liturgical_reading
from .llm import fetch_source_fallback, generate_script
from .models import (
    AssetCache,
    AssetKind,
    BlockId,
    GenerationConfig,
    IntroStyle,
    JobMetadata,
    NarrativeBlock,
    ProcessingState,
    Script,
    SourceCategory,
    SourceText,
    StoredJob,
    VisualStyle,
)
from .orchestrator import AssetOrchestrator, ImageSynth, MediaRunResult, SpeechSynth
from .session_log import SessionLog
from .state_machine import StateMachine

SourceProvider = Callable[[str, SourceCategory], Awaitable[SourceText]]
ScriptWriter = Callable[[str, str, VisualStyle, IntroStyle], Awaitable[Dict[str, Any]]]

GENERATED_BLOCKS = (BlockId.HOOK, BlockId.REFLECTION, BlockId.APPLICATION, BlockId.PRAYER)


class ProductionState(BaseModel):
    config: GenerationConfig
    metadata: JobMetadata
    existing_job_id: Optional[str] = None
    failures: List[str] = Field(default_factory=list)
    asset_count: int = 0
    job_id: Optional[str] = None


@dataclass
class ProductionResult:
    job_id: str
    asset_count: int
    failures: List[AssetGenerationError] = field(default_factory=list)


def build_script(parts: Dict[str, Any], source: SourceText) -> Script:
    """Combine model-written blocks with the locally formatted reading."""
    blocks = [NarrativeBlock(
        id=BlockId.READING,
        text=format_liturgical_reading(source.text, source.reference),
        image_prompt=parts.get("reading_prompt") or "",
    )]
    for block_id in GENERATED_BLOCKS:
        raw = parts.get(block_id.value)
        if not isinstance(raw, dict):
            continue
        blocks.append(NarrativeBlock(
            id=block_id,
            text=raw.get("text") or "",
            image_prompt=raw.get("image_prompt") or raw.get("prompt") or "",
        ))
    return Script(blocks=blocks)


class Studio:
    def __init__(
        self,
        speech: SpeechSynth,
        image: ImageSynth,
        store: JobStore,
        log: Optional[SessionLog] = None,
        primary_source: SourceProvider = fetch_from_api,
        fallback_source: SourceProvider = fetch_source_fallback,
        script_writer: ScriptWriter = generate_script,
        probe: Callable[..., int] = probe_duration_ms,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.log = log or SessionLog()
        self.machine = StateMachine(self.log)
        self.on_state = self.machine.listeners
        self.orchestrator = AssetOrchestrator(speech, image, self.log, clock=clock)
        self.assembler = PayloadAssembler(self.log, probe=probe)
        self.store = store
        self.primary_source = primary_source
        self.fallback_source = fallback_source
        self.script_writer = script_writer

        self.source: Optional[SourceText] = None
        self.script: Optional[Script] = None
        self.metadata: Optional[JobMetadata] = None
        # stored unit the next production replaces
        self.job_id: Optional[str] = None
        self.failures: List[AssetGenerationError] = []
        self._payload = None
        self._graph = self._build_graph()

    # -- guards -----------------------------------------------------------

    def _require_idle(self, action: str):
        if self.machine.is_busy:
            raise StateTransitionError(f"Cannot {action} while {self.machine.state.value}")

    def _require_script(self) -> Script:
        if self.script is None:
            raise PrerequisiteError("Please generate a script first.")
        return self.script

    # -- source & script --------------------------------------------------

    async def fetch_source(self, date: str, category: SourceCategory = SourceCategory.GOSPEL) -> SourceText:
        self.machine.begin(ProcessingState.FETCHING_SOURCE)
        self.source = None
        self.script = None
        self.log.info(f"Fetching source for {date}", category=SourceCategory(category).value)
        try:
            source = await self.primary_source(date, category)
        except Exception as api_error:
            self.log.warning("Primary source failed, switching to fallback", error=f"{type(api_error).__name__}: {api_error}")
            try:
                source = await self.fallback_source(date, category)
            except Exception as e:
                msg = f"Failed to fetch source from both providers: {e}"
                self.log.error(msg)
                self.machine.fail(e, msg)
                raise SourceFetchError(msg) from e
        self.source = source
        self.metadata = JobMetadata(date=date, reference=source.reference)
        self.log.info(f"Source fetched via {source.provider or 'primary'}", reference=source.reference)
        self.machine.advance(ProcessingState.IDLE)
        return source

    async def generate_script(
        self,
        visual_style: VisualStyle = VisualStyle.CINEMATIC,
        intro_style: IntroStyle = IntroStyle.VIRAL,
    ) -> Script:
        if self.source is None:
            raise PrerequisiteError("Please fetch the source text first.")
        self.machine.begin(ProcessingState.GENERATING_SCRIPT)
        try:
            parts = await self.script_writer(self.source.reference, self.source.text, visual_style, intro_style)
            script = build_script(parts, self.source)
        except Exception as e:
            msg = str(e) if isinstance(e, ScriptGenerationError) else f"Script generation failed: {type(e).__name__}: {e}"
            self.log.error(msg)
            self.machine.fail(e, msg)
            raise ScriptGenerationError(msg) from e
        self.script = script
        self.log.info(f"Script generated with {len(script.blocks)} blocks")
        self.machine.advance(ProcessingState.IDLE)
        return script

    def update_block(self, block_id: BlockId, text: Optional[str] = None, image_prompt: Optional[str] = None) -> Script:
        """Edit a block. Cached assets for the block are left alone."""
        self._require_idle("edit the script")
        script = self._require_script()
        block_id = BlockId(block_id)
        current = script.get(block_id) or NarrativeBlock(id=block_id)
        updates = {k: v for k, v in (("text", text), ("image_prompt", image_prompt)) if v is not None}
        self.script = script.with_block(current.model_copy(update=updates))
        return self.script

    # -- media ------------------------------------------------------------

    async def _media_only(self, run: Callable[[Script], Awaitable[MediaRunResult]]) -> MediaRunResult:
        script = self._require_script()
        self.machine.begin(ProcessingState.GENERATING_MEDIA)
        try:
            result = await run(script)
        except Exception as e:
            self.machine.fail(e)
            raise
        self.failures = result.failures
        self.machine.advance(ProcessingState.IDLE)
        return result

    async def generate_media(self, config: GenerationConfig) -> MediaRunResult:
        return await self._media_only(lambda script: self.orchestrator.run(script, config))

    async def regenerate_block(self, block_id: BlockId, config: GenerationConfig) -> MediaRunResult:
        return await self._media_only(lambda script: self.orchestrator.regenerate_block(script, block_id, config))

    def clear_cache(self):
        self._require_idle("clear the asset cache")
        self.orchestrator.clear_cache()

    # -- production cycle -------------------------------------------------

    def _build_graph(self):
        async def node_media(state: ProductionState) -> Dict[str, Any]:
            result = await self.orchestrator.run(self._require_script(), state.config)
            self.failures = result.failures
            if result.failures:
                self.log.warning(f"Media finished with soft failures: {result.summary()}")
            self.machine.advance(ProcessingState.UPLOADING)
            return {"failures": [f.summary() for f in result.failures]}

        async def node_assemble(state: ProductionState) -> Dict[str, Any]:
            payload = self.assembler.assemble(
                self.orchestrator.cache, self._require_script(), state.metadata, state.existing_job_id,
            )
            self._payload = payload
            return {"asset_count": len(payload.assets)}

        async def node_upload(state: ProductionState) -> Dict[str, Any]:
            payload, self._payload = self._payload, None
            job_id = await self.store.upload(payload, state.existing_job_id)
            self.machine.advance(ProcessingState.COMPLETE)
            return {"job_id": job_id}

        g = StateGraph(ProductionState)
        g.add_node("media", node_media)
        g.add_node("assemble", node_assemble)
        g.add_node("upload", node_upload)
        g.set_entry_point("media")
        g.add_edge("media", "assemble")
        g.add_edge("assemble", "upload")
        g.add_edge("upload", END)
        return g.compile()

    async def produce(self, config: GenerationConfig, metadata: Optional[JobMetadata] = None) -> ProductionResult:
        """Generate missing media, assemble the bundle and upload it."""
        self._require_script()
        metadata = metadata or self.metadata
        if metadata is None:
            raise PrerequisiteError("Job metadata (date and reference) is required.")
        self.machine.begin(ProcessingState.GENERATING_MEDIA)
        self._payload = None
        state = ProductionState(config=config, metadata=metadata, existing_job_id=self.job_id)
        self.log.info("Starting production cycle", reference=metadata.reference, replace=self.job_id)
        try:
            final_state = await self._graph.ainvoke(state)
        except Exception as e:
            self._payload = None
            self.log.error("Production cycle failed", e)
            if self.machine.state != ProcessingState.ERROR:
                self.machine.fail(e)
            raise

        # LangGraph hands back a dict-like of channel values
        if hasattr(final_state, "get"):
            job_id = final_state.get("job_id")
            asset_count = final_state.get("asset_count", 0)
        else:
            job_id = final_state.job_id
            asset_count = final_state.asset_count
        self.job_id = job_id
        self.metadata = metadata
        self.log.info(f"Production complete. Job ID: {job_id}")
        self.release_assets()
        return ProductionResult(job_id=job_id, asset_count=asset_count, failures=list(self.failures))

    # -- stored jobs ------------------------------------------------------

    async def list_jobs(self) -> List[StoredJob]:
        return await self.store.list_jobs()

    async def resume_job(self, job_id: str) -> Script:
        """Load a stored bundle so it can be edited and re-produced in place."""
        self._require_idle("resume a job")
        payload = await self.store.fetch_job(job_id)
        self.script = payload.script
        self.metadata = payload.metadata
        self.orchestrator.load(AssetCache(assets=tuple(a for a in payload.assets if a.kind != AssetKind.SUBTITLE)))
        self.job_id = job_id
        self.failures = []
        self.log.info(f"Resumed job {job_id}", assets=len(self.orchestrator.cache))
        return self.script

    # -- lifecycle --------------------------------------------------------

    def acknowledge(self):
        self.machine.acknowledge()

    def release_assets(self):
        self.log.info("Releasing generated assets")
        self.orchestrator.clear_cache()

    def abandon(self):
        self._require_idle("abandon the job")
        self.release_assets()
        self.job_id = None
        self.failures = []

    def status(self) -> Dict[str, Any]:
        snapshot = self.machine.snapshot
        progress = self.orchestrator.progress
        return {
            "state": snapshot.state.value,
            "quota_exceeded": snapshot.quota_exceeded,
            "error": snapshot.error_message,
            "remediation": QuotaExceededError.remediation if snapshot.quota_exceeded else None,
            "blocks": {k.value: v.value for k, v in self.orchestrator.statuses.items()},
            "progress": progress.model_dump() if progress else None,
            "failures": [f.summary() for f in self.failures],
            "cached": [{"block_id": a.block_id, "kind": a.kind.value} for a in self.orchestrator.cache.assets],
            "job_id": self.job_id,
            "has_source": self.source is not None,
            "has_script": self.script is not None,
        }
