"""
Per-block speech and image generation.

A run is an ordered list of units (audio then image for every block that has
text) awaited strictly one after another. Quota exhaustion aborts the run on
the spot; any other synthesis failure is recorded and the run moves on.
"""
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .errors import AssetGenerationError, QuotaExceededError
from .models import (
    Asset,
    AssetCache,
    AssetKind,
    BlockId,
    BlockStatus,
    GenerationConfig,
    NarrativeBlock,
    Progress,
    Script,
    VisualStyle,
)
from .session_log import SessionLog, preview

SpeechSynth = Callable[[str, str], Awaitable[bytes]]
ImageSynth = Callable[[str, VisualStyle, str], Awaitable[bytes]]


@dataclass(frozen=True)
class Unit:
    block: NarrativeBlock
    kind: AssetKind

    @property
    def source(self) -> str:
        return self.block.text if self.kind == AssetKind.AUDIO else self.block.image_prompt


@dataclass
class MediaRunResult:
    cache: AssetCache
    failures: List[AssetGenerationError] = field(default_factory=list)

    def summary(self) -> str:
        return " ".join(f.summary() + "." for f in self.failures)


def plan_units(script: Script, only: Optional[BlockId] = None) -> List[Unit]:
    units = []
    for block in script.blocks:
        if not block.has_text or (only is not None and block.id != only):
            continue
        units.append(Unit(block, AssetKind.AUDIO))
        units.append(Unit(block, AssetKind.IMAGE))
    return units


class AssetOrchestrator:
    def __init__(
        self,
        speech: SpeechSynth,
        image: ImageSynth,
        log: SessionLog,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.speech = speech
        self.image = image
        self.log = log
        self.clock = clock
        self._cache = AssetCache()
        self._statuses: Dict[BlockId, BlockStatus] = {}
        # text/prompt each cached asset was synthesized from
        self._sources: Dict[Tuple[str, AssetKind], str] = {}
        self.progress: Optional[Progress] = None
        self.on_progress: List[Callable[[Progress], None]] = []
        self.on_status: List[Callable[[Dict[BlockId, BlockStatus]], None]] = []
        self.on_cache: List[Callable[[AssetCache], None]] = []

    @property
    def cache(self) -> AssetCache:
        return self._cache

    @property
    def statuses(self) -> Dict[BlockId, BlockStatus]:
        return dict(self._statuses)

    # -- publishing -------------------------------------------------------

    def _set_cache(self, cache: AssetCache):
        self._cache = cache
        for listener in self.on_cache:
            listener(cache)

    def _set_status(self, block_id: BlockId, status: BlockStatus):
        self._statuses[block_id] = status
        snapshot = dict(self._statuses)
        for listener in self.on_status:
            listener(snapshot)

    def _report(self, done: int, total: int, started: float):
        elapsed = self.clock() - started
        self.progress = Progress(
            done=done,
            total=total,
            percent=round(done / total * 100, 1) if total else 100.0,
            estimated_remaining=elapsed / done * (total - done) if done else 0.0,
        )
        for listener in self.on_progress:
            listener(self.progress)

    # -- cache management -------------------------------------------------

    def load(self, cache: AssetCache):
        self._sources = {}
        self._set_cache(cache)

    def clear_cache(self):
        self.log.info("Clearing asset cache")
        self._sources = {}
        self._set_cache(AssetCache())

    def drop_block(self, block_id: BlockId):
        block_id = BlockId(block_id)
        self._sources = {k: v for k, v in self._sources.items() if k[0] != block_id.value}
        self._set_cache(self._cache.without_block(block_id))

    # -- generation -------------------------------------------------------

    async def run(self, script: Script, config: GenerationConfig, only: Optional[BlockId] = None) -> MediaRunResult:
        """Generate every missing asset. Cached assets are kept, even if their block changed since."""
        units = plan_units(script, only)
        if only is None:
            self._statuses = {}
        for block_id in dict.fromkeys(u.block.id for u in units):
            self._set_status(block_id, BlockStatus.PENDING)

        total = len(units)
        failures: List[AssetGenerationError] = []
        failed_blocks = set()
        started = self.clock()
        self.log.info(f"Generating media: {total} units across {total // 2} blocks")
        self._report(0, total, started)

        for done, unit in enumerate(units, start=1):
            error = await self._run_unit(unit, config)
            if error is not None:
                failures.append(error)
                failed_blocks.add(unit.block.id)
            if unit.kind == AssetKind.IMAGE:
                self._set_status(unit.block.id, BlockStatus.ERROR if unit.block.id in failed_blocks else BlockStatus.DONE)
            self._report(done, total, started)

        self.log.info(f"Media generation finished with {len(failures)} failed units")
        return MediaRunResult(cache=self._cache, failures=failures)

    async def regenerate_block(self, script: Script, block_id: BlockId, config: GenerationConfig) -> MediaRunResult:
        block_id = BlockId(block_id)
        self.log.info(f"Regenerating block {block_id.value}")
        self.drop_block(block_id)
        return await self.run(script, config, only=block_id)

    async def _run_unit(self, unit: Unit, config: GenerationConfig) -> Optional[AssetGenerationError]:
        block, kind = unit.block, unit.kind
        key = (block.id.value, kind)
        if self._cache.has(block.id, kind):
            if key in self._sources and self._sources[key] != unit.source:
                self.log.warning(f"Keeping cached {kind.value} for {block.id.value} although its source changed", preview=preview(unit.source))
            else:
                self.log.info(f"Cached {kind.value} for {block.id.value}, skipping")
            return None

        self._set_status(block.id, BlockStatus.GENERATING_AUDIO if kind == AssetKind.AUDIO else BlockStatus.GENERATING_IMAGE)
        context = {"block_id": block.id.value, "kind": kind.value, "preview": preview(unit.source)}
        if not unit.source.strip():
            error = AssetGenerationError("no image prompt", block_id=block.id.value, kind=kind.value)
            self.log.warning(f"Skipping {kind.value} for {block.id.value}: no image prompt", **context)
            return error

        self.log.info(f"Generating {kind.value} for {block.id.value}", **context)
        try:
            if kind == AssetKind.AUDIO:
                raw = await self.speech(block.text, config.voice_id)
            else:
                raw = await self.image(block.image_prompt, config.visual_style, config.aspect_ratio)
            if not raw:
                raise AssetGenerationError("backend returned no data")
        except QuotaExceededError as e:
            self._set_status(block.id, BlockStatus.ERROR)
            self.log.error(f"Quota exceeded while generating {kind.value} for {block.id.value}, aborting", e, **context)
            raise
        except Exception as e:
            self.log.error(f"Failed to generate {kind.value} for {block.id.value}", e, **context)
            detail = e.detail if isinstance(e, AssetGenerationError) else f"{type(e).__name__}: {e}"
            return AssetGenerationError(detail, block_id=block.id.value, kind=kind.value)

        self._sources[key] = unit.source
        self._set_cache(self._cache.with_asset(Asset.from_bytes(block.id.value, kind, raw)))
        self.log.info(f"Generated {kind.value} for {block.id.value}", size=len(raw))
        return None
