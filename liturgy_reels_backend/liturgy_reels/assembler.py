from typing import Callable, List, Optional

from .audio import probe_duration_ms
from .errors import TimelineGenerationError
from .models import BLOCK_ORDER, Asset, AssetCache, AssetKind, BlockId, JobMetadata, JobPayload, Script
from .session_log import SessionLog
from .subtitles import build_subtitle_asset


class PayloadAssembler:
    """Bundles cached assets, a freshly built subtitle track, the script and metadata."""

    def __init__(self, log: SessionLog, probe: Callable[..., int] = probe_duration_ms):
        self.log = log
        self.probe = probe

    def collect(self, cache: AssetCache) -> List[Asset]:
        assets: List[Asset] = []
        for block_id in BLOCK_ORDER:
            image = cache.get(block_id, AssetKind.IMAGE)
            audio = cache.get(block_id, AssetKind.AUDIO)
            if image is None and audio is None:
                continue
            assets.extend(a for a in (image, audio) if a is not None)
        return assets

    def assemble(
        self,
        cache: AssetCache,
        script: Script,
        metadata: JobMetadata,
        existing_id: Optional[str] = None,
    ) -> JobPayload:
        assets = self.collect(cache)
        # Subtitles are rebuilt every time: any regeneration since the last
        # assembly can shift the timing.
        try:
            subtitle = build_subtitle_asset(script, cache, self.log, probe=self.probe)
        except TimelineGenerationError as e:
            self.log.error("Subtitle track failed validation", e)
            raise
        except Exception as e:
            self.log.error("Failed to build subtitle track", e)
            raise TimelineGenerationError(f"Failed to build subtitle track: {e}") from e

        reading = script.get(BlockId.READING)
        payload = JobPayload(
            assets=assets + [subtitle],
            script=script,
            metadata=metadata,
            assembled_reading_text=reading.text if reading else "",
            existing_id=existing_id,
        )
        mode = f"replace {existing_id}" if existing_id else "create"
        self.log.info(f"Assembled payload with {len(payload.assets)} assets ({mode})", reference=metadata.reference)
        return payload
