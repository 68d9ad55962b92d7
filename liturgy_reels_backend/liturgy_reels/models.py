import base64
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class BlockId(str, Enum):
    HOOK = "hook"
    READING = "reading"
    REFLECTION = "reflection"
    APPLICATION = "application"
    PRAYER = "prayer"


# Fixed narrative order; never reordered
BLOCK_ORDER: Tuple[BlockId, ...] = tuple(BlockId)
SUBTITLE_BLOCK_ID = "subtitles"


class AssetKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    SUBTITLE = "subtitle"


class BlockStatus(str, Enum):
    PENDING = "pending"
    GENERATING_AUDIO = "generating_audio"
    GENERATING_IMAGE = "generating_image"
    DONE = "done"
    ERROR = "error"


class ProcessingState(str, Enum):
    IDLE = "idle"
    FETCHING_SOURCE = "fetching_source"
    GENERATING_SCRIPT = "generating_script"
    GENERATING_MEDIA = "generating_media"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    ERROR = "error"


class VisualStyle(str, Enum):
    CINEMATIC = "Cinematic Realistic"
    OIL_PAINTING = "Oil Painting"
    WATERCOLOR = "Watercolor"
    ANIME = "Anime Style"
    DIGITAL_ART = "Digital Art"


class IntroStyle(str, Enum):
    VIRAL = "Viral (Hook + Curiosity)"
    LITURGICAL = "Liturgical (Traditional)"


class SourceCategory(str, Enum):
    GOSPEL = "gospel"
    FIRST_READING = "first_reading"
    SECOND_READING = "second_reading"
    PSALM = "psalm"


ASPECT_RATIOS = ("9:16", "16:9", "1:1")


class NarrativeBlock(BaseModel):
    id: BlockId
    text: str = ""
    image_prompt: str = ""

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())


class Script(BaseModel):
    """Ordered narrative blocks. `reading` is mandatory; the others may be absent."""
    blocks: List[NarrativeBlock]

    @model_validator(mode="after")
    def _check_blocks(self):
        ids = [b.id for b in self.blocks]
        if len(set(ids)) != len(ids):
            raise ValueError("duplicate block ids in script")
        if BlockId.READING not in ids:
            raise ValueError("script must contain a reading block")
        self.blocks.sort(key=lambda b: BLOCK_ORDER.index(b.id))
        return self

    def get(self, block_id) -> Optional[NarrativeBlock]:
        block_id = BlockId(block_id)
        for b in self.blocks:
            if b.id == block_id:
                return b
        return None

    def with_block(self, block: NarrativeBlock) -> "Script":
        others = [b for b in self.blocks if b.id != block.id]
        return Script(blocks=others + [block])

    def text_map(self) -> Dict[str, str]:
        return {b.id.value: b.text for b in self.blocks}

    def to_wire(self) -> Dict[str, Dict[str, str]]:
        return {b.id.value: {"text": b.text, "image_prompt": b.image_prompt} for b in self.blocks}

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Script":
        blocks = []
        for block_id in BLOCK_ORDER:
            raw = data.get(block_id.value)
            if raw is None:
                continue
            blocks.append(NarrativeBlock(
                id=block_id,
                text=raw.get("text") or "",
                image_prompt=raw.get("image_prompt") or "",
            ))
        return cls(blocks=blocks)


class Asset(BaseModel):
    model_config = ConfigDict(frozen=True)

    block_id: str
    kind: AssetKind
    data: str  # base64

    @model_validator(mode="after")
    def _check_owner(self):
        if self.kind == AssetKind.SUBTITLE:
            if self.block_id != SUBTITLE_BLOCK_ID:
                raise ValueError(f"subtitle asset must use block id '{SUBTITLE_BLOCK_ID}'")
        elif self.block_id not in {b.value for b in BlockId}:
            raise ValueError(f"unknown block id: {self.block_id}")
        return self

    @classmethod
    def from_bytes(cls, block_id: str, kind: AssetKind, raw: bytes) -> "Asset":
        return cls(block_id=block_id, kind=kind, data=base64.b64encode(raw).decode("ascii"))

    def raw(self) -> bytes:
        return base64.b64decode(self.data)


class AssetCache(BaseModel):
    """Immutable snapshot of generated image/audio assets; at most one per (block, kind)."""
    model_config = ConfigDict(frozen=True)

    assets: Tuple[Asset, ...] = ()

    @field_validator("assets")
    @classmethod
    def _one_per_slot(cls, assets):
        seen = set()
        for a in assets:
            if a.kind == AssetKind.SUBTITLE:
                raise ValueError("subtitle assets are never cached")
            key = (a.block_id, a.kind)
            if key in seen:
                raise ValueError(f"duplicate {a.kind.value} asset for {a.block_id}")
            seen.add(key)
        return assets

    def get(self, block_id, kind: AssetKind) -> Optional[Asset]:
        block_id = BlockId(block_id).value
        for a in self.assets:
            if a.block_id == block_id and a.kind == kind:
                return a
        return None

    def has(self, block_id, kind: AssetKind) -> bool:
        return self.get(block_id, kind) is not None

    def with_asset(self, asset: Asset) -> "AssetCache":
        kept = tuple(a for a in self.assets if not (a.block_id == asset.block_id and a.kind == asset.kind))
        return AssetCache(assets=kept + (asset,))

    def without_block(self, block_id) -> "AssetCache":
        block_id = BlockId(block_id).value
        return AssetCache(assets=tuple(a for a in self.assets if a.block_id != block_id))

    def __len__(self) -> int:
        return len(self.assets)


class GenerationConfig(BaseModel):
    visual_style: VisualStyle = VisualStyle.CINEMATIC
    voice_id: str = ""
    aspect_ratio: str = "9:16"

    @field_validator("aspect_ratio")
    @classmethod
    def _known_ratio(cls, value: str) -> str:
        if value not in ASPECT_RATIOS:
            raise ValueError(f"aspect_ratio must be one of {', '.join(ASPECT_RATIOS)}")
        return value

    @staticmethod
    def aspect_ratio_for(resolution: str) -> str:
        """Map a video resolution label like '9:16 (Vertical/Stories)' to an image aspect ratio."""
        if "9:16" in resolution:
            return "9:16"
        if "16:9" in resolution:
            return "16:9"
        return "1:1"


class Progress(BaseModel):
    model_config = ConfigDict(frozen=True)

    done: int
    total: int
    percent: float
    estimated_remaining: float  # seconds


class SubtitleCue(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    start_ms: int
    end_ms: int
    text: str


class SourceText(BaseModel):
    reference: str
    text: str
    title: str = ""
    provider: str = ""


class JobMetadata(BaseModel):
    date: str
    reference: str


class StoredJob(BaseModel):
    id: str
    display_date: str = ""
    display_ref: str = ""


class JobPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    assets: List[Asset]
    script: Script
    metadata: JobMetadata
    assembled_reading_text: str
    existing_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_assets(self):
        seen = set()
        subtitles = 0
        for a in self.assets:
            if a.kind == AssetKind.SUBTITLE:
                subtitles += 1
                continue
            key = (a.block_id, a.kind)
            if key in seen:
                raise ValueError(f"duplicate {a.kind.value} asset for {a.block_id}")
            seen.add(key)
        if subtitles > 1:
            raise ValueError("payload holds more than one subtitle asset")
        return self

    def subtitle(self) -> Optional[Asset]:
        return next((a for a in self.assets if a.kind == AssetKind.SUBTITLE), None)

    def to_wire(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "assets": [a.model_dump(mode="json") for a in self.assets],
            "script": self.script.to_wire(),
            "metadata": self.metadata.model_dump(),
            "assembled_reading_text": self.assembled_reading_text,
        }
        if self.existing_id:
            body["job_id"] = self.existing_id
        return body

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "JobPayload":
        return cls(
            assets=[Asset.model_validate(a) for a in data.get("assets", [])],
            script=Script.from_wire(data.get("script") or {}),
            metadata=JobMetadata.model_validate(data.get("metadata") or {"date": "", "reference": ""}),
            assembled_reading_text=data.get("assembled_reading_text", ""),
            existing_id=data.get("job_id"),
        )
