import base64

import pytest

from conftest import full_script, pcm
from liturgy_reels.assembler import PayloadAssembler
from liturgy_reels.errors import TimelineGenerationError
from liturgy_reels.models import Asset, AssetCache, AssetKind, BlockId, JobMetadata, SUBTITLE_BLOCK_ID
from liturgy_reels.subtitles import parse_srt

METADATA = JobMetadata(date="2024-12-25", reference="Jo 1,1-18")


def filled_cache(blocks=tuple(BlockId), audio_ms=1000):
    cache = AssetCache()
    for b in blocks:
        cache = cache.with_asset(Asset.from_bytes(b.value, AssetKind.IMAGE, b"img"))
        cache = cache.with_asset(Asset.from_bytes(b.value, AssetKind.AUDIO, pcm(audio_ms)))
    return cache


def test_assemble_bundles_assets_in_block_order(log):
    cache = filled_cache(blocks=(BlockId.PRAYER, BlockId.HOOK, BlockId.READING))
    payload = PayloadAssembler(log).assemble(cache, full_script(), METADATA)

    kinds = [(a.block_id, a.kind) for a in payload.assets]
    assert kinds == [
        ("hook", AssetKind.IMAGE), ("hook", AssetKind.AUDIO),
        ("reading", AssetKind.IMAGE), ("reading", AssetKind.AUDIO),
        ("prayer", AssetKind.IMAGE), ("prayer", AssetKind.AUDIO),
        (SUBTITLE_BLOCK_ID, AssetKind.SUBTITLE),
    ]
    assert payload.assembled_reading_text == "reading text"
    assert payload.existing_id is None
    assert "job_id" not in payload.to_wire()


def test_subtitle_track_matches_audio(log):
    payload = PayloadAssembler(log).assemble(filled_cache(audio_ms=1500), full_script(), METADATA)
    document = base64.b64decode(payload.subtitle().data).decode("utf-8")
    cues = parse_srt(document)
    assert len(cues) == 5
    assert cues[-1].end_ms == 7500
    assert [c.text for c in cues] == [f"{b.value} text" for b in BlockId]


def test_subtitles_rebuilt_on_every_assembly(log):
    assembler = PayloadAssembler(log)
    first = assembler.assemble(filled_cache(audio_ms=1000), full_script(), METADATA)
    second = assembler.assemble(filled_cache(audio_ms=3000), full_script(), METADATA)
    assert first.subtitle().data != second.subtitle().data


def test_replace_carries_existing_id(log):
    payload = PayloadAssembler(log).assemble(filled_cache(), full_script(), METADATA, existing_id="abc")
    assert payload.existing_id == "abc"
    assert payload.to_wire()["job_id"] == "abc"


def test_probe_failure_becomes_timeline_error(log):
    def broken_probe(audio, log):
        raise RuntimeError("decoder crashed")

    with pytest.raises(TimelineGenerationError, match="decoder crashed"):
        PayloadAssembler(log, probe=broken_probe).assemble(filled_cache(), full_script(), METADATA)


def test_empty_cache_still_gets_empty_subtitle_track(log):
    payload = PayloadAssembler(log).assemble(AssetCache(), full_script(), METADATA)
    assert len(payload.assets) == 1
    assert payload.subtitle().raw() == b""
