import asyncio

import pytest

from conftest import FakeBackends
from liturgy_reels.errors import QuotaExceededError
from liturgy_reels.models import AssetKind, BlockId, BlockStatus, GenerationConfig, NarrativeBlock, Script
from liturgy_reels.orchestrator import AssetOrchestrator, plan_units

CONFIG = GenerationConfig(voice_id="voice-1", aspect_ratio="9:16")


class FakeClock:
    def __init__(self, step: float = 1.0):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


def _orchestrator(backends, log, clock=None):
    return AssetOrchestrator(backends.speech, backends.image, log, clock=clock or FakeClock())


def test_units_follow_fixed_order_and_skip_empty_text(log):
    script = Script(blocks=[
        NarrativeBlock(id=BlockId.PRAYER, text="amen", image_prompt="p"),
        NarrativeBlock(id=BlockId.READING, text="reading", image_prompt="r"),
        NarrativeBlock(id=BlockId.HOOK, text="   ", image_prompt="h"),
    ])
    units = plan_units(script)
    assert [(u.block.id, u.kind) for u in units] == [
        (BlockId.READING, AssetKind.AUDIO),
        (BlockId.READING, AssetKind.IMAGE),
        (BlockId.PRAYER, AssetKind.AUDIO),
        (BlockId.PRAYER, AssetKind.IMAGE),
    ]


def test_full_run_generates_every_asset_sequentially(script, backends, log):
    orch = _orchestrator(backends, log)
    result = asyncio.run(orch.run(script, CONFIG))
    assert result.failures == []
    assert len(result.cache) == 10
    assert backends.calls == [
        call for b in BlockId for call in (("speech", f"{b.value} text"), ("image", f"{b.value} prompt"))
    ]
    assert all(status == BlockStatus.DONE for status in orch.statuses.values())


def test_rerun_over_full_cache_makes_no_calls(script, backends, log):
    orch = _orchestrator(backends, log)
    asyncio.run(orch.run(script, CONFIG))
    backends.calls.clear()
    result = asyncio.run(orch.run(script, CONFIG))
    assert backends.calls == []
    assert len(result.cache) == 10
    assert orch.progress.done == orch.progress.total == 10


def test_soft_failure_is_recorded_and_run_continues(script, backends, log):
    backends.audio_fail["reflection text"] = "soft"
    backends.image_fail["hook prompt"] = "crash"
    orch = _orchestrator(backends, log)
    result = asyncio.run(orch.run(script, CONFIG))
    assert len(backends.calls) == 10
    assert [(f.block_id, f.kind) for f in result.failures] == [("hook", "image"), ("reflection", "audio")]
    assert "RuntimeError" in result.failures[0].detail
    assert not result.cache.has(BlockId.REFLECTION, AssetKind.AUDIO)
    assert result.cache.has(BlockId.REFLECTION, AssetKind.IMAGE)
    assert orch.statuses[BlockId.HOOK] == BlockStatus.ERROR
    assert orch.statuses[BlockId.REFLECTION] == BlockStatus.ERROR
    assert orch.statuses[BlockId.PRAYER] == BlockStatus.DONE
    assert "Failed audio for reflection" in result.summary()


@pytest.mark.parametrize("n", [1, 2, 4, 7, 10])
def test_quota_on_nth_call_stops_everything_after_it(script, log, n):
    backends = FakeBackends()
    blocks = list(BlockId)
    block = blocks[(n - 1) // 2]
    if n % 2:
        backends.audio_fail[f"{block.value} text"] = "quota"
    else:
        backends.image_fail[f"{block.value} prompt"] = "quota"
    orch = _orchestrator(backends, log)
    with pytest.raises(QuotaExceededError):
        asyncio.run(orch.run(script, CONFIG))
    assert len(backends.calls) == n
    assert orch.progress.done == n - 1
    assert len(orch.cache) == n - 1
    assert orch.statuses[block] == BlockStatus.ERROR


def test_scenario_c_quota_on_second_block_image(script, backends, log):
    backends.image_fail["reading prompt"] = "quota"
    orch = _orchestrator(backends, log)
    with pytest.raises(QuotaExceededError):
        asyncio.run(orch.run(script, CONFIG))
    cache = orch.cache
    assert cache.has(BlockId.HOOK, AssetKind.AUDIO) and cache.has(BlockId.HOOK, AssetKind.IMAGE)
    assert cache.has(BlockId.READING, AssetKind.AUDIO)
    assert not cache.has(BlockId.READING, AssetKind.IMAGE)
    for block in (BlockId.REFLECTION, BlockId.APPLICATION, BlockId.PRAYER):
        assert not cache.has(block, AssetKind.AUDIO) and not cache.has(block, AssetKind.IMAGE)
        assert orch.statuses[block] == BlockStatus.PENDING


def test_progress_reports_eta(script, backends, log):
    updates = []
    orch = _orchestrator(backends, log, clock=FakeClock(step=1.0))
    orch.on_progress.append(updates.append)
    asyncio.run(orch.run(script, CONFIG))
    assert [u.done for u in updates] == list(range(0, 11))
    assert all(u.total == 10 for u in updates)
    first = updates[1]
    # started at t=0, first report read the clock at t=2
    assert first.percent == 10.0
    assert first.estimated_remaining == pytest.approx(2.0 / 1 * 9)
    assert updates[-1].estimated_remaining == 0
    assert updates[-1].percent == 100.0


def test_snapshots_are_not_mutated_afterwards(script, backends, log):
    caches, statuses = [], []
    orch = _orchestrator(backends, log)
    orch.on_cache.append(caches.append)
    orch.on_status.append(statuses.append)
    asyncio.run(orch.run(script, CONFIG))
    assert [len(c) for c in caches] == list(range(1, 11))
    assert statuses[0] == {BlockId.HOOK: BlockStatus.PENDING}
    assert statuses[-1][BlockId.PRAYER] == BlockStatus.DONE


def test_changed_text_keeps_cached_asset(script, backends, log):
    orch = _orchestrator(backends, log)
    asyncio.run(orch.run(script, CONFIG))
    edited = script.with_block(NarrativeBlock(id=BlockId.HOOK, text="new hook", image_prompt="hook prompt"))
    backends.calls.clear()
    asyncio.run(orch.run(edited, CONFIG))
    assert backends.calls == []
    assert any("although its source changed" in e.message for e in log.entries())


def test_regenerate_block_only_touches_that_block(script, backends, log):
    orch = _orchestrator(backends, log)
    asyncio.run(orch.run(script, CONFIG))
    before = orch.cache.get(BlockId.HOOK, AssetKind.AUDIO)
    backends.calls.clear()
    result = asyncio.run(orch.regenerate_block(script, BlockId.REFLECTION, CONFIG))
    assert backends.calls == [("speech", "reflection text"), ("image", "reflection prompt")]
    assert len(result.cache) == 10
    assert orch.cache.get(BlockId.HOOK, AssetKind.AUDIO) is before


def test_clear_cache_forces_resynthesis(script, backends, log):
    orch = _orchestrator(backends, log)
    asyncio.run(orch.run(script, CONFIG))
    orch.clear_cache()
    backends.calls.clear()
    asyncio.run(orch.run(script, CONFIG))
    assert len(backends.calls) == 10


def test_missing_image_prompt_is_soft_failure_without_call(log, backends):
    script = Script(blocks=[NarrativeBlock(id=BlockId.READING, text="reading text", image_prompt="")])
    orch = _orchestrator(backends, log)
    result = asyncio.run(orch.run(script, CONFIG))
    assert backends.calls == [("speech", "reading text")]
    assert [(f.block_id, f.kind) for f in result.failures] == [("reading", "image")]
