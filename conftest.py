"""Shared fakes for the liturgy reels tests."""
import os
import sys
from typing import List, Optional, Tuple

import pytest

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "liturgy_reels_backend"))

from liturgy_reels.errors import AssetGenerationError, QuotaExceededError
from liturgy_reels.models import BlockId, JobPayload, NarrativeBlock, Script, StoredJob
from liturgy_reels.session_log import SessionLog

SAMPLE_RATE = 24000


def pcm(ms: int) -> bytes:
    """Silent 16-bit mono PCM clip of the given length at 24 kHz."""
    return b"\x00\x00" * (SAMPLE_RATE * ms // 1000)


def full_script() -> Script:
    return Script(blocks=[
        NarrativeBlock(id=b, text=f"{b.value} text", image_prompt=f"{b.value} prompt")
        for b in BlockId
    ])


class FakeSynth:
    """Records calls in order; fails on the sources listed in `fail_on`."""

    def __init__(self, name: str, calls: List[Tuple[str, str]], payload: bytes, fail_on: Optional[dict] = None):
        self.name = name
        self.calls = calls
        self.payload = payload
        self.fail_on = fail_on if fail_on is not None else {}

    async def _call(self, source: str) -> bytes:
        self.calls.append((self.name, source))
        failure = self.fail_on.get(source)
        if failure == "quota":
            raise QuotaExceededError(self.name, "429 RESOURCE_EXHAUSTED")
        if failure == "soft":
            raise AssetGenerationError(f"{self.name} backend error")
        if failure == "crash":
            raise RuntimeError("connection reset")
        return self.payload


class FakeBackends:
    def __init__(self, audio_ms: int = 2000):
        self.calls: List[Tuple[str, str]] = []
        self.audio_fail = {}
        self.image_fail = {}
        self._speech = FakeSynth("speech", self.calls, pcm(audio_ms), self.audio_fail)
        self._image = FakeSynth("image", self.calls, b"\x89PNG fake image", self.image_fail)

    async def speech(self, text: str, voice_id: str) -> bytes:
        return await self._speech._call(text)

    async def image(self, prompt: str, style, aspect_ratio: str) -> bytes:
        return await self._image._call(prompt)


class FakeStore:
    def __init__(self, job_id: str = "job-123"):
        self.job_id = job_id
        self.uploads: List[Tuple[JobPayload, Optional[str]]] = []
        self.stored = {}
        self.fail_with: Optional[Exception] = None

    async def upload(self, payload: JobPayload, existing_id: Optional[str] = None) -> str:
        if self.fail_with:
            raise self.fail_with
        self.uploads.append((payload, existing_id))
        job_id = existing_id or self.job_id
        self.stored[job_id] = payload
        return job_id

    async def list_jobs(self):
        return [StoredJob(id=k, display_date=v.metadata.date, display_ref=v.metadata.reference) for k, v in self.stored.items()]

    async def fetch_job(self, job_id: str) -> JobPayload:
        return self.stored[job_id]


@pytest.fixture
def log():
    return SessionLog(capacity=500)


@pytest.fixture
def backends():
    return FakeBackends()


@pytest.fixture
def script():
    return full_script()
