import base64
import io
import wave

from conftest import pcm
from liturgy_reels.audio import probe_duration_ms


def _wav(ms: int, rate: int = 16000) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(rate)
        wf.writeframes(b"\x00\x00" * (rate * ms // 1000))
    return buf.getvalue()


def test_raw_pcm_duration(log):
    assert probe_duration_ms(pcm(2000), log) == 2000
    assert probe_duration_ms(pcm(1250), log) == 1250


def test_base64_input(log):
    encoded = base64.b64encode(pcm(3000)).decode("ascii")
    assert probe_duration_ms(encoded, log) == 3000


def test_wav_container_uses_its_own_rate(log):
    assert probe_duration_ms(_wav(1500, rate=16000), log) == 1500


def test_partial_millisecond_is_truncated(log):
    # 25 frames at 24 kHz is 1.0416 ms
    assert probe_duration_ms(b"\x00\x00" * 25, log) == 1


def test_odd_byte_count_falls_back(log):
    assert probe_duration_ms(b"\x00\x00\x00", log) == 5000
    assert any(e.level == "ERROR" for e in log.entries())


def test_invalid_base64_falls_back(log):
    assert probe_duration_ms("not base64 at all!", log) == 5000


def test_empty_clip_falls_back(log):
    assert probe_duration_ms(b"", log) == 5000


def test_truncated_wav_header_falls_back(log):
    assert probe_duration_ms(b"RIFF\x00\x00", log) == 5000


def test_zero_sample_rate_falls_back(log):
    assert probe_duration_ms(pcm(1000), log, sample_rate=0) == 5000


def test_custom_fallback(log):
    assert probe_duration_ms(b"", log, fallback_ms=1234) == 1234
