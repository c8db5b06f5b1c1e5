"""Tests for the spectral frontend and audio helpers."""

import numpy as np
import pytest

from beatlock.audio.frontend import SpectralFrontend, frames_from_audio
from beatlock.audio.loader import decode_pcm_float32
from beatlock.audio.preprocessing import StreamingHighPass, normalize, preprocess


def test_push_emits_one_frame_per_hop():
    frontend = SpectralFrontend(sr=8000, n_fft=256, hop_size=64)
    frames = []
    for size in (10, 100, 1, 300, 229):
        frames += frontend.push(np.zeros(size))

    assert len(frames) == 640 // 64
    assert frames[0].magnitudes.shape == (129,)
    assert frames[0].phase.shape == (129,)
    times = [f.timestamp for f in frames]
    np.testing.assert_allclose(np.diff(times), 64 / 8000)
    assert frontend.time == pytest.approx(640 / 8000)


def test_partial_hop_is_carried_over():
    frontend = SpectralFrontend(sr=8000, n_fft=256, hop_size=64)
    assert frontend.push(np.zeros(63)) == []
    frames = frontend.push(np.ones(1))
    assert len(frames) == 1
    assert frames[0].samples[-1] == 1.0


def test_sine_magnitude_is_normalised():
    sr, n_fft = 8000, 1024
    t = np.arange(n_fft * 4) / sr
    frontend = SpectralFrontend(sr=sr, n_fft=n_fft, hop_size=256)
    frames = frontend.push(np.sin(2 * np.pi * 1000 * t))
    assert frames[-1].magnitudes.max() == pytest.approx(0.5, abs=0.02)


def test_offline_frames_match_streaming_frames():
    sr, n_fft, hop = 8000, 256, 64
    rng = np.random.default_rng(0)
    audio = rng.standard_normal(2048).astype(np.float32)

    streamed = SpectralFrontend(sr=sr, n_fft=n_fft, hop_size=hop).push(audio)
    offline = frames_from_audio(audio, sr=sr, n_fft=n_fft, hop_size=hop)

    # Streaming frames start with a zero-padded window; skip those
    lag = n_fft // hop - 1
    for off, stream in zip(offline, streamed[lag:]):
        assert off.timestamp == pytest.approx(stream.timestamp)
        np.testing.assert_allclose(off.magnitudes, stream.magnitudes, atol=1e-4)


def test_frontend_reset():
    frontend = SpectralFrontend(sr=8000, n_fft=256, hop_size=64)
    frontend.push(np.ones(100))
    frontend.reset(start_time=5.0)
    frames = frontend.push(np.zeros(64))
    assert frames[0].timestamp == pytest.approx(5.0 + 64 / 8000)
    assert np.all(frames[0].magnitudes == 0)


def test_invalid_hop_rejected():
    with pytest.raises(ValueError):
        SpectralFrontend(n_fft=256, hop_size=512)


def test_decode_pcm_float32():
    samples = np.array([0.5, -1.0, np.nan], dtype="<f4")
    decoded = decode_pcm_float32(samples.tobytes() + b"\x00")
    np.testing.assert_array_equal(decoded, [0.5, -1.0, 0.0])
    assert len(decode_pcm_float32(b"")) == 0


def test_streaming_highpass_is_chunk_invariant():
    rng = np.random.default_rng(1)
    audio = rng.standard_normal(4000)
    whole = StreamingHighPass(8000).process(audio)

    chunked_filter = StreamingHighPass(8000)
    chunked = np.concatenate([chunked_filter.process(c) for c in np.array_split(audio, 7)])
    np.testing.assert_allclose(whole, chunked, atol=1e-5)


def test_normalize_and_preprocess():
    assert np.all(normalize(np.zeros(10)) == 0)
    np.testing.assert_allclose(normalize(np.array([0.5, -0.25])), [1.0, -0.5])
    out = preprocess(np.ones(2000) * 0.3, sr=8000)
    assert out.dtype == np.float32
    # DC is removed by the high-pass
    assert abs(float(np.mean(out[-500:]))) < 0.05
