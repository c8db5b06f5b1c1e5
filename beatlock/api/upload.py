"""File upload endpoint for offline beat analysis."""

import logging
import os
import tempfile

from fastapi import APIRouter, UploadFile, File, HTTPException

from beatlock.analysis.offline import analyze_audio
from beatlock.analysis.scorers import create_scorer
from beatlock.api.schemas import (
    AnalysisResponse,
    BeatEventResponse,
    MetricsResponse,
    SyncStateResponse,
    TempoResponse,
)
from beatlock.audio.loader import load_audio
from beatlock.audio.preprocessing import preprocess
from beatlock.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = {".wav", ".mp3", ".flac", ".ogg", ".m4a", ".aac"}


def _extension(filename: str | None) -> str:
    if filename and "." in filename:
        return "." + filename.rsplit(".", 1)[-1].lower()
    return ""


@router.post("/analyze", response_model=AnalysisResponse)
async def analyze_file(file: UploadFile = File(...)):
    """Run the beat tracking pipeline over an uploaded recording."""
    suffix = _extension(file.filename)
    if suffix and suffix not in ALLOWED_EXTENSIONS:
        raise HTTPException(400, f"Unsupported format. Use: {', '.join(sorted(ALLOWED_EXTENSIONS))}")

    content = await file.read()
    if len(content) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(400, f"File too large (max {settings.max_upload_mb} MB)")

    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
            tmp.write(content)
            tmp_path = tmp.name

        audio, sr = load_audio(tmp_path, sr=settings.sample_rate)
        audio = preprocess(audio, sr, settings.highpass_cutoff)
        result = analyze_audio(audio, sr, scorer=create_scorer(settings.scorer_model_path))
    except Exception as e:
        logger.exception("Analysis of %s failed", file.filename)
        raise HTTPException(500, f"Analysis failed: {str(e)}")
    finally:
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass

    return AnalysisResponse(
        tempo=TempoResponse(bpm=result.tempo.bpm, confidence=result.tempo.confidence),
        beats=[BeatEventResponse.from_event(b) for b in result.beats],
        sync_state=SyncStateResponse.from_state(result.sync_state),
        metrics=MetricsResponse.from_metrics(result.metrics),
        duration=result.duration,
    )
