"""WebSocket endpoint for live beat sync."""

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from beatlock.analysis.engine import SyncEngine
from beatlock.analysis.scorers import create_scorer
from beatlock.api.schemas import (
    BeatEventResponse,
    BeatMessage,
    ErrorMessage,
    SyncMessage,
    SyncStateResponse,
)
from beatlock.audio.frontend import SpectralFrontend
from beatlock.audio.loader import decode_pcm_float32
from beatlock.audio.preprocessing import StreamingHighPass
from beatlock.config import SyncConfig, settings

logger = logging.getLogger(__name__)

router = APIRouter()


class LiveSession:
    """Per-connection pipeline: high-pass -> spectral frontend -> SyncEngine."""

    def __init__(self) -> None:
        self.engine = SyncEngine(
            settings.sync_config(),
            scorer=create_scorer(settings.scorer_model_path),
        )
        self._build_audio_chain(self.engine.config)
        self._last_sync_time = float("-inf")

    def _build_audio_chain(self, config: SyncConfig, start_time: float = 0.0) -> None:
        # Frames must be produced at the hop the engine back-dates peaks with
        self.frontend = SpectralFrontend(
            sr=config.sample_rate,
            n_fft=settings.n_fft,
            hop_size=config.hop_size,
            start_time=start_time,
        )
        self.highpass = StreamingHighPass(config.sample_rate, settings.highpass_cutoff)

    def process_chunk(self, data: bytes) -> list[dict]:
        """Run one PCM chunk through the pipeline; return messages to send."""
        chunk = decode_pcm_float32(data)
        if len(chunk) == 0:
            return []

        messages = []
        for frame in self.frontend.push(self.highpass.process(chunk)):
            beats_before = self.engine.get_metrics().beat_count
            state = self.engine.process_frame(frame)
            new_beats = self.engine.get_metrics().beat_count - beats_before
            for event in self.engine.get_recent_beats(new_beats):
                messages.append(BeatMessage(data=BeatEventResponse.from_event(event)).model_dump())

            if frame.timestamp - self._last_sync_time >= settings.sync_message_interval:
                self._last_sync_time = frame.timestamp
                messages.append(SyncMessage(data=SyncStateResponse.from_state(state)).model_dump())
        return messages

    def handle_command(self, text: str) -> list[dict]:
        """Apply a JSON control message (``config`` or ``reset``)."""
        try:
            command = json.loads(text)
        except json.JSONDecodeError:
            return [ErrorMessage(message="Invalid JSON").model_dump()]
        if not isinstance(command, dict):
            return [ErrorMessage(message="Expected a JSON object").model_dump()]

        kind = command.pop("type", None)
        if kind == "reset":
            self.engine.reset()
            self.frontend.reset()
            self.highpass.reset()
            self._last_sync_time = float("-inf")
            return [{"type": "reset"}]
        if kind == "config":
            try:
                candidate = self.engine.config.merged(**command)
            except ValidationError as e:
                return [ErrorMessage(message=str(e)).model_dump()]
            if candidate.hop_size > settings.n_fft:
                return [ErrorMessage(
                    message=f"hop_size must not exceed the FFT size ({settings.n_fft})"
                ).model_dump()]

            old = self.engine.config
            config = self.engine.update_config(**command)
            if (config.sample_rate, config.hop_size) != (old.sample_rate, old.hop_size):
                logger.info(f"Live stream now {config.sample_rate}Hz, hop {config.hop_size}")
                self._build_audio_chain(config, start_time=self.frontend.time)
            return [{"type": "config", "data": config.model_dump(mode="json")}]
        return [ErrorMessage(message=f"Unknown command: {kind}").model_dump()]

    def close(self) -> None:
        self.engine.dispose()


@router.websocket("/ws/live")
async def live_sync(websocket: WebSocket):
    """Live beat sync via WebSocket.

    Protocol:
    - Client sends binary Float32 PCM chunks (mono, ``settings.sample_rate``)
    - Client may send text JSON commands:
      - {"type": "config", ...partial config}
      - {"type": "reset"}
    - Server sends JSON messages:
      - {"type": "beat", "data": {...}} for every accepted beat
      - {"type": "sync", "data": {...}} at most every ``sync_message_interval`` s of audio
      - {"type": "config" | "reset" | "error", ...} in reply to commands
    """
    await websocket.accept()
    session = LiveSession()
    loop = asyncio.get_running_loop()

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                # Keep the event loop free while frames are processed
                replies = await loop.run_in_executor(None, session.process_chunk, message["bytes"])
            elif message.get("text") is not None:
                replies = session.handle_command(message["text"])
            else:
                continue

            for reply in replies:
                await websocket.send_json(reply)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.exception("Live session failed")
        try:
            await websocket.send_json(ErrorMessage(message=str(e)).model_dump())
        except Exception:
            pass
    finally:
        session.close()
