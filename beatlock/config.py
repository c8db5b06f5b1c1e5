"""Application configuration."""

from enum import Enum

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings


class OnsetFunction(str, Enum):
    """Onset detection functions selectable per engine."""

    SPECTRAL_FLUX = "spectral_flux"
    PHASE_DEVIATION = "phase_deviation"
    COMPLEX_DOMAIN = "complex_domain"


class SyncConfig(BaseModel):
    """Validated configuration for one SyncEngine.

    Raises ``pydantic.ValidationError`` on invalid values, e.g. when
    ``min_tempo >= max_tempo``.
    """

    sample_rate: int = Field(44100, gt=0)
    hop_size: int = Field(512, gt=0)
    min_tempo: float = Field(60.0, gt=0)
    max_tempo: float = Field(200.0, gt=0)
    confidence_threshold: float = Field(0.7, ge=0.0, le=1.0)
    beats_per_measure: int = Field(4, ge=1, le=32)
    history_capacity: int = Field(100, ge=1)
    adaptive_peak_window_size: int = Field(5, ge=3)
    adaptive_peak_alpha: float = Field(0.01, gt=0.0, le=1.0)
    initial_threshold: float = Field(0.3, ge=0.0)
    scorer_timeout_ms: float = Field(50.0, gt=0)
    onset_function: OnsetFunction = OnsetFunction.SPECTRAL_FLUX
    stable_confidence: float = Field(0.8, ge=0.0, le=1.0)

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="after")
    def _check_tempo_bounds(self) -> "SyncConfig":
        if self.min_tempo >= self.max_tempo:
            raise ValueError(
                f"min_tempo ({self.min_tempo}) must be below max_tempo ({self.max_tempo})"
            )
        return self

    @property
    def hop_seconds(self) -> float:
        return self.hop_size / self.sample_rate

    def merged(self, **changes) -> "SyncConfig":
        """Return a new validated config with *changes* applied."""
        return SyncConfig.model_validate({**self.model_dump(), **changes})


class Settings(BaseSettings):
    """App settings with env var overrides."""

    # Audio
    sample_rate: int = 44100
    mono: bool = True
    n_fft: int = 2048
    hop_size: int = 512
    highpass_cutoff: float = 40.0

    # Pipeline defaults
    min_tempo: float = 60.0
    max_tempo: float = 200.0
    confidence_threshold: float = 0.7
    beats_per_measure: int = 4
    scorer_timeout_ms: float = 50.0
    onset_function: OnsetFunction = OnsetFunction.SPECTRAL_FLUX
    scorer_model_path: str | None = None

    # Live streaming
    sync_message_interval: float = 0.05  # seconds between sync pushes

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    max_upload_mb: int = 50

    model_config = {"env_prefix": "BEATLOCK_"}

    def sync_config(self, **overrides) -> SyncConfig:
        """Build the pipeline config from these settings."""
        values = {
            "sample_rate": self.sample_rate,
            "hop_size": self.hop_size,
            "min_tempo": self.min_tempo,
            "max_tempo": self.max_tempo,
            "confidence_threshold": self.confidence_threshold,
            "beats_per_measure": self.beats_per_measure,
            "scorer_timeout_ms": self.scorer_timeout_ms,
            "onset_function": self.onset_function,
        }
        values.update(overrides)
        return SyncConfig.model_validate(values)


settings = Settings()
