"""
Configuration for the curriculum coach.

Values come from constructor arguments or, via EngineConfig.from_env(),
from COACH_* environment variables (a local .env file is loaded first).

Variables:
    COACH_MAX_REFINEMENTS    refine limit per step; unset/empty/'none' = unbounded
    COACH_PERSISTENCE_DIR    directory for stage snapshots
    COACH_MODEL_NAME         HuggingFace model for LLM suggestions; empty = static only
    COACH_LOAD_IN_4BIT       'true'/'false'
    COACH_DEVICE             'cuda' or 'cpu'
    COACH_SUGGESTION_TEMPERATURE
    COACH_LOG_LEVEL          logging level name
    COACH_SECRET_KEY         Flask secret key
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_PERSISTENCE_DIR = "outputs/sessions"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_optional_int(raw: Optional[str]) -> Optional[int]:
    """
    Raises:
        ValueError: If raw is set but not a non-negative integer
    """
    if raw is None or raw.strip() == "" or raw.strip().lower() == "none":
        return None
    value = int(raw)
    if value < 0:
        raise ValueError(f"Expected a non-negative integer, got {raw}")
    return value


@dataclass(frozen=True)
class EngineConfig:
    """
    Attributes:
        max_refinements: Max refine actions per step (None = unbounded)
        persistence_dir: Base directory for SessionPersistence
        model_name: Model for LLMSuggestionProvider (None = static suggestions only)
        load_in_4bit: Quantize the model (CUDA only)
        device: 'cuda' or 'cpu'
        suggestion_temperature: Sampling temperature for suggestions
        log_level: Logging level name for entry points
        secret_key: Flask secret key
    """
    max_refinements: Optional[int] = None
    persistence_dir: str = DEFAULT_PERSISTENCE_DIR
    model_name: Optional[str] = None
    load_in_4bit: bool = True
    device: str = "cuda"
    suggestion_temperature: float = 0.8
    log_level: str = "INFO"
    secret_key: str = field(default="curriculum-coach-dev-key", repr=False)

    def __post_init__(self):
        if self.max_refinements is not None and self.max_refinements < 0:
            raise ValueError("max_refinements must be None or >= 0")
        if self.device not in ("cuda", "cpu"):
            raise ValueError(f"device must be 'cuda' or 'cpu', got {self.device}")

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "EngineConfig":
        """
        Build configuration from the environment.

        Args:
            dotenv_path: Optional explicit .env path (default: search upward)

        Raises:
            ValueError: If a variable is set to an invalid value
        """
        load_dotenv(dotenv_path)

        config = cls(
            max_refinements=_parse_optional_int(os.getenv("COACH_MAX_REFINEMENTS")),
            persistence_dir=os.getenv("COACH_PERSISTENCE_DIR", DEFAULT_PERSISTENCE_DIR),
            model_name=os.getenv("COACH_MODEL_NAME") or None,
            load_in_4bit=os.getenv("COACH_LOAD_IN_4BIT", "true").strip().lower() in _TRUE_VALUES,
            device=os.getenv("COACH_DEVICE", "cuda").strip().lower(),
            suggestion_temperature=float(os.getenv("COACH_SUGGESTION_TEMPERATURE", "0.8")),
            log_level=os.getenv("COACH_LOG_LEVEL", "INFO").upper(),
            secret_key=os.getenv("COACH_SECRET_KEY", "curriculum-coach-dev-key")
        )

        logger.debug(f"Configuration loaded: {config}")
        return config
