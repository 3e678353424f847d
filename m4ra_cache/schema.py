from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, Field


class Mode(str, Enum):
    FOOT = "foot"
    BICYCLE = "bicycle"
    MOTORCAR = "motorcar"


# Processing order is fixed; vertex indices depend on all three.
MODES: Tuple[Mode, ...] = (Mode.FOOT, Mode.BICYCLE, Mode.MOTORCAR)


class PenaltySettings(BaseModel):
    """Motorcar penalties passed through to the weighting step (seconds)."""
    traffic_lights: float = Field(16, ge=0)
    turn: float = Field(1, ge=0)


class CompletionPolicy(str, Enum):
    # done flag written before any weighting work
    CLAIM_FIRST = "claim-first"
    # exclusive claim file during work, done flag only once all artifacts exist
    VERIFY_THEN_MARK = "verify-then-mark"


class CacheSettings(BaseModel):
    cache_dir: Optional[Path] = None
    completion_policy: CompletionPolicy = CompletionPolicy.CLAIM_FIRST
    stale_claim_after_s: float = Field(6 * 60 * 60, gt=0)
    penalties: PenaltySettings = PenaltySettings()
