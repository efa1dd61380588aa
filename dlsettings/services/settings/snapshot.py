from __future__ import annotations

from pydantic import BaseModel

from .effective import EngineProfileEffective
from .schema import AppProfile, EngineProfile, FsPolicy


class ConfigSnapshot(BaseModel):
    """All three aggregates plus the effective engine view, read in one session."""

    revision: int
    app_profile: AppProfile
    engine_profile: EngineProfile
    engine_profile_effective: EngineProfileEffective
    fs_policy: FsPolicy
