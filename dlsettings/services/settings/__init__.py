"""Settings aggregates: typed schema, normalization, storage, effective view
and export/import."""

from .schema import (
    AppProfile,
    AppProfileSettings,
    EngineProfile,
    EngineProfileSettings,
    FsPolicy,
    FsPolicySettings,
)
from .effective import EngineProfileEffective, normalize_engine_profile
from .snapshot import ConfigSnapshot
from .storage import (
    fetch_app_profile,
    fetch_engine_profile,
    fetch_fs_policy,
    update_app_profile,
    update_engine_profile,
    update_fs_policy,
)
from .export_import import export_snapshot, import_profiles, ImportedProfiles

__all__ = [
    "AppProfile",
    "AppProfileSettings",
    "EngineProfile",
    "EngineProfileSettings",
    "FsPolicy",
    "FsPolicySettings",
    "EngineProfileEffective",
    "normalize_engine_profile",
    "ConfigSnapshot",
    "fetch_app_profile",
    "fetch_engine_profile",
    "fetch_fs_policy",
    "update_app_profile",
    "update_engine_profile",
    "update_fs_policy",
    "export_snapshot",
    "import_profiles",
    "ImportedProfiles",
]
