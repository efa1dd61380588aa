from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from ...errors import ValidationError
from .schema import AppProfileSettings, EngineProfileSettings, FsPolicySettings
from .snapshot import ConfigSnapshot
from .storage import coerce

EXPORT_FORMAT_VERSION = 1

_SECTION_ALIASES = {
    "app_profile": ("app_profile", "app"),
    "engine_profile": ("engine_profile", "engine"),
    "fs_policy": ("fs_policy", "fs"),
}


@dataclass(frozen=True)
class ImportedProfiles:
    app_profile: AppProfileSettings | None
    engine_profile: EngineProfileSettings | None
    fs_policy: FsPolicySettings | None


def export_snapshot(snapshot: ConfigSnapshot) -> dict[str, Any]:
    """Export the three aggregates to a JSON-serializable dict.

    Secrets are never part of the profiles; only their names are carried.
    """
    return {
        "format_version": EXPORT_FORMAT_VERSION,
        "revision": snapshot.revision,
        "app_profile": snapshot.app_profile.model_dump(mode="json", exclude={"id", "version"}),
        "engine_profile": snapshot.engine_profile.model_dump(mode="json", exclude={"id"}),
        "fs_policy": snapshot.fs_policy.model_dump(mode="json", exclude={"id"}),
    }


def _section(raw: dict[str, Any], name: str) -> Any:
    for key in _SECTION_ALIASES[name]:
        if key in raw:
            return raw[key]
    return None


def import_profiles(payload: str | bytes | dict[str, Any]) -> ImportedProfiles:
    """Parse + validate an exported document.

    Missing sections come back as None. Raises ValidationError on errors.
    """
    if isinstance(payload, (str, bytes)):
        try:
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8", errors="replace")
            raw = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValidationError(f"invalid JSON: {e}", section="import", field="payload") from e
    else:
        raw = payload

    if not isinstance(raw, dict):
        raise ValidationError("import payload must be a JSON object", section="import", field="payload")

    version = raw.get("format_version", EXPORT_FORMAT_VERSION)
    if not isinstance(version, int) or version > EXPORT_FORMAT_VERSION:
        raise ValidationError(
            f"unsupported format_version {version!r}", section="import", field="format_version", value=version
        )

    app = _section(raw, "app_profile")
    engine = _section(raw, "engine_profile")
    fs = _section(raw, "fs_policy")
    return ImportedProfiles(
        app_profile=coerce(AppProfileSettings, app, section="app_profile") if app is not None else None,
        engine_profile=coerce(EngineProfileSettings, engine, section="engine_profile") if engine is not None else None,
        fs_policy=coerce(FsPolicySettings, fs, section="fs_policy") if fs is not None else None,
    )
