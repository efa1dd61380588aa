"""SettingsStore: the public surface of the settings backbone.

Each method is one top-level call: one transaction and, for mutations of
watched tables, exactly one revision bump. Instances own their engine and
change feed, so several independent stores can coexist (tests do this).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.engine import Engine

from .db import build_engine, make_session_factory
from .env_settings import get_env
from .events import ChangeFeed, Subscription
from .revision import current_revision, read_scope, write_scope
from .schema import ensure_schema
from .services import credentials, runtime, setup_tokens
from .services.reset import factory_reset
from .services.settings import storage
from .services.settings.effective import EngineProfileEffective, normalize_engine_profile
from .services.settings.export_import import ImportedProfiles, export_snapshot, import_profiles
from .services.settings.schema import (
    AltSpeedConfig,
    AppMode,
    AppProfile,
    AppProfileSettings,
    EngineProfile,
    EngineProfileSettings,
    FsPolicy,
    FsPolicySettings,
    IpFilterConfig,
    LabelPolicy,
    PeerClassesConfig,
    TrackerConfig,
)
from .services.settings.snapshot import ConfigSnapshot

logger = logging.getLogger(__name__)


class SettingsStore:
    def __init__(
        self,
        engine: Engine | None = None,
        *,
        url: str | None = None,
        feed: ChangeFeed | None = None,
        create_schema: bool = True,
    ) -> None:
        self.engine = engine or build_engine(url)
        self._sessions = make_session_factory(self.engine)
        self.feed = feed or ChangeFeed(max_queue=get_env().feed_queue_size)
        if create_schema:
            ensure_schema(self.engine)

    @classmethod
    def from_env(cls) -> "SettingsStore":
        return cls(url=None)

    def close(self) -> None:
        self.engine.dispose()

    def _write(self):
        return write_scope(self._sessions, self.feed)

    def _read(self):
        return read_scope(self._sessions)

    # --- revision / change feed ------------------------------------------------

    def current_revision(self) -> int:
        with self._read() as db:
            return current_revision(db)

    def subscribe(self) -> Subscription:
        return self.feed.subscribe()

    def snapshot(self) -> ConfigSnapshot:
        with self._read() as db:
            engine_profile = storage.fetch_engine_profile(db)
            return ConfigSnapshot(
                revision=current_revision(db),
                app_profile=storage.fetch_app_profile(db),
                engine_profile=engine_profile,
                engine_profile_effective=normalize_engine_profile(engine_profile),
                fs_policy=storage.fetch_fs_policy(db),
            )

    def watch(self, poll_interval: float | None = None) -> tuple[ConfigSnapshot, "ConfigWatcher"]:
        """Subscribe first, then snapshot, so no change between the two is lost."""
        sub = self.subscribe()
        snap = self.snapshot()
        interval = poll_interval if poll_interval is not None else get_env().watch_poll_interval_s
        return snap, ConfigWatcher(self, sub, snap.revision, interval)

    # --- app profile --------------------------------------------------------------

    def fetch_app_profile(self, profile_id: str | None = None) -> AppProfile:
        with self._read() as db:
            return storage.fetch_app_profile(db, profile_id)

    def update_app_profile(
        self, data: AppProfileSettings | Mapping[str, Any], *, profile_id: str | None = None
    ) -> AppProfile:
        with self._write() as tx:
            return storage.update_app_profile(tx, data, profile_id=profile_id)

    def set_app_mode(self, mode: AppMode) -> AppProfile:
        with self._write() as tx:
            return storage.set_app_mode(tx, mode)

    def set_immutable_keys(self, keys: Iterable[str]) -> AppProfile:
        with self._write() as tx:
            return storage.set_immutable_keys(tx, keys)

    def set_label_policies(self, policies: Iterable[LabelPolicy | Mapping[str, Any]]) -> AppProfile:
        with self._write() as tx:
            return storage.set_label_policies(tx, list(policies))

    # --- engine profile -------------------------------------------------------------

    def fetch_engine_profile(self, profile_id: str | None = None) -> EngineProfile:
        with self._read() as db:
            return storage.fetch_engine_profile(db, profile_id)

    def effective_engine_profile(self) -> EngineProfileEffective:
        return normalize_engine_profile(self.fetch_engine_profile())

    def update_engine_profile(
        self, data: EngineProfileSettings | Mapping[str, Any], *, profile_id: str | None = None
    ) -> EngineProfile:
        with self._write() as tx:
            return storage.update_engine_profile(tx, data, profile_id=profile_id)

    def set_listen_interfaces(self, values: Iterable[str]) -> EngineProfile:
        with self._write() as tx:
            return storage.set_listen_interfaces(tx, values)

    def set_dht_bootstrap_nodes(self, values: Iterable[str]) -> EngineProfile:
        with self._write() as tx:
            return storage.set_dht_bootstrap_nodes(tx, values)

    def set_dht_router_nodes(self, values: Iterable[str]) -> EngineProfile:
        with self._write() as tx:
            return storage.set_dht_router_nodes(tx, values)

    def set_ip_filter(self, cfg: IpFilterConfig | Mapping[str, Any]) -> EngineProfile:
        with self._write() as tx:
            return storage.set_ip_filter(tx, cfg)

    def set_alt_speed(self, cfg: AltSpeedConfig | Mapping[str, Any] | None) -> EngineProfile:
        with self._write() as tx:
            return storage.set_alt_speed(tx, cfg)

    def set_tracker(self, cfg: TrackerConfig | Mapping[str, Any]) -> EngineProfile:
        with self._write() as tx:
            return storage.set_tracker(tx, cfg)

    def set_peer_classes(self, cfg: PeerClassesConfig | Mapping[str, Any]) -> EngineProfile:
        with self._write() as tx:
            return storage.set_peer_classes(tx, cfg)

    # --- fs policy -------------------------------------------------------------------

    def fetch_fs_policy(self, policy_id: str | None = None) -> FsPolicy:
        with self._read() as db:
            return storage.fetch_fs_policy(db, policy_id)

    def update_fs_policy(
        self, data: FsPolicySettings | Mapping[str, Any], *, policy_id: str | None = None
    ) -> FsPolicy:
        with self._write() as tx:
            return storage.update_fs_policy(tx, data, policy_id=policy_id)

    def set_fs_list(self, kind: str, values: Iterable[str]) -> FsPolicy:
        with self._write() as tx:
            return storage.set_fs_list(tx, kind, values)

    # --- api keys ----------------------------------------------------------------------

    def list_api_keys(self, *, now: datetime | None = None) -> list[credentials.ApiKey]:
        with self._read() as db:
            return credentials.list_api_keys(db, now=now)

    def get_api_key(self, key_id: str, *, now: datetime | None = None) -> credentials.ApiKey | None:
        with self._read() as db:
            return credentials.get_api_key(db, key_id, now=now)

    def require_api_key(self, key_id: str, *, now: datetime | None = None) -> credentials.ApiKey:
        with self._read() as db:
            return credentials.require_api_key(db, key_id, now=now)

    def fetch_api_key_auth(self, key_id: str, *, now: datetime | None = None) -> credentials.ApiKey | None:
        with self._read() as db:
            return credentials.fetch_api_key_auth(db, key_id, now=now)

    def has_api_keys(self) -> bool:
        with self._read() as db:
            return credentials.has_api_keys(db)

    def upsert_api_key(self, key_id: str, key_hash: str, **fields: Any) -> credentials.ApiKey:
        with self._write() as tx:
            return credentials.upsert_api_key(tx, key_id, key_hash, **fields)

    def set_api_key_hash(self, key_id: str, key_hash: str) -> bool:
        with self._write() as tx:
            return credentials.set_api_key_hash(tx, key_id, key_hash)

    def set_api_key_label(self, key_id: str, label: str | None) -> bool:
        with self._write() as tx:
            return credentials.set_api_key_label(tx, key_id, label)

    def set_api_key_enabled(self, key_id: str, enabled: bool) -> bool:
        with self._write() as tx:
            return credentials.set_api_key_enabled(tx, key_id, enabled)

    def set_api_key_expires_at(self, key_id: str, expires_at: datetime | None) -> bool:
        with self._write() as tx:
            return credentials.set_api_key_expires_at(tx, key_id, expires_at)

    def set_api_key_rate_limit(
        self, key_id: str, rate_limit: credentials.ApiKeyRateLimit | Mapping[str, int] | None
    ) -> bool:
        with self._write() as tx:
            return credentials.set_api_key_rate_limit(tx, key_id, rate_limit)

    def delete_api_key(self, key_id: str) -> int:
        with self._write() as tx:
            return credentials.delete_api_key(tx, key_id)

    # --- secrets -------------------------------------------------------------------------

    def get_secret(self, name: str) -> bytes | None:
        with self._read() as db:
            return credentials.get_secret(db, name)

    def list_secret_names(self) -> list[str]:
        with self._read() as db:
            return credentials.list_secret_names(db)

    def upsert_secret(self, name: str, ciphertext: bytes, *, actor: str | None = None) -> None:
        with self._write() as tx:
            credentials.upsert_secret(tx.db, name, ciphertext, actor=actor)

    def delete_secret(self, name: str) -> int:
        with self._write() as tx:
            return credentials.delete_secret(tx.db, name)

    # --- setup tokens ----------------------------------------------------------------------

    def issue_setup_token(
        self,
        token_hash: str,
        *,
        expires_at: datetime | None = None,
        ttl_s: int | float | None = None,
        issued_by: str | None = None,
        now: datetime | None = None,
    ) -> setup_tokens.SetupToken:
        if expires_at is None and ttl_s is None:
            ttl_s = get_env().setup_token_ttl_s
        with self._write() as tx:
            return setup_tokens.issue_setup_token(
                tx.db, token_hash, expires_at=expires_at, ttl_s=ttl_s, issued_by=issued_by, now=now
            )

    def active_setup_token(self, *, now: datetime | None = None) -> setup_tokens.SetupToken | None:
        with self._write() as tx:
            return setup_tokens.active_setup_token(tx.db, now=now)

    def validate_setup_token(self, token_hash: str, *, now: datetime | None = None) -> setup_tokens.SetupToken | None:
        with self._write() as tx:
            return setup_tokens.validate_setup_token(tx.db, token_hash, now=now)

    def consume_setup_token(self, token_id: int, *, now: datetime | None = None) -> bool:
        with self._write() as tx:
            return setup_tokens.consume_setup_token(tx.db, token_id, now=now)

    def invalidate_active_setup_tokens(self, *, now: datetime | None = None) -> int:
        with self._write() as tx:
            return setup_tokens.invalidate_active_setup_tokens(tx.db, now=now)

    def cleanup_expired_setup_tokens(self, *, now: datetime | None = None) -> int:
        with self._write() as tx:
            return setup_tokens.cleanup_expired_setup_tokens(tx.db, now=now)

    # --- factory reset -----------------------------------------------------------------------

    def factory_reset(self) -> None:
        with self._write() as tx:
            factory_reset(tx)

    # --- export / import ------------------------------------------------------------------------

    def export(self) -> dict[str, Any]:
        return export_snapshot(self.snapshot())

    def import_profiles(self, payload: str | bytes | Mapping[str, Any]) -> ImportedProfiles:
        """Validate an exported document and write every section it carries in one transaction."""
        parsed = import_profiles(dict(payload) if isinstance(payload, Mapping) else payload)
        with self._write() as tx:
            if parsed.app_profile is not None:
                storage.update_app_profile(tx, parsed.app_profile)
            if parsed.engine_profile is not None:
                storage.update_engine_profile(tx, parsed.engine_profile)
            if parsed.fs_policy is not None:
                storage.update_fs_policy(tx, parsed.fs_policy)
        return parsed

    # --- runtime mirror ------------------------------------------------------------------------

    def upsert_torrent(self, status, files=None) -> runtime.TorrentStatus:
        with self._write() as tx:
            return runtime.upsert_torrent(tx.db, status, files)

    def get_torrent(self, torrent_id: str) -> runtime.TorrentStatus | None:
        with self._read() as db:
            return runtime.get_torrent(db, torrent_id)

    def list_torrents(self) -> list[runtime.TorrentStatus]:
        with self._read() as db:
            return runtime.list_torrents(db)

    def list_torrent_files(self, torrent_id: str) -> list[runtime.TorrentFileStatus]:
        with self._read() as db:
            return runtime.list_torrent_files(db, torrent_id)

    def delete_torrent(self, torrent_id: str) -> int:
        with self._write() as tx:
            return runtime.delete_torrent(tx.db, torrent_id)

    def mark_fs_job_started(self, torrent_id: str, src_path: str, **kwargs: Any) -> runtime.FsJobState:
        with self._write() as tx:
            return runtime.mark_fs_job_started(tx.db, torrent_id, src_path, **kwargs)

    def mark_fs_job_completed(
        self, torrent_id: str, src_path: str, dst_path: str, **kwargs: Any
    ) -> runtime.FsJobState:
        with self._write() as tx:
            return runtime.mark_fs_job_completed(tx.db, torrent_id, src_path, dst_path, **kwargs)

    def mark_fs_job_failed(self, torrent_id: str, error: str) -> runtime.FsJobState | None:
        with self._write() as tx:
            return runtime.mark_fs_job_failed(tx.db, torrent_id, error)

    def mark_fs_job_skipped(self, torrent_id: str, src_path: str) -> runtime.FsJobState:
        with self._write() as tx:
            return runtime.mark_fs_job_skipped(tx.db, torrent_id, src_path)

    def fs_job_state(self, torrent_id: str) -> runtime.FsJobState | None:
        with self._read() as db:
            return runtime.fs_job_state(db, torrent_id)


class ConfigWatcher:
    """Yields fresh snapshots when the revision moves.

    The change feed only wakes the watcher up; the stored revision decides.
    Without a subscription (``disable_listen``) it falls back to polling.
    """

    def __init__(self, store: SettingsStore, sub: Subscription | None, last_revision: int, poll_interval: float) -> None:
        self._store = store
        self._sub = sub
        self.last_revision = last_revision
        self.poll_interval = max(0.01, float(poll_interval))

    @property
    def listening(self) -> bool:
        return self._sub is not None

    def disable_listen(self) -> None:
        if self._sub is not None:
            self._sub.close()
            self._sub = None
            logger.info("config watcher switched to polling every %.2fs", self.poll_interval)

    def next(self, timeout: float | None = None) -> ConfigSnapshot | None:
        """Block until the revision differs from the last one seen; None on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._store.current_revision() != self.last_revision:
                snap = self._store.snapshot()
                self.last_revision = snap.revision
                if self._sub is not None:
                    self._sub.drain()
                    dropped = self._sub.take_dropped()
                    if dropped:
                        logger.debug("config watcher skipped %d overflowed change(s)", dropped)
                return snap

            wait = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                wait = min(wait, remaining)

            if self._sub is not None:
                self._sub.get(timeout=wait)
            else:
                time.sleep(wait)

    def close(self) -> None:
        self.disable_listen()
