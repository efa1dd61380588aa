"""Runtime mirror: a cache of engine-reported torrent status and of the
filesystem mover's job bookkeeping. Not watched; writes never bump the
revision."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy import delete, insert, select
from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models import FsJobStatus, RuntimeFsJobRow, RuntimeTorrentFileRow, RuntimeTorrentRow, TorrentState
from ..timezone_utils import to_utc_naive, utcnow

logger = logging.getLogger(__name__)


class TorrentFileStatus(BaseModel):
    index: int = Field(ge=0)
    path: str
    size_bytes: int = Field(ge=0)
    bytes_completed: int = Field(default=0, ge=0)
    priority: str = "normal"
    selected: bool = True


class TorrentStatus(BaseModel):
    torrent_id: str
    name: str | None = None
    state: TorrentState = TorrentState.QUEUED
    state_message: str | None = None
    bytes_downloaded: int = 0
    bytes_total: int = 0
    eta_seconds: int | None = None
    download_bps: int = 0
    upload_bps: int = 0
    ratio: float = 0.0
    sequential: bool = False
    library_path: str | None = None
    download_dir: str | None = None
    comment: str | None = None
    source: str | None = None
    private: bool | None = None
    added_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None


class FsJobState(BaseModel):
    torrent_id: str
    src_path: str
    dst_path: str | None = None
    transfer_mode: str | None = None
    status: FsJobStatus = FsJobStatus.PENDING
    attempt: int = 0
    last_error: str | None = None
    updated_at: datetime | None = None


def _status_from_row(r: RuntimeTorrentRow) -> TorrentStatus:
    return TorrentStatus(
        torrent_id=r.torrent_id,
        name=r.name,
        state=TorrentState(r.state),
        state_message=r.state_message,
        bytes_downloaded=r.progress_bytes_downloaded,
        bytes_total=r.progress_bytes_total,
        eta_seconds=r.progress_eta_seconds,
        download_bps=r.download_bps,
        upload_bps=r.upload_bps,
        ratio=r.ratio,
        sequential=bool(r.sequential),
        library_path=r.library_path,
        download_dir=r.download_dir,
        comment=r.comment,
        source=r.source,
        private=r.private,
        added_at=r.added_at,
        completed_at=r.completed_at,
        updated_at=r.updated_at,
    )


def _job_from_row(r: RuntimeFsJobRow) -> FsJobState:
    return FsJobState(
        torrent_id=r.torrent_id,
        src_path=r.src_path,
        dst_path=r.dst_path,
        transfer_mode=r.transfer_mode,
        status=FsJobStatus(r.status),
        attempt=r.attempt,
        last_error=r.last_error,
        updated_at=r.updated_at,
    )


# --- torrents -----------------------------------------------------------------


def upsert_torrent(
    db: Session,
    status: TorrentStatus | Mapping,
    files: list[TorrentFileStatus | Mapping] | None = None,
) -> TorrentStatus:
    """Mirror one torrent. ``files`` (when given) replaces the stored file rows."""
    if not isinstance(status, TorrentStatus):
        status = TorrentStatus.model_validate(status)
    now = utcnow()
    row = db.get(RuntimeTorrentRow, status.torrent_id)
    if row is None:
        row = RuntimeTorrentRow(torrent_id=status.torrent_id, added_at=to_utc_naive(status.added_at) or now)
        db.add(row)
    row.name = status.name
    row.state = status.state.value
    row.state_message = status.state_message
    row.progress_bytes_downloaded = status.bytes_downloaded
    row.progress_bytes_total = status.bytes_total
    row.progress_eta_seconds = status.eta_seconds
    row.download_bps = status.download_bps
    row.upload_bps = status.upload_bps
    row.ratio = status.ratio
    row.sequential = status.sequential
    row.library_path = status.library_path
    row.download_dir = status.download_dir
    row.comment = status.comment
    row.source = status.source
    row.private = status.private
    row.completed_at = to_utc_naive(status.completed_at)
    row.updated_at = now
    db.flush()

    if files is not None:
        parsed = [f if isinstance(f, TorrentFileStatus) else TorrentFileStatus.model_validate(f) for f in files]
        db.execute(delete(RuntimeTorrentFileRow).where(RuntimeTorrentFileRow.torrent_id == status.torrent_id))
        if parsed:
            db.execute(
                insert(RuntimeTorrentFileRow),
                [
                    {
                        "torrent_id": status.torrent_id,
                        "file_index": f.index,
                        "path": f.path,
                        "size_bytes": f.size_bytes,
                        "bytes_completed": f.bytes_completed,
                        "priority": f.priority,
                        "selected": f.selected,
                    }
                    for f in parsed
                ],
            )
    return _status_from_row(row)


def get_torrent(db: Session, torrent_id: str) -> TorrentStatus | None:
    row = db.get(RuntimeTorrentRow, torrent_id)
    return _status_from_row(row) if row else None


def list_torrents(db: Session) -> list[TorrentStatus]:
    rows = db.scalars(select(RuntimeTorrentRow).order_by(RuntimeTorrentRow.added_at, RuntimeTorrentRow.torrent_id))
    return [_status_from_row(r) for r in rows]


def list_torrent_files(db: Session, torrent_id: str) -> list[TorrentFileStatus]:
    rows = db.scalars(
        select(RuntimeTorrentFileRow)
        .where(RuntimeTorrentFileRow.torrent_id == torrent_id)
        .order_by(RuntimeTorrentFileRow.file_index)
    )
    return [
        TorrentFileStatus(
            index=r.file_index,
            path=r.path,
            size_bytes=r.size_bytes,
            bytes_completed=r.bytes_completed,
            priority=r.priority,
            selected=bool(r.selected),
        )
        for r in rows
    ]


def delete_torrent(db: Session, torrent_id: str) -> int:
    """Remove a torrent with its files and fs job."""
    db.execute(delete(RuntimeTorrentFileRow).where(RuntimeTorrentFileRow.torrent_id == torrent_id))
    db.execute(delete(RuntimeFsJobRow).where(RuntimeFsJobRow.torrent_id == torrent_id))
    res = db.execute(delete(RuntimeTorrentRow).where(RuntimeTorrentRow.torrent_id == torrent_id))
    return int(res.rowcount or 0)


# --- filesystem jobs ---------------------------------------------------------------


def _job_row(db: Session, torrent_id: str, src_path: str) -> RuntimeFsJobRow:
    """Existing job for the torrent, or a new pending one (attempt 0)."""
    row = db.scalar(select(RuntimeFsJobRow).where(RuntimeFsJobRow.torrent_id == torrent_id))
    if row is not None:
        return row
    if db.get(RuntimeTorrentRow, torrent_id) is None:
        raise NotFoundError(f"torrent {torrent_id} is not mirrored", meta={"torrent_id": torrent_id})
    row = RuntimeFsJobRow(
        torrent_id=torrent_id,
        src_path=src_path,
        status=FsJobStatus.PENDING.value,
        attempt=0,
    )
    db.add(row)
    return row


def mark_fs_job_started(
    db: Session,
    torrent_id: str,
    src_path: str,
    *,
    dst_path: str | None = None,
    transfer_mode: str | None = None,
) -> FsJobState:
    """Count a new attempt. A job that already moved stays moved with its attempt count."""
    row = _job_row(db, torrent_id, src_path)
    if row.status != FsJobStatus.MOVED.value:
        row.status = FsJobStatus.MOVING.value
        row.attempt = int(row.attempt or 0) + 1
        row.last_error = None
    row.src_path = src_path
    if dst_path is not None:
        row.dst_path = dst_path
    if transfer_mode is not None:
        row.transfer_mode = transfer_mode
    row.updated_at = utcnow()
    db.flush()
    return _job_from_row(row)


def mark_fs_job_completed(
    db: Session,
    torrent_id: str,
    src_path: str,
    dst_path: str,
    *,
    transfer_mode: str | None = None,
) -> FsJobState:
    row = _job_row(db, torrent_id, src_path)
    row.status = FsJobStatus.MOVED.value
    row.attempt = row.attempt if (row.attempt or 0) > 0 else 1
    row.src_path = src_path
    row.dst_path = dst_path
    if transfer_mode is not None:
        row.transfer_mode = transfer_mode
    row.last_error = None
    row.updated_at = utcnow()
    db.flush()
    logger.info("fs job for %s moved to %s", torrent_id, dst_path)
    return _job_from_row(row)


def mark_fs_job_failed(db: Session, torrent_id: str, error: str) -> FsJobState | None:
    """Record a failed attempt. No-op (None) when no job was started."""
    row = db.scalar(select(RuntimeFsJobRow).where(RuntimeFsJobRow.torrent_id == torrent_id))
    if row is None:
        return None
    row.status = FsJobStatus.FAILED.value
    row.attempt = int(row.attempt or 0) + 1
    row.last_error = (error or "")[:2048] or None
    row.updated_at = utcnow()
    db.flush()
    logger.warning("fs job for %s failed (attempt %d): %s", torrent_id, row.attempt, row.last_error)
    return _job_from_row(row)


def mark_fs_job_skipped(db: Session, torrent_id: str, src_path: str) -> FsJobState:
    row = _job_row(db, torrent_id, src_path)
    row.status = FsJobStatus.SKIPPED.value
    row.updated_at = utcnow()
    db.flush()
    return _job_from_row(row)


def fs_job_state(db: Session, torrent_id: str) -> FsJobState | None:
    row = db.scalar(select(RuntimeFsJobRow).where(RuntimeFsJobRow.torrent_id == torrent_id))
    return _job_from_row(row) if row else None
