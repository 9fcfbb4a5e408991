"""Backup store for files a repair is about to change.

Layout::

    <backup_dir>/index.json            one entry per backup, newest last
    <backup_dir>/<id>/manifest.json    per-file checksums
    <backup_dir>/<id>/<n>-<name>[.enc] copied (optionally encrypted) payloads
    <backup_dir>/restorations.log      one line per restore
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import uuid
from datetime import datetime, timedelta
from pathlib import Path

from credfix.core.crypto import decrypt_data, encrypt_data
from credfix.core.errors import BackupFailure
from credfix.core.models import BackupOutcome, BackupRecord

logger = logging.getLogger("credfix.backup")

INDEX_FILENAME = "index.json"
MANIFEST_FILENAME = "manifest.json"
RESTORE_LOG = "restorations.log"


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class BackupStore:
    """Creates, lists, verifies and restores file backups."""

    def __init__(self, backup_dir: Path, encrypt: bool = True):
        self.backup_dir = backup_dir
        self.encrypt = encrypt

    @property
    def index_file(self) -> Path:
        return self.backup_dir / INDEX_FILENAME

    def create_backup(
        self,
        paths: list[Path],
        type: str = "config",
        description: str = "",
    ) -> BackupRecord:
        """Copy ``paths`` into a new backup. Raises BackupFailure on any error.

        Paths that do not exist yet are recorded as absent; restoring the
        backup removes them again.
        """
        now = datetime.now()
        backup_id = f"{now.strftime('%Y%m%dT%H%M%S')}-{uuid.uuid4().hex[:6]}"
        target = self.backup_dir / backup_id

        try:
            target.mkdir(parents=True, exist_ok=False)
            files = []
            for n, path in enumerate(paths):
                entry = {"source": str(path), "present": path.exists()}
                if path.exists():
                    data = path.read_bytes()
                    stored = f"{n}-{path.name}" + (".enc" if self.encrypt else "")
                    payload = encrypt_data(data, self.backup_dir) if self.encrypt else data
                    (target / stored).write_bytes(payload)
                    entry.update({
                        "stored": stored,
                        "sha256": sha256(data),
                        "size": len(data),
                        "mode": path.stat().st_mode & 0o777,
                    })
                files.append(entry)

            record = BackupRecord(
                id=backup_id,
                created_at=now,
                source_paths=list(paths),
                type=type,
                description=description,
                encrypted=self.encrypt,
                files=files,
            )
            (target / MANIFEST_FILENAME).write_text(json.dumps(self._record_to_json(record), indent=2))

            index = self._read_index()
            index.append(self._record_to_json(record))
            self._write_index(index)
        except OSError as e:
            shutil.rmtree(target, ignore_errors=True)
            raise BackupFailure(f"Could not create backup in {self.backup_dir}: {e}") from e

        logger.info("Created backup %s of %s", backup_id, ", ".join(str(p) for p in paths))
        return record

    def list_backups(
        self,
        type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[BackupRecord]:
        """Backups newest first, optionally filtered by type and date range."""
        records = []
        for entry in self._read_index():
            record = self._record_from_json(entry)
            if type is not None and record.type != type:
                continue
            if since is not None and record.created_at < since:
                continue
            if until is not None and record.created_at > until:
                continue
            record.restorable = self._payloads_present(record)
            records.append(record)
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def get_backup(self, backup_id: str) -> BackupRecord | None:
        for record in self.list_backups():
            if record.id == backup_id:
                return record
        return None

    def verify_backup(self, backup_id: str) -> BackupOutcome:
        """Check every stored payload against its recorded checksum."""
        record = self.get_backup(backup_id)
        if record is None:
            return BackupOutcome(False, f"No backup with id {backup_id}", backup_id)

        problems = []
        for entry in record.files:
            if not entry["present"]:
                continue
            try:
                data = self._load_payload(record, entry)
            except (OSError, BackupFailure) as e:
                problems.append(f"{entry['source']}: {e}")
                continue
            if sha256(data) != entry["sha256"]:
                problems.append(f"{entry['source']}: checksum mismatch")

        if problems:
            return BackupOutcome(False, "; ".join(problems), backup_id)
        return BackupOutcome(True, f"Backup {backup_id} is intact", backup_id, list(record.source_paths))

    def restore_backup(self, backup_id: str) -> BackupOutcome:
        """Put every backed-up file back; files absent at backup time are removed."""
        verified = self.verify_backup(backup_id)
        if not verified.success:
            return BackupOutcome(False, f"Cannot restore: {verified.message}", backup_id)

        record = self.get_backup(backup_id)
        assert record is not None
        restored: list[Path] = []
        try:
            for entry in record.files:
                source = Path(entry["source"])
                if entry["present"]:
                    data = self._load_payload(record, entry)
                    source.parent.mkdir(parents=True, exist_ok=True)
                    source.write_bytes(data)
                    if entry.get("mode") is not None:
                        os.chmod(source, entry["mode"])
                elif source.exists():
                    source.unlink()
                restored.append(source)
        except (OSError, BackupFailure) as e:
            logger.error("Restore of %s failed: %s", backup_id, e)
            return BackupOutcome(False, f"Restore of {backup_id} failed: {e}", backup_id, restored)

        self._log_restore(record, restored)
        logger.info("Restored backup %s", backup_id)
        return BackupOutcome(True, f"Restored {len(restored)} file(s) from {backup_id}", backup_id, restored)

    def delete_backup(self, backup_id: str) -> BackupOutcome:
        index = self._read_index()
        remaining = [e for e in index if e["id"] != backup_id]
        if len(remaining) == len(index):
            return BackupOutcome(False, f"No backup with id {backup_id}", backup_id)

        shutil.rmtree(self.backup_dir / backup_id, ignore_errors=True)
        self._write_index(remaining)
        logger.info("Deleted backup %s", backup_id)
        return BackupOutcome(True, f"Deleted backup {backup_id}", backup_id)

    def cleanup(
        self,
        max_backups: int | None = None,
        max_age_days: int | None = None,
        dry_run: bool = False,
    ) -> list[str]:
        """Delete backups beyond the count limit or older than the age limit."""
        records = self.list_backups()
        doomed: list[str] = []
        if max_age_days is not None:
            cutoff = datetime.now() - timedelta(days=max_age_days)
            doomed.extend(r.id for r in records if r.created_at < cutoff)
        if max_backups is not None:
            doomed.extend(r.id for r in records[max_backups:] if r.id not in doomed)

        if not dry_run:
            for backup_id in doomed:
                self.delete_backup(backup_id)
        return doomed

    def stats(self) -> dict:
        records = self.list_backups()
        by_type: dict[str, int] = {}
        size = 0
        for record in records:
            by_type[record.type] = by_type.get(record.type, 0) + 1
            size += sum(e.get("size", 0) for e in record.files)
        return {
            "count": len(records),
            "total_size": size,
            "by_type": by_type,
            "oldest": records[-1].created_at.isoformat() if records else None,
            "newest": records[0].created_at.isoformat() if records else None,
            "backup_dir": str(self.backup_dir),
        }

    def _load_payload(self, record: BackupRecord, entry: dict) -> bytes:
        payload = (self.backup_dir / record.id / entry["stored"]).read_bytes()
        if record.encrypted:
            return decrypt_data(payload, self.backup_dir)
        return payload

    def _payloads_present(self, record: BackupRecord) -> bool:
        return all(
            (self.backup_dir / record.id / e["stored"]).exists()
            for e in record.files
            if e["present"]
        )

    def _log_restore(self, record: BackupRecord, restored: list[Path]) -> None:
        line = json.dumps({
            "backup_id": record.id,
            "restored_at": datetime.now().isoformat(),
            "files": [str(p) for p in restored],
        })
        with open(self.backup_dir / RESTORE_LOG, "a") as f:
            f.write(line + "\n")

    def _read_index(self) -> list[dict]:
        if not self.index_file.exists():
            return []
        try:
            return json.loads(self.index_file.read_text())
        except ValueError:
            logger.warning("Backup index %s is corrupt; treating it as empty", self.index_file)
            return []

    def _write_index(self, entries: list[dict]) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.index_file.with_suffix(".tmp")
        tmp.write_text(json.dumps(entries, indent=2))
        tmp.replace(self.index_file)

    @staticmethod
    def _record_to_json(record: BackupRecord) -> dict:
        return {
            "id": record.id,
            "created_at": record.created_at.isoformat(),
            "type": record.type,
            "description": record.description,
            "encrypted": record.encrypted,
            "source_paths": [str(p) for p in record.source_paths],
            "files": record.files,
        }

    @staticmethod
    def _record_from_json(data: dict) -> BackupRecord:
        return BackupRecord(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            source_paths=[Path(p) for p in data["source_paths"]],
            type=data.get("type", "config"),
            description=data.get("description", ""),
            encrypted=data.get("encrypted", False),
            files=data.get("files", []),
        )
