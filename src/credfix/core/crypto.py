"""Fernet encryption for backup payloads.

Docker config files can hold base64 registry credentials, so backups of
them are encrypted at rest with a key kept beside the backups.
"""

from __future__ import annotations

from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from credfix.core.errors import BackupFailure

KEY_FILENAME = ".backup.key"


def get_or_create_key(backup_dir: Path) -> bytes:
    """Get the existing backup key or create a new one (mode 0600)."""
    key_file = backup_dir / KEY_FILENAME
    if key_file.exists():
        return key_file.read_bytes().strip()

    key = Fernet.generate_key()
    backup_dir.mkdir(parents=True, exist_ok=True)
    key_file.write_bytes(key)
    key_file.chmod(0o600)
    return key


def encrypt_data(data: bytes, backup_dir: Path) -> bytes:
    return Fernet(get_or_create_key(backup_dir)).encrypt(data)


def decrypt_data(token: bytes, backup_dir: Path) -> bytes:
    key_file = backup_dir / KEY_FILENAME
    if not key_file.exists():
        raise BackupFailure(
            "Backup is encrypted but the backup key is missing",
            f"Restore {key_file} from your own copies, or restore the file by hand.",
        )
    try:
        return Fernet(key_file.read_bytes().strip()).decrypt(token)
    except InvalidToken as e:
        raise BackupFailure(
            "Backup payload could not be decrypted",
            "The backup key does not match this backup; it was created with another key.",
        ) from e
