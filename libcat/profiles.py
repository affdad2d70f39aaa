"""
Profile management: isolated libraries, each with its own database and
thumbnail storage, optionally protected by a password.
"""
import hashlib
import hmac
import json
import logging
import re
import secrets
import shutil
from datetime import datetime, UTC
from pathlib import Path
from typing import List, Optional

from . import config
from .exceptions import ProfileError
from .models import Profile

PROFILES_FORMAT_VERSION = 1


class ProfileService:
    def __init__(self, data_dir: Path):
        self.base_dir = Path(data_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.profiles_path = self.base_dir / config.PROFILES_FILENAME
        self.profiles: List[Profile] = self._load()

    # --- Queries ---

    def list_profiles(self) -> List[Profile]:
        """Profiles with their password hash masked."""
        return [p.masked() for p in self.profiles]

    def get(self, profile_id: str) -> Optional[Profile]:
        return next((p for p in self.profiles if p.id == profile_id), None)

    def find_by_name(self, name: str) -> Optional[Profile]:
        lowered = name.strip().lower()
        return next((p for p in self.profiles if p.name.lower() == lowered), None)

    def profile_path(self, profile_id: str) -> Path:
        if not self.get(profile_id):
            raise ProfileError(f"Profile not found: {profile_id}")
        return self.base_dir / config.PROFILES_DIRNAME / profile_id

    def has_password(self, profile_id: str) -> bool:
        profile = self._require(profile_id)
        return profile.password_hash is not None

    def verify_password(self, profile_id: str, password: Optional[str]) -> bool:
        profile = self._require(profile_id)
        if not profile.password_hash:
            return True
        if password is None:
            return False
        return _verify_hash(password, profile.password_hash)

    # --- Mutations ---

    def create(self, name: str, password: Optional[str] = None) -> Profile:
        clean = self._sanitize(name)
        self._check_unique(clean)

        profile = Profile(
            id=secrets.token_hex(8),
            name=clean,
            password_hash=_hash_password(password) if password else None,
            created_at=datetime.now(UTC).isoformat(),
        )
        profile_dir = self.base_dir / config.PROFILES_DIRNAME / profile.id
        (profile_dir / config.THUMBNAILS_DIRNAME).mkdir(parents=True, exist_ok=True)

        self.profiles.append(profile)
        self._save()
        logging.info(f"Created profile '{profile.name}' ({profile.id})")
        return profile.masked()

    def rename(self, profile_id: str, new_name: str) -> Profile:
        profile = self._require(profile_id)
        clean = self._sanitize(new_name)
        self._check_unique(clean, exclude_id=profile_id)
        profile.name = clean
        self._save()
        return profile.masked()

    def delete(self, profile_id: str):
        profile = self._require(profile_id)
        profile_dir = self.base_dir / config.PROFILES_DIRNAME / profile.id
        if profile_dir.exists():
            shutil.rmtree(profile_dir, ignore_errors=True)
        self.profiles.remove(profile)
        self._save()
        logging.info(f"Deleted profile '{profile.name}' ({profile.id})")

    def migrate_existing_data(self) -> Optional[Profile]:
        """
        Moves a pre-profile library (libcat.db + thumbnails/ in the data dir)
        into a new 'Default' profile. Returns None when there is nothing to move.
        """
        old_db = self.base_dir / config.DB_FILENAME
        if not old_db.exists():
            return None

        profile = Profile(
            id=secrets.token_hex(8),
            name="Default",
            password_hash=None,
            created_at=datetime.now(UTC).isoformat(),
        )
        profile_dir = self.base_dir / config.PROFILES_DIRNAME / profile.id
        profile_dir.mkdir(parents=True, exist_ok=True)

        old_db.rename(profile_dir / config.DB_FILENAME)
        old_thumbs = self.base_dir / config.THUMBNAILS_DIRNAME
        if old_thumbs.exists():
            old_thumbs.rename(profile_dir / config.THUMBNAILS_DIRNAME)
        else:
            (profile_dir / config.THUMBNAILS_DIRNAME).mkdir(parents=True, exist_ok=True)

        # SQLite WAL side files travel with the database
        for suffix in ("-wal", "-shm"):
            side = self.base_dir / f"{config.DB_FILENAME}{suffix}"
            if side.exists():
                side.rename(profile_dir / side.name)

        self.profiles.append(profile)
        self._save()
        logging.info("Migrated existing data to Default profile")
        return profile.masked()

    # --- Internals ---

    def _require(self, profile_id: str) -> Profile:
        profile = self.get(profile_id)
        if not profile:
            raise ProfileError(f"Profile not found: {profile_id}")
        return profile

    def _sanitize(self, name: str) -> str:
        clean = re.sub(config.PROFILE_NAME_INVALID_CHARS, '_', name or "").strip()
        if not clean:
            raise ProfileError("Profile name cannot be empty")
        return clean

    def _check_unique(self, name: str, exclude_id: Optional[str] = None):
        for p in self.profiles:
            if p.id != exclude_id and p.name.lower() == name.lower():
                raise ProfileError("A profile with this name already exists")

    def _load(self) -> List[Profile]:
        if not self.profiles_path.exists():
            return []
        try:
            data = json.loads(self.profiles_path.read_text(encoding="utf-8"))
            return [Profile.from_json(p) for p in data.get("profiles", [])]
        except (OSError, ValueError, KeyError) as e:
            logging.error(f"Failed to load profiles from {self.profiles_path}: {e}")
            return []

    def _save(self):
        payload = {
            "profiles": [p.to_json() for p in self.profiles],
            "version": PROFILES_FORMAT_VERSION,
        }
        self.profiles_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        'sha512', password.encode('utf-8'), salt.encode('utf-8'),
        config.PBKDF2_ITERATIONS, config.PBKDF2_KEY_LENGTH,
    )
    return f"{salt}:{digest.hex()}"


def _verify_hash(password: str, stored: str) -> bool:
    salt, _, expected = stored.partition(':')
    digest = hashlib.pbkdf2_hmac(
        'sha512', password.encode('utf-8'), salt.encode('utf-8'),
        config.PBKDF2_ITERATIONS, config.PBKDF2_KEY_LENGTH,
    )
    return hmac.compare_digest(digest.hex(), expected)
