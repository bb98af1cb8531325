"""User profiles: table access and the local profile cache."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .backend import BackendClient
from .models import Profile
from .storage import LocalStorage, PersistentValue

logger = logging.getLogger(__name__)


class ProfileTable:
    """The ``perfis`` table."""

    TABLE = "perfis"

    def __init__(self, backend: BackendClient) -> None:
        self.table = backend.table(self.TABLE)

    async def select_by_user_id(self, user_id: str) -> Profile:
        """
        Read the profile of a user.

        Raises:
            NotFoundError: If the user has no profile row
            BackendError: On any other failure
        """
        row = await self.table.select_one(filters={"user_id": user_id})
        return Profile.model_validate(row)

    async def insert(self, profile: Profile) -> Profile:
        rows = await self.table.insert(profile.to_row(exclude={"id", "created_at", "updated_at"}))
        return Profile.model_validate(rows[0]) if rows else profile

    async def insert_default(self, user_id: str) -> Profile:
        """Create the empty profile every signed-in user is expected to have."""
        logger.info(f"Creating default profile for user {user_id}")
        return await self.insert(Profile(user_id=user_id, name="", phone="", is_admin=False))

    async def update(self, user_id: str, patch: dict[str, Any]) -> None:
        patch = {**patch, "updated_at": datetime.now(timezone.utc).isoformat()}
        await self.table.update(patch, filters={"user_id": user_id})


class ProfileCache:
    """Last known profile, kept across restarts to answer before the backend does."""

    STORAGE_KEY = "foodtruck_user_profile"

    def __init__(self, storage: LocalStorage) -> None:
        self._value: PersistentValue[Optional[Profile]] = PersistentValue(
            storage, self.STORAGE_KEY, None, Optional[Profile]
        )

    def get(self) -> Optional[Profile]:
        return self._value.get()

    def profile_for(self, user_id: str) -> Optional[Profile]:
        """Return the cached profile only if it belongs to this user."""
        profile = self._value.get()
        if profile is not None and profile.user_id == user_id:
            return profile
        return None

    def save(self, profile: Profile) -> None:
        self._value.set(profile)

    def clear(self) -> None:
        self._value.remove()

    def close(self) -> None:
        self._value.close()
