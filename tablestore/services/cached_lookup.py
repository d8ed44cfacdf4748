"""
Read-through user lookups for request handlers.

Wraps the user repository's read methods with an edge cache. Write paths
must go to the repository directly; after writing a user, call
`invalidate` so this process stops serving the old copy.
"""

import logging

from tablestore.core.cache import TTLCache
from tablestore.core.deadline import Deadline
from tablestore.db.models import User
from tablestore.repos.user_repo import UserRepository

logger = logging.getLogger(__name__)


class CachedUserLookup:
    """
    Cached user reads by id, email and tag.

    Absent users are not cached, so a user created after a miss is found
    on the next lookup.
    """

    def __init__(self, users: UserRepository, cache: TTLCache[tuple[str, str], User]):
        self.users = users
        self.cache = cache

    async def get_by_id(self, user_id: str, deadline: Deadline | None = None) -> User | None:
        cached = self.cache.get(("id", user_id))
        if cached is not None:
            return cached
        user = await self.users.get_by_id(user_id, deadline=deadline)
        self._remember(user)
        return user

    async def get_by_email(self, email: str, deadline: Deadline | None = None) -> User | None:
        cached = self.cache.get(("email", email.strip().lower()))
        if cached is not None:
            return cached
        user = await self.users.get_by_email(email, deadline=deadline)
        self._remember(user)
        return user

    async def get_by_tag(self, tag: str, deadline: Deadline | None = None) -> User | None:
        cached = self.cache.get(("tag", tag.strip().lower()))
        if cached is not None:
            return cached
        user = await self.users.get_by_tag(tag, deadline=deadline)
        self._remember(user)
        return user

    def invalidate(self, user_id: str) -> None:
        """Drop every cached entry for the user, including ones under an old email or tag."""
        dropped = self.cache.invalidate_where(lambda user: user.id == user_id)
        logger.debug(f"Invalidated {dropped} cached entries for user {user_id}")

    def _remember(self, user: User | None) -> None:
        if user is None:
            return
        for key in self._keys(user):
            self.cache.put(key, user)

    @staticmethod
    def _keys(user: User) -> list[tuple[str, str]]:
        keys = [("id", user.id), ("email", user.email.lower())]
        if user.clkk_tag:
            keys.append(("tag", user.clkk_tag.lower()))
        return keys
