"""
Repository layer for User data access.

Named lookups (external identity, email, tag) each resolve through one
single-item query against the matching secondary index. Email and tag
keys are case-folded, so lookups match regardless of input casing.
"""

import logging
import random
import re
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from tablestore.core.deadline import Deadline
from tablestore.core.errors import (
    ConditionFailedError,
    NotFoundError,
    TagGenerationError,
    UserAlreadyExistsError,
)
from tablestore.db.models import KycDetails, User, UserUpdate
from tablestore.domain.conditions import key_equals
from tablestore.domain.enums import ExternalProvider, KycStatus, SortOrder
from tablestore.domain.keys import (
    EMAIL_INDEX,
    EXTERNAL_ID_INDEX,
    TAG_INDEX,
    TYPE_STATUS_INDEX,
    IndexSpec,
    user_email_key,
    user_external_id_key,
    user_key,
    user_kyc_status_key,
    user_tag_key,
)
from tablestore.repos.store import BatchGetResult, BatchWriteResult, CountResult, QueryResult, Store

logger = logging.getLogger(__name__)

DEFAULT_TAG_ATTEMPTS = 10
_TAG_BASE_LENGTH = 16
_NOT_TAG_CHARS = re.compile(r"[^a-z0-9]")


class UserRepository:
    """
    Data access for users.

    Args:
        store: Store bound to the User entity
    """

    def __init__(self, store: Store[User]):
        self.store = store

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    async def get_by_id(self, user_id: str, deadline: Deadline | None = None) -> User | None:
        return await self.store.get(user_key(user_id), deadline=deadline)

    async def require_by_id(self, user_id: str, deadline: Deadline | None = None) -> User:
        """
        Retrieve a user that must exist.

        Raises:
            NotFoundError: If the user does not exist
        """
        user = await self.get_by_id(user_id, deadline=deadline)
        if user is None:
            logger.warning(f"User not found: {user_id}")
            raise NotFoundError(f"User '{user_id}' not found", details={"user_id": user_id})
        return user

    async def get_by_external_id(
        self,
        external_id: str,
        provider: ExternalProvider = ExternalProvider.CLERK,
        deadline: Deadline | None = None,
    ) -> User | None:
        key = user_external_id_key(provider.value, external_id)
        return await self._single(EXTERNAL_ID_INDEX, key, deadline)

    async def get_by_email(self, email: str, deadline: Deadline | None = None) -> User | None:
        return await self._single(EMAIL_INDEX, user_email_key(email.strip()), deadline)

    async def get_by_tag(self, tag: str, deadline: Deadline | None = None) -> User | None:
        return await self._single(TAG_INDEX, user_tag_key(tag.strip()), deadline)

    async def email_exists(self, email: str, deadline: Deadline | None = None) -> bool:
        return await self.get_by_email(email, deadline=deadline) is not None

    async def tag_exists(self, tag: str, deadline: Deadline | None = None) -> bool:
        return await self.get_by_tag(tag, deadline=deadline) is not None

    async def get_by_ids(
        self, user_ids: Sequence[str], deadline: Deadline | None = None
    ) -> BatchGetResult[User]:
        """Fetch many users at once; missing ids are simply absent from the result."""
        if not user_ids:
            return BatchGetResult(items=[])
        return await self.store.batch_get([user_key(uid) for uid in user_ids], deadline=deadline)

    async def list_by_kyc_status(
        self,
        status: KycStatus,
        limit: int | None = None,
        token: str | None = None,
        order: SortOrder = SortOrder.DESCENDING,
        deadline: Deadline | None = None,
    ) -> QueryResult[User]:
        """Users with a KYC status, most recently created first by default."""
        return await self.store.query_by_index(
            TYPE_STATUS_INDEX,
            key_equals(user_kyc_status_key(status.value)),
            order=order,
            limit=limit,
            token=token,
            deadline=deadline,
        )

    async def count_by_kyc_status(
        self, status: KycStatus, deadline: Deadline | None = None
    ) -> CountResult:
        return await self.store.count_by_index(
            TYPE_STATUS_INDEX, key_equals(user_kyc_status_key(status.value)), deadline=deadline
        )

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    async def create(self, user: User, deadline: Deadline | None = None) -> User:
        """
        Create a new user.

        Raises:
            ValidationError: User is invalid
            UserAlreadyExistsError: A user with this id already exists
        """
        try:
            created = await self.store.create(user, deadline=deadline)
        except ConditionFailedError as e:
            raise UserAlreadyExistsError(
                f"User '{user.id}' already exists", details={"user_id": user.id}
            ) from e
        logger.info(f"Created user: {created.id}")
        return created

    async def create_many(
        self, users: Sequence[User], deadline: Deadline | None = None
    ) -> BatchWriteResult[User]:
        """Batch put; unlike `create` this does not guard against existing rows."""
        if not users:
            return BatchWriteResult(succeeded=[])
        result = await self.store.batch_write(users, deadline=deadline)
        logger.info(
            f"Created {len(result.succeeded)} users",
            extra={"unprocessed": len(result.unprocessed)},
        )
        return result

    async def save(self, user: User, deadline: Deadline | None = None) -> User:
        return await self.store.save(user, deadline=deadline)

    async def update(
        self,
        user_id: str,
        changes: Mapping[str, Any] | UserUpdate,
        expected_updated_at: datetime | None = None,
        deadline: Deadline | None = None,
    ) -> User | None:
        return await self.store.update(
            user_key(user_id),
            changes,
            expected_updated_at=expected_updated_at,
            deadline=deadline,
        )

    async def update_kyc_status(
        self,
        user_id: str,
        status: KycStatus,
        details: KycDetails | None = None,
        deadline: Deadline | None = None,
    ) -> User | None:
        """Move a user to a new KYC status, optionally replacing the KYC details."""
        changes: dict[str, Any] = {"kyc_status": status}
        if details is not None:
            changes["kyc_details"] = details
        user = await self.update(user_id, changes, deadline=deadline)
        if user is not None:
            logger.info(f"User {user_id} KYC status set to {status.value}")
        return user

    async def delete(self, user_id: str, deadline: Deadline | None = None) -> None:
        await self.store.delete(user_key(user_id), deadline=deadline)

    # -------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------

    async def generate_unique_tag(
        self,
        first_name: str | None,
        last_name: str | None,
        max_attempts: int = DEFAULT_TAG_ATTEMPTS,
        deadline: Deadline | None = None,
    ) -> str:
        """
        Generate a tag no user currently holds.

        Candidates are the sanitized, lower-cased names followed by four
        random digits. Uniqueness is probed, not reserved: a concurrent
        caller can still claim the same tag before it is written.

        Raises:
            TagGenerationError: Every candidate within `max_attempts` was taken
        """
        base = _NOT_TAG_CHARS.sub("", f"{first_name or ''}{last_name or ''}".lower())
        base = base[:_TAG_BASE_LENGTH] or "user"
        for attempt in range(1, max_attempts + 1):
            candidate = f"{base}{random.randint(0, 9999):04d}"
            if not await self.tag_exists(candidate, deadline=deadline):
                logger.debug(f"Generated tag {candidate} on attempt {attempt}")
                return candidate
        logger.warning(
            f"Tag generation exhausted after {max_attempts} attempts",
            extra={"base": base},
        )
        raise TagGenerationError(
            f"Could not generate a unique tag after {max_attempts} attempts",
            details={"base": base, "attempts": max_attempts},
        )

    async def _single(
        self, index: IndexSpec, partition: str, deadline: Deadline | None
    ) -> User | None:
        result = await self.store.query_by_index(
            index, key_equals(partition), limit=1, deadline=deadline
        )
        return result.items[0] if result.items else None
