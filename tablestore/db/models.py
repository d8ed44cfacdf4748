"""
Entities stored in the application table.

Each entity is a pydantic model with a closed attribute set. Attribute
names in items are the camelCase aliases of the model fields; every item
also carries its primary key, the `entityType` discriminator and the
secondary-index projections derived from its current attribute values.

Partial updates go through a per-entity `*Update` model: only fields that
are explicitly set are written, `None` removes an optional attribute, and
unknown or immutable fields are rejected.
"""

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Annotated, Any, ClassVar, Self

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from tablestore.core.errors import EngineError, ValidationError
from tablestore.core.timeutil import Timestamp, utc_now
from tablestore.db.engine import Item
from tablestore.domain.conditions import ItemChanges
from tablestore.domain.enums import (
    Currency,
    EntityType,
    ExternalProvider,
    KycStatus,
    TransactionStatus,
    TransactionType,
    WalletStatus,
    WalletType,
)
from tablestore.domain.keys import (
    EMAIL_KEY,
    ENTITY_TYPE,
    EXTERNAL_ID_KEY,
    TAG_KEY,
    TIME_SORT_KEY,
    TYPE_STATUS_KEY,
    StoreKey,
    transaction_key,
    transaction_status_key,
    transaction_time_sort_key,
    user_email_key,
    user_external_id_key,
    user_key,
    user_kyc_status_key,
    user_tag_key,
    user_time_sort_key,
    wallet_key,
    wallet_status_key,
    wallet_time_sort_key,
)

# Identifiers end up inside composite keys, so "#" is not allowed
Identifier = Annotated[str, StringConstraints(min_length=1, max_length=128, pattern=r"^[^#\s]+$")]
EmailAddress = Annotated[
    str,
    StringConstraints(strip_whitespace=True, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"),
]
PhoneNumber = Annotated[str, StringConstraints(pattern=r"^\+?[1-9]\d{1,14}$")]
PersonName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
UserTag = Annotated[
    str, StringConstraints(min_length=3, max_length=20, pattern=r"^[A-Za-z0-9_.-]+$")
]
ShortText = Annotated[str, StringConstraints(min_length=1, max_length=500)]


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4()}"


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _errors(error: PydanticValidationError) -> list[dict[str, Any]]:
    return error.errors(include_url=False, include_context=False)


@dataclass(frozen=True)
class IndexProjection:
    """
    A secondary-index key attribute derived from entity fields.

    The projection is written only when every source field has a value.
    A projection with several sources can only be changed by an update
    that sets all of them.
    """

    attribute: str
    sources: tuple[str, ...]
    build: Callable[..., str]

    def key_for(self, values: Mapping[str, Any]) -> str | None:
        args = [values.get(source) for source in self.sources]
        if any(arg is None for arg in args):
            return None
        return self.build(*(_plain(arg) for arg in args))


class EntityUpdate(BaseModel):
    """Base for partial-update models: every field optional, nothing unknown."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class EntityModel(BaseModel):
    """
    Base for stored entities.

    Subclasses define `entity_type`, `update_model`, `projections` and
    `primary_key()`. Everything else (item mapping, validation, update
    translation) is shared.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    entity_type: ClassVar[EntityType]
    update_model: ClassVar[type[EntityUpdate]]
    projections: ClassVar[tuple[IndexProjection, ...]] = ()

    created_at: Timestamp | None = None
    updated_at: Timestamp | None = None

    def primary_key(self) -> StoreKey:
        raise NotImplementedError

    # -------------------------------------------------------------------
    # Item mapping
    # -------------------------------------------------------------------

    def index_keys(self) -> dict[str, str]:
        values = {name: getattr(self, name) for name in type(self).model_fields}
        keys = {}
        for projection in self.projections:
            key = projection.key_for(values)
            if key is not None:
                keys[projection.attribute] = key
        return keys

    def to_item(self) -> Item:
        item = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        item.update(self.index_keys())
        item.update(self.primary_key().to_item())
        item[ENTITY_TYPE] = self.entity_type.value
        return item

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> Self:
        try:
            return cls.model_validate(item)
        except PydanticValidationError as e:
            raise EngineError(
                f"Stored {cls.entity_type.value} item could not be read",
                details={"entity": cls.entity_type.value, "errors": _errors(e)},
            ) from e

    def validate_entity(self) -> None:
        """Re-run field validation on the current attribute values."""
        try:
            type(self).model_validate(self.model_dump())
        except PydanticValidationError as e:
            raise ValidationError(
                f"{self.entity_type.value} validation failed",
                details={"entity": self.entity_type.value, "errors": _errors(e)},
            ) from e

    # -------------------------------------------------------------------
    # Attribute metadata
    # -------------------------------------------------------------------

    @classmethod
    def attribute_name(cls, field_name: str) -> str:
        return cls.model_fields[field_name].alias or field_name

    @classmethod
    def attribute_names(cls) -> frozenset[str]:
        return frozenset(cls.attribute_name(name) for name in cls.model_fields)

    @classmethod
    def projection_attributes(cls, source: str | None = None) -> frozenset[str]:
        """Index attributes this entity may project, optionally only those fed by `source`."""
        return frozenset(
            p.attribute for p in cls.projections if source is None or source in p.sources
        )

    # -------------------------------------------------------------------
    # Partial updates
    # -------------------------------------------------------------------

    @classmethod
    def parse_update(cls, changes: Mapping[str, Any] | EntityUpdate) -> EntityUpdate:
        if isinstance(changes, cls.update_model):
            update = changes
        else:
            if isinstance(changes, EntityUpdate):
                raise ValidationError(
                    f"{type(changes).__name__} cannot update a {cls.entity_type.value}"
                )
            try:
                update = cls.update_model.model_validate(dict(changes))
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid {cls.entity_type.value} update",
                    details={"entity": cls.entity_type.value, "errors": _errors(e)},
                ) from e
        if not update.model_fields_set:
            raise ValidationError(f"{cls.entity_type.value} update changes nothing")
        return update

    @classmethod
    def item_changes(cls, update: EntityUpdate) -> ItemChanges:
        """Translate a validated update into engine changes, re-projecting index keys."""
        fields = update.model_fields_set
        dumped = update.model_dump(mode="json", by_alias=True, include=fields)
        changes = ItemChanges()

        for name in sorted(fields):
            attribute = cls.attribute_name(name)
            if dumped[attribute] is not None:
                changes.set[attribute] = dumped[attribute]
                continue
            entity_field = cls.model_fields[name]
            if entity_field.is_required() or entity_field.default is not None:
                raise ValidationError(
                    f"{attribute} is required and cannot be removed",
                    details={"entity": cls.entity_type.value, "attribute": attribute},
                )
            changes.remove.append(attribute)

        values = {name: getattr(update, name) for name in fields}
        for projection in cls.projections:
            touched = fields.intersection(projection.sources)
            if not touched:
                continue
            if len(touched) != len(projection.sources):
                raise ValidationError(
                    f"{', '.join(projection.sources)} must be updated together",
                    details={"entity": cls.entity_type.value},
                )
            key = projection.key_for(values)
            if key is None:
                changes.remove.append(projection.attribute)
            else:
                changes.set[projection.attribute] = key
        return changes


# ============================================================================
# User
# ============================================================================


class Address(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    street1: str
    street2: str | None = None
    city: str
    state: str
    postal_code: str
    country: str


class KycDocument(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    document_type: str = Field(alias="type")
    status: str
    uploaded_at: Timestamp
    verified_at: Timestamp | None = None
    url: str | None = None


class KycDetails(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    status: KycStatus
    provider: str | None = None
    verification_id: str | None = None
    verified_at: Timestamp | None = None
    documents: list[KycDocument] | None = None


class UserUpdate(EntityUpdate):
    email: EmailAddress | None = None
    phone_number: PhoneNumber | None = None
    first_name: PersonName | None = None
    last_name: PersonName | None = None
    clkk_tag: UserTag | None = None
    kyc_status: KycStatus | None = None
    kyc_details: KycDetails | None = None
    profile_image_url: str | None = None
    date_of_birth: date | None = None
    address: Address | None = None
    metadata: dict[str, Any] | None = None


class User(EntityModel):
    """
    A platform user.

    Keyed by `USER#<id>` / `USER#<id>`. Looked up by external identity,
    email and tag (all unique by contract) and listed by KYC status.
    """

    entity_type: ClassVar[EntityType] = EntityType.USER
    update_model: ClassVar[type[EntityUpdate]] = UserUpdate
    projections: ClassVar[tuple[IndexProjection, ...]] = (
        IndexProjection(
            EXTERNAL_ID_KEY, ("external_provider", "external_id"), user_external_id_key
        ),
        IndexProjection(EMAIL_KEY, ("email",), user_email_key),
        IndexProjection(TAG_KEY, ("clkk_tag",), user_tag_key),
        IndexProjection(TYPE_STATUS_KEY, ("kyc_status",), user_kyc_status_key),
        IndexProjection(TIME_SORT_KEY, ("created_at",), user_time_sort_key),
    )

    id: Identifier = Field(default_factory=lambda: new_id("user"))
    external_provider: ExternalProvider = ExternalProvider.CLERK
    external_id: Identifier
    email: EmailAddress
    phone_number: PhoneNumber | None = None
    first_name: PersonName | None = None
    last_name: PersonName | None = None
    clkk_tag: UserTag | None = None
    kyc_status: KycStatus = KycStatus.NOT_STARTED
    kyc_details: KycDetails | None = None
    profile_image_url: str | None = None
    date_of_birth: date | None = None
    address: Address | None = None
    metadata: dict[str, Any] | None = None

    def primary_key(self) -> StoreKey:
        return user_key(self.id)

    def is_kyc_verified(self) -> bool:
        return self.kyc_status == KycStatus.APPROVED

    def is_profile_complete(self) -> bool:
        return all(
            (self.first_name, self.last_name, self.phone_number, self.date_of_birth, self.address)
        )

    @classmethod
    def from_input(
        cls,
        external_id: str,
        email: str,
        first_name: str | None = None,
        last_name: str | None = None,
        phone_number: str | None = None,
        external_provider: ExternalProvider = ExternalProvider.CLERK,
    ) -> "User":
        """Build a new user from caller input, raising ValidationError on bad input."""
        try:
            return cls(
                external_id=external_id,
                email=email,
                first_name=first_name,
                last_name=last_name,
                phone_number=phone_number,
                external_provider=external_provider,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "USER validation failed", details={"entity": "USER", "errors": _errors(e)}
            ) from e


# ============================================================================
# Wallet
# ============================================================================


class WalletUpdate(EntityUpdate):
    status: WalletStatus | None = None
    wallet_type: WalletType | None = None
    name: ShortText | None = None


class Wallet(EntityModel):
    """A user's wallet. `balance` is in minor units and only moves through transactions."""

    entity_type: ClassVar[EntityType] = EntityType.WALLET
    update_model: ClassVar[type[EntityUpdate]] = WalletUpdate
    projections: ClassVar[tuple[IndexProjection, ...]] = (
        IndexProjection(TYPE_STATUS_KEY, ("status",), wallet_status_key),
        IndexProjection(TIME_SORT_KEY, ("created_at",), wallet_time_sort_key),
    )

    id: Identifier = Field(default_factory=lambda: new_id("wallet"))
    user_id: Identifier
    currency: Currency = Currency.USD
    balance: int = Field(default=0, ge=0)
    wallet_type: WalletType = WalletType.PERSONAL
    status: WalletStatus = WalletStatus.ACTIVE
    name: ShortText | None = None

    def primary_key(self) -> StoreKey:
        return wallet_key(self.user_id, self.id)


# ============================================================================
# Transaction
# ============================================================================


class TransactionUpdate(EntityUpdate):
    status: TransactionStatus | None = None
    description: ShortText | None = None
    completed_at: Timestamp | None = None
    balance_before: int | None = None
    balance_after: int | None = None


class Transaction(EntityModel):
    """
    A wallet movement. `amount` is signed minor units: credits are
    positive, debits negative.

    Keyed by `USER#<userId>` / `TXN#<occurredAt>#<id>`, so a user's
    transactions sort chronologically inside the user partition.
    """

    entity_type: ClassVar[EntityType] = EntityType.TRANSACTION
    update_model: ClassVar[type[EntityUpdate]] = TransactionUpdate
    projections: ClassVar[tuple[IndexProjection, ...]] = (
        IndexProjection(TIME_SORT_KEY, ("occurred_at",), transaction_time_sort_key),
        IndexProjection(TYPE_STATUS_KEY, ("status",), transaction_status_key),
    )

    id: Identifier = Field(default_factory=lambda: new_id("txn"))
    user_id: Identifier
    wallet_id: Identifier
    amount: int
    currency: Currency = Currency.USD
    transaction_type: TransactionType
    status: TransactionStatus = TransactionStatus.PENDING
    description: ShortText | None = None
    sender_id: str | None = None
    receiver_id: str | None = None
    balance_before: int | None = None
    balance_after: int | None = None
    occurred_at: Timestamp = Field(default_factory=utc_now)
    completed_at: Timestamp | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: int) -> int:
        if v == 0:
            raise ValueError("amount must not be zero")
        return v

    def primary_key(self) -> StoreKey:
        return transaction_key(self.user_id, self.occurred_at, self.id)
