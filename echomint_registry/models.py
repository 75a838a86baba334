"""
Shared data models for the EchoMint registry.

This module defines the core domain models used across multiple layers
of the application (registry state machine, store, CLI, API): identities,
token metadata, the events emitted on state change and the result values
returned by every mutating operation.
"""

from enum import Enum
from typing import Annotated, Any, Generic, Literal, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    ValidationError,
)

T = TypeVar("T")

Identity = Annotated[
    str,
    StringConstraints(
        strip_whitespace=True, to_lower=True, pattern=r"^0x[0-9a-fA-F]{40}$"
    ),
]
TokenId = Annotated[int, Field(ge=0)]

ZERO_IDENTITY = "0x" + "00" * 20
U64_MAX = 2**64 - 1
PLACEHOLDER_IMAGE_URL = "ipfs://placeholder"

_identity_adapter: TypeAdapter[str] = TypeAdapter(Identity)


def parse_identity(value: str) -> str:
    """
    Validate and normalize an account identifier.

    Raises:
        ValueError: if the value is not ``0x`` followed by 40 hex digits
    """
    try:
        return _identity_adapter.validate_python(value)
    except ValidationError as e:
        raise ValueError(f"Invalid identity: {value!r}") from e


class MoodState(str, Enum):
    """Mood tag carried by every token. Opaque to the registry."""

    BULLISH = "Bullish"
    BEARISH = "Bearish"
    NEUTRAL = "Neutral"
    VOLATILE = "Volatile"
    POSITIVE_SENTIMENT = "PositiveSentiment"
    NEGATIVE_SENTIMENT = "NegativeSentiment"


class RegistryError(str, Enum):
    """Closed set of outcomes a mutating operation can be rejected with."""

    NOT_OWNER = "NotOwner"
    NOT_APPROVED = "NotApproved"
    TOKEN_NOT_FOUND = "TokenNotFound"
    TOKEN_ALREADY_EXISTS = "TokenAlreadyExists"
    NOT_ALLOWED = "NotAllowed"  # reserved, no operation returns it yet
    TRANSFER_TO_ZERO_ADDRESS = "TransferToZeroAddress"


def token_name(coin: str, token_id: int) -> str:
    """Display name derived from the coin symbol and token id."""
    return f"{coin} Echo #{token_id:03d}"


class TokenMetadata(BaseModel):
    """Mutable per-token metadata. Timestamps are milliseconds."""

    name: str = Field(..., description="Display name, e.g. 'SOL Echo #007'")
    coin: str = Field(..., description="Coin symbol the token echoes")
    mood: MoodState = Field(..., description="Current mood tag")
    image_url: str = Field(PLACEHOLDER_IMAGE_URL, description="Image reference")
    created_at: int = Field(..., description="Mint time")
    last_updated: int = Field(..., description="Time of the last metadata change")


# MARK: - Events


class Transfer(BaseModel):
    """Ownership change. ``from`` is None on mint."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["Transfer"] = "Transfer"
    from_: str | None = Field(None, alias="from")
    to: str | None
    token_id: int


class Approval(BaseModel):
    kind: Literal["Approval"] = "Approval"
    owner: str
    approved: str
    token_id: int


class ApprovalForAll(BaseModel):
    kind: Literal["ApprovalForAll"] = "ApprovalForAll"
    owner: str
    operator: str
    approved: bool


class Minted(BaseModel):
    kind: Literal["Minted"] = "Minted"
    token_id: int
    owner: str
    coin: str


class MoodUpdated(BaseModel):
    kind: Literal["MoodUpdated"] = "MoodUpdated"
    token_id: int
    new_mood: MoodState


Event = Annotated[
    Union[Transfer, Approval, ApprovalForAll, Minted, MoodUpdated],
    Field(discriminator="kind"),
]


class EventRecord(BaseModel):
    """An event as committed to the store's journal."""

    seq: int = Field(..., description="Gapless position in the journal")
    timestamp: int = Field(..., description="Time of the emitting operation")
    event: Event

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# MARK: - Results


class Ok(BaseModel, Generic[T]):
    """Successful outcome together with the events the operation emitted."""

    value: T
    events: list[Event] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return True


class Err(BaseModel):
    """Rejected outcome. Nothing was mutated and nothing was emitted."""

    error: RegistryError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok, Err]
