"""
Ownership, approval and metadata state machine for EchoMint tokens.

The registry is a plain synchronous object. It never reads ambient context:
the acting identity (``caller``) and the current time (``now``, milliseconds)
are passed to every mutating operation by whoever hosts it. Each operation
checks authorization and existence before touching any state, so a rejected
call returns an ``Err`` with no mutation and no events.

The registry performs no locking. Hosts that serve concurrent callers must
serialize access through a single exclusive boundary (see ``RegistryStore``).
"""

import logging

from .models import (
    PLACEHOLDER_IMAGE_URL,
    U64_MAX,
    ZERO_IDENTITY,
    Approval,
    ApprovalForAll,
    Err,
    Minted,
    MoodState,
    MoodUpdated,
    Ok,
    RegistryError,
    Result,
    TokenMetadata,
    Transfer,
    token_name,
)

logger = logging.getLogger(__name__)


class Registry:
    """
    Aggregate of all ownership, approval and metadata state.

    Args:
        curator: Identity allowed to update mood and image of any token.
            Fixed for the lifetime of the registry.
        compact_owner_index: When False (the default) a transfer only
            decrements the previous owner's count and leaves its index
            slots untouched, so ``tokens_of_owner`` may report a stale id
            in place of one still owned. When True the last populated slot
            is moved into the vacated one first, keeping the index exact.
    """

    def __init__(self, curator: str, compact_owner_index: bool = False) -> None:
        self._curator = curator
        self._compact_owner_index = compact_owner_index
        self._total_supply = 0
        self._owners: dict[int, str] = {}
        self._owned_tokens: dict[tuple[str, int], int] = {}
        self._owned_count: dict[str, int] = {}
        self._metadata: dict[int, TokenMetadata] = {}
        self._token_approvals: dict[int, str] = {}
        self._operator_approvals: dict[tuple[str, str], bool] = {}

    @property
    def curator(self) -> str:
        return self._curator

    @property
    def compact_owner_index(self) -> bool:
        return self._compact_owner_index

    # MARK: - Minting

    def mint(
        self, caller: str, now: int, to: str, coin: str, initial_mood: MoodState
    ) -> Result:
        """
        Create the next token and assign it to ``to``. Any caller may mint.

        Returns:
            ``Ok`` with the new token id, or ``Err(TOKEN_ALREADY_EXISTS)`` if
            the next id is taken (only possible once the supply saturates)
        """
        token_id = self._total_supply
        if token_id in self._owners:
            return self._reject("mint", caller, token_id, RegistryError.TOKEN_ALREADY_EXISTS)

        self._metadata[token_id] = TokenMetadata(
            name=token_name(coin, token_id),
            coin=coin,
            mood=initial_mood,
            image_url=PLACEHOLDER_IMAGE_URL,
            created_at=now,
            last_updated=now,
        )
        self._owners[token_id] = to
        self._append_owned(to, token_id)
        self._total_supply = min(self._total_supply + 1, U64_MAX)

        logger.debug(
            "Minted %s token %d to %s", coin, token_id, to,
            extra={"token_id": token_id, "caller": caller},
        )
        return Ok(
            value=token_id,
            events=[
                Transfer(from_=None, to=to, token_id=token_id),
                Minted(token_id=token_id, owner=to, coin=coin),
            ],
        )

    # MARK: - Curator

    def update_mood(
        self, caller: str, now: int, token_id: int, new_mood: MoodState
    ) -> Result:
        """Replace the mood of a token. Curator only."""
        error = self._check_curator(caller, token_id)
        if error is not None:
            return self._reject("update_mood", caller, token_id, error)

        metadata = self._metadata[token_id]
        self._metadata[token_id] = metadata.model_copy(
            update={"mood": new_mood, "last_updated": now}
        )
        logger.debug(
            "Mood of token %d set to %s", token_id, new_mood.value,
            extra={"token_id": token_id, "caller": caller},
        )
        return Ok(value=None, events=[MoodUpdated(token_id=token_id, new_mood=new_mood)])

    def update_image(
        self, caller: str, now: int, token_id: int, new_image_url: str
    ) -> Result:
        """Replace the image reference of a token. Curator only, emits nothing."""
        error = self._check_curator(caller, token_id)
        if error is not None:
            return self._reject("update_image", caller, token_id, error)

        metadata = self._metadata[token_id]
        self._metadata[token_id] = metadata.model_copy(
            update={"image_url": new_image_url, "last_updated": now}
        )
        logger.debug(
            "Image of token %d set to %s", token_id, new_image_url,
            extra={"token_id": token_id, "caller": caller},
        )
        return Ok(value=None)

    # MARK: - Transfer & approval

    def transfer(self, caller: str, now: int, to: str, token_id: int) -> Result:
        """
        Move ``token_id`` to ``to``.

        The caller must be the owner, the token's single approval, or an
        operator approved for the owner. The single approval is cleared.
        """
        owner = self._owners.get(token_id)
        if owner is None:
            return self._reject("transfer", caller, token_id, RegistryError.TOKEN_NOT_FOUND)
        if not self._is_approved_or_owner(caller, owner, token_id):
            return self._reject("transfer", caller, token_id, RegistryError.NOT_APPROVED)
        if to == ZERO_IDENTITY:
            return self._reject(
                "transfer", caller, token_id, RegistryError.TRANSFER_TO_ZERO_ADDRESS
            )

        self._token_approvals.pop(token_id, None)
        self._remove_owned(owner, token_id)
        self._append_owned(to, token_id)
        self._owners[token_id] = to

        logger.debug(
            "Token %d transferred from %s to %s", token_id, owner, to,
            extra={"token_id": token_id, "caller": caller},
        )
        return Ok(value=None, events=[Transfer(from_=owner, to=to, token_id=token_id)])

    def approve(self, caller: str, now: int, to: str, token_id: int) -> Result:
        """
        Let ``to`` transfer ``token_id`` on the owner's behalf.

        Approving the zero identity clears the approval.
        """
        owner = self._owners.get(token_id)
        if owner is None:
            return self._reject("approve", caller, token_id, RegistryError.TOKEN_NOT_FOUND)
        if caller != owner and not self.is_approved_for_all(owner, caller):
            return self._reject("approve", caller, token_id, RegistryError.NOT_APPROVED)

        self._token_approvals[token_id] = to
        return Ok(
            value=None,
            events=[Approval(owner=owner, approved=to, token_id=token_id)],
        )

    def set_approval_for_all(
        self, caller: str, now: int, operator: str, approved: bool
    ) -> Result:
        """Grant or revoke ``operator`` authority over all of the caller's tokens."""
        self._operator_approvals[(caller, operator)] = approved
        return Ok(
            value=None,
            events=[ApprovalForAll(owner=caller, operator=operator, approved=approved)],
        )

    # MARK: - Queries

    def get_metadata(self, token_id: int) -> TokenMetadata | None:
        metadata = self._metadata.get(token_id)
        return metadata.model_copy() if metadata is not None else None

    def owner_of(self, token_id: int) -> str | None:
        return self._owners.get(token_id)

    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, owner: str) -> int:
        return self._owned_count.get(owner, 0)

    def get_approved(self, token_id: int) -> str | None:
        return self._token_approvals.get(token_id)

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        return self._operator_approvals.get((owner, operator), False)

    def tokens_of_owner(self, owner: str) -> list[int]:
        """Token ids in the owner's index slots ``0..balance_of(owner)``."""
        tokens = []
        for i in range(self.balance_of(owner)):
            token_id = self._owned_tokens.get((owner, i))
            if token_id is not None:
                tokens.append(token_id)
        return tokens

    # MARK: - Private Helpers

    def _check_curator(self, caller: str, token_id: int) -> RegistryError | None:
        if caller != self._curator:
            return RegistryError.NOT_OWNER
        if token_id not in self._metadata:
            return RegistryError.TOKEN_NOT_FOUND
        return None

    def _is_approved_or_owner(self, caller: str, owner: str, token_id: int) -> bool:
        return (
            caller == owner
            or self._token_approvals.get(token_id) == caller
            or self.is_approved_for_all(owner, caller)
        )

    def _append_owned(self, owner: str, token_id: int) -> None:
        count = self._owned_count.get(owner, 0)
        self._owned_tokens[(owner, count)] = token_id
        self._owned_count[owner] = count + 1

    def _remove_owned(self, owner: str, token_id: int) -> None:
        count = self._owned_count.get(owner, 0)
        if count == 0:
            return

        last = count - 1
        if self._compact_owner_index:
            for i in range(count):
                if self._owned_tokens.get((owner, i)) == token_id:
                    if i != last:
                        self._owned_tokens[(owner, i)] = self._owned_tokens[(owner, last)]
                    del self._owned_tokens[(owner, last)]
                    break

        self._owned_count[owner] = last

    def _reject(
        self, operation: str, caller: str, token_id: int, error: RegistryError
    ) -> Err:
        logger.info(
            "%s of token %d rejected: %s", operation, token_id, error.value,
            extra={"token_id": token_id, "caller": caller, "error_code": error.value},
        )
        return Err(error=error)
