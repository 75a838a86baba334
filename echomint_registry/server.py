"""
FastAPI server for the EchoMint registry service.

This module exposes every registry operation over HTTP and streams committed
events via Server-Sent Events. The acting identity is taken from the
``X-Caller`` header, standing in for the host's authenticated caller.
"""

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from . import __version__
from .config import Settings, get_settings
from .models import (
    ZERO_IDENTITY,
    Err,
    Event,
    EventRecord,
    Identity,
    MoodState,
    RegistryError,
    Result,
    TokenMetadata,
    parse_identity,
)
from .observability import setup_logging
from .store import RegistryStore

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[RegistryError, int] = {
    RegistryError.NOT_OWNER: status.HTTP_403_FORBIDDEN,
    RegistryError.NOT_APPROVED: status.HTTP_403_FORBIDDEN,
    RegistryError.NOT_ALLOWED: status.HTTP_403_FORBIDDEN,
    RegistryError.TOKEN_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RegistryError.TOKEN_ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    RegistryError.TRANSFER_TO_ZERO_ADDRESS: status.HTTP_400_BAD_REQUEST,
}


# API Request/Response Schemas
class MintRequest(BaseModel):
    """Payload for mint requests."""

    to: Identity = Field(..., description="Identity receiving the token")
    coin: str = Field(..., min_length=1, description="Coin symbol, e.g. 'SOL'")
    mood: MoodState = Field(MoodState.NEUTRAL, description="Initial mood")


class MoodUpdateRequest(BaseModel):
    mood: MoodState = Field(..., description="The new mood tag")


class ImageUpdateRequest(BaseModel):
    image_url: str = Field(..., min_length=1, description="The new image reference")


class TransferRequest(BaseModel):
    to: Identity = Field(..., description="Identity receiving the token")


class ApproveRequest(BaseModel):
    to: Identity = Field(..., description="Identity allowed to transfer the token")


class OperatorApprovalRequest(BaseModel):
    approved: bool = Field(..., description="Grant (true) or revoke (false)")


class OperationResponse(BaseModel):
    """Response model for mutating endpoints."""

    value: Any = Field(None, description="Operation result, e.g. a minted token id")
    events: list[Event] = Field(default_factory=list, description="Emitted events")


class OwnerResponse(BaseModel):
    token_id: int
    owner: str | None


class ApprovedResponse(BaseModel):
    token_id: int
    approved: str | None


class SupplyResponse(BaseModel):
    total_supply: int


class BalanceResponse(BaseModel):
    owner: str
    balance: int


class TokensResponse(BaseModel):
    owner: str
    tokens: list[int]


class OperatorResponse(BaseModel):
    owner: str
    operator: str
    approved: bool


class EventsResponse(BaseModel):
    events: list[EventRecord]


def caller_identity(x_caller: str = Header(..., description="Acting identity")) -> str:
    """Resolve the acting identity from the ``X-Caller`` header."""
    try:
        caller = parse_identity(x_caller)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if caller == ZERO_IDENTITY:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The zero identity cannot act",
        )
    return caller


def path_identity(value: str) -> str:
    try:
        return parse_identity(value)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _unwrap(result: Result) -> OperationResponse:
    """Turn a registry result into a response or raise the mapped HTTP error."""
    if isinstance(result, Err):
        raise HTTPException(
            status_code=ERROR_STATUS[result.error],
            detail={"error": result.error.value},
        )
    return OperationResponse(value=result.value, events=result.events)


def create_app(store: RegistryStore) -> FastAPI:
    """
    Create a FastAPI application with the given registry store.

    Args:
        store: The RegistryStore instance to use for the application

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Lifespan context manager for FastAPI application."""
        if store.curator == ZERO_IDENTITY:
            logger.warning("No curator configured, metadata updates are disabled")
        yield

    app = FastAPI(
        title="EchoMint Registry",
        description="NFT ownership registry with curated mood metadata",
        version=__version__,
        lifespan=lifespan,
    )

    @app.get("/")
    async def root() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "echomint-registry"}

    # MARK: - Tokens

    @app.post("/tokens", status_code=status.HTTP_201_CREATED)
    async def mint(
        request: MintRequest, caller: str = Depends(caller_identity)
    ) -> OperationResponse:
        """
        Mint the next token to ``request.to``.

        Returns:
            The new token id and the Transfer and Minted events
        """
        return _unwrap(await store.mint(caller, request.to, request.coin, request.mood))

    @app.get("/tokens/{token_id}")
    async def get_metadata(token_id: int) -> TokenMetadata:
        metadata = await store.get_metadata(token_id)
        if metadata is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"error": RegistryError.TOKEN_NOT_FOUND.value},
            )
        return metadata

    @app.get("/tokens/{token_id}/owner")
    async def owner_of(token_id: int) -> OwnerResponse:
        return OwnerResponse(token_id=token_id, owner=await store.owner_of(token_id))

    @app.get("/tokens/{token_id}/approved")
    async def get_approved(token_id: int) -> ApprovedResponse:
        return ApprovedResponse(
            token_id=token_id, approved=await store.get_approved(token_id)
        )

    @app.put("/tokens/{token_id}/mood")
    async def update_mood(
        token_id: int, request: MoodUpdateRequest, caller: str = Depends(caller_identity)
    ) -> OperationResponse:
        """Set a token's mood. Curator only."""
        return _unwrap(await store.update_mood(caller, token_id, request.mood))

    @app.put("/tokens/{token_id}/image")
    async def update_image(
        token_id: int, request: ImageUpdateRequest, caller: str = Depends(caller_identity)
    ) -> OperationResponse:
        """Set a token's image reference. Curator only."""
        return _unwrap(await store.update_image(caller, token_id, request.image_url))

    @app.post("/tokens/{token_id}/transfer")
    async def transfer(
        token_id: int, request: TransferRequest, caller: str = Depends(caller_identity)
    ) -> OperationResponse:
        return _unwrap(await store.transfer(caller, request.to, token_id))

    @app.post("/tokens/{token_id}/approve")
    async def approve(
        token_id: int, request: ApproveRequest, caller: str = Depends(caller_identity)
    ) -> OperationResponse:
        return _unwrap(await store.approve(caller, request.to, token_id))

    @app.put("/operators/{operator}")
    async def set_approval_for_all(
        operator: str,
        request: OperatorApprovalRequest,
        caller: str = Depends(caller_identity),
    ) -> OperationResponse:
        """Grant or revoke an operator over all of the caller's tokens."""
        return _unwrap(
            await store.set_approval_for_all(
                caller, path_identity(operator), request.approved
            )
        )

    # MARK: - Accounts

    @app.get("/supply")
    async def total_supply() -> SupplyResponse:
        return SupplyResponse(total_supply=await store.total_supply())

    @app.get("/accounts/{owner}/balance")
    async def balance_of(owner: str) -> BalanceResponse:
        owner = path_identity(owner)
        return BalanceResponse(owner=owner, balance=await store.balance_of(owner))

    @app.get("/accounts/{owner}/tokens")
    async def tokens_of_owner(owner: str) -> TokensResponse:
        owner = path_identity(owner)
        return TokensResponse(owner=owner, tokens=await store.tokens_of_owner(owner))

    @app.get("/accounts/{owner}/operators/{operator}")
    async def is_approved_for_all(owner: str, operator: str) -> OperatorResponse:
        owner, operator = path_identity(owner), path_identity(operator)
        return OperatorResponse(
            owner=owner,
            operator=operator,
            approved=await store.is_approved_for_all(owner, operator),
        )

    # MARK: - Events

    @app.get("/events")
    async def events(since: int = Query(0, ge=0)) -> EventsResponse:
        return EventsResponse(events=await store.events(since))

    @app.get("/events/stream")
    async def stream_events(since: int | None = Query(None, ge=0)) -> StreamingResponse:
        """
        Stream committed events via Server-Sent Events.

        With ``since`` the journal is replayed from that position before live
        events follow; without it only events committed after connecting are
        sent.

        Returns:
            StreamingResponse with text/event-stream content type
        """

        async def event_generator() -> AsyncGenerator[str, None]:
            """Generate SSE events for committed registry events."""
            try:
                async with store.stream(since) as event_stream:
                    async for record in event_stream:
                        data = json.dumps(record.to_json_dict())
                        yield f"id: {record.seq}\nevent: {record.event.kind}\ndata: {data}\n\n"
            except Exception as e:
                logger.error("Event stream failed: %s", e, exc_info=True)
                error_data = json.dumps({"error": str(e)})
                yield f"event: error\ndata: {error_data}\n\n"

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Headers": "*",
            },
        )

    return app


def build_app(settings: Settings | None = None) -> FastAPI:
    """Create the application from settings."""
    settings = settings or get_settings()
    store = RegistryStore(
        curator=settings.curator,
        compact_owner_index=settings.compact_owner_index,
        journal_retention=settings.journal_retention,
    )
    return create_app(store)


# Default app instance for uvicorn
app = build_app()


def main() -> None:
    """Main entry point for the server."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    uvicorn.run(
        "echomint_registry.server:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
