"""
Command-line interface tools for the EchoMint registry service.
"""

import asyncio
import json
from collections.abc import Coroutine
from datetime import datetime
from typing import Any, Optional

import httpx
import typer
from httpx_sse import ServerSentEvent, aconnect_sse

from .models import (
    Approval,
    ApprovalForAll,
    EventRecord,
    Minted,
    MoodState,
    MoodUpdated,
    TokenMetadata,
    Transfer,
)
from .mood import MarketSnapshot, SentimentReading, calculate_mood, should_update_mood

DEFAULT_BASE_URL = "http://localhost:8000"

app = typer.Typer(help="EchoMint registry CLI tools")

BaseUrlOption = typer.Option(
    DEFAULT_BASE_URL, "--url", "-u", help="Base URL of the EchoMint service"
)
CallerOption = typer.Option(
    ..., "--caller", "-c", envvar="ECHOMINT_CALLER", help="Identity to act as"
)


# MARK: - Mutations


@app.command()
def mint(
    to: str = typer.Argument(..., help="Identity receiving the token"),
    coin: str = typer.Argument(..., help="Coin symbol, e.g. SOL"),
    mood: MoodState = typer.Option(MoodState.NEUTRAL, "--mood", "-m", help="Initial mood"),
    caller: str = CallerOption,
    base_url: str = BaseUrlOption,
) -> None:
    """Mint a new token."""

    async def _mint() -> None:
        result = await _send(
            base_url, caller, "POST", "/tokens",
            {"to": to, "coin": coin, "mood": mood.value},
        )
        print(f"Minted token {result['value']}")

    _run_with_error_handling(_mint(), base_url)


@app.command()
def transfer(
    token_id: int = typer.Argument(..., help="Token to transfer"),
    to: str = typer.Argument(..., help="New owner"),
    caller: str = CallerOption,
    base_url: str = BaseUrlOption,
) -> None:
    """Transfer a token to another identity."""

    async def _transfer() -> None:
        await _send(base_url, caller, "POST", f"/tokens/{token_id}/transfer", {"to": to})
        print(f"Token {token_id} transferred to {to}")

    _run_with_error_handling(_transfer(), base_url)


@app.command()
def approve(
    token_id: int = typer.Argument(..., help="Token to approve"),
    to: str = typer.Argument(..., help="Identity allowed to transfer it"),
    caller: str = CallerOption,
    base_url: str = BaseUrlOption,
) -> None:
    """Approve an identity to transfer one token."""

    async def _approve() -> None:
        await _send(base_url, caller, "POST", f"/tokens/{token_id}/approve", {"to": to})
        print(f"Token {token_id} approved for {to}")

    _run_with_error_handling(_approve(), base_url)


@app.command()
def approve_all(
    operator: str = typer.Argument(..., help="Operator identity"),
    revoke: bool = typer.Option(False, "--revoke", help="Revoke instead of grant"),
    caller: str = CallerOption,
    base_url: str = BaseUrlOption,
) -> None:
    """Grant or revoke an operator over all of your tokens."""

    async def _approve_all() -> None:
        await _send(
            base_url, caller, "PUT", f"/operators/{operator}", {"approved": not revoke}
        )
        print(f"Operator {operator} {'revoked' if revoke else 'approved'}")

    _run_with_error_handling(_approve_all(), base_url)


@app.command()
def set_mood(
    token_id: int = typer.Argument(..., help="Token to update"),
    mood: MoodState = typer.Argument(..., help="The new mood"),
    caller: str = CallerOption,
    base_url: str = BaseUrlOption,
) -> None:
    """Set a token's mood (curator only)."""

    async def _set_mood() -> None:
        await _send(
            base_url, caller, "PUT", f"/tokens/{token_id}/mood", {"mood": mood.value}
        )
        print(f"Mood of token {token_id} set to: {mood.value}")

    _run_with_error_handling(_set_mood(), base_url)


@app.command()
def set_image(
    token_id: int = typer.Argument(..., help="Token to update"),
    image_url: str = typer.Argument(..., help="The new image reference"),
    caller: str = CallerOption,
    base_url: str = BaseUrlOption,
) -> None:
    """Set a token's image reference (curator only)."""

    async def _set_image() -> None:
        await _send(
            base_url, caller, "PUT", f"/tokens/{token_id}/image", {"image_url": image_url}
        )
        print(f"Image of token {token_id} set to: {image_url}")

    _run_with_error_handling(_set_image(), base_url)


# MARK: - Queries


@app.command()
def show(
    token_id: int = typer.Argument(..., help="Token to show"),
    base_url: str = BaseUrlOption,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output raw JSON"),
) -> None:
    """Show a token's owner and metadata."""

    async def _show() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get(f"/tokens/{token_id}")
            response.raise_for_status()
            owner_response = await client.get(f"/tokens/{token_id}/owner")
            owner_response.raise_for_status()

        if json_output:
            result = {"owner": owner_response.json()["owner"], "metadata": response.json()}
            print(json.dumps(result, indent=2))
            return

        metadata = TokenMetadata.model_validate(response.json())
        print(metadata.name)
        print(f"  owner:   {owner_response.json()['owner']}")
        print(f"  mood:    {metadata.mood.value}")
        print(f"  image:   {metadata.image_url}")
        print(f"  updated: {_format_timestamp(metadata.last_updated)}")

    _run_with_error_handling(_show(), base_url)


@app.command()
def tokens(
    owner: str = typer.Argument(..., help="Owner identity"),
    base_url: str = BaseUrlOption,
) -> None:
    """List the tokens held by an identity."""

    async def _tokens() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get(f"/accounts/{owner}/tokens")
            response.raise_for_status()

        token_ids = response.json()["tokens"]
        if not token_ids:
            print("No tokens")
        for token_id in token_ids:
            print(token_id)

    _run_with_error_handling(_tokens(), base_url)


@app.command()
def supply(base_url: str = BaseUrlOption) -> None:
    """Print the number of tokens ever minted."""

    async def _supply() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get("/supply")
            response.raise_for_status()
        print(response.json()["total_supply"])

    _run_with_error_handling(_supply(), base_url)


# MARK: - Events


@app.command()
def events(
    since: int = typer.Option(0, "--since", "-s", help="First journal position"),
    base_url: str = BaseUrlOption,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output raw JSON"),
) -> None:
    """Print committed registry events."""

    async def _events() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get("/events", params={"since": since})
            response.raise_for_status()

        result = response.json()
        if json_output:
            print(json.dumps(result, indent=2))
            return

        for raw in result["events"]:
            print(format_event(EventRecord.model_validate(raw)))

    _run_with_error_handling(_events(), base_url)


@app.command()
def stream(
    since: Optional[int] = typer.Option(None, "--since", "-s", help="Replay from position"),
    base_url: str = BaseUrlOption,
) -> None:
    """Stream registry events in real-time."""

    async def _stream() -> None:
        print(f"Streaming from {base_url}/events/stream... (Ctrl+C to stop)")
        params = {"since": since} if since is not None else None

        async with httpx.AsyncClient(timeout=None) as client:
            async with aconnect_sse(
                client, "GET", f"{base_url}/events/stream", params=params
            ) as event_source:
                async for sse in event_source.aiter_sse():
                    _handle_sse_event(sse)

    _run_with_error_handling(_stream(), base_url)


# MARK: - Mood analysis


@app.command()
def analyze(
    symbol: str = typer.Argument(..., help="Coin symbol"),
    price_change: float = typer.Option(..., "--price-change", help="24h price change in percent"),
    sentiment: float = typer.Option(
        0.0, "--sentiment", min=-1.0, max=1.0, help="Sentiment score in [-1, 1]"
    ),
    sentiment_confidence: float = typer.Option(
        0.0, "--sentiment-confidence", min=0.0, max=1.0,
        help="Sentiment confidence in [0, 1]",
    ),
    volatility: float = typer.Option(0.0, "--volatility", help="Volatility score"),
    volume: float = typer.Option(0.0, "--volume", help="24h volume"),
    apply_to: Optional[int] = typer.Option(
        None, "--apply", help="Push the mood to this token when it should change"
    ),
    caller: Optional[str] = typer.Option(
        None, "--caller", "-c", envvar="ECHOMINT_CALLER", help="Curator identity for --apply"
    ),
    base_url: str = BaseUrlOption,
) -> None:
    """Derive a mood from market data and optionally apply it to a token."""
    analysis = calculate_mood(
        MarketSnapshot(
            symbol=symbol, price_change_percent_24h=price_change, volume_24h=volume
        ),
        SentimentReading(
            symbol=symbol, score=sentiment, confidence=sentiment_confidence
        ),
        volatility,
    )
    print(f"{symbol} mood: {analysis.mood.value} (confidence {analysis.confidence:.0%})")
    if apply_to is None:
        return
    if caller is None:
        print("Error: --caller is required with --apply")
        raise typer.Exit(1)

    async def _apply() -> None:
        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get(f"/tokens/{apply_to}")
            response.raise_for_status()
        current = TokenMetadata.model_validate(response.json())

        if not should_update_mood(current.mood, analysis.mood, analysis.confidence):
            print(f"Token {apply_to} keeps mood {current.mood.value}")
            return

        await _send(
            base_url, caller, "PUT", f"/tokens/{apply_to}/mood",
            {"mood": analysis.mood.value},
        )
        print(f"Mood of token {apply_to} set to: {analysis.mood.value}")

    _run_with_error_handling(_apply(), base_url)


# MARK: - Private Helpers


def _format_timestamp(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def format_event(record: EventRecord) -> str:
    """Format an event record as one line."""
    event = record.event
    time_str = datetime.fromtimestamp(record.timestamp / 1000).strftime("%H:%M:%S")
    prefix = f"{time_str} #{record.seq} {event.kind}"

    if isinstance(event, Transfer):
        return f"{prefix} token {event.token_id}: {event.from_ or 'mint'} -> {event.to}"
    if isinstance(event, Minted):
        return f"{prefix} token {event.token_id} ({event.coin}) to {event.owner}"
    if isinstance(event, MoodUpdated):
        return f"{prefix} token {event.token_id}: {event.new_mood.value}"
    if isinstance(event, Approval):
        return f"{prefix} token {event.token_id}: {event.owner} approved {event.approved}"
    if isinstance(event, ApprovalForAll):
        state = "granted" if event.approved else "revoked"
        return f"{prefix} {event.owner} {state} operator {event.operator}"
    return prefix


async def _send(
    base_url: str, caller: str, method: str, path: str, payload: dict[str, Any]
) -> dict[str, Any]:
    """Send a mutating request as ``caller`` and return the decoded response."""
    async with httpx.AsyncClient(base_url=base_url) as client:
        response = await client.request(
            method, path, json=payload, headers={"X-Caller": caller}
        )
        response.raise_for_status()
        return response.json()


def _handle_sse_event(sse: ServerSentEvent) -> None:
    """Handle a single SSE event."""
    try:
        # Handle error events from server
        if sse.event == "error":
            error_data = json.loads(sse.data)
            print(f"Server error: {error_data.get('error', 'Unknown error')}")
            return

        record = EventRecord.model_validate_json(sse.data)
        print(format_event(record))

    except ValueError as e:
        print(f"Warning: Could not parse SSE data: {sse.data} - {e}")


def _describe_http_error(e: httpx.HTTPStatusError) -> str:
    """HTTP status plus the registry error kind when the server sent one."""
    message = f"HTTP {e.response.status_code}"
    try:
        detail = e.response.json().get("detail")
    except ValueError:
        return message
    if isinstance(detail, dict) and "error" in detail:
        return f"{message} ({detail['error']})"
    if isinstance(detail, str):
        return f"{message} ({detail})"
    return message


def _run_with_error_handling(coro: Coroutine[Any, Any, Any], base_url: str) -> None:
    """Run an async coroutine with standardized error handling."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        print("\nStopped")
        raise typer.Exit(0)
    except httpx.ConnectError:
        print(f"Error: Could not connect to {base_url}")
        raise typer.Exit(1)
    except httpx.HTTPStatusError as e:
        print(f"Error: {_describe_http_error(e)}")
        raise typer.Exit(1)
    except Exception as e:
        error_msg = str(e) if str(e) else f"Unknown error of type {type(e).__name__}"
        print(f"Error: {error_msg}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
