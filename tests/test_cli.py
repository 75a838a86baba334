"""
Tests for the command-line helpers that do not need a running service.
"""

import httpx
from typer.testing import CliRunner

from echomint_registry.cli import _describe_http_error, app, format_event
from echomint_registry.models import (
    ApprovalForAll,
    EventRecord,
    Minted,
    MoodState,
    MoodUpdated,
    Transfer,
)

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20

runner = CliRunner()


def _http_error(status_code: int, body) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://localhost:8000/tokens/0/transfer")
    response = httpx.Response(status_code, json=body, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


class TestFormatEvent:
    def test_mint_transfer(self):
        record = EventRecord(
            seq=0, timestamp=0, event=Transfer(from_=None, to=ALICE, token_id=3)
        )
        line = format_event(record)

        assert "#0 Transfer" in line
        assert f"token 3: mint -> {ALICE}" in line

    def test_other_events(self):
        minted = EventRecord(seq=1, timestamp=0, event=Minted(token_id=3, owner=ALICE, coin="SOL"))
        mood = EventRecord(
            seq=2, timestamp=0, event=MoodUpdated(token_id=3, new_mood=MoodState.VOLATILE)
        )
        revoked = EventRecord(
            seq=3, timestamp=0,
            event=ApprovalForAll(owner=ALICE, operator=BOB, approved=False),
        )

        assert "(SOL)" in format_event(minted)
        assert format_event(mood).endswith("token 3: Volatile")
        assert f"revoked operator {BOB}" in format_event(revoked)

    def test_record_round_trips_through_json(self):
        record = EventRecord(
            seq=5, timestamp=10, event=Transfer(from_=ALICE, to=BOB, token_id=1)
        )
        data = record.to_json_dict()

        assert data["event"]["from"] == ALICE
        assert EventRecord.model_validate(data) == record


class TestDescribeHttpError:
    def test_registry_error_kind(self):
        error = _http_error(403, {"detail": {"error": "NotApproved"}})
        assert _describe_http_error(error) == "HTTP 403 (NotApproved)"

    def test_plain_detail(self):
        error = _http_error(400, {"detail": "The zero identity cannot act"})
        assert _describe_http_error(error) == "HTTP 400 (The zero identity cannot act)"

    def test_validation_detail(self):
        error = _http_error(422, {"detail": [{"loc": ["body", "to"]}]})
        assert _describe_http_error(error) == "HTTP 422"


class TestAnalyzeCommand:
    def test_prints_mood(self):
        result = runner.invoke(
            app, ["analyze", "SOL", "--price-change", "12", "--sentiment", "0.3"]
        )

        assert result.exit_code == 0
        assert "SOL mood: Bullish (confidence 60%)" in result.output

    def test_apply_requires_caller(self):
        result = runner.invoke(
            app,
            ["analyze", "SOL", "--price-change", "12", "--sentiment", "0.3", "--apply", "0"],
            env={"ECHOMINT_CALLER": None},
        )

        assert result.exit_code == 1
        assert "--caller is required" in result.output

    def test_out_of_range_sentiment_is_a_usage_error(self):
        result = runner.invoke(
            app, ["analyze", "SOL", "--price-change", "3", "--sentiment", "1.5"]
        )

        assert result.exit_code == 2
        assert "Invalid value" in result.output

    def test_out_of_range_confidence_is_a_usage_error(self):
        result = runner.invoke(
            app,
            ["analyze", "SOL", "--price-change", "3", "--sentiment-confidence", "-0.1"],
        )

        assert result.exit_code == 2
        assert "Invalid value" in result.output
