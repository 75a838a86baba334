"""
Mood derivation from market data and sentiment.

The curator decides which mood a token should carry; this module holds the
rules it applies to a coin's 24h market snapshot, a sentiment reading and a
volatility score.
"""

import time

from pydantic import BaseModel, Field

from .models import MoodState

VOLATILITY_OVERRIDE = 50.0
VOLATILITY_MIXED = 30.0
STRONG_SENTIMENT = 0.6
SENTIMENT_CONFIDENCE = 0.7
PRICE_MOVE_PERCENT = 5.0
UPDATE_CONFIDENCE = 0.6


class MarketSnapshot(BaseModel):
    """24h market figures for one coin."""

    symbol: str
    price_change_percent_24h: float
    volume_24h: float = 0.0


class SentimentReading(BaseModel):
    """Aggregated community sentiment for one coin."""

    symbol: str
    score: float = Field(..., ge=-1.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)


class MoodFactors(BaseModel):
    price_change: float
    volatility: float
    sentiment: float
    volume: float


class MoodAnalysis(BaseModel):
    """Mood chosen for a coin and how sure the rules are about it."""

    symbol: str
    mood: MoodState
    confidence: float = Field(..., ge=0.0, le=1.0)
    factors: MoodFactors
    timestamp: int = Field(..., description="Analysis time in milliseconds")


def calculate_mood(
    market: MarketSnapshot,
    sentiment: SentimentReading,
    volatility: float,
    now: int | None = None,
) -> MoodAnalysis:
    """
    Pick a mood for a coin.

    Rules, first match wins: high volatility, then strong and confident
    sentiment, then a price move agreeing with sentiment, then a price move
    contradicting it (volatile or neutral), else neutral.
    """
    price_change = market.price_change_percent_24h
    score = sentiment.score

    if volatility > VOLATILITY_OVERRIDE:
        mood, confidence = MoodState.VOLATILE, min(1.0, volatility / 100)
    elif score > STRONG_SENTIMENT and sentiment.confidence > SENTIMENT_CONFIDENCE:
        mood, confidence = MoodState.POSITIVE_SENTIMENT, sentiment.confidence
    elif score < -STRONG_SENTIMENT and sentiment.confidence > SENTIMENT_CONFIDENCE:
        mood, confidence = MoodState.NEGATIVE_SENTIMENT, sentiment.confidence
    elif price_change > PRICE_MOVE_PERCENT and score > 0:
        mood, confidence = MoodState.BULLISH, min(1.0, price_change / 20)
    elif price_change < -PRICE_MOVE_PERCENT and score < 0:
        mood, confidence = MoodState.BEARISH, min(1.0, abs(price_change) / 20)
    elif abs(price_change) > PRICE_MOVE_PERCENT:
        # Price and sentiment disagree
        mood = MoodState.VOLATILE if volatility > VOLATILITY_MIXED else MoodState.NEUTRAL
        confidence = 0.6
    else:
        mood, confidence = MoodState.NEUTRAL, 0.7

    return MoodAnalysis(
        symbol=market.symbol,
        mood=mood,
        confidence=confidence,
        factors=MoodFactors(
            price_change=price_change,
            volatility=volatility,
            sentiment=score,
            volume=market.volume_24h,
        ),
        timestamp=now if now is not None else int(time.time() * 1000),
    )


def should_update_mood(previous: MoodState, new: MoodState, confidence: float) -> bool:
    """Only a changed mood backed by enough confidence is worth pushing."""
    return previous != new and confidence > UPDATE_CONFIDENCE
