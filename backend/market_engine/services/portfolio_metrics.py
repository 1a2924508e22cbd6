"""
Portfolio metrics service.

Display-oriented scores derived from entity value and account history:
trust score, volatility, market category, category exposure, sentiment
split, equity curve and the sector index.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
import logging
import math
import random

from market_engine.config import settings
from market_engine.constants import MS_PER_DAY
from market_engine.schemas.market import (
    EntityType, EntityView, IndexData, MarketCategory, VolatilityBand
)
from market_engine.schemas.portfolio import (
    CategoryWeight, EquityPoint, PositionView, SentimentBias
)
from market_engine.schemas.transaction import LedgerEntry, TransactionType
from market_engine.services.numeric import safe_parse_units

logger = logging.getLogger(__name__)

# Ordered rules (category, matching types, label keywords); first match wins
CATEGORY_RULES = (
    (MarketCategory.AI, ("AI",), ("BOT", "AGENT", "GPT", "LLM")),
    (MarketCategory.PERSON, ("PERSON",), ("DEV", "BUILDER", "FOUNDER")),
    (MarketCategory.PROTOCOL, (), ("SWAP", "DEX", "DAO", "FINANCE", "CHAIN", "PROTOCOL", "L2", "BRIDGE")),
    (MarketCategory.MEME, (), ("PEPE", "DOGE", "INU", "MOON", "CAT", "WIF", "ELON")),
    (MarketCategory.CREATOR, (), ("ART", "MUSIC", "BLOG", "PODCAST", "MEDIA", "NEWS")),
    (MarketCategory.INVESTOR, (), ("CAPITAL", "VENTURE", "FUND", "VC")),
)

SYSTEM_KEYWORDS = (
    "intuition", "ethereum", "base", "optimism", "arbitrum",
    "uniswap", "aave", "chainlink", "vault",
)

INDEX_MULTIPLIER = 42
EQUITY_PAD_STEP = 0.01


class NeutralSentimentPolicy:
    """Report the raw share of deposits in the history."""

    def trust_percent(self, raw_ratio: float) -> float:
        return raw_ratio


class BullishDisplayBiasPolicy:
    """
    Display policy that pins trust into the 91-100% range.

    The shown number is not an unbiased measurement: it is the raw deposit
    ratio compressed onto a high floor plus a small random jitter. Kept as a
    separate policy so callers can switch to NeutralSentimentPolicy.
    """

    FLOOR = 91.0
    RATIO_WEIGHT = 0.08
    JITTER = 1.5

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def trust_percent(self, raw_ratio: float) -> float:
        biased = self.FLOOR + raw_ratio * self.RATIO_WEIGHT + self.rng.random() * self.JITTER
        return min(100.0, biased)


class PortfolioMetrics:
    """Scores and summaries for entities and account histories."""

    @staticmethod
    def trust_score(value: float) -> float:
        """
        Map total entity value onto a logarithmic 1-99 trust score.

        Args:
            value: Total value in display units

        Returns:
            15.0 for empty vaults, otherwise 15 + log10(value + 1) / 5.8 x 85
            clamped to [1, 99]
        """
        if not math.isfinite(value) or value <= 0:
            return 15.0
        score = 15 + (math.log10(value + 1) / 5.8) * 85
        return min(99.0, max(1.0, score))

    @staticmethod
    def volatility(value: float) -> float:
        """Inverse-log volatility in [1, 100]; 0 when there is no value at all."""
        if not math.isfinite(value) or value <= 0:
            return 0.0
        return min(100.0, max(1.0, 100 - math.log10(value + 1) * 20))

    @staticmethod
    def categorize(label: Optional[str], entity_type: Union[EntityType, str, None] = None) -> MarketCategory:
        """
        Classify an entity from its label keywords and type.

        Args:
            label: Display label
            entity_type: Entity type (enum or raw string)

        Returns:
            First matching MarketCategory, UNKNOWN when nothing matches
        """
        upper = (label or "").upper()
        type_name = (entity_type.value if isinstance(entity_type, EntityType) else str(entity_type or "")).upper()

        for category, types, keywords in CATEGORY_RULES:
            if type_name in types or any(k in upper for k in keywords):
                return category
            # ENS names are people unless an AI keyword matched first
            if category == MarketCategory.PERSON and upper.endswith(".ETH"):
                return category

        if type_name == "ORGANIZATION":
            return MarketCategory.PROTOCOL
        if type_name == "ACCOUNT":
            return MarketCategory.PERSON
        return MarketCategory.UNKNOWN

    @classmethod
    def is_system_verified(cls, label: Optional[str], entity_type: Union[EntityType, str, None] = None) -> bool:
        """ENS names, protocol or AI entities and well-known network names."""
        lower = (label or "").lower()
        if lower.endswith(".eth"):
            return True
        if cls.categorize(label, entity_type) in (MarketCategory.PROTOCOL, MarketCategory.AI):
            return True
        return any(k in lower for k in SYSTEM_KEYWORDS)

    @staticmethod
    def category_exposure(positions: Iterable[PositionView]) -> List[CategoryWeight]:
        """
        Share of portfolio value per market category.

        Args:
            positions: Open positions

        Returns:
            Percent weights sorted by weight descending; empty when total value is 0
        """
        exposure: Dict[MarketCategory, float] = {}
        total_value = 0.0

        for position in positions:
            value = position.value or 0.0
            exposure[position.category] = exposure.get(position.category, 0.0) + value
            total_value += value

        if total_value <= 0:
            return []

        weights = [
            CategoryWeight(name=name, value=(value / total_value) * 100)
            for name, value in exposure.items()
        ]
        return sorted(weights, key=lambda w: w.value, reverse=True)

    @staticmethod
    def sentiment_bias(history: Sequence[LedgerEntry], policy: Any = None) -> SentimentBias:
        """Trust/distrust split of an account history under a display policy."""
        if not history:
            return SentimentBias(trust=50.0, distrust=50.0)

        policy = policy or BullishDisplayBiasPolicy()
        deposits = sum(1 for entry in history if entry.type == TransactionType.DEPOSIT)
        raw_ratio = (deposits / len(history)) * 100

        trust = policy.trust_percent(raw_ratio)
        return SentimentBias(trust=trust, distrust=100 - trust)

    @staticmethod
    def equity_curve(
        current_value: float,
        history: Sequence[LedgerEntry],
        now_ms: int,
        window: int = None
    ) -> List[EquityPoint]:
        """
        Reconstruct the value curve by walking history backward from today.

        Each step undoes one entry: a deposit is subtracted, a redemption is
        added back. Only the newest `window` entries are replayed.

        Args:
            current_value: Present portfolio value
            history: Account history (any order)
            now_ms: Timestamp of the present point
            window: Number of entries replayed (defaults to settings)

        Returns:
            Points ordered oldest first, always at least two
        """
        window = window if window is not None else settings.equity_curve_window
        newest_first = sorted(history, key=lambda e: e.timestamp, reverse=True)[:window]

        points = [EquityPoint(timestamp=now_ms, value=current_value)]
        runner = current_value
        for entry in newest_first:
            amount = safe_parse_units(entry.assets)
            if entry.type == TransactionType.DEPOSIT:
                runner -= amount
            else:
                runner += amount
            points.append(EquityPoint(timestamp=entry.timestamp, value=runner))

        points.reverse()

        if len(points) == 1:
            only = points[0]
            points.insert(0, EquityPoint(
                timestamp=only.timestamp - MS_PER_DAY,
                value=max(0.0, only.value - EQUITY_PAD_STEP)
            ))

        return points

    @classmethod
    def index_value(cls, entities: Sequence[EntityView]) -> IndexData:
        """
        Sector index over a set of entities.

        Args:
            entities: Entity views of the sector

        Returns:
            IndexData (fixed "offline" reading for an empty sector)
        """
        if not entities:
            return IndexData(
                value=1000.0,
                change=0.0,
                volatility=VolatilityBand.LOW_STABLE,
                volatility_level=1,
                forecast="Sector Offline.",
            )

        total_value = sum(e.value for e in entities)
        average_trust = sum(cls.trust_score(e.value) for e in entities) / len(entities)
        change = math.fmod(total_value, 7) - 3.5

        if total_value < 10:
            band, level = VolatilityBand.HIGH_FLUX, 5
        elif total_value < 100:
            band, level = VolatilityBand.MODERATE, 3
        else:
            band, level = VolatilityBand.LOW_STABLE, 1

        if change > 1:
            forecast = "Bullish convergence across primary sector nodes."
        else:
            forecast = "Equilibrium maintained within standard deviations."

        return IndexData(
            value=average_trust * INDEX_MULTIPLIER,
            change=change,
            volatility=band,
            volatility_level=level,
            forecast=forecast,
        )
