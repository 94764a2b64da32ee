"""
Enrichment Rule Engine - derives severity, risk, hazard flags and routing.

DESIGN PRINCIPLES:
- Pure and total: no I/O, no clock, no hidden state
- Same input always yields an identical EnrichmentResult, so re-running
  enrichment on retry reproduces what an earlier run wrote
- A flat rule table, not a model
"""

from typing import FrozenSet, Optional, Union
import logging
import math

from app.core.settings import settings
from app.models.report import EnrichmentResult, IssueCategory, RiskLevel

logger = logging.getLogger(__name__)


class EnrichmentRuleEngine:
    """
    Severity score (1-5):
    1. Start at 1
    2. +2 for a high-risk category
    3. +1 when classifier confidence is strictly above the threshold
    4. Clamp to [1, 5]

    Risk level: high if severity >= 4, medium if >= 2, else low.
    Health hazard: health category OR severity >= 4.
    Environment hazard: burning garbage.
    Department follows the health hazard flag.
    """

    HIGH_RISK_CATEGORIES: FrozenSet[IssueCategory] = frozenset({
        IssueCategory.BURNING_GARBAGE,
        IssueCategory.SEWAGE_OVERFLOW,
        IssueCategory.DEAD_ANIMAL,
        IssueCategory.OPEN_MANHOLE,
    })

    HEALTH_HAZARD_CATEGORIES: FrozenSet[IssueCategory] = frozenset({
        IssueCategory.SEWAGE_OVERFLOW,
        IssueCategory.DEAD_ANIMAL,
        IssueCategory.STAGNANT_WATER,
    })

    BASE_SEVERITY = 1
    HIGH_RISK_BONUS = 2
    CONFIDENCE_BONUS = 1
    MIN_SEVERITY = 1
    MAX_SEVERITY = 5

    ZONE_NORTH = "Zone North"
    ZONE_SOUTH = "Zone South"

    DEPARTMENT_HEALTH = "Health & Sanitation"
    DEPARTMENT_SOLID_WASTE = "Solid Waste Management"

    def __init__(
        self,
        zone_latitude_threshold: float = 18.5204,
        high_confidence_threshold: float = 0.85,
    ):
        self.zone_latitude_threshold = zone_latitude_threshold
        self.high_confidence_threshold = high_confidence_threshold

    def enrich(
        self,
        category: Union[IssueCategory, str, None],
        confidence: float,
        latitude: float,
    ) -> EnrichmentResult:
        """
        Compute the enrichment for one report.

        Args:
            category: Classifier category; unknown values are treated as "other"
            confidence: Classifier confidence in [0, 1]
            latitude: Report latitude in [-90, 90]

        Raises:
            ValueError: confidence or latitude outside their domain
        """
        category = IssueCategory.normalize(category)
        self._validate(confidence, latitude)

        severity = self.BASE_SEVERITY
        if category in self.HIGH_RISK_CATEGORIES:
            severity += self.HIGH_RISK_BONUS
        if confidence > self.high_confidence_threshold:
            severity += self.CONFIDENCE_BONUS
        severity = max(self.MIN_SEVERITY, min(self.MAX_SEVERITY, severity))

        # Both disjuncts are kept as-is: a high-severity burning report is
        # flagged as a health and an environment hazard at the same time.
        health_hazard = category in self.HEALTH_HAZARD_CATEGORIES or severity >= 4
        environment_hazard = category == IssueCategory.BURNING_GARBAGE

        return EnrichmentResult(
            severity_score=severity,
            risk_level=self.risk_level_for(severity),
            health_hazard=health_hazard,
            environment_hazard=environment_hazard,
            ward=self.zone_for(latitude),
            department=self.DEPARTMENT_HEALTH if health_hazard else self.DEPARTMENT_SOLID_WASTE,
        )

    @staticmethod
    def risk_level_for(severity: int) -> RiskLevel:
        if severity >= 4:
            return RiskLevel.HIGH
        if severity >= 2:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def zone_for(self, latitude: float) -> str:
        # Coarse placeholder split, not a geofence
        return self.ZONE_NORTH if latitude > self.zone_latitude_threshold else self.ZONE_SOUTH

    @staticmethod
    def _validate(confidence: float, latitude: float) -> None:
        if confidence is None or isinstance(confidence, bool) or math.isnan(float(confidence)):
            raise ValueError(f"confidence must be a number, got {confidence!r}")
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")
        if latitude is None or isinstance(latitude, bool) or math.isnan(float(latitude)):
            raise ValueError(f"latitude must be a number, got {latitude!r}")
        if not -90.0 <= latitude <= 90.0:
            raise ValueError(f"latitude must be within [-90, 90], got {latitude}")


_default_engine = EnrichmentRuleEngine()


def enrich(
    category: Union[IssueCategory, str, None],
    confidence: float,
    latitude: float,
) -> EnrichmentResult:
    """Enrich with the stock thresholds (0.85 confidence, 18.5204 zone split)."""
    return _default_engine.enrich(category, confidence, latitude)


# Global engine configured from settings (singleton pattern)
_rule_engine: Optional[EnrichmentRuleEngine] = None


def get_rule_engine() -> EnrichmentRuleEngine:
    global _rule_engine
    if _rule_engine is None:
        _rule_engine = EnrichmentRuleEngine(
            zone_latitude_threshold=settings.ZONE_LATITUDE_THRESHOLD,
            high_confidence_threshold=settings.HIGH_CONFIDENCE_THRESHOLD,
        )
        logger.info(
            f"Enrichment rule engine ready (zone split {settings.ZONE_LATITUDE_THRESHOLD}, "
            f"confidence bonus above {settings.HIGH_CONFIDENCE_THRESHOLD})"
        )
    return _rule_engine
