"""tests/test_enrichment_rules.py — Unit tests for the enrichment rule engine"""
import pytest

from app.models.report import IssueCategory, RiskLevel
from app.services.enrichment_rules import EnrichmentRuleEngine, enrich


# ── Reference scenarios ───────────────────────────────────────────────────────

def test_burning_garbage_high_confidence_north():
    result = enrich("burning_garbage", 0.9, 18.53)
    assert result.severity_score == 4
    assert result.risk_level == RiskLevel.HIGH
    # severity >= 4 sets the health flag alongside the environment flag
    assert result.health_hazard is True
    assert result.environment_hazard is True
    assert result.department == "Health & Sanitation"
    assert result.ward == "Zone North"


def test_sweeping_low_confidence_south():
    result = enrich("sweeping_not_done", 0.4, 18.50)
    assert result.severity_score == 1
    assert result.risk_level == RiskLevel.LOW
    assert result.health_hazard is False
    assert result.environment_hazard is False
    assert result.department == "Solid Waste Management"
    assert result.ward == "Zone South"


def test_stagnant_water_is_health_hazard_without_high_severity():
    result = enrich(IssueCategory.STAGNANT_WATER, 0.95, 18.0)
    assert result.severity_score == 2
    assert result.risk_level == RiskLevel.MEDIUM
    assert result.health_hazard is True
    assert result.department == "Health & Sanitation"


def test_open_manhole_low_confidence_is_medium_and_solid_waste():
    result = enrich("open_manhole", 0.5, 18.6)
    assert result.severity_score == 3
    assert result.risk_level == RiskLevel.MEDIUM
    assert result.health_hazard is False
    assert result.department == "Solid Waste Management"


# ── Boundaries ────────────────────────────────────────────────────────────────

def test_confidence_exactly_at_threshold_gets_no_bonus():
    assert enrich("garbage_dump", 0.85, 18.0).severity_score == 1


def test_confidence_just_above_threshold_gets_bonus():
    assert enrich("garbage_dump", 0.8500001, 18.0).severity_score == 2


def test_high_risk_and_confident_reaches_four():
    for category in EnrichmentRuleEngine.HIGH_RISK_CATEGORIES:
        result = enrich(category, 1.0, 18.0)
        assert result.severity_score == 4
        assert result.risk_level == RiskLevel.HIGH


def test_severity_clamped_when_bonuses_overflow():
    class HeavyEngine(EnrichmentRuleEngine):
        BASE_SEVERITY = 3
        HIGH_RISK_BONUS = 4

    result = HeavyEngine().enrich("dead_animal", 0.99, 18.0)
    assert result.severity_score == 5
    assert result.risk_level == RiskLevel.HIGH


def test_severity_clamped_from_below():
    class LenientEngine(EnrichmentRuleEngine):
        BASE_SEVERITY = -2

    assert LenientEngine().enrich("other", 0.1, 18.0).severity_score == 1


def test_zone_threshold_itself_is_south():
    assert enrich("other", 0.1, 18.5204).ward == "Zone South"
    assert enrich("other", 0.1, 18.5205).ward == "Zone North"


def test_custom_thresholds():
    engine = EnrichmentRuleEngine(zone_latitude_threshold=0.0, high_confidence_threshold=0.5)
    result = engine.enrich("garbage_dump", 0.6, 1.0)
    assert result.severity_score == 2
    assert result.ward == "Zone North"


# ── Totality and determinism ──────────────────────────────────────────────────

def test_total_and_bounded_over_domain():
    for category in IssueCategory:
        for confidence in (0.0, 0.25, 0.85, 0.86, 1.0):
            for latitude in (-90.0, 0.0, 18.5204, 90.0):
                result = enrich(category, confidence, latitude)
                assert 1 <= result.severity_score <= 5


def test_deterministic():
    first = enrich("dead_animal", 0.9, 18.53)
    second = enrich("dead_animal", 0.9, 18.53)
    assert first == second
    assert first.model_dump_json() == second.model_dump_json()


def test_unknown_category_treated_as_other():
    assert enrich("pothole", 0.9, 18.0) == enrich("other", 0.9, 18.0)


@pytest.mark.parametrize("confidence,latitude", [
    (-0.1, 18.0),
    (1.1, 18.0),
    (0.5, 91.0),
    (0.5, -90.5),
    (float("nan"), 18.0),
    (None, 18.0),
])
def test_out_of_domain_input_rejected(confidence, latitude):
    with pytest.raises(ValueError):
        enrich("garbage_dump", confidence, latitude)


def test_store_fields_use_persisted_names():
    fields = enrich("burning_garbage", 0.9, 18.53).to_store_fields()
    assert fields == {
        "ai_risk_level": "high",
        "ai_health_flag": True,
        "ai_environment_flag": True,
        "ai_severity_score": 4,
        "ai_ward": "Zone North",
        "ai_department": "Health & Sanitation",
    }
