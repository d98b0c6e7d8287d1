from datetime import datetime, timedelta, timezone

import pytest

from claims_engine.logic.fraud_scoring import (
    AnomalyFactorRule,
    ClaimFrequencyRule,
    DuplicateClaimsRule,
    FraudScorer,
    TimingAnomalyRule,
    UnusualAmountRule,
    amounts_similar,
    calculate_severity,
    calculate_similarity,
    find_duplicate_claims,
    recommend,
    text_similarity,
)
from claims_engine.models import (
    AnomalyFactor,
    ClaimType,
    FraudAlertType,
    FraudSeverity,
    Recommendation,
)

from conftest import make_claim

NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


class FixedFactor(AnomalyFactorRule):
    def __init__(self, code, score, **kwargs):
        super().__init__(**kwargs)
        self.code = code
        self.score = score

    def evaluate(self, claim, context):
        return AnomalyFactor(code=self.code, name=self.code, score=self.score, description=self.code)


class TestTextSimilarity:
    def test_identical_text(self):
        assert text_similarity("hello world", "hello world") == 1

    def test_disjoint_text(self):
        assert text_similarity("abc", "xyz") == 0

    def test_partial_overlap(self):
        similarity = text_similarity("hello world", "hello")
        assert 0 < similarity < 1
        assert similarity == pytest.approx(0.5)

    def test_case_insensitive(self):
        assert text_similarity("Hello World", "hello world") == 1

    def test_two_empty_texts_are_not_similar(self):
        assert text_similarity("", "") == 0.0
        assert text_similarity(None, "   ") == 0.0


class TestClaimSimilarity:
    def test_amount_tolerance(self):
        assert amounts_similar(100, 109)
        assert not amounts_similar(100, 110)
        assert amounts_similar(0, 0)
        assert not amounts_similar(0, 5)

    def test_identical_claims(self):
        assert calculate_similarity(make_claim(), make_claim()) == 100

    def test_each_field_is_a_quarter(self):
        base = make_claim()
        assert calculate_similarity(base, make_claim(type=ClaimType.REPAIR)) == 75
        assert calculate_similarity(
            base, make_claim(type=ClaimType.REPAIR, category="furniture")
        ) == 50

    def test_duplicates_need_more_than_seventy_percent(self):
        claim = make_claim(id="c-1", created_at=NOW)
        candidates = [
            make_claim(id="c-1"),
            make_claim(id="c-2", type=ClaimType.REPAIR, created_at=NOW - timedelta(hours=6)),
            make_claim(id="c-3", type=ClaimType.REPAIR, category="furniture"),
            make_claim(id="c-4", customer_id="someone-else"),
        ]

        duplicates = find_duplicate_claims(claim, candidates)

        assert [d.duplicate_claim_id for d in duplicates] == ["c-2"]
        assert duplicates[0].similarity == 75
        assert duplicates[0].matching_fields == ["category", "amount", "description"]
        assert duplicates[0].time_difference_hours == pytest.approx(6)

    def test_time_difference_unknown_without_timestamps(self):
        duplicates = find_duplicate_claims(make_claim(id="a"), [make_claim(id="b")])
        assert duplicates[0].time_difference_hours is None


class TestSeverityAndRecommendation:
    @pytest.mark.parametrize("score,severity", [
        (95, FraudSeverity.CRITICAL),
        (90, FraudSeverity.CRITICAL),
        (89.9, FraudSeverity.HIGH),
        (75, FraudSeverity.HIGH),
        (70, FraudSeverity.HIGH),
        (50, FraudSeverity.MEDIUM),
        (40, FraudSeverity.MEDIUM),
        (39.9, FraudSeverity.LOW),
        (20, FraudSeverity.LOW),
    ])
    def test_severity_bands(self, score, severity):
        assert calculate_severity(score) == severity

    @pytest.mark.parametrize("score,recommendation", [
        (100, Recommendation.REJECT),
        (70, Recommendation.REJECT),
        (69, Recommendation.REVIEW),
        (40, Recommendation.REVIEW),
        (39, Recommendation.APPROVE),
        (0, Recommendation.APPROVE),
    ])
    def test_recommendation_bands(self, score, recommendation):
        assert recommend(score) == recommendation

    def test_bands_differ_between_tables(self):
        assert recommend(75) == Recommendation.REJECT
        assert calculate_severity(75) == FraudSeverity.HIGH


class TestAnomalyFactors:
    def test_amount_factor(self):
        history = [make_claim(customer_id=f"other-{i}", amount=100000) for i in range(4)]
        factor = UnusualAmountRule().evaluate(make_claim(amount=400000), {"historical_claims": history})
        assert factor.score == pytest.approx(20)
        assert factor.code == FraudAlertType.UNUSUAL_AMOUNT.value

    def test_amount_factor_is_capped(self):
        history = [make_claim(amount=100)]
        factor = UnusualAmountRule().evaluate(make_claim(amount=100000), {"historical_claims": history})
        assert factor.score == 40

    def test_amount_factor_skipped_without_history(self):
        assert UnusualAmountRule().evaluate(make_claim(amount=400000), {"historical_claims": []}) is None
        zero_history = [make_claim(amount=0)]
        assert UnusualAmountRule().evaluate(make_claim(amount=400000), {"historical_claims": zero_history}) is None

    def test_amount_at_exactly_three_times_is_not_flagged(self):
        history = [make_claim(amount=100)]
        assert UnusualAmountRule().evaluate(make_claim(amount=300), {"historical_claims": history}) is None

    @pytest.mark.parametrize("count,score", [(1, 30), (2, 50), (3, 50)])
    def test_duplicate_factor(self, count, score):
        duplicates = find_duplicate_claims(
            make_claim(id="new"), [make_claim(id=f"old-{i}") for i in range(count)]
        )
        factor = DuplicateClaimsRule().evaluate(make_claim(id="new"), {"duplicates": duplicates})
        assert factor.score == score

    @pytest.mark.parametrize("count,score", [(2, None), (3, 15), (4, 30), (6, 30)])
    def test_frequency_factor(self, count, score):
        history = [make_claim(created_at=NOW - timedelta(days=i)) for i in range(count)]
        factor = ClaimFrequencyRule().evaluate(make_claim(), {"historical_claims": history, "now": NOW})
        assert (factor.score if factor else None) == score

    def test_frequency_ignores_old_and_foreign_claims(self):
        history = [
            make_claim(created_at=NOW - timedelta(days=1)),
            make_claim(created_at=NOW - timedelta(days=2)),
            make_claim(created_at=NOW - timedelta(days=45)),
            make_claim(customer_id="someone-else", created_at=NOW),
        ]
        assert ClaimFrequencyRule().evaluate(make_claim(), {"historical_claims": history, "now": NOW}) is None

    @pytest.mark.parametrize("hour,flagged", [(3, True), (5, True), (6, False), (14, False), (22, False), (23, True)])
    def test_timing_factor(self, hour, flagged):
        claim = make_claim(submitted_at=datetime(2024, 1, 1, hour, 0))
        factor = TimingAnomalyRule().evaluate(claim, {})
        assert (factor is not None) is flagged
        if flagged:
            assert factor.score == 10


class TestFraudScorer:
    def test_scores_amount_only(self):
        history = [make_claim(customer_id=f"other-{i}", amount=100000) for i in range(4)]
        claim = make_claim(id="new", amount=400000, submitted_at=datetime(2024, 1, 1, 14, 0))

        score = FraudScorer().analyze(claim, history, customer_claims=[], now=NOW)

        assert score.claim_id == "new"
        assert score.overall_score == pytest.approx(20)
        assert [f.code for f in score.factors] == ["unusual_amount"]
        assert score.recommendation == Recommendation.APPROVE

    def test_clean_claim_scores_zero(self):
        score = FraudScorer().analyze(make_claim(), [], now=NOW)
        assert score.overall_score == 0
        assert score.factors == []
        assert score.recommendation == Recommendation.APPROVE

    def test_overall_score_capped_at_100(self):
        scorer = FraudScorer(rules=[FixedFactor("duplicate_claim", 60), FixedFactor("unusual_amount", 60)])
        score = scorer.analyze(make_claim(), [])
        assert score.overall_score == 100
        assert score.recommendation == Recommendation.REJECT

    def test_disabled_rules_are_skipped(self):
        scorer = FraudScorer(rules=[FixedFactor("unusual_amount", 50, enabled=False)])
        assert scorer.analyze(make_claim(), []).overall_score == 0

    def test_reasons_and_primary_type_follow_heaviest_factor(self):
        scorer = FraudScorer(rules=[FixedFactor("timing_anomaly", 10), FixedFactor("duplicate_claim", 30)])
        score = scorer.analyze(make_claim(), [])

        assert FraudScorer.primary_alert_type(score) == FraudAlertType.DUPLICATE_CLAIM
        reasons = FraudScorer.to_reasons(score)
        assert [(r.code, r.weight) for r in reasons] == [("duplicate_claim", 30), ("timing_anomaly", 10)]

    def test_primary_type_without_factors(self):
        score = FraudScorer(rules=[]).analyze(make_claim(), [])
        assert FraudScorer.primary_alert_type(score) == FraudAlertType.SUSPICIOUS_PATTERN
