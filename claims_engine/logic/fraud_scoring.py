from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence
import logging

from ..models import (
    AnomalyFactor,
    AnomalyScore,
    Claim,
    DuplicateClaim,
    FraudAlertType,
    FraudReason,
    FraudSeverity,
    Recommendation,
    enum_value,
)
from .conditions import local_hour

logger = logging.getLogger(__name__)

MAX_SCORE = 100.0

# Alert severity bands; independent of the recommendation bands below.
SEVERITY_CRITICAL_AT = 90
SEVERITY_HIGH_AT = 70
SEVERITY_MEDIUM_AT = 40

RECOMMEND_REJECT_AT = 70
RECOMMEND_REVIEW_AT = 40

DUPLICATE_SIMILARITY_THRESHOLD = 70.0
TEXT_SIMILARITY_THRESHOLD = 0.7
AMOUNT_TOLERANCE = 0.1


def calculate_severity(risk_score: float) -> FraudSeverity:
    if risk_score >= SEVERITY_CRITICAL_AT:
        return FraudSeverity.CRITICAL
    if risk_score >= SEVERITY_HIGH_AT:
        return FraudSeverity.HIGH
    if risk_score >= SEVERITY_MEDIUM_AT:
        return FraudSeverity.MEDIUM
    return FraudSeverity.LOW


def recommend(score: float) -> Recommendation:
    if score >= RECOMMEND_REJECT_AT:
        return Recommendation.REJECT
    if score >= RECOMMEND_REVIEW_AT:
        return Recommendation.REVIEW
    return Recommendation.APPROVE


def text_similarity(text1: Optional[str], text2: Optional[str]) -> float:
    """Jaccard index over lowercase whitespace-separated words."""
    words1 = set((text1 or "").lower().split())
    words2 = set((text2 or "").lower().split())

    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def amounts_similar(amount1: float, amount2: float) -> bool:
    if amount1 == 0:
        return amount2 == 0
    return abs(amount1 - amount2) / abs(amount1) < AMOUNT_TOLERANCE


def get_matching_fields(claim1: Claim, claim2: Claim) -> List[str]:
    matching = []
    if enum_value(claim1.type) == enum_value(claim2.type):
        matching.append('type')
    if claim1.category == claim2.category:
        matching.append('category')
    if amounts_similar(claim1.amount, claim2.amount):
        matching.append('amount')
    if text_similarity(claim1.description, claim2.description) > TEXT_SIMILARITY_THRESHOLD:
        matching.append('description')
    return matching


def calculate_similarity(claim1: Claim, claim2: Claim) -> float:
    """Percentage of the four compared fields that match, each worth 25%."""
    return len(get_matching_fields(claim1, claim2)) / 4 * 100


def _aware(moment: datetime) -> datetime:
    # Naive timestamps are taken as local time.
    return moment if moment.tzinfo is not None else moment.astimezone()


def find_duplicate_claims(claim: Claim, candidates: Sequence[Claim]) -> List[DuplicateClaim]:
    duplicates = []
    for other in candidates:
        if other.customer_id != claim.customer_id:
            continue
        if claim.id is not None and other.id == claim.id:
            continue

        similarity = calculate_similarity(claim, other)
        if similarity <= DUPLICATE_SIMILARITY_THRESHOLD:
            continue

        time_difference = None
        if claim.created_at and other.created_at:
            delta = _aware(claim.created_at) - _aware(other.created_at)
            time_difference = abs(delta.total_seconds()) / 3600

        duplicates.append(DuplicateClaim(
            claim_id=claim.id,
            duplicate_claim_id=other.id,
            similarity=similarity,
            matching_fields=get_matching_fields(claim, other),
            time_difference_hours=time_difference,
        ))
    return duplicates


class AnomalyFactorRule(ABC):
    code: str = ""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.name = self.__class__.__name__

    @abstractmethod
    def evaluate(self, claim: Claim, context: Dict) -> Optional[AnomalyFactor]:
        pass


class UnusualAmountRule(AnomalyFactorRule):
    code = FraudAlertType.UNUSUAL_AMOUNT.value

    def __init__(self, ratio_threshold: float = 3.0, points_per_ratio: float = 20.0,
                 max_points: float = 40.0, **kwargs):
        super().__init__(**kwargs)
        self.ratio_threshold = ratio_threshold
        self.points_per_ratio = points_per_ratio
        self.max_points = max_points

    def evaluate(self, claim: Claim, context: Dict) -> Optional[AnomalyFactor]:
        history: Sequence[Claim] = context.get('historical_claims', [])
        if not history:
            return None

        average = sum(c.amount for c in history) / len(history)
        if average <= 0 or claim.amount <= average * self.ratio_threshold:
            return None

        ratio = claim.amount / average
        score = min((ratio - self.ratio_threshold) * self.points_per_ratio, self.max_points)
        return AnomalyFactor(
            code=self.code,
            name="Unusual amount",
            score=score,
            description=f"Amount is more than {self.ratio_threshold:g}x the historical average",
            evidence=[f"Amount: {claim.amount:,.0f}", f"Average: {average:,.0f}"],
        )


class DuplicateClaimsRule(AnomalyFactorRule):
    code = FraudAlertType.DUPLICATE_CLAIM.value

    def __init__(self, points_per_duplicate: float = 30.0, max_points: float = 50.0, **kwargs):
        super().__init__(**kwargs)
        self.points_per_duplicate = points_per_duplicate
        self.max_points = max_points

    def evaluate(self, claim: Claim, context: Dict) -> Optional[AnomalyFactor]:
        duplicates: List[DuplicateClaim] = context.get('duplicates', [])
        if not duplicates:
            return None

        return AnomalyFactor(
            code=self.code,
            name="Duplicate claims",
            score=min(len(duplicates) * self.points_per_duplicate, self.max_points),
            description=f"Found {len(duplicates)} similar claims",
            evidence=[
                f"Claim {d.duplicate_claim_id}: {d.similarity:.0f}% similar"
                for d in duplicates
            ],
        )


class ClaimFrequencyRule(AnomalyFactorRule):
    code = FraudAlertType.FREQUENT_CLAIMS.value

    def __init__(self, window_days: int = 30, min_claims: int = 3, points_per_claim: float = 15.0,
                 max_points: float = 30.0, **kwargs):
        super().__init__(**kwargs)
        self.window_days = window_days
        self.min_claims = min_claims
        self.points_per_claim = points_per_claim
        self.max_points = max_points

    def evaluate(self, claim: Claim, context: Dict) -> Optional[AnomalyFactor]:
        history: Sequence[Claim] = context.get('historical_claims', [])
        now = _aware(context.get('now') or datetime.now(timezone.utc))
        window = timedelta(days=self.window_days)

        recent = [
            c for c in history
            if c.customer_id == claim.customer_id
            and c.created_at is not None
            and now - _aware(c.created_at) <= window
        ]
        if len(recent) < self.min_claims:
            return None

        return AnomalyFactor(
            code=self.code,
            name="High claim frequency",
            score=min((len(recent) - (self.min_claims - 1)) * self.points_per_claim, self.max_points),
            description=f"{len(recent)} claims in {self.window_days} days",
            evidence=[f"Customer: {claim.customer_name or claim.customer_id}"],
        )


class TimingAnomalyRule(AnomalyFactorRule):
    code = FraudAlertType.TIMING_ANOMALY.value

    def __init__(self, earliest_hour: int = 6, latest_hour: int = 22, points: float = 10.0, **kwargs):
        super().__init__(**kwargs)
        self.earliest_hour = earliest_hour
        self.latest_hour = latest_hour
        self.points = points

    def evaluate(self, claim: Claim, context: Dict) -> Optional[AnomalyFactor]:
        if claim.submitted_at is None:
            return None

        hour = local_hour(claim.submitted_at)
        if self.earliest_hour <= hour <= self.latest_hour:
            return None

        return AnomalyFactor(
            code=self.code,
            name="Unusual submission time",
            score=self.points,
            description="Submitted outside working hours",
            evidence=[f"Submitted at: {hour:02d}:00"],
        )


class FraudScorer:
    def __init__(self, rules: Optional[List[AnomalyFactorRule]] = None):
        self.rules: List[AnomalyFactorRule] = rules if rules is not None else [
            UnusualAmountRule(),
            DuplicateClaimsRule(),
            ClaimFrequencyRule(),
            TimingAnomalyRule(),
        ]
        logger.debug(f"Fraud scorer initialized with {len(self.rules)} factor rules")

    def analyze(
        self,
        claim: Claim,
        historical_claims: Sequence[Claim],
        customer_claims: Optional[Sequence[Claim]] = None,
        now: Optional[datetime] = None,
    ) -> AnomalyScore:
        """Score one claim from 0 to 100.

        ``customer_claims`` is the pool searched for duplicates; when it is not
        given, the same customer's entries in ``historical_claims`` are used.
        """
        pool = customer_claims if customer_claims is not None else historical_claims
        context = {
            'historical_claims': list(historical_claims),
            'duplicates': find_duplicate_claims(claim, pool),
            'now': now,
        }

        factors: List[AnomalyFactor] = []
        for rule in self.rules:
            if not rule.enabled:
                continue
            factor = rule.evaluate(claim, context)
            if factor is not None:
                factors.append(factor)

        overall = min(sum(f.score for f in factors), MAX_SCORE)
        return AnomalyScore(
            claim_id=claim.id,
            overall_score=overall,
            factors=factors,
            recommendation=recommend(overall),
        )

    @staticmethod
    def to_reasons(score: AnomalyScore) -> List[FraudReason]:
        return [
            FraudReason(code=f.code, description=f.description, weight=f.score)
            for f in sorted(score.factors, key=lambda f: f.score, reverse=True)
        ]

    @staticmethod
    def primary_alert_type(score: AnomalyScore) -> FraudAlertType:
        if not score.factors:
            return FraudAlertType.SUSPICIOUS_PATTERN
        heaviest = max(score.factors, key=lambda f: f.score)
        try:
            return FraudAlertType(heaviest.code)
        except ValueError:
            return FraudAlertType.SUSPICIOUS_PATTERN
