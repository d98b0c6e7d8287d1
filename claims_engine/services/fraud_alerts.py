import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..errors import DocumentNotFoundError, InvalidTransitionError, StoreError
from ..logic.fraud_scoring import FraudScorer, calculate_severity, find_duplicate_claims
from ..models import (
    AlertStatus,
    AnomalyScore,
    Claim,
    DuplicateClaim,
    FraudAlert,
    FraudAlertType,
    FraudReason,
    FraudStats,
    coerce_enum,
    enum_value,
    format_datetime,
)
from ..monitoring.metrics import PerformanceMonitor
from ..store.base import CLAIMS, FRAUD_ALERTS, Unsubscribe
from .base import BaseService

logger = logging.getLogger(__name__)

# Alerts only move forward; confirmed and false_positive share a rank so
# neither can replace the other.
ALERT_STATUS_RANK = {
    AlertStatus.OPEN: 0,
    AlertStatus.INVESTIGATING: 1,
    AlertStatus.CONFIRMED: 2,
    AlertStatus.FALSE_POSITIVE: 2,
    AlertStatus.RESOLVED: 3,
}


class FraudAlertService(BaseService):
    def __init__(self, store, scorer: Optional[FraudScorer] = None, **kwargs):
        super().__init__(store, **kwargs)
        self.scorer = scorer or FraudScorer()

    async def _claims_for_scoring(self, claim: Claim) -> Tuple[List[Claim], List[Claim]]:
        limit = self.config.decisioning.history_limit
        try:
            history, same_customer = await asyncio.gather(
                self.store.list(CLAIMS, order_by='created_at', descending=True),
                self.store.list(CLAIMS, {'customer_id': claim.customer_id}),
            )
        except StoreError as exc:
            self._read_failed('analyze_claim', exc)
            return [], []
        return (
            [Claim.from_dict(r) for r in history[:limit]],
            [Claim.from_dict(r) for r in same_customer],
        )

    async def analyze_claim(self, claim: Claim) -> AnomalyScore:
        historical_claims, customer_claims = await self._claims_for_scoring(claim)
        with PerformanceMonitor(self.metrics, 'fraud_analysis'):
            score = self.scorer.analyze(claim, historical_claims, customer_claims, now=self.now())
        if self.metrics is not None:
            self.metrics.record_fraud_score(score.overall_score)
        return score

    async def find_duplicate_claims(self, claim: Claim) -> List[DuplicateClaim]:
        try:
            records = await self.store.list(CLAIMS, {'customer_id': claim.customer_id})
        except StoreError as exc:
            self._read_failed('find_duplicate_claims', exc)
            return []
        return find_duplicate_claims(claim, [Claim.from_dict(r) for r in records])

    async def create_alert(
        self,
        claim_id: str,
        claim_number: str,
        alert_type: Union[FraudAlertType, str],
        risk_score: float,
        reasons: Sequence[FraudReason],
    ) -> FraudAlert:
        now = self.now()
        alert = FraudAlert(
            claim_id=claim_id,
            claim_number=claim_number,
            alert_type=coerce_enum(FraudAlertType, alert_type),
            risk_score=risk_score,
            severity=calculate_severity(risk_score),
            reasons=list(reasons),
            status=AlertStatus.OPEN,
            detected_at=now,
            created_at=now,
            updated_at=now,
        )

        record = alert.to_dict()
        record.pop('id')
        stored = await self.store.create(FRAUD_ALERTS, record)

        logger.warning(
            f"Fraud alert {stored['id']} raised for claim {claim_number}: "
            f"{enum_value(alert.alert_type)} score={risk_score:.1f} severity={alert.severity.value}"
        )
        if self.metrics is not None:
            self.metrics.increment_fraud_alert(alert.severity.value)
        return FraudAlert.from_dict(stored)

    async def score_and_alert(self, claim: Claim) -> Tuple[AnomalyScore, Optional[FraudAlert]]:
        """Score a claim and persist an alert once the score reaches the alert threshold."""
        score = await self.analyze_claim(claim)
        flagged = score.overall_score >= self.config.decisioning.fraud_alert_threshold

        self.audit.log_fraud_score(
            claim.id,
            score.overall_score,
            score.recommendation.value,
            {f.code: f.score for f in score.factors},
            flagged,
        )
        if not flagged:
            return score, None

        alert = await self.create_alert(
            claim.id,
            claim.claim_number,
            FraudScorer.primary_alert_type(score),
            score.overall_score,
            FraudScorer.to_reasons(score),
        )
        return score, alert

    async def get_alerts(self, status: Optional[Union[AlertStatus, str]] = None) -> List[FraudAlert]:
        filters = {'status': enum_value(status)} if status else None
        try:
            records = await self.store.list(FRAUD_ALERTS, filters, order_by='detected_at', descending=True)
        except StoreError as exc:
            self._read_failed('get_alerts', exc)
            return []
        return [FraudAlert.from_dict(r) for r in records]

    async def get_alert(self, alert_id: str) -> Optional[FraudAlert]:
        try:
            record = await self.store.get(FRAUD_ALERTS, alert_id)
        except StoreError as exc:
            self._read_failed('get_alert', exc)
            return None
        return FraudAlert.from_dict(record) if record else None

    async def update_alert_status(
        self,
        alert_id: str,
        status: Union[AlertStatus, str],
        investigated_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> FraudAlert:
        target = AlertStatus(status)
        current = await self.store.get(FRAUD_ALERTS, alert_id)
        if current is None:
            raise DocumentNotFoundError(FRAUD_ALERTS, alert_id)

        previous = coerce_enum(AlertStatus, current.get('status'))
        if ALERT_STATUS_RANK[target] <= ALERT_STATUS_RANK.get(previous, len(ALERT_STATUS_RANK)):
            raise InvalidTransitionError('fraud alert', enum_value(previous), target.value)

        now = self.now()
        updates: Dict[str, Any] = {'status': target.value, 'updated_at': format_datetime(now)}
        if investigated_by:
            updates['investigated_by'] = investigated_by
        if notes is not None:
            updates['notes'] = notes
        if target == AlertStatus.RESOLVED:
            updates['resolved_at'] = format_datetime(now)

        record = await self.store.update(
            FRAUD_ALERTS, alert_id, updates, expected_version=current.get('version')
        )
        logger.info(f"Fraud alert {alert_id} moved {enum_value(previous)} -> {target.value}")
        return FraudAlert.from_dict(record)

    async def get_stats(self) -> FraudStats:
        try:
            alerts = [FraudAlert.from_dict(r) for r in await self.store.list(FRAUD_ALERTS)]
            confirmed_claim_ids = {
                a.claim_id for a in alerts if a.status == AlertStatus.CONFIRMED and a.claim_id
            }
            confirmed_claims = await asyncio.gather(
                *(self.store.get(CLAIMS, claim_id) for claim_id in confirmed_claim_ids)
            )
        except StoreError as exc:
            self._read_failed('get_stats', exc)
            return FraudStats()

        stats = FraudStats(total_alerts=len(alerts))
        for alert in alerts:
            status = enum_value(alert.status)
            if status == AlertStatus.OPEN.value:
                stats.open_alerts += 1
            elif status == AlertStatus.CONFIRMED.value:
                stats.confirmed_fraud += 1
            elif status == AlertStatus.FALSE_POSITIVE.value:
                stats.false_positives += 1

            severity = enum_value(alert.severity)
            stats.alerts_by_severity[severity] = stats.alerts_by_severity.get(severity, 0) + 1
            alert_type = enum_value(alert.alert_type)
            stats.alerts_by_type[alert_type] = stats.alerts_by_type.get(alert_type, 0) + 1

        if alerts:
            stats.average_risk_score = sum(a.risk_score for a in alerts) / len(alerts)
        stats.prevented_amount = sum(
            float(record.get('amount') or 0) for record in confirmed_claims if record
        )
        return stats

    async def subscribe_to_alerts(
        self,
        callback: Callable[[List[FraudAlert]], Any],
        status: Optional[Union[AlertStatus, str]] = None,
    ) -> Unsubscribe:
        filters = {'status': enum_value(status)} if status else None
        return await self.store.subscribe(
            FRAUD_ALERTS,
            self._typed_callback(callback, lambda records: [FraudAlert.from_dict(r) for r in records]),
            filters,
            order_by='detected_at',
            descending=True,
        )
