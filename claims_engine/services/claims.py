import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from ..errors import (
    ClaimValidationError,
    DocumentNotFoundError,
    InvalidTransitionError,
    StoreError,
)
from ..models import (
    Claim,
    ClaimsStats,
    ClaimStatus,
    ClaimTimeline,
    ClaimType,
    coerce_enum,
    enum_value,
    format_datetime,
)
from ..store.base import CLAIMS, Unsubscribe
from .base import BaseService

logger = logging.getLogger(__name__)

# Approved this soon after submission counts as an automatic approval.
AUTO_APPROVAL_WINDOW_HOURS = 1 / 60

CLAIM_TRANSITIONS = {
    ClaimStatus.DRAFT: (ClaimStatus.SUBMITTED, ClaimStatus.CANCELLED),
    ClaimStatus.SUBMITTED: (
        ClaimStatus.IN_REVIEW,
        ClaimStatus.PENDING_APPROVAL,
        ClaimStatus.APPROVED,
        ClaimStatus.REJECTED,
        ClaimStatus.CANCELLED,
    ),
    ClaimStatus.IN_REVIEW: (
        ClaimStatus.PENDING_APPROVAL,
        ClaimStatus.APPROVED,
        ClaimStatus.REJECTED,
        ClaimStatus.CANCELLED,
    ),
    ClaimStatus.PENDING_APPROVAL: (
        ClaimStatus.APPROVED,
        ClaimStatus.REJECTED,
        ClaimStatus.CANCELLED,
    ),
    ClaimStatus.APPROVED: (),
    ClaimStatus.REJECTED: (),
    ClaimStatus.CANCELLED: (),
}

# Status -> timestamp field stamped on entering it.
STATUS_TIMESTAMPS = {
    ClaimStatus.SUBMITTED: 'submitted_at',
    ClaimStatus.IN_REVIEW: 'reviewed_at',
    ClaimStatus.APPROVED: 'approved_at',
    ClaimStatus.REJECTED: 'rejected_at',
}

IMMUTABLE_FIELDS = ('id', 'claim_number', 'created_at', 'version')


def generate_claim_number(now: datetime) -> str:
    return f"CLM-{now.strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


def _validate_amount(amount: Any) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ClaimValidationError(f"Claim amount must be a number, got {amount!r}")
    if value < 0:
        raise ClaimValidationError(f"Claim amount cannot be negative: {value}")
    return value


def _validate_type(claim_type: Any) -> ClaimType:
    value = coerce_enum(ClaimType, claim_type)
    if not isinstance(value, ClaimType):
        raise ClaimValidationError(f"Unknown claim type: {claim_type!r}")
    return value


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def _serialize(updates: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: format_datetime(value) if isinstance(value, datetime) else enum_value(value)
        for key, value in updates.items()
    }


class ClaimsService(BaseService):
    """Claim records: intake, lifecycle transitions and reporting."""

    async def create_claim(self, data: Union[Claim, Dict[str, Any]]) -> Claim:
        raw = data.to_dict() if isinstance(data, Claim) else dict(data)

        if not raw.get('customer_id'):
            raise ClaimValidationError("Claim needs a customer_id")
        raw['amount'] = _validate_amount(raw.get('amount', 0))
        raw['type'] = _validate_type(raw.get('type', ClaimType.WARRANTY))

        status = coerce_enum(ClaimStatus, raw.get('status') or ClaimStatus.DRAFT)
        if status not in (ClaimStatus.DRAFT, ClaimStatus.SUBMITTED):
            raise ClaimValidationError(f"New claims start as draft or submitted, not {enum_value(status)!r}")

        claim = Claim.from_dict(raw)
        now = self.now()
        claim.id = None
        claim.status = status
        claim.claim_number = generate_claim_number(now)
        claim.created_at = now
        claim.updated_at = now
        if status == ClaimStatus.SUBMITTED and claim.submitted_at is None:
            claim.submitted_at = now

        record = claim.to_dict()
        record.pop('id')
        stored = await self.store.create(CLAIMS, record)

        logger.info(f"Created claim {claim.claim_number} ({stored['id']}) for customer {claim.customer_id}")
        return Claim.from_dict(stored)

    async def get_claim(self, claim_id: str) -> Optional[Claim]:
        try:
            record = await self.store.get(CLAIMS, claim_id)
        except StoreError as exc:
            self._read_failed('get_claim', exc)
            return None
        return Claim.from_dict(record) if record else None

    async def list_claims(
        self,
        status: Optional[Union[ClaimStatus, str]] = None,
        customer_id: Optional[str] = None,
    ) -> List[Claim]:
        filters = {}
        if status:
            filters['status'] = enum_value(status)
        if customer_id:
            filters['customer_id'] = customer_id

        try:
            records = await self.store.list(CLAIMS, filters, order_by='created_at', descending=True)
        except StoreError as exc:
            self._read_failed('list_claims', exc)
            return []
        return [Claim.from_dict(r) for r in records]

    async def update_claim(self, claim_id: str, updates: Dict[str, Any]) -> Claim:
        current = await self.store.get(CLAIMS, claim_id)
        if current is None:
            raise DocumentNotFoundError(CLAIMS, claim_id)

        updates = dict(updates)
        if 'status' in updates:
            raise ClaimValidationError("Claim status changes go through update_claim_status")
        if 'claim_number' in updates and updates['claim_number'] != current.get('claim_number'):
            raise ClaimValidationError("Claim number cannot be changed")
        for key in IMMUTABLE_FIELDS:
            updates.pop(key, None)

        if 'amount' in updates:
            updates['amount'] = _validate_amount(updates['amount'])
        if 'type' in updates:
            updates['type'] = _validate_type(updates['type'])

        updates['updated_at'] = self.now()
        record = await self.store.update(
            CLAIMS, claim_id, _serialize(updates), expected_version=current.get('version')
        )
        return Claim.from_dict(record)

    async def update_claim_status(
        self,
        claim_id: str,
        status: Union[ClaimStatus, str],
        reason: Optional[str] = None,
    ) -> Claim:
        target = coerce_enum(ClaimStatus, status)
        if not isinstance(target, ClaimStatus):
            raise ClaimValidationError(f"Unknown claim status: {status!r}")

        current = await self.store.get(CLAIMS, claim_id)
        if current is None:
            raise DocumentNotFoundError(CLAIMS, claim_id)

        previous = coerce_enum(ClaimStatus, current.get('status'))
        if target not in CLAIM_TRANSITIONS.get(previous, ()):
            raise InvalidTransitionError('claim', enum_value(previous), target.value)

        now = self.now()
        updates: Dict[str, Any] = {'status': target, 'updated_at': now}
        stamp = STATUS_TIMESTAMPS.get(target)
        if stamp and not (target == ClaimStatus.SUBMITTED and current.get(stamp)):
            updates[stamp] = now
        if target == ClaimStatus.REJECTED:
            updates['rejection_reason'] = reason

        record = await self.store.update(
            CLAIMS, claim_id, _serialize(updates), expected_version=current.get('version')
        )

        logger.info(f"Claim {current.get('claim_number')} moved {enum_value(previous)} -> {target.value}")
        self.audit.log_status_change(claim_id, enum_value(previous), target.value, reason)
        return Claim.from_dict(record)

    async def delete_claim(self, claim_id: str) -> Claim:
        return await self.update_claim_status(claim_id, ClaimStatus.CANCELLED)

    async def assign_claim(self, claim_id: str, approver_id: str) -> Claim:
        record = await self.store.update(CLAIMS, claim_id, {
            'assigned_to': approver_id,
            'updated_at': format_datetime(self.now()),
        })
        logger.info(f"Claim {claim_id} assigned to {approver_id}")
        return Claim.from_dict(record)

    async def get_claims_stats(self) -> ClaimsStats:
        try:
            records = await self.store.list(CLAIMS)
        except StoreError as exc:
            self._read_failed('get_claims_stats', exc)
            return ClaimsStats()

        claims = [Claim.from_dict(r) for r in records]
        stats = ClaimsStats(total=len(claims))
        processing_hours = []
        auto_approved = 0

        for claim in claims:
            status = enum_value(claim.status)
            stats.by_status[status] = stats.by_status.get(status, 0) + 1
            claim_type = enum_value(claim.type)
            stats.by_type[claim_type] = stats.by_type.get(claim_type, 0) + 1
            stats.total_amount += claim.amount

            if claim.submitted_at and claim.approved_at:
                hours = (
                    _as_utc(claim.approved_at) - _as_utc(claim.submitted_at)
                ).total_seconds() / 3600
                processing_hours.append(hours)
                if hours < AUTO_APPROVAL_WINDOW_HOURS:
                    auto_approved += 1

        if claims:
            stats.average_amount = stats.total_amount / len(claims)
            stats.approval_rate = stats.by_status[ClaimStatus.APPROVED.value] / len(claims) * 100
        if processing_hours:
            stats.average_processing_hours = sum(processing_hours) / len(processing_hours)
            stats.auto_approval_rate = auto_approved / len(processing_hours) * 100
        return stats

    async def get_claims_timeline(self, days: int = 30) -> List[ClaimTimeline]:
        try:
            records = await self.store.list(CLAIMS, order_by='created_at')
        except StoreError as exc:
            self._read_failed('get_claims_timeline', exc)
            return []

        cutoff = self.now() - timedelta(days=days)
        timeline: Dict[str, ClaimTimeline] = OrderedDict()
        for claim in (Claim.from_dict(r) for r in records):
            if claim.created_at is None or _as_utc(claim.created_at) < cutoff:
                continue
            day = _as_utc(claim.created_at).date().isoformat()
            entry = timeline.setdefault(day, ClaimTimeline(date=day))
            entry.count += 1
            entry.amount += claim.amount

        return sorted(timeline.values(), key=lambda e: e.date)

    async def get_pending_approvals(self, user_id: str) -> List[Claim]:
        try:
            records = await self.store.list(
                CLAIMS,
                {'status': ClaimStatus.PENDING_APPROVAL.value, 'assigned_to': user_id},
                order_by='created_at',
                descending=True,
            )
        except StoreError as exc:
            self._read_failed('get_pending_approvals', exc)
            return []
        return [Claim.from_dict(r) for r in records]

    async def subscribe_to_claims(
        self,
        callback: Callable[[List[Claim]], Any],
        status: Optional[Union[ClaimStatus, str]] = None,
    ) -> Unsubscribe:
        filters = {'status': enum_value(status)} if status else None
        return await self.store.subscribe(
            CLAIMS,
            self._typed_callback(callback, lambda records: [Claim.from_dict(r) for r in records]),
            filters,
            order_by='created_at',
            descending=True,
        )
