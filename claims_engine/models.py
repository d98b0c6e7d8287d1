import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

logger = logging.getLogger(__name__)

E = TypeVar('E', bound=Enum)


class ClaimType(str, Enum):
    WARRANTY = "warranty"
    EXCHANGE = "exchange"
    RETURN = "return"
    REPAIR = "repair"


class ClaimStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    IN_REVIEW = "in_review"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ClaimPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RuleStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ConditionField(str, Enum):
    AMOUNT = "amount"
    TYPE = "type"
    CATEGORY = "category"
    CUSTOMER_TIER = "customerTier"
    CLAIM_COUNT = "claimCount"
    SUBMISSION_TIME = "submissionTime"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    CONTAINS = "contains"
    IN_RANGE = "in_range"


class LogicOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class RuleActionType(str, Enum):
    AUTO_APPROVE = "auto_approve"
    AUTO_REJECT = "auto_reject"
    REQUIRE_APPROVAL = "require_approval"
    ASSIGN_TO = "assign_to"


class FraudAlertType(str, Enum):
    DUPLICATE_CLAIM = "duplicate_claim"
    UNUSUAL_AMOUNT = "unusual_amount"
    FREQUENT_CLAIMS = "frequent_claims"
    SUSPICIOUS_PATTERN = "suspicious_pattern"
    IDENTITY_MISMATCH = "identity_mismatch"
    TIMING_ANOMALY = "timing_anomaly"


class FraudSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    CONFIRMED = "confirmed"
    FALSE_POSITIVE = "false_positive"
    RESOLVED = "resolved"


class Recommendation(str, Enum):
    APPROVE = "approve"
    REVIEW = "review"
    REJECT = "reject"


class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class WorkflowStepType(str, Enum):
    APPROVAL = "approval"
    CONDITION = "condition"
    NOTIFICATION = "notification"
    ACTION = "action"


class ApprovalPolicy(str, Enum):
    ANY = "any"
    ALL = "all"
    MAJORITY = "majority"


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_INFO = "request_info"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChainStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        logger.warning(f"Unparseable timestamp: {value!r}")
        return None


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def coerce_enum(enum_cls: Type[E], value: Any) -> Union[E, Any]:
    """Map a raw value onto ``enum_cls``, keeping unknown values as they are."""
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return value


# ==================== CLAIM ====================

@dataclass
class Claim:
    customer_id: str
    amount: float
    type: Union[ClaimType, str] = ClaimType.WARRANTY
    category: str = ""
    description: str = ""
    customer_name: str = ""
    customer_email: str = ""
    status: Union[ClaimStatus, str] = ClaimStatus.DRAFT
    priority: Union[ClaimPriority, str] = ClaimPriority.MEDIUM
    id: Optional[str] = None
    claim_number: Optional[str] = None
    workflow_id: Optional[str] = None
    assigned_to: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "claim_number": self.claim_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "type": enum_value(self.type),
            "category": self.category,
            "amount": self.amount,
            "description": self.description,
            "status": enum_value(self.status),
            "priority": enum_value(self.priority),
            "workflow_id": self.workflow_id,
            "assigned_to": self.assigned_to,
            "submitted_at": format_datetime(self.submitted_at),
            "reviewed_at": format_datetime(self.reviewed_at),
            "approved_at": format_datetime(self.approved_at),
            "rejected_at": format_datetime(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Claim':
        return cls(
            id=data.get('id'),
            claim_number=data.get('claim_number'),
            customer_id=data.get('customer_id', ''),
            customer_name=data.get('customer_name', ''),
            customer_email=data.get('customer_email', ''),
            type=coerce_enum(ClaimType, data.get('type', ClaimType.WARRANTY)),
            category=data.get('category', ''),
            amount=float(data.get('amount', 0) or 0),
            description=data.get('description', '') or '',
            status=coerce_enum(ClaimStatus, data.get('status', ClaimStatus.DRAFT)),
            priority=coerce_enum(ClaimPriority, data.get('priority', ClaimPriority.MEDIUM)),
            workflow_id=data.get('workflow_id'),
            assigned_to=data.get('assigned_to'),
            submitted_at=parse_datetime(data.get('submitted_at')),
            reviewed_at=parse_datetime(data.get('reviewed_at')),
            approved_at=parse_datetime(data.get('approved_at')),
            rejected_at=parse_datetime(data.get('rejected_at')),
            rejection_reason=data.get('rejection_reason'),
            created_at=parse_datetime(data.get('created_at')),
            updated_at=parse_datetime(data.get('updated_at')),
        )


# ==================== RULES ====================

@dataclass
class RuleCondition:
    field: Union[ConditionField, str]
    operator: Union[ConditionOperator, str]
    value: Any = None
    # Joins this condition's running result to the *next* condition.
    logic_operator: Optional[LogicOperator] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": enum_value(self.field),
            "operator": enum_value(self.operator),
            "value": self.value,
            "logic_operator": enum_value(self.logic_operator),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RuleCondition':
        if not isinstance(data, dict):
            raise ValueError(f"Condition must be a mapping, got {data!r}")
        field_name = data.get('field')
        if field_name is None or 'operator' not in data:
            raise ValueError(f"Condition needs a field and an operator: {data!r}")

        raw_logic = data.get('logic_operator')
        logic = None
        if raw_logic:
            logic = coerce_enum(LogicOperator, str(raw_logic).upper())
            if not isinstance(logic, LogicOperator):
                logger.warning(f"Unknown logic operator {raw_logic!r}, defaulting to AND")
                logic = None

        field_value = coerce_enum(ConditionField, field_name)
        if not isinstance(field_value, ConditionField):
            logger.warning(f"Unknown condition field {field_name!r}")

        return cls(
            field=field_value,
            operator=coerce_enum(ConditionOperator, data['operator']),
            value=data.get('value'),
            logic_operator=logic,
        )


@dataclass
class RuleAction:
    type: Union[RuleActionType, str]
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": enum_value(self.type), "parameters": dict(self.parameters)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RuleAction':
        if not isinstance(data, dict):
            raise ValueError(f"Action must be a mapping, got {data!r}")
        if 'type' not in data:
            raise ValueError(f"Action needs a type: {data!r}")
        return cls(
            type=coerce_enum(RuleActionType, data['type']),
            parameters=dict(data.get('parameters') or {}),
        )


@dataclass
class ClaimRule:
    name: str
    conditions: List[RuleCondition] = field(default_factory=list)
    actions: List[RuleAction] = field(default_factory=list)
    priority: int = 0
    status: Union[RuleStatus, str] = RuleStatus.ACTIVE
    description: str = ""
    id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "priority": self.priority,
            "status": enum_value(self.status),
            "created_by": self.created_by,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClaimRule':
        conditions = data.get('conditions') or []
        actions = data.get('actions') or []
        if not isinstance(conditions, list) or not isinstance(actions, list):
            raise ValueError(f"Rule {data.get('id')} conditions and actions must be lists")
        return cls(
            id=data.get('id'),
            name=data.get('name', ''),
            description=data.get('description', ''),
            conditions=[RuleCondition.from_dict(c) for c in conditions],
            actions=[RuleAction.from_dict(a) for a in actions],
            priority=int(data.get('priority', 0)),
            status=coerce_enum(RuleStatus, data.get('status', RuleStatus.ACTIVE)),
            created_by=data.get('created_by'),
            created_at=parse_datetime(data.get('created_at')),
            updated_at=parse_datetime(data.get('updated_at')),
        )


@dataclass
class RuleEvaluationResult:
    matched: bool
    explanation: str
    rule: Optional[ClaimRule] = None
    action: Optional[RuleAction] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "explanation": self.explanation,
            "rule": self.rule.to_dict() if self.rule else None,
            "action": self.action.to_dict() if self.action else None,
        }


# ==================== FRAUD ====================

@dataclass
class FraudReason:
    code: str
    description: str
    weight: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FraudReason':
        return cls(
            code=data.get('code', ''),
            description=data.get('description', ''),
            weight=float(data.get('weight', 0)),
        )


@dataclass
class FraudAlert:
    claim_id: str
    claim_number: str
    alert_type: Union[FraudAlertType, str]
    risk_score: float
    severity: Union[FraudSeverity, str]
    reasons: List[FraudReason] = field(default_factory=list)
    status: Union[AlertStatus, str] = AlertStatus.OPEN
    id: Optional[str] = None
    detected_at: Optional[datetime] = None
    investigated_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "claim_id": self.claim_id,
            "claim_number": self.claim_number,
            "alert_type": enum_value(self.alert_type),
            "risk_score": self.risk_score,
            "severity": enum_value(self.severity),
            "reasons": [r.to_dict() for r in self.reasons],
            "status": enum_value(self.status),
            "detected_at": format_datetime(self.detected_at),
            "investigated_by": self.investigated_by,
            "resolved_at": format_datetime(self.resolved_at),
            "notes": self.notes,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FraudAlert':
        return cls(
            id=data.get('id'),
            claim_id=data.get('claim_id', ''),
            claim_number=data.get('claim_number', ''),
            alert_type=coerce_enum(FraudAlertType, data.get('alert_type')),
            risk_score=float(data.get('risk_score', 0)),
            severity=coerce_enum(FraudSeverity, data.get('severity', FraudSeverity.LOW)),
            reasons=[FraudReason.from_dict(r) for r in data.get('reasons') or []],
            status=coerce_enum(AlertStatus, data.get('status', AlertStatus.OPEN)),
            detected_at=parse_datetime(data.get('detected_at')),
            investigated_by=data.get('investigated_by'),
            resolved_at=parse_datetime(data.get('resolved_at')),
            notes=data.get('notes'),
            created_at=parse_datetime(data.get('created_at')),
            updated_at=parse_datetime(data.get('updated_at')),
        )


@dataclass
class AnomalyFactor:
    code: str
    name: str
    score: float
    description: str
    evidence: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AnomalyScore:
    claim_id: Optional[str]
    overall_score: float
    factors: List[AnomalyFactor]
    recommendation: Recommendation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claim_id": self.claim_id,
            "overall_score": self.overall_score,
            "factors": [f.to_dict() for f in self.factors],
            "recommendation": self.recommendation.value,
        }


@dataclass
class DuplicateClaim:
    claim_id: Optional[str]
    duplicate_claim_id: Optional[str]
    similarity: float
    matching_fields: List[str]
    time_difference_hours: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ==================== WORKFLOW ====================

@dataclass
class StepConfig:
    approvers: List[str] = field(default_factory=list)
    approval_type: Union[ApprovalPolicy, str] = ApprovalPolicy.ANY
    timeout_hours: Optional[float] = None
    # Settings of non-approval step types, kept as-is.
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "approvers": list(self.approvers),
            "approval_type": enum_value(self.approval_type),
            "timeout_hours": self.timeout_hours,
        })
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'StepConfig':
        data = dict(data or {})
        approvers = data.pop('approvers', None) or []
        approval_type = data.pop('approval_type', None) or ApprovalPolicy.ANY
        timeout_hours = data.pop('timeout_hours', None)
        return cls(
            approvers=list(approvers),
            approval_type=coerce_enum(ApprovalPolicy, approval_type),
            timeout_hours=float(timeout_hours) if timeout_hours is not None else None,
            extra=data,
        )


@dataclass
class WorkflowStep:
    id: str
    type: Union[WorkflowStepType, str]
    name: str
    config: StepConfig = field(default_factory=StepConfig)
    connections: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": enum_value(self.type),
            "name": self.name,
            "config": self.config.to_dict(),
            "connections": list(self.connections),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowStep':
        return cls(
            id=data.get('id', ''),
            type=coerce_enum(WorkflowStepType, data.get('type', '')),
            name=data.get('name', ''),
            config=StepConfig.from_dict(data.get('config')),
            connections=list(data.get('connections') or []),
        )


@dataclass
class Workflow:
    name: str
    steps: List[WorkflowStep] = field(default_factory=list)
    description: str = ""
    status: Union[WorkflowStatus, str] = WorkflowStatus.DRAFT
    is_default: bool = False
    id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "steps": [s.to_dict() for s in self.steps],
            "status": enum_value(self.status),
            "is_default": self.is_default,
            "created_by": self.created_by,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Workflow':
        return cls(
            id=data.get('id'),
            name=data.get('name', ''),
            description=data.get('description', ''),
            steps=[WorkflowStep.from_dict(s) for s in data.get('steps') or []],
            status=coerce_enum(WorkflowStatus, data.get('status', WorkflowStatus.DRAFT)),
            is_default=bool(data.get('is_default', False)),
            created_by=data.get('created_by'),
            created_at=parse_datetime(data.get('created_at')),
            updated_at=parse_datetime(data.get('updated_at')),
        )


# ==================== APPROVAL ====================

@dataclass
class Approval:
    id: str
    approver_id: str
    approver_name: str
    decision: ApprovalDecision
    timestamp: datetime
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "approver_id": self.approver_id,
            "approver_name": self.approver_name,
            "decision": self.decision.value,
            "comment": self.comment,
            "timestamp": format_datetime(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Approval':
        return cls(
            id=data.get('id', ''),
            approver_id=data.get('approver_id', ''),
            approver_name=data.get('approver_name', ''),
            decision=ApprovalDecision(data['decision']),
            comment=data.get('comment'),
            timestamp=parse_datetime(data.get('timestamp')),
        )


@dataclass
class ApprovalStep:
    step_number: int
    step_id: str
    step_name: str
    approver_ids: List[str]
    approval_type: Union[ApprovalPolicy, str]
    approvals: List[Approval] = field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_number": self.step_number,
            "step_id": self.step_id,
            "step_name": self.step_name,
            "approver_ids": list(self.approver_ids),
            "approval_type": enum_value(self.approval_type),
            "approvals": [a.to_dict() for a in self.approvals],
            "status": self.status.value,
            "due_date": format_datetime(self.due_date),
            "completed_at": format_datetime(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApprovalStep':
        return cls(
            step_number=int(data.get('step_number', 0)),
            step_id=data.get('step_id', ''),
            step_name=data.get('step_name', ''),
            approver_ids=list(data.get('approver_ids') or []),
            approval_type=coerce_enum(ApprovalPolicy, data.get('approval_type', ApprovalPolicy.ANY)),
            approvals=[Approval.from_dict(a) for a in data.get('approvals') or []],
            status=StepStatus(data.get('status', StepStatus.PENDING)),
            due_date=parse_datetime(data.get('due_date')),
            completed_at=parse_datetime(data.get('completed_at')),
        )


@dataclass
class ApprovalChain:
    claim_id: str
    workflow_id: str
    steps: List[ApprovalStep]
    current_step: int = 0
    status: ChainStatus = ChainStatus.PENDING
    version: int = 1
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def active_step(self) -> Optional[ApprovalStep]:
        if 0 <= self.current_step < len(self.steps):
            return self.steps[self.current_step]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "claim_id": self.claim_id,
            "workflow_id": self.workflow_id,
            "current_step": self.current_step,
            "steps": [s.to_dict() for s in self.steps],
            "status": self.status.value,
            "version": self.version,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApprovalChain':
        return cls(
            id=data.get('id'),
            claim_id=data.get('claim_id', ''),
            workflow_id=data.get('workflow_id', ''),
            current_step=int(data.get('current_step', 0)),
            steps=[ApprovalStep.from_dict(s) for s in data.get('steps') or []],
            status=ChainStatus(data.get('status', ChainStatus.PENDING)),
            version=int(data.get('version', 1)),
            created_at=parse_datetime(data.get('created_at')),
            updated_at=parse_datetime(data.get('updated_at')),
        )


# ==================== ANALYTICS ====================

@dataclass
class ClaimsStats:
    total: int = 0
    by_status: Dict[str, int] = field(
        default_factory=lambda: {status.value: 0 for status in ClaimStatus}
    )
    by_type: Dict[str, int] = field(default_factory=dict)
    total_amount: float = 0.0
    average_amount: float = 0.0
    average_processing_hours: float = 0.0
    approval_rate: float = 0.0
    auto_approval_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ClaimTimeline:
    date: str
    count: int = 0
    amount: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FraudStats:
    total_alerts: int = 0
    open_alerts: int = 0
    confirmed_fraud: int = 0
    false_positives: int = 0
    average_risk_score: float = 0.0
    alerts_by_severity: Dict[str, int] = field(
        default_factory=lambda: {severity.value: 0 for severity in FraudSeverity}
    )
    alerts_by_type: Dict[str, int] = field(
        default_factory=lambda: {alert_type.value: 0 for alert_type in FraudAlertType}
    )
    prevented_amount: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
