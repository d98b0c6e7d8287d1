from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import CollectorRegistry

from claims_engine.config.settings import (
    ClaimsEngineConfig,
    DecisioningConfig,
    Environment,
    MonitoringConfig,
    StoreBackend,
    StoreConfig,
)
from claims_engine.decisioning import ClaimDecisioningPipeline
from claims_engine.models import Claim, ClaimRule, ClaimType, RuleAction, RuleCondition
from claims_engine.monitoring.metrics import MetricsCollector
from claims_engine.services import ClaimsService, FraudAlertService, RulesService, WorkflowService
from claims_engine.store.memory import InMemoryDocumentStore

FIXED_NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


def make_claim(**overrides) -> Claim:
    data = dict(
        customer_id="cust-1",
        customer_name="Jane Doe",
        amount=50000,
        type=ClaimType.WARRANTY,
        category="electronics",
        description="screen cracked after one week",
    )
    data.update(overrides)
    return Claim(**data)


def make_rule(name="rule", conditions=None, action="auto_approve", priority=1, status="active", **params) -> ClaimRule:
    return ClaimRule(
        name=name,
        conditions=[RuleCondition.from_dict(c) for c in conditions or []],
        actions=[RuleAction(type=action, parameters=params)],
        priority=priority,
        status=status,
    )


def approval_workflow(*steps, name="Standard approval", **extra):
    """Workflow payload with one approval step per ``(approvers, policy)`` pair."""
    payload = dict(
        name=name,
        status="active",
        steps=[
            {
                "id": f"step-{index + 1}",
                "type": "approval",
                "name": f"Approval {index + 1}",
                "config": {"approvers": list(approvers), "approval_type": policy, "timeout_hours": 24},
            }
            for index, (approvers, policy) in enumerate(steps)
        ],
    )
    payload.update(extra)
    return payload


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return ClaimsEngineConfig(
        environment=Environment.TESTING,
        store=StoreConfig(backend=StoreBackend.MEMORY, key_prefix="test"),
        decisioning=DecisioningConfig(
            default_workflow_id=None,
            enable_fraud_scoring=True,
            fraud_alert_threshold=40,
            history_limit=500,
        ),
        monitoring=MonitoringConfig(enable_prometheus=False, log_level="DEBUG", log_format="standard"),
    )


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return MetricsCollector(registry)


@pytest.fixture
def service_kwargs(config, metrics, clock):
    return dict(config=config, metrics=metrics, clock=clock)


@pytest.fixture
def claims_service(store, service_kwargs):
    return ClaimsService(store, **service_kwargs)


@pytest.fixture
def rules_service(store, service_kwargs):
    return RulesService(store, **service_kwargs)


@pytest.fixture
def fraud_service(store, service_kwargs):
    return FraudAlertService(store, **service_kwargs)


@pytest.fixture
def workflow_service(store, service_kwargs):
    return WorkflowService(store, **service_kwargs)


@pytest.fixture
def pipeline(store, config, metrics, clock):
    return ClaimDecisioningPipeline(store=store, config=config, metrics=metrics, clock=clock)
