"""
conftest.py - Shared pytest fixtures for the wallet core tests

Provides:
- a throwaway SQLite database per test (aiosqlite)
- a controllable clock
- an in-memory Redis double for OTP storage
- PayFlex / Monnify clients wired to httpx.MockTransport
- ledger, services and the transaction processor built on top
"""
import json
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List

import httpx
import pytest

from paylink.core.constants import Category
from paylink.db.session import build_engine, build_session_factory, create_tables
from paylink.services.audit.audit import AuditLogger
from paylink.services.fraud.risk_scorer import RiskScorer
from paylink.services.fraud.security import OTPService, SecurityService
from paylink.services.payments.monnify import MonnifyClient
from paylink.services.payments.payflex import PayFlexClient
from paylink.services.payments.processor import TransactionProcessor
from paylink.services.referrals.service import ReferralService
from paylink.services.rewards.service import RewardService
from paylink.services.savings.service import SavingsService
from paylink.services.wallet.ledger import WalletLedger

START = datetime(2025, 3, 1, 12, 0, 0)


# =============================================================================
# HELPERS
# =============================================================================

class Clock:
    """Manually advanced naive-UTC clock"""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class InMemoryRedis:
    """The handful of hash commands OTPService uses"""

    def __init__(self):
        self.store: Dict[str, Dict[str, str]] = {}
        self.ttl: Dict[str, int] = {}

    async def hset(self, key: str, mapping: Dict[str, Any]) -> int:
        self.store.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})
        return len(mapping)

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttl[key] = seconds
        return key in self.store

    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(self.store.get(key, {}))

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        data = self.store.setdefault(key, {})
        data[field] = str(int(data.get(field, "0")) + amount)
        return int(data[field])

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttl.pop(key, None)
        return removed


class ProviderStub:
    """
    Route table for httpx.MockTransport.

    `routes[(method, path)]` is a callable(request) -> httpx.Response or an
    exception instance to raise. Every request is recorded.
    """

    def __init__(self):
        self.routes: Dict[tuple, Callable[[httpx.Request], httpx.Response] | Exception] = {}
        self.requests: List[httpx.Request] = []

    def json(self, method: str, path: str, body: Dict[str, Any], status_code: int = 200) -> None:
        self.routes[(method, path)] = lambda request: httpx.Response(status_code, json=body)

    def fail(self, method: str, path: str, exc: Exception) -> None:
        self.routes[(method, path)] = exc

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        if isinstance(route, Exception):
            raise route
        return route(request)

    def last_json(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'paylink.db'}")
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def audit_logger(tmp_path, clock) -> AuditLogger:
    return AuditLogger(tmp_path / "audit", clock=clock)


@pytest.fixture
def ledger(session_factory, clock) -> WalletLedger:
    return WalletLedger(session_factory, clock=clock)


@pytest.fixture
def redis_client() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def payflex_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def monnify_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
async def payflex(payflex_stub):
    client = PayFlexClient(base_url="https://payflex.test", api_key="pf-key", transport=payflex_stub.transport)
    yield client
    await client.close()


@pytest.fixture
async def monnify(monnify_stub):
    client = MonnifyClient(
        base_url="https://monnify.test",
        api_key="mn-key",
        secret_key="mn-secret",
        contract_code="1234567890",
        transport=monnify_stub.transport,
    )
    yield client
    await client.close()


@pytest.fixture
def risk_scorer(session_factory, audit_logger, clock) -> RiskScorer:
    return RiskScorer(session_factory, audit_logger=audit_logger, clock=clock)


@pytest.fixture
def security(ledger, audit_logger, clock) -> SecurityService:
    return SecurityService(ledger, audit_logger=audit_logger, clock=clock)


@pytest.fixture
def otp_service(redis_client) -> OTPService:
    return OTPService(redis_client)


@pytest.fixture
def savings(ledger, clock) -> SavingsService:
    return SavingsService(ledger, clock=clock)


@pytest.fixture
def rewards(ledger, payflex, clock) -> RewardService:
    return RewardService(ledger, payflex=payflex, clock=clock)


@pytest.fixture
def referrals(ledger, clock) -> ReferralService:
    return ReferralService(ledger, clock=clock)


@pytest.fixture
def processor(ledger, risk_scorer, security, otp_service, payflex, monnify, audit_logger, clock):
    return TransactionProcessor(
        ledger=ledger,
        risk_scorer=risk_scorer,
        security=security,
        otp_service=otp_service,
        payflex=payflex,
        monnify=monnify,
        audit_logger=audit_logger,
        clock=clock,
    )


@pytest.fixture
async def user(ledger):
    """A funded user with a phone number"""
    return await ledger.create_user(
        "user-1",
        email="ada@example.com",
        phone_number="08031234567",
        display_name="Ada Obi",
        wallet_balance=Decimal("10000"),
        savings_wallet=Decimal("2000"),
    )


async def spend(ledger: WalletLedger, user_id: str, amount: str, times: int = 1) -> None:
    """Record successful airtime debits to build up history"""
    for _ in range(times):
        await ledger.debit(user_id, Decimal(amount), Category.AIRTIME, description="history")
