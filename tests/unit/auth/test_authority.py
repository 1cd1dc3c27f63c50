"""
Unit tests for the local delegation authority.
"""

import asyncio

import pytest
from datetime import timedelta

from sasforge.auth.authority import LocalDelegationAuthority
from sasforge.auth.delegation import DelegationKeyBroker, DelegationKeyRequest
from sasforge.auth.descriptor import AccountIdentity
from sasforge.core.clock import FixedClock
from sasforge.exceptions import AuthorityDeniedError, AuthorityUnavailableError


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def identity():
    return AccountIdentity.for_account("acct")


def _request(identity, clock, lifetime=timedelta(minutes=5)):
    now = clock.now()
    return DelegationKeyRequest(identity=identity, start=now, expiry=now + lifetime)


class TestLocalDelegationAuthority:
    """Test key issuance and refusal."""

    @pytest.mark.asyncio
    async def test_issues_key(self, clock, identity):
        authority = LocalDelegationAuthority(tenant_id="tenant-1")
        object_id = authority.register_account("acct", object_id="principal-1")

        key = await authority.fetch_delegation_key(_request(identity, clock))

        assert object_id == "principal-1"
        assert key.signed_oid == "principal-1"
        assert key.signed_tid == "tenant-1"
        assert key.signed_service == "b"
        assert key.signed_version == "2021-08-06"
        assert key.signed_start == clock.now()
        assert key.signed_expiry == clock.now() + timedelta(minutes=5)
        assert len(key.value) == 32
        assert authority.issued_count == 1

    @pytest.mark.asyncio
    async def test_keys_are_random(self, clock, identity):
        authority = LocalDelegationAuthority(accounts=["acct"])

        first = await authority.fetch_delegation_key(_request(identity, clock))
        second = await authority.fetch_delegation_key(_request(identity, clock))

        assert first.value != second.value

    @pytest.mark.asyncio
    async def test_key_value_not_in_repr(self, clock, identity):
        authority = LocalDelegationAuthority(accounts=["acct"])

        key = await authority.fetch_delegation_key(_request(identity, clock))

        assert "value" not in repr(key)

    @pytest.mark.asyncio
    async def test_unknown_account_denied(self, clock, identity):
        authority = LocalDelegationAuthority(accounts=["other"])

        with pytest.raises(AuthorityDeniedError) as exc_info:
            await authority.fetch_delegation_key(_request(identity, clock))

        assert exc_info.value.field == "account"

    @pytest.mark.asyncio
    async def test_lifetime_over_seven_days_denied(self, clock, identity):
        authority = LocalDelegationAuthority(accounts=["acct"])

        with pytest.raises(AuthorityDeniedError):
            await authority.fetch_delegation_key(
                _request(identity, clock, timedelta(days=7, minutes=1))
            )

    @pytest.mark.asyncio
    async def test_empty_window_denied(self, clock, identity):
        authority = LocalDelegationAuthority(accounts=["acct"])

        with pytest.raises(AuthorityDeniedError):
            await authority.fetch_delegation_key(_request(identity, clock, timedelta(0)))

    @pytest.mark.asyncio
    async def test_unavailable(self, clock, identity):
        authority = LocalDelegationAuthority(accounts=["acct"])
        authority.available = False

        with pytest.raises(AuthorityUnavailableError):
            await authority.fetch_delegation_key(_request(identity, clock))

        assert authority.issued_count == 0


class TestBrokerWithLocalAuthority:
    """Test the broker against the local authority."""

    @pytest.mark.asyncio
    async def test_outage_then_recovery(self, clock, identity):
        authority = LocalDelegationAuthority(accounts=["acct"])
        broker = DelegationKeyBroker(authority, clock=clock)

        authority.available = False
        with pytest.raises(AuthorityUnavailableError):
            await broker.get_delegation_key(identity)

        authority.available = True
        key = await broker.get_delegation_key(identity)

        assert key.signed_expiry == clock.now() + timedelta(minutes=5)
        assert authority.issued_count == 1

    @pytest.mark.asyncio
    async def test_latency_with_single_flight(self, clock, identity):
        authority = LocalDelegationAuthority(accounts=["acct"], latency=0.01)
        broker = DelegationKeyBroker(authority, clock=clock)

        keys = await asyncio.gather(*(broker.get_delegation_key(identity) for _ in range(5)))

        assert authority.issued_count == 1
        assert len({id(key) for key in keys}) == 1
