"""
Unit Tests for Referral Distribution

Tests cover:
1. Direct/indirect split with floor rounding
2. Conservation of the origin amount
3. Second-level depth cap
4. Partial failure isolation between legs
5. Referral graph constraints
"""

from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from impact_ledger.errors import ConflictError, PartialFailureError, PersistenceError, ValidationError
from impact_ledger.models import CreditSource
from impact_ledger.service import CreditLedger
from rewards.referrals import InMemoryReferralGraph, ReferralDistributor


USER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
REFERRER_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
GRAND_REFERRER_ID = UUID("770e8400-e29b-41d4-a716-446655440002")
GREAT_GRAND_REFERRER_ID = UUID("880e8400-e29b-41d4-a716-446655440003")


def make_distributor(ledger=None, chain=(USER_ID, REFERRER_ID, GRAND_REFERRER_ID)):
    ledger = ledger or CreditLedger()
    graph = InMemoryReferralGraph(ledger.storage)
    for referred, referrer in zip(chain, chain[1:]):
        graph.link(referred, referrer)
    return ReferralDistributor(ledger, graph)


class TestSplit:
    """Tests for the payout arithmetic."""

    def test_two_level_chain(self):
        distributor = make_distributor()

        result = distributor.distribute(USER_ID, 1000, CreditSource.QUEST, "q-1")

        assert result.direct_referrer_id == REFERRER_ID
        assert result.indirect_referrer_id == GRAND_REFERRER_ID
        assert result.direct_awarded == Decimal("700")
        assert result.indirect_awarded == Decimal("300")
        assert distributor.ledger.balance_of(REFERRER_ID) == Decimal("700")
        assert distributor.ledger.balance_of(GRAND_REFERRER_ID) == Decimal("300")

    def test_floor_rounding(self):
        """Test that 25 splits into 17 and 7."""
        distributor = make_distributor()

        assert distributor.split(25) == (Decimal("17"), Decimal("7"))

    def test_conservation(self):
        """Test that payouts never exceed the origin amount."""
        distributor = make_distributor()

        for amount in range(0, 500):
            direct, indirect = distributor.split(amount)
            assert direct + indirect <= amount
            assert direct >= 0 and indirect >= 0

    def test_tiny_amount_writes_nothing(self):
        distributor = make_distributor()

        result = distributor.distribute(USER_ID, 1, CreditSource.QUEST, "q-1")

        assert result.total_awarded == 0
        assert distributor.ledger.credit_transactions(REFERRER_ID) == []
        assert distributor.ledger.credit_transactions(GRAND_REFERRER_ID) == []


class TestChainShape:
    """Tests for how far payouts propagate."""

    def test_no_referrer(self):
        distributor = make_distributor(chain=())

        result = distributor.distribute(USER_ID, 1000, CreditSource.QUEST)

        assert result.direct_referrer_id is None
        assert result.total_awarded == 0

    def test_single_level(self):
        distributor = make_distributor(chain=(USER_ID, REFERRER_ID))

        result = distributor.distribute(USER_ID, 100, CreditSource.QUEST)

        assert result.direct_awarded == Decimal("70")
        assert result.indirect_referrer_id is None
        assert result.indirect_awarded == 0

    def test_depth_capped_at_two(self):
        """Test that the third ancestor receives nothing."""
        distributor = make_distributor(
            chain=(USER_ID, REFERRER_ID, GRAND_REFERRER_ID, GREAT_GRAND_REFERRER_ID)
        )

        distributor.distribute(USER_ID, 1000, CreditSource.CONTRIBUTION, "c-1")

        assert distributor.ledger.balance_of(GREAT_GRAND_REFERRER_ID) == 0

    def test_entries_reference_originating_user(self):
        distributor = make_distributor()

        distributor.distribute(USER_ID, 100, CreditSource.QUEST, "q-7")

        direct = distributor.ledger.credit_transactions(REFERRER_ID)[0]
        indirect = distributor.ledger.credit_transactions(GRAND_REFERRER_ID)[0]
        assert direct.source == CreditSource.REFERRAL_DIRECT
        assert indirect.source == CreditSource.REFERRAL_INDIRECT
        assert str(USER_ID) in direct.description
        assert str(USER_ID) in indirect.description
        assert direct.origin_event_id == f"{USER_ID}:q-7"


class TestPartialFailure:
    """Tests for independent payout legs."""

    def make_failing_ledger(self, failing_user):
        class FailingLedger(CreditLedger):
            def credit(self, user_id, *args, **kwargs):
                if user_id == failing_user:
                    raise PersistenceError("write timeout")
                return super().credit(user_id, *args, **kwargs)

        return FailingLedger()

    def test_indirect_failure_keeps_direct(self):
        distributor = make_distributor(ledger=self.make_failing_ledger(GRAND_REFERRER_ID))

        with pytest.raises(PartialFailureError) as exc_info:
            distributor.distribute(USER_ID, 1000, CreditSource.QUEST, "q-1")

        assert exc_info.value.result.direct_awarded == Decimal("700")
        assert exc_info.value.result.indirect_awarded == 0
        assert list(exc_info.value.failures) == ["referral_indirect"]
        assert distributor.ledger.balance_of(REFERRER_ID) == Decimal("700")

    def test_direct_failure_keeps_indirect(self):
        distributor = make_distributor(ledger=self.make_failing_ledger(REFERRER_ID))

        with pytest.raises(PartialFailureError) as exc_info:
            distributor.distribute(USER_ID, 1000, CreditSource.QUEST, "q-1")

        assert exc_info.value.result.failures == ["referral_direct"]
        assert distributor.ledger.balance_of(GRAND_REFERRER_ID) == Decimal("300")


class TestReferralGraph:
    """Tests for referral edge constraints."""

    def test_link_and_lookup(self):
        graph = InMemoryReferralGraph()

        edge = graph.link(USER_ID, REFERRER_ID)

        assert edge.referrer_id == REFERRER_ID
        assert graph.referrer_of(USER_ID) == REFERRER_ID
        assert graph.referrer_of(REFERRER_ID) is None
        assert graph.referred_users(REFERRER_ID) == [USER_ID]

    def test_self_referral_rejected(self):
        with pytest.raises(ValidationError):
            InMemoryReferralGraph().link(USER_ID, USER_ID)

    def test_edge_is_immutable(self):
        graph = InMemoryReferralGraph()
        graph.link(USER_ID, REFERRER_ID)

        with pytest.raises(ConflictError):
            graph.link(USER_ID, uuid4())

    def test_cycle_rejected(self):
        graph = InMemoryReferralGraph()
        graph.link(USER_ID, REFERRER_ID)
        graph.link(REFERRER_ID, GRAND_REFERRER_ID)

        with pytest.raises(ValidationError):
            graph.link(GRAND_REFERRER_ID, USER_ID)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
