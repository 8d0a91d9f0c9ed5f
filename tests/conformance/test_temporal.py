"""
Temporal Conformance Tests

INVARIANT: Interest is simple, on-demand and monotone in elapsed time.

    ∀ untouched position p, t1 <= t2:
        debt(p, t1) <= debt(p, t2)
        debt(p, t) == principal + accrued
                      + principal * rate.num * elapsed // (rate.den * SECONDS_PER_YEAR)

Elapsed time is counted in whole seconds. No background job accrues interest;
only mutating calls move it from pending into the position.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta

from tests.fakes import build_env
from nftvault import WAD, SECONDS_PER_YEAR


principals = st.integers(min_value=1, max_value=8500 * WAD)
durations = st.integers(min_value=0, max_value=50 * SECONDS_PER_YEAR)


class TestAccrualProperties:

    @given(principal=principals, seconds=durations)
    @settings(max_examples=200, deadline=None)
    def test_closed_form(self, principal, seconds):
        """
        PROPERTY: Pending debt equals the simple-interest formula.
        """
        env = build_env()
        token_id = env.mint_nft(env.alice)
        env.vault.borrow(env.alice, token_id, principal)
        env.clock.advance(seconds)

        expected = principal + principal * 2 * seconds // (10000 * SECONDS_PER_YEAR)
        assert env.vault.get_debt_amount(token_id) == expected

    @given(principal=principals, t1=durations, t2=durations)
    @settings(max_examples=100, deadline=None)
    def test_monotone(self, principal, t1, t2):
        """
        PROPERTY: An untouched position's debt never decreases over time.
        """
        t1, t2 = sorted((t1, t2))
        env = build_env()
        token_id = env.mint_nft(env.alice)
        env.vault.borrow(env.alice, token_id, principal)

        env.clock.advance(t1)
        early = env.vault.get_debt_amount(token_id)
        env.clock.advance(t2 - t1)
        late = env.vault.get_debt_amount(token_id)
        assert early <= late

    @given(principal=principals, micros=st.integers(min_value=0, max_value=999_999))
    @settings(max_examples=50, deadline=None)
    def test_whole_seconds_only(self, principal, micros):
        """
        PROPERTY: Sub-second time never accrues interest.
        """
        env = build_env()
        token_id = env.mint_nft(env.alice)
        env.vault.borrow(env.alice, token_id, principal)
        env.clock.advance(timedelta(microseconds=micros))
        assert env.vault.get_debt_amount(token_id) == principal


class TestAccrualOnDemand:

    def test_reads_do_not_accrue(self, env, borrowed):
        env.clock.advance(timedelta(days=365))
        env.vault.get_debt_amount(borrowed)
        env.vault.is_liquidatable(borrowed)
        assert env.vault.get_position(borrowed).accrued_interest == 0
        assert env.vault.get_position(borrowed).last_accrual == env.clock.now() - timedelta(days=365)

    def test_mutation_accrues(self, env, borrowed):
        env.clock.advance(timedelta(days=365))
        env.fund(env.alice, 1)
        env.vault.repay(env.alice, borrowed, 1)
        position = env.vault.get_position(borrowed)
        assert position.accrued_interest == 1_700_000_000_000_000_000 - 1
        assert position.last_accrual == env.clock.now()

    def test_collect_does_not_accrue(self, env, borrowed):
        env.clock.advance(timedelta(days=365))
        env.vault.collect(env.keeper)
        assert env.vault.get_position(borrowed).accrued_interest == 0

    def test_zero_elapsed_adds_nothing(self, env, borrowed):
        env.vault.borrow(env.alice, borrowed, 1)
        assert env.vault.get_position(borrowed).accrued_interest == 0


class TestTemporalOrdering:

    def test_log_in_execution_order(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 100 * WAD)
        env.clock.advance(timedelta(hours=1))
        env.vault.borrow(env.alice, token_id, 100 * WAD)
        env.clock.advance(timedelta(hours=1))
        env.vault.collect(env.keeper)

        log = env.vault.transaction_log
        assert [tx.sequence_number for tx in log] == list(range(len(log)))
        timestamps = [tx.timestamp for tx in log]
        assert timestamps == sorted(timestamps)

    def test_timestamps_from_vault_clock(self, env, token_id):
        env.clock.advance(timedelta(days=3))
        env.vault.borrow(env.alice, token_id, 1)
        assert env.vault.transaction_log[-1].timestamp == env.clock.now()
