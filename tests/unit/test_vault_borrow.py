"""
test_vault_borrow.py - Unit tests for NFTVault.borrow

Tests:
- First borrow: escrow, net credit, fee and debt aggregates
- Credit ceiling, exactly at and one unit over
- Top-ups: owner only, accrual before the fee
- Fresh oracle reads on every borrow
- Rejections leave no trace
- Accessors: get_debt_amount, limits, positions_of
"""

import pytest
from dataclasses import replace
from datetime import timedelta

from tests.fakes import SwitchableOracle
from nftvault import (
    WAD, OperationType, Position,
    InsufficientCollateral, Unauthorized, InvalidAmount, PriceUnavailable,
    NotOwnerNorApproved, NotInitialized,
)


NET_8500 = 8474_500_000_000_000_000_000
FEE_8500 = 25_500_000_000_000_000_000


class TestFirstBorrow:

    def test_credits_net_of_fee(self, env, token_id):
        net = env.vault.borrow(env.alice, token_id, 8500 * WAD)
        assert net == NET_8500
        assert env.clink.balance_of(env.alice) == NET_8500

    def test_escrows_collateral(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 1000 * WAD)
        assert env.nft.owner_of(token_id) == env.vault.address

    def test_aggregates(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 8500 * WAD)
        assert env.vault.total_debt_amount == 8500 * WAD
        assert env.vault.total_fee_collected == FEE_8500

    def test_position_recorded(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 100 * WAD)
        assert env.vault.get_position(token_id) == Position(
            token_id, env.alice, 100 * WAD, 0, env.clock.now(), True
        )

    def test_transaction_logged(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 100 * WAD)
        tx = env.vault.transaction_log[-1]
        assert tx.operation == OperationType.BORROW
        assert tx.token_id == token_id
        assert tx.sender == env.alice
        assert tx.debt_delta == 100 * WAD
        assert [m.memo for m in tx.moves] == ["escrow", "borrow"]
        assert tx.vault_address == env.vault.address

    def test_sequence_numbers_monotonic(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 100 * WAD)
        env.vault.borrow(env.alice, token_id, 100 * WAD)
        sequences = [tx.sequence_number for tx in env.vault.transaction_log]
        assert sequences == sorted(sequences)
        assert len(set(tx.exec_id for tx in env.vault.transaction_log)) == len(sequences)


class TestCreditCeiling:

    def test_exactly_at_limit(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 8500 * WAD)
        assert env.vault.get_debt_amount(token_id) == env.vault.get_credit_limit(token_id)

    def test_one_unit_over_limit(self, env, token_id):
        with pytest.raises(InsufficientCollateral):
            env.vault.borrow(env.alice, token_id, 8500 * WAD + 1)

    def test_top_up_to_limit_then_over(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 8000 * WAD)
        env.vault.borrow(env.alice, token_id, 500 * WAD)
        with pytest.raises(InsufficientCollateral):
            env.vault.borrow(env.alice, token_id, 1)

    def test_accrued_interest_consumes_headroom(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 8500 * WAD - 10 ** 18)
        env.clock.advance(timedelta(days=3650))
        # 10 years at 2/10000 on ~8499 is ~17 of interest, more than the 1 of headroom
        with pytest.raises(InsufficientCollateral):
            env.vault.borrow(env.alice, token_id, 10 ** 17)

    def test_price_rise_allows_more(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 8500 * WAD)
        env.set_price(token_id, 20000 * WAD)
        env.vault.borrow(env.alice, token_id, 8500 * WAD)
        assert env.vault.total_debt_amount == 17000 * WAD


class TestTopUp:

    def test_only_owner_may_top_up(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 100 * WAD)
        with pytest.raises(Unauthorized):
            env.vault.borrow(env.bob, token_id, 100 * WAD)

    def test_accrues_before_fee(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 1000 * WAD)
        env.clock.advance(timedelta(days=365))
        env.vault.borrow(env.alice, token_id, 1000 * WAD)
        interest = 1000 * WAD * 2 // 10000
        position = env.vault.get_position(token_id)
        assert position.accrued_interest == interest
        assert position.principal == 2000 * WAD
        assert position.last_accrual == env.clock.now()
        assert env.vault.total_debt_amount == 2000 * WAD + interest
        assert env.vault.total_fee_collected == 2 * (1000 * WAD * 3 // 1000) + interest

    def test_no_second_escrow(self, env, token_id):
        env.vault.borrow(env.alice, token_id, 100 * WAD)
        env.vault.borrow(env.alice, token_id, 100 * WAD)
        assert [m.memo for m in env.vault.transaction_log[-1].moves] == ["borrow"]


class TestBorrowRejections:

    @pytest.mark.parametrize("amount", [0, -5, 1.0, True])
    def test_invalid_amount(self, env, token_id, amount):
        with pytest.raises(InvalidAmount):
            env.vault.borrow(env.alice, token_id, amount)

    def test_unpriced_token(self, env):
        token_id = env.nft.mint(env.owner, env.alice)
        env.nft.set_approval_for_all(env.alice, env.vault.address, True)
        with pytest.raises(PriceUnavailable):
            env.vault.borrow(env.alice, token_id, 1)

    def test_not_approved(self, env):
        token_id = env.nft.mint(env.owner, env.alice)
        env.set_price(token_id, 10000 * WAD)
        with pytest.raises(NotOwnerNorApproved):
            env.vault.borrow(env.alice, token_id, 1)

    def test_borrowing_against_someone_elses_token(self, env, token_id):
        env.nft.set_approval_for_all(env.bob, env.vault.address, True)
        with pytest.raises(NotOwnerNorApproved):
            env.vault.borrow(env.bob, token_id, 1)

    def test_rejection_leaves_no_trace(self, env, token_id):
        digest = env.vault.state_digest()
        log_length = len(env.vault.transaction_log)
        with pytest.raises(InsufficientCollateral):
            env.vault.borrow(env.alice, token_id, 9000 * WAD)
        assert env.vault.state_digest() == digest
        assert len(env.vault.transaction_log) == log_length
        assert env.nft.owner_of(token_id) == env.alice
        assert env.clink.balance_of(env.alice) == 0

    def test_master_cannot_borrow(self, env, token_id):
        with pytest.raises(NotInitialized):
            env.master.borrow(env.alice, token_id, 1)


class TestFreshValuation:

    def test_oracle_queried_every_borrow(self, env):
        oracle = SwitchableOracle()
        env.book.deploy(oracle, "switchable")
        vault = env.deploy(replace(env.params, oracle=oracle.address))
        token_id = env.nft.mint(env.owner, env.alice)
        env.nft.set_approval_for_all(env.alice, vault.address, True)
        oracle.set_price(env.nft.address, token_id, 10000 * WAD)

        vault.borrow(env.alice, token_id, 100 * WAD)
        vault.borrow(env.alice, token_id, 100 * WAD)
        assert oracle.calls == 2


class TestAccessors:

    def test_get_debt_amount_includes_pending_interest(self, env, borrowed):
        env.clock.advance(timedelta(days=365))
        assert env.vault.get_debt_amount(borrowed) == 8500 * WAD + 1_700_000_000_000_000_000
        # reading does not accrue
        assert env.vault.get_position(borrowed).accrued_interest == 0
        assert env.vault.total_debt_amount == 8500 * WAD

    def test_get_debt_amount_unknown_token(self, env):
        assert env.vault.get_debt_amount(12345) == 0

    def test_limits(self, env, token_id):
        assert env.vault.get_credit_limit(token_id) == 8500 * WAD
        assert env.vault.get_liquidation_limit(token_id) == 9500 * WAD

    def test_positions_of(self, env):
        first = env.mint_nft(env.alice)
        second = env.mint_nft(env.bob)
        env.vault.borrow(env.alice, first, 10 * WAD)
        env.vault.borrow(env.bob, second, 10 * WAD)
        assert [p.token_id for p in env.vault.positions_of(env.alice)] == [first]
        assert [p.token_id for p in env.vault.open_positions()] == [first, second]

    def test_is_liquidatable(self, env, borrowed):
        assert not env.vault.is_liquidatable(borrowed)
        env.set_price(borrowed, 8000 * WAD)
        assert env.vault.is_liquidatable(borrowed)
        assert not env.vault.is_liquidatable(999)
