"""
Atomicity Conformance Tests

INVARIANT: Vault operations are all-or-nothing.

    ∀ operation O:
        O succeeds ⟹ position, aggregates and every token move are applied
        O fails ⟹ vault state is exactly as before O, and every token
                   move O made is reverted

Failures may come from validation, the oracle, either token, or the swapper
callback, at any point of the operation.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from dataclasses import replace

from tests.fakes import (
    OPERATIONS, OperationDriver, SwitchableOracle, BadValueOracle, FailingSwapper,
    credit_state, collateral_state,
)
from nftvault import WAD, PriceUnavailable, Unauthorized, VaultError


def observe(env):
    return (
        env.vault.state_digest(),
        len(env.vault.transaction_log),
        credit_state(env.clink),
        collateral_state(env.nft),
    )


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(st.lists(OPERATIONS, max_size=30))
    @settings(max_examples=100, deadline=None)
    def test_rejected_operations_leave_no_trace(self, ops):
        """
        PROPERTY: Every rejected operation leaves vault and tokens unchanged.
        """
        driver = OperationDriver()
        for op in ops:
            if op[0] == "advance":
                driver.run(op)
                continue
            before = observe(driver.env)
            if not driver.run(op):
                assert observe(driver.env) == before, op

    @given(st.lists(OPERATIONS, max_size=30), st.integers(min_value=1, max_value=9000 * WAD))
    @settings(max_examples=50, deadline=None)
    def test_mint_failure_undoes_escrow(self, ops, amount):
        """
        PROPERTY: When the credit mint fails after the collateral was
        escrowed, the collateral goes back to its owner.
        """
        driver = OperationDriver().run_all(ops)
        env = driver.env
        fresh = env.mint_nft(env.alice)
        env.clink.remove_minter(env.owner, env.vault.address)

        before = observe(env)
        with pytest.raises(VaultError):
            env.vault.borrow(env.alice, fresh, amount)
        assert observe(env) == before
        assert env.nft.owner_of(fresh) == env.alice


class TestAtomicityScenarios:

    def test_escrowed_then_unauthorized_mint(self, env, token_id):
        env.clink.remove_minter(env.owner, env.vault.address)
        with pytest.raises(Unauthorized):
            env.vault.borrow(env.alice, token_id, 100 * WAD)
        assert env.nft.owner_of(token_id) == env.alice
        assert env.vault.get_position(token_id) is None
        assert env.vault.total_debt_amount == 0
        assert env.vault.total_fee_collected == 0

    def test_oracle_failure_during_borrow(self, env):
        oracle = SwitchableOracle()
        env.book.deploy(oracle, "switchable")
        vault = env.deploy(replace(env.params, oracle=oracle.address))
        token_id = env.mint_nft(env.alice, vault=vault)
        oracle.set_price(env.nft.address, token_id, 10000 * WAD)
        vault.borrow(env.alice, token_id, 1000 * WAD)

        digest = vault.state_digest()
        oracle.failing = True
        with pytest.raises(PriceUnavailable):
            vault.borrow(env.alice, token_id, 1000 * WAD)
        assert vault.state_digest() == digest

        oracle.failing = False
        vault.borrow(env.alice, token_id, 1000 * WAD)
        assert vault.total_debt_amount == 2000 * WAD

    @pytest.mark.parametrize("value", [-1, 1.5, "10000", None, True])
    def test_malformed_valuation(self, env, value):
        oracle = BadValueOracle(value)
        env.book.deploy(oracle, "bad")
        vault = env.deploy(replace(env.params, oracle=oracle.address))
        token_id = env.mint_nft(env.alice, vault=vault)

        with pytest.raises(PriceUnavailable):
            vault.borrow(env.alice, token_id, 1)
        assert env.nft.owner_of(token_id) == env.alice
        assert vault.transaction_log[-1].operation.value == "init"

    def test_failing_swapper_restores_everything(self, env, borrowed):
        swapper = FailingSwapper(env.clink)
        env.book.deploy(swapper, "failing")
        env.clink.mint(env.owner, swapper.address, 10_000 * WAD)
        env.set_price(borrowed, 5000 * WAD)

        before = observe(env)
        oracle_before = dict(env.oracle.prices)
        with pytest.raises(RuntimeError):
            env.vault.liquidate(env.keeper, borrowed, swapper, env.keeper)
        assert observe(env) == before
        assert env.oracle.prices == oracle_before

    def test_failed_init_leaves_clone_blank(self, env):
        clone = env.master.clone()
        with pytest.raises(VaultError):
            clone.init(b"")
        assert clone.params is None
        assert clone.collateral_asset is None
        assert clone.oracle is None
