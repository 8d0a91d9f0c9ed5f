"""
conftest.py - Shared pytest fixtures for vault tests

Provides common fixtures used across unit, conformance and functional tests:
- A fresh deployment with the reference rates (env)
- Shortcuts to its vault, clock and accounts
- A collateral token already escrowed behind a maximum borrow
"""

import pytest

from nftvault import WAD

from tests.fakes import build_env


@pytest.fixture
def env():
    """Fresh deployment: tokens, oracle, swapper, master, factory and one clone."""
    return build_env()


@pytest.fixture
def vault(env):
    return env.vault


@pytest.fixture
def clock(env):
    return env.clock


@pytest.fixture
def token_id(env):
    """Collateral token owned by alice, valued at 10000, vault approved."""
    return env.mint_nft(env.alice)


@pytest.fixture
def borrowed(env, token_id):
    """alice has borrowed the 8500 maximum against token_id."""
    env.vault.borrow(env.alice, token_id, 8500 * WAD)
    return token_id
