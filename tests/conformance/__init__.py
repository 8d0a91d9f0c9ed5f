"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of an NFT vault.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. reconciliation.py - Aggregates equal the sum over positions
2. thresholds.py - Borrow ceiling and liquidation threshold boundaries
3. temporal.py - Simple-interest accrual over elapsed time
4. atomicity.py - All-or-nothing operations across vault and tokens
5. conservation.py - Credit supply and collateral custody
6. idempotency.py - Operations that must be safe to repeat
7. determinism.py - Reproducible state and identifiers
8. canonicalization.py - Content-addressable identity
9. concurrency.py - Per-instance mutual exclusion

These tests use hypothesis for property-based testing.
"""
