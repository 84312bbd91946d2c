"""
Test support utilities for rollout-spine tests.

Fakes and helpers that don't fit as pytest fixtures but are shared across
test modules.
"""

from __future__ import annotations


def assert_in_order(calls: list[tuple], *names: str) -> None:
    """Assert that the first occurrence of each call name appears in order."""
    seen = [c[0] for c in calls]
    indices = []
    for name in names:
        assert name in seen, f"{name!r} never called; calls were {seen}"
        indices.append(seen.index(name))
    assert indices == sorted(indices), f"Calls not in expected order {names}: {seen}"
