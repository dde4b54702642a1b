"""Resilience helpers."""

from custodyledger.resilience.retry import is_temporarily_unavailable, retry_if_unavailable

__all__ = ["is_temporarily_unavailable", "retry_if_unavailable"]
