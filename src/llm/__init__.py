"""Upstream language model access and failure classification."""

__all__ = ["retry", "upstream"]
