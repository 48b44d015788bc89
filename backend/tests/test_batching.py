"""Tests for fixed-size batching."""

from __future__ import annotations

import pytest

from meshstore.utils import batching


def test_chunked_sizes() -> None:
    """Test batches are full except the last."""
    assert [len(batch) for batch in batching.chunked(range(1200))] == [
        500,
        500,
        200,
    ]


def test_chunked_preserves_order() -> None:
    """Test items keep their order across batches."""
    assert list(batching.chunked("abcde", 2)) == [
        ["a", "b"],
        ["c", "d"],
        ["e"],
    ]


def test_chunked_empty() -> None:
    """Test an empty input yields no batches."""
    assert list(batching.chunked([], 3)) == []


def test_chunked_rejects_non_positive_size() -> None:
    """Test size must be positive."""
    with pytest.raises(ValueError, match="positive"):
        list(batching.chunked([1], 0))
