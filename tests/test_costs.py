"""Tests for colloquy/costs.py."""

import pytest

from colloquy.costs import CostAggregator, format_cost


@pytest.fixture
def aggregator(registry) -> CostAggregator:
    return CostAggregator(registry.resolve)


def test_empty_snapshot(aggregator):
    snapshot = aggregator.snapshot()
    assert snapshot.rows == ()
    assert snapshot.total_cost == 0.0
    assert snapshot.total_tokens == 0


def test_record_accumulates_per_backend(aggregator):
    aggregator.record("alpha", 1000, 500)
    row = aggregator.record("alpha", 1000, 500)
    assert (row.input_tokens, row.output_tokens) == (2000, 1000)
    assert row.cost == pytest.approx(0.04)
    assert row.display_name == "Alpha"


def test_cost_recomputed_from_cumulative_tokens(aggregator, registry):
    # 1 in / 1 out rounds to zero per call; the cumulative figure must not.
    for _ in range(1000):
        aggregator.record("alpha", 1, 1)
    row = aggregator.snapshot().row("alpha")
    assert row.cost == registry.resolve("alpha").estimate_cost(1000, 1000)
    assert row.cost > 0


def test_totals_equal_row_sums(aggregator):
    aggregator.record("alpha", 1200, 300)
    aggregator.record("beta", 800, 900)
    aggregator.record("gamma", 50, 25)
    snapshot = aggregator.snapshot()

    assert snapshot.total_input_tokens == sum(r.input_tokens for r in snapshot.rows)
    assert snapshot.total_output_tokens == sum(r.output_tokens for r in snapshot.rows)
    assert snapshot.total_cost == pytest.approx(sum(r.cost for r in snapshot.rows))
    assert [r.backend_id for r in snapshot.rows] == ["alpha", "beta", "gamma"]


def test_negative_tokens_rejected(aggregator):
    with pytest.raises(ValueError):
        aggregator.record("alpha", -1, 0)


def test_snapshot_is_immutable_copy(aggregator):
    aggregator.record("alpha", 100, 100)
    before = aggregator.snapshot()
    aggregator.record("alpha", 100, 100)
    assert before.row("alpha").input_tokens == 100


@pytest.mark.parametrize(
    ("cost", "expected"),
    [(0.0, "$0.0000"), (0.0042, "$0.0042"), (0.01, "$0.01"), (1.234, "$1.23")],
)
def test_format_cost(cost, expected):
    assert format_cost(cost) == expected
