"""Per-session cost aggregation across backends."""

import logging
from collections.abc import Callable

from colloquy.models import CostRow, CostSnapshot
from colloquy.providers.base import ModelAdapter

logger = logging.getLogger(__name__)

_PRECISION = 4


class CostAggregator:
    """Running token and cost totals for one debate session.

    Costs are recomputed from cumulative token counts on every record, so the
    per-backend figure never drifts from what ``estimate_cost`` would say for
    the whole session. The aggregator trusts every call to be new usage.
    """

    def __init__(self, resolve: Callable[[str], ModelAdapter]) -> None:
        self._resolve = resolve
        self._rows: dict[str, CostRow] = {}

    def record(self, backend_id: str, input_tokens: int, output_tokens: int) -> CostRow:
        if input_tokens < 0 or output_tokens < 0:
            raise ValueError(f"Token counts must be non-negative, got {input_tokens}/{output_tokens}")
        adapter = self._resolve(backend_id)
        existing = self._rows.get(backend_id)
        total_in = (existing.input_tokens if existing else 0) + input_tokens
        total_out = (existing.output_tokens if existing else 0) + output_tokens
        row = CostRow(
            backend_id=backend_id,
            display_name=adapter.display_name,
            input_tokens=total_in,
            output_tokens=total_out,
            cost=adapter.estimate_cost(total_in, total_out),
        )
        self._rows[backend_id] = row
        logger.debug("Cost %s: %d in / %d out = %s", backend_id, total_in, total_out, format_cost(row.cost))
        return row

    def snapshot(self) -> CostSnapshot:
        rows = tuple(self._rows.values())
        return CostSnapshot(
            rows=rows,
            total_input_tokens=sum(r.input_tokens for r in rows),
            total_output_tokens=sum(r.output_tokens for r in rows),
            total_cost=round(sum(r.cost for r in rows), _PRECISION),
        )


def format_cost(cost: float) -> str:
    if cost < 0.01:
        return f"${cost:.4f}"
    return f"${cost:.2f}"
