"""Grid layout for the multi-source composite.

Small input counts use a hand-picked table that keeps the grid visually
balanced (e.g. 3 clips go in a 2×2 with one empty cell rather than a
1×3 strip).  Larger counts fall back to a square-root grid.
"""

import math
from typing import Dict, List, Tuple

from .models import GridLayout, CANVAS_WIDTH, CANVAS_HEIGHT

# input count → (rows, cols)
_GRID_TABLE: Dict[int, Tuple[int, int]] = {
    1: (1, 1),
    2: (1, 2),
    3: (2, 2),
    4: (2, 2),
    5: (2, 3),
    6: (2, 3),
    7: (3, 3),
    8: (3, 3),
    9: (3, 3),
    10: (3, 4),
    11: (3, 4),
    12: (3, 4),
}


def grid_dimensions(n: int) -> Tuple[int, int]:
    """Return ``(rows, cols)`` for *n* tiles."""
    if n < 1:
        raise ValueError(f"grid needs at least one tile, got {n}")
    if n in _GRID_TABLE:
        return _GRID_TABLE[n]
    cols = math.ceil(math.sqrt(n))
    rows = math.ceil(n / cols)
    return rows, cols


def _even(v: int) -> int:
    # yuv420p needs even frame dimensions
    return max(2, v - (v % 2))


def compute_layout(
    n: int, canvas_width: int = CANVAS_WIDTH, canvas_height: int = CANVAS_HEIGHT,
) -> GridLayout:
    """Grid dimensions plus cell size for *n* tiles on the canvas."""
    rows, cols = grid_dimensions(n)
    return GridLayout(
        rows=rows,
        cols=cols,
        cell_width=_even(canvas_width // cols),
        cell_height=_even(canvas_height // rows),
    )


def cell_positions(layout: GridLayout, n: int) -> List[Tuple[int, int]]:
    """Top-left offsets for the first *n* cells, row-major."""
    if n > layout.capacity:
        raise ValueError(f"{n} tiles do not fit a {layout.rows}x{layout.cols} grid")
    return [layout.cell_origin(i) for i in range(n)]
