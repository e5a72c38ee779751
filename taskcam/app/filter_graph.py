"""Typed filter-graph model for the grid composite.

The layout is built as plain dataclasses (per-input chains of
scale / pad / setsar steps and one stack node) and only turned into
ffmpeg ``-filter_complex`` text by ``render()``.  Tests can inspect the
structure without parsing filter strings.

Example for two inputs on a 1920×1080 canvas::

    [0:v]scale=960:1080:force_original_aspect_ratio=decrease,
         pad=960:1080:(ow-iw)/2:(oh-ih)/2:color=black,setsar=1[v0];
    [1:v]...[v1];
    [v0][v1]xstack=inputs=2:layout=0_0|960_0:fill=black[v]
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from .grid_layout import compute_layout, cell_positions
from .models import GridLayout, CANVAS_WIDTH, CANVAS_HEIGHT

OUTPUT_LABEL = "v"


@dataclass(frozen=True)
class Scale:
    width: int
    height: int
    keep_aspect: bool = True  # shrink to fit inside width×height

    def render(self) -> str:
        s = f"scale={self.width}:{self.height}"
        if self.keep_aspect:
            s += ":force_original_aspect_ratio=decrease"
        return s


@dataclass(frozen=True)
class Pad:
    """Pad to exactly width×height with the content centred."""
    width: int
    height: int
    color: str = "black"

    def render(self) -> str:
        return f"pad={self.width}:{self.height}:(ow-iw)/2:(oh-ih)/2:color={self.color}"


@dataclass(frozen=True)
class SetSar:
    ratio: str = "1"

    def render(self) -> str:
        return f"setsar={self.ratio}"


Step = Union[Scale, Pad, SetSar]


@dataclass(frozen=True)
class InputChain:
    """Filters applied to one input stream, ending in an output label."""
    input_index: int
    steps: Tuple[Step, ...]
    label: str

    def render(self) -> str:
        body = ",".join(step.render() for step in self.steps)
        return f"[{self.input_index}:v]{body}[{self.label}]"


@dataclass(frozen=True)
class Stack:
    """Place labelled streams at fixed offsets (ffmpeg ``xstack``)."""
    inputs: Tuple[str, ...]
    positions: Tuple[Tuple[int, int], ...]
    label: str = OUTPUT_LABEL
    fill: str = "black"

    def render(self) -> str:
        ins = "".join(f"[{name}]" for name in self.inputs)
        layout = "|".join(f"{x}_{y}" for x, y in self.positions)
        return (
            f"{ins}xstack=inputs={len(self.inputs)}:layout={layout}"
            f":fill={self.fill}[{self.label}]"
        )


@dataclass(frozen=True)
class FilterGraph:
    chains: Tuple[InputChain, ...]
    stack: Optional[Stack] = None
    layout: Optional[GridLayout] = None

    @property
    def output_label(self) -> str:
        if self.stack is not None:
            return self.stack.label
        return self.chains[-1].label

    def render(self) -> str:
        parts: List[str] = [c.render() for c in self.chains]
        if self.stack is not None:
            parts.append(self.stack.render())
        return ";".join(parts)


def build_grid_graph(
    n: int, canvas_width: int = CANVAS_WIDTH, canvas_height: int = CANVAS_HEIGHT,
) -> FilterGraph:
    """Build the composite graph for *n* inputs.

    A single input is just rescaled to the canvas; two or more are each
    fitted into a grid cell and stacked.
    """
    if n < 1:
        raise ValueError("filter graph needs at least one input")

    if n == 1:
        chain = InputChain(0, (Scale(canvas_width, canvas_height, keep_aspect=False),), OUTPUT_LABEL)
        return FilterGraph(chains=(chain,))

    layout = compute_layout(n, canvas_width, canvas_height)
    cw, ch = layout.cell_width, layout.cell_height
    chains = tuple(
        InputChain(i, (Scale(cw, ch), Pad(cw, ch), SetSar()), f"v{i}")
        for i in range(n)
    )
    stack = Stack(
        inputs=tuple(c.label for c in chains),
        positions=tuple(cell_positions(layout, n)),
    )
    return FilterGraph(chains=chains, stack=stack, layout=layout)
