"""Typed filter-graph representation for FFmpeg.

A graph is an ordered list of nodes. Each node is a filter chain with named
input and output ports (pad labels). Input ports are either labels produced by
an earlier node or stream specifiers of the encoder inputs (``"0:v"``,
``"2:a"``). The graph is validated before it is serialized to the
``-filter_complex`` syntax.
"""

import re
from dataclasses import dataclass, field
from typing import Sequence

from render_worker.exceptions import FilterGraphError

_STREAM_SPEC = re.compile(r"^(\d+):([va])$")
# Mapped streams may be optional ("0:a?"); filter inputs may not
_MAPPED_STREAM = re.compile(r"^(\d+):([va])\??$")
_LABEL = re.compile(r"^[A-Za-z0-9_]+$")
# Characters that force an option value to be quoted
_NEEDS_QUOTING = re.compile(r"[,;\[\]:=\s'\\]")


def escape_value(value: str) -> str:
    """Escape an option value for both filtergraph parsing levels.

    The option parser needs ``\\``, ``'`` and ``:`` backslash-escaped; the
    graph parser then sees the result wrapped in single quotes.
    """
    text = str(value)
    if not _NEEDS_QUOTING.search(text):
        return text
    option_level = re.sub(r"([\\':])", r"\\\1", text)
    return "'" + option_level.replace("'", "'\\''") + "'"


@dataclass(frozen=True)
class Expr:
    """A raw FFmpeg expression, emitted inside single quotes as-is."""

    text: str

    def render(self) -> str:
        return f"'{self.text}'"


@dataclass
class Filter:
    name: str
    params: list[tuple[str | None, "str | int | float | Expr"]] = field(default_factory=list)

    def render(self) -> str:
        if not self.params:
            return self.name
        parts = []
        for key, value in self.params:
            if isinstance(value, Expr):
                rendered = value.render()
            elif isinstance(value, float):
                rendered = f"{value:.6f}".rstrip("0").rstrip(".")
            else:
                rendered = escape_value(str(value))
            parts.append(rendered if key is None else f"{key}={rendered}")
        return f"{self.name}=" + ":".join(parts)


@dataclass
class FilterNode:
    inputs: list[str]
    filters: list[Filter]
    outputs: list[str]

    def render(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return ins + ",".join(f.render() for f in self.filters) + outs


def is_mapped_stream(label: str) -> bool:
    return bool(_MAPPED_STREAM.match(label))


class FilterGraph:
    """Ordered filter chains with labelled ports."""

    def __init__(self) -> None:
        self.nodes: list[FilterNode] = []

    def add(self, inputs: Sequence[str], filters: Sequence[Filter], outputs: Sequence[str]) -> FilterNode:
        node = FilterNode(inputs=list(inputs), filters=list(filters), outputs=list(outputs))
        self.nodes.append(node)
        return node

    def chain(self, source: str, filters: Sequence[Filter], output: str) -> str:
        """Add a single-input, single-output chain; returns the output label."""
        self.add([source], filters, [output])
        return output

    def produced_labels(self) -> list[str]:
        return [label for node in self.nodes for label in node.outputs]

    def validate(self, input_count: int, mapped: Sequence[str] = ()) -> None:
        """Check port wiring.

        Raises:
            FilterGraphError: On an empty chain, a dangling or duplicated
                label, an out-of-range input stream, or an unmapped output.
        """
        if not self.nodes:
            raise FilterGraphError("Filter graph has no nodes")

        produced: set[str] = set()
        consumed: set[str] = set()

        for position, node in enumerate(self.nodes):
            if not node.filters:
                raise FilterGraphError(f"Node {position} has no filters")
            if not node.outputs:
                raise FilterGraphError(f"Node {position} has no output ports")

            for label in node.inputs:
                stream = _STREAM_SPEC.match(label)
                if stream:
                    if int(stream.group(1)) >= input_count:
                        raise FilterGraphError(
                            f"Node {position} reads input #{stream.group(1)} but only {input_count} inputs exist"
                        )
                    continue
                if label not in produced:
                    raise FilterGraphError(f"Node {position} reads [{label}] before it is produced")
                if label in consumed:
                    raise FilterGraphError(f"Label [{label}] is consumed more than once")
                consumed.add(label)

            for label in node.outputs:
                if not _LABEL.match(label):
                    raise FilterGraphError(f"Invalid label name [{label}]")
                if label in produced:
                    raise FilterGraphError(f"Label [{label}] is produced more than once")
                produced.add(label)

        for label in mapped:
            stream = _MAPPED_STREAM.match(label)
            if stream:
                if int(stream.group(1)) >= input_count:
                    raise FilterGraphError(f"Mapped stream {label} does not exist")
                continue
            if label not in produced:
                raise FilterGraphError(f"Mapped label [{label}] is never produced")
            if label in consumed:
                raise FilterGraphError(f"Mapped label [{label}] is also consumed by a filter")

        dangling = produced - consumed - set(mapped)
        if dangling:
            raise FilterGraphError(f"Unconnected outputs: {', '.join(sorted(dangling))}")

    def serialize(self) -> str:
        return ";".join(node.render() for node in self.nodes)


@dataclass
class EncoderInput:
    path: str
    options: list[str] = field(default_factory=list)


@dataclass
class EncoderCommand:
    """A complete FFmpeg invocation built around a filter graph."""

    inputs: list[EncoderInput]
    graph: FilterGraph
    maps: list[str]
    output_options: list[str]
    output_path: str

    def validate(self) -> None:
        if not self.inputs:
            raise FilterGraphError("Encoder command has no inputs")
        if not self.maps:
            raise FilterGraphError("Encoder command maps no streams")
        self.graph.validate(len(self.inputs), self.maps)

    def to_args(self, ffmpeg_path: str = "ffmpeg") -> list[str]:
        self.validate()
        args = [ffmpeg_path, "-y", "-hide_banner"]
        for encoder_input in self.inputs:
            args.extend(encoder_input.options)
            args.extend(["-i", encoder_input.path])
        args.extend(["-filter_complex", self.graph.serialize()])
        for label in self.maps:
            args.extend(["-map", label if is_mapped_stream(label) else f"[{label}]"])
        args.extend(self.output_options)
        args.append(self.output_path)
        return args
