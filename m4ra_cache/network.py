"""Street-network containers and table I/O.

A raw network is a pair of tables in the style of an OSM "sc" extract: one row
per way segment and one row per vertex. Weighted networks are a single edge
table with endpoint coordinates, one row per directed edge.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Sequence, Union

import pandas as pd

from .errors import MalformedNetwork

EDGE_COLUMNS = ("from_id", "to_id", "object_id", "highway")
VERTEX_COLUMNS = ("vertex_id", "x", "y")
OPTIONAL_EDGE_COLUMNS = ("oneway",)
OPTIONAL_VERTEX_COLUMNS = ("signals",)

GRAPH_COLUMNS = (
    "edge_id",
    "from_id",
    "from_x",
    "from_y",
    "to_id",
    "to_x",
    "to_y",
    "d",
    "d_weighted",
    "time",
    "time_weighted",
    "object_id",
    "highway",
)
# Reassigned on every weighting call, so never part of a network's identity.
EPHEMERAL_COLUMNS = ("edge_id",)


@dataclass
class StreetNetwork:
    edges: pd.DataFrame
    vertices: pd.DataFrame
    attrs: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> "StreetNetwork":
        require_columns(self.edges, EDGE_COLUMNS, "edges")
        require_columns(self.vertices, VERTEX_COLUMNS, "vertices")
        return self


def require_columns(frame: pd.DataFrame, columns: Sequence[str], table: str) -> None:
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise MalformedNetwork(f"{table} table is missing required columns: {', '.join(missing)}")


def graph_vertices(graph: pd.DataFrame) -> pd.DataFrame:
    """Return the unique vertices (id, x, y) of a weighted graph in first-seen order."""
    require_columns(graph, ("from_id", "from_x", "from_y", "to_id", "to_x", "to_y"), "graph")
    names = ["id", "x", "y"]
    starts = graph[["from_id", "from_x", "from_y"]].set_axis(names, axis=1)
    ends = graph[["to_id", "to_x", "to_y"]].set_axis(names, axis=1)
    return pd.concat([starts, ends], ignore_index=True).drop_duplicates("id").reset_index(drop=True)


def load_street_network(path: Union[str, Path]) -> StreetNetwork:
    """Load a pickled raw network; a plain ``{"edges": ..., "vertices": ...}`` dict is accepted too."""
    obj = pd.read_pickle(path)
    if isinstance(obj, StreetNetwork):
        return obj.validate()
    if isinstance(obj, dict) and "edges" in obj and "vertices" in obj:
        return StreetNetwork(obj["edges"], obj["vertices"], dict(obj.get("attrs", {}))).validate()
    raise MalformedNetwork(f"{path} does not contain a street network", path=Path(path))


def save_street_network(network: StreetNetwork, path: Union[str, Path]) -> Path:
    pd.to_pickle({"edges": network.edges, "vertices": network.vertices, "attrs": network.attrs}, path)
    return Path(path)


def read_graph(path: Path) -> pd.DataFrame:
    return pd.read_parquet(path)


def write_graph(graph: pd.DataFrame, path: Path) -> None:
    graph.to_parquet(path, index=False)
