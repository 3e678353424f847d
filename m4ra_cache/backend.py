"""Weighting collaborator interface and a reference implementation.

The cache layer only orchestrates calls into a :class:`WeightingBackend`. The
:class:`DefaultBackend` here keeps the cost model small: per-highway weights
and speeds from a JSON profile document, a traffic-light penalty at signalled
vertices and an optional flat turn penalty at junctions.
"""
from __future__ import annotations

import pathlib
import shutil
from collections import defaultdict
from typing import Optional, Protocol, Union

import numpy as np
import orjson
import pandas as pd
from scipy.spatial import cKDTree

from .errors import MalformedNetwork
from .network import GRAPH_COLUMNS, StreetNetwork, graph_vertices
from .schema import Mode

DEFAULT_PROFILE = pathlib.Path(__file__).resolve().parent / "data" / "wt_profile.json"
EARTH_RADIUS_M = 6_371_008.8
# Cost columns summed when edges are merged during contraction.
COST_COLUMNS = ("d", "d_weighted", "time", "time_weighted")


class WeightingBackend(Protocol):
    def write_default_profile(self, path: pathlib.Path) -> pathlib.Path:
        ...

    def weight_streetnet(
        self,
        network: StreetNetwork,
        wt_profile: str,
        wt_profile_file: Optional[pathlib.Path] = None,
        turn_penalty: bool = False,
    ) -> pd.DataFrame:
        ...

    def contract_graph(self, graph: pd.DataFrame) -> pd.DataFrame:
        ...

    def match_points_to_verts(self, verts: pd.DataFrame, xy) -> np.ndarray:
        ...


def haversine(x0, y0, x1, y1) -> np.ndarray:
    x0, y0, x1, y1 = (np.radians(np.asarray(v, dtype=float)) for v in (x0, y0, x1, y1))
    a = np.sin((y1 - y0) / 2) ** 2 + np.cos(y0) * np.cos(y1) * np.sin((x1 - x0) / 2) ** 2
    return 2 * EARTH_RADIUS_M * np.arcsin(np.sqrt(a))


def _junctions(graph: pd.DataFrame) -> pd.Index:
    """Vertices connected to more than two distinct neighbours."""
    cols = ["v", "n"]
    pairs = pd.concat(
        [graph[["from_id", "to_id"]].set_axis(cols, axis=1), graph[["to_id", "from_id"]].set_axis(cols, axis=1)],
        ignore_index=True,
    )
    counts = pairs.drop_duplicates().groupby("v")["n"].size()
    return counts.index[counts > 2]


class DefaultBackend:
    def __init__(self, seed: Optional[int] = None):
        # Edge ids are drawn fresh on every call, like the external weighting
        # libraries this stands in for.
        self._rng = np.random.default_rng(seed)

    def write_default_profile(self, path: Union[str, pathlib.Path]) -> pathlib.Path:
        shutil.copyfile(DEFAULT_PROFILE, path)
        return pathlib.Path(path)

    def weight_streetnet(
        self,
        network: StreetNetwork,
        wt_profile: str,
        wt_profile_file: Optional[pathlib.Path] = None,
        turn_penalty: bool = False,
    ) -> pd.DataFrame:
        network.validate()
        mode = Mode(wt_profile)
        doc = orjson.loads(pathlib.Path(wt_profile_file or DEFAULT_PROFILE).read_bytes())
        ways = pd.DataFrame([r for r in doc.get("weighting_profiles", []) if r.get("name") == mode.value])
        if ways.empty:
            raise ValueError(f"Weighting profile document has no ways for '{mode.value}'")
        penalties = next((p for p in doc.get("penalties", []) if p.get("name") == mode.value), {})

        cols = ["from_id", "to_id", "object_id", "highway"]
        edges = network.edges[cols + (["oneway"] if "oneway" in network.edges.columns else [])]
        if mode is Mode.FOOT or "oneway" not in edges.columns:
            two_way = pd.Series(True, index=edges.index)
        else:
            two_way = ~edges["oneway"].eq(True)
        reverse = edges[two_way].rename(columns={"from_id": "to_id", "to_id": "from_id"})
        graph = pd.concat([edges[cols], reverse[cols]], ignore_index=True)
        graph = graph.merge(ways[["way", "value", "max_speed"]], left_on="highway", right_on="way", how="inner")
        graph = graph[graph["value"] > 0].reset_index(drop=True)

        verts = network.vertices.drop_duplicates("vertex_id").set_index("vertex_id")
        for end in ("from", "to"):
            graph[f"{end}_x"] = graph[f"{end}_id"].map(verts["x"])
            graph[f"{end}_y"] = graph[f"{end}_id"].map(verts["y"])
        if graph[["from_x", "from_y", "to_x", "to_y"]].isna().any().any():
            raise MalformedNetwork("edges reference vertices missing from the vertex table")

        graph["d"] = haversine(graph["from_x"], graph["from_y"], graph["to_x"], graph["to_y"])
        graph["d_weighted"] = graph["d"] / graph["value"]
        graph["time"] = graph["d"] / (graph["max_speed"] / 3.6)
        graph["time_weighted"] = graph["time"] / graph["value"]
        if "signals" in verts.columns:
            lights = graph["to_id"].map(verts["signals"]).eq(True)
            graph.loc[lights, "time_weighted"] += float(penalties.get("traffic_lights", 0))
        if turn_penalty:
            at_junction = graph["to_id"].isin(_junctions(graph))
            graph.loc[at_junction, "time_weighted"] += float(penalties.get("turn", 0))
        graph["edge_id"] = self._rng.permutation(len(graph))

        out = graph[list(GRAPH_COLUMNS)].reset_index(drop=True)
        out.attrs["wt_profile"] = mode.value
        return out

    def contract_graph(self, graph: pd.DataFrame) -> pd.DataFrame:
        """Merge edges through vertices that only pass traffic between two neighbours."""
        if graph.empty:
            return graph.copy()
        edges = dict(enumerate(graph.to_dict("records")))
        out_e = defaultdict(set)
        in_e = defaultdict(set)
        for k, e in edges.items():
            out_e[e["from_id"]].add(k)
            in_e[e["to_id"]].add(k)
        next_key = len(edges)

        for v in graph_vertices(graph)["id"]:
            ins, outs = sorted(in_e[v]), sorted(out_e[v])
            preds = {edges[k]["from_id"] for k in ins}
            succs = {edges[k]["to_id"] for k in outs}
            nbrs = preds | succs
            if len(nbrs) != 2 or v in nbrs:
                continue
            if len(ins) != len(outs) or len(ins) not in (1, 2):
                continue
            if len(preds) != len(ins) or len(succs) != len(outs):
                continue
            pairs = []
            for ki in ins:
                onward = [ko for ko in outs if edges[ko]["to_id"] != edges[ki]["from_id"]]
                if len(onward) != 1:
                    break
                pairs.append((ki, onward[0]))
            else:
                for ki, ko in pairs:
                    a, b = edges.pop(ki), edges.pop(ko)
                    out_e[a["from_id"]].discard(ki)
                    in_e[v].discard(ki)
                    out_e[v].discard(ko)
                    in_e[b["to_id"]].discard(ko)
                    merged = dict(a)
                    merged.update(to_id=b["to_id"], to_x=b["to_x"], to_y=b["to_y"])
                    for col in COST_COLUMNS:
                        merged[col] = a[col] + b[col]
                    edges[next_key] = merged
                    out_e[merged["from_id"]].add(next_key)
                    in_e[merged["to_id"]].add(next_key)
                    next_key += 1

        out = pd.DataFrame(list(edges.values()), columns=graph.columns)
        out["edge_id"] = np.arange(len(out))
        out.attrs.update(graph.attrs)
        return out

    def match_points_to_verts(self, verts: pd.DataFrame, xy) -> np.ndarray:
        """For each row of ``xy`` return the row position of the nearest vertex in ``verts`` (-1 if it is empty)."""
        if isinstance(xy, pd.DataFrame):
            xy = xy[["x", "y"]]
        points = np.asarray(xy, dtype=float).reshape(-1, 2)
        if len(verts) == 0:
            return np.full(len(points), -1, dtype=np.int64)
        tree = cKDTree(np.asarray(verts[["x", "y"]], dtype=float))
        _, idx = tree.query(points, k=1)
        return np.asarray(idx, dtype=np.int64)


__all__ = ["WeightingBackend", "DefaultBackend", "DEFAULT_PROFILE", "haversine"]
