"""Nearest-vertex indices between the contracted networks of each pair of modes.

An index for the ordered pair (A, B) has one row per vertex of A's contracted
network, giving the nearest vertex of B's contracted network, or -1 and a
null id when B has no vertices. Files are keyed by the 6-character
fingerprints of both networks, so a short-hash collision reuses a wrong
index. That risk is accepted in exchange for short names.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Union

import numpy as np
import pandas as pd

from .backend import DefaultBackend, WeightingBackend
from .cache import CacheContext, atomic_write, normalize_city
from .errors import MissingPrerequisiteArtifact
from .hashing import fingerprint, short_hash
from .network import graph_vertices, read_graph
from .schema import MODES, Mode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadyNetworks:
    """Contracted network files of all modes for one city, checked to exist on disk."""

    city: str
    paths: Mapping[Mode, Path]

    def __post_init__(self):
        for mode in MODES:
            path = self.paths.get(mode)
            if path is None or not Path(path).exists():
                raise MissingPrerequisiteArtifact(
                    f"Contracted {mode.value} network for '{self.city}' is not cached"
                    + (f" (expected {path})" if path is not None else ""),
                    city=self.city,
                    mode=mode.value,
                    path=path,
                )

    @classmethod
    def confirm(
        cls,
        context: CacheContext,
        city: str,
        paths: Optional[Mapping[Mode, Path]] = None,
    ) -> "ReadyNetworks":
        city = normalize_city(city)
        if paths is None:
            paths = {mode: context.find_network(city, mode, contracted=True) for mode in MODES}
        return cls(city, dict(paths))


def _match(verts_a: pd.DataFrame, verts_b: pd.DataFrame, backend: WeightingBackend) -> pd.DataFrame:
    # A mode can have no routable edges at all, e.g. motorcar on a footway-only
    # network: its rows then point nowhere (-1, null id).
    if verts_a.empty or verts_b.empty:
        index = np.full(len(verts_a), -1, dtype=np.int64)
        to_id = np.full(len(verts_a), None, dtype=object)
    else:
        index = np.asarray(backend.match_points_to_verts(verts_b, verts_a[["x", "y"]]), dtype=np.int64)
        to_id = verts_b["id"].to_numpy()[index]
    return pd.DataFrame({
        "from_id": verts_a["id"].to_numpy(),
        "to_index": index,
        "to_id": to_id,
    })


def build_vertex_indices(
    city: str,
    context: Optional[CacheContext] = None,
    backend: Optional[WeightingBackend] = None,
    ready: Optional[ReadyNetworks] = None,
) -> List[Path]:
    """Build or reuse the 6 directional vertex indices for ``city``.

    Raises MissingPrerequisiteArtifact unless all three contracted networks
    are cached. Returns every index path, hit or miss, in fixed mode order.
    """
    context = context or CacheContext.from_env()
    backend = backend or DefaultBackend()
    if ready is None:
        ready = ReadyNetworks.confirm(context, city)
    elif ready.city != normalize_city(city):
        raise ValueError(f"ready networks are for '{ready.city}', not '{normalize_city(city)}'")

    verts = {}
    hashes = {}
    for mode in MODES:
        graph = read_graph(ready.paths[mode])
        verts[mode] = graph_vertices(graph)
        hashes[mode] = short_hash(fingerprint(graph, force=True))

    flist = []
    for a in MODES:
        for b in MODES:
            if a is b:
                continue
            fname = context.resolve_vertex_index(ready.city, a, b, hashes[a], hashes[b])
            if fname.exists():
                logger.debug("Reusing vertex index %s", fname.name)
            else:
                table = _match(verts[a], verts[b], backend)
                atomic_write(fname, lambda p: table.to_parquet(p, index=False))
                logger.info("Cached vertex index %s", fname.name)
            flist.append(fname)
    return flist


def load_vert_index(
    city: str,
    mode_a: Union[Mode, str],
    mode_b: Union[Mode, str],
    context: Optional[CacheContext] = None,
) -> pd.DataFrame:
    context = context or CacheContext.from_env()
    city = normalize_city(city)
    a, b = Mode(mode_a), Mode(mode_b)
    pattern = re.compile(rf"^m4ra-{re.escape(city)}-vert-index-{a.value}-{b.value}-[0-9a-f]+-[0-9a-f]+\.parquet$")
    d = context.city_dir(city)
    flist = [p for p in d.iterdir() if pattern.match(p.name)] if d.is_dir() else []
    if not flist:
        raise MissingPrerequisiteArtifact(
            f"No cached vertex index {a.value} -> {b.value} for '{city}'",
            city=city,
            mode=a.value,
            path=d,
        )
    return pd.read_parquet(max(flist, key=lambda p: p.stat().st_mtime_ns))


__all__ = ["ReadyNetworks", "build_vertex_indices", "load_vert_index"]
