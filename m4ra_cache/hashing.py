"""Content fingerprints of raw and weighted networks.

The fingerprint only covers routable structure. Identifiers that the weighting
step reassigns on each call (``edge_id``) are excluded and rows are sorted
before hashing, so two logically equal networks always agree.
"""
from __future__ import annotations

import hashlib
from typing import Optional, Sequence, Union

import pandas as pd

from .errors import MalformedNetwork
from .network import (
    EDGE_COLUMNS,
    EPHEMERAL_COLUMNS,
    GRAPH_COLUMNS,
    OPTIONAL_EDGE_COLUMNS,
    OPTIONAL_VERTEX_COLUMNS,
    VERTEX_COLUMNS,
    StreetNetwork,
    require_columns,
)
from .schema import PenaltySettings

SHORT_HASH_LEN = 6

Network = Union[StreetNetwork, pd.DataFrame]


def _update(digest, frame: pd.DataFrame, required: Sequence[str], optional: Sequence[str], table: str) -> None:
    require_columns(frame, required, table)
    columns = list(required) + [c for c in optional if c in frame.columns]
    digest.update(("|".join([table] + columns)).encode("utf-8"))
    rows = frame[columns].reset_index(drop=True)
    # Identifier columns may mix ints and strings, which do not compare; the
    # order only has to be deterministic, so sort on the string forms.
    order = rows.astype(str).sort_values(columns, kind="mergesort").index
    rows = rows.loc[order].reset_index(drop=True)
    hashed = pd.util.hash_pandas_object(rows, index=False)
    digest.update(hashed.to_numpy().tobytes())


def fingerprint(network: Network, force: bool = False) -> str:
    """Return the sha256 content hash of ``network``.

    A hash cached in ``network.attrs["hash"]`` is returned as-is unless
    ``force`` is set. Networks coming back from the weighting step must always
    be hashed with ``force=True``: their attrs may carry the pre-weighting
    hash, which does not describe the weighted table.
    """
    if not force:
        cached = getattr(network, "attrs", {}).get("hash")
        if cached:
            return cached
    digest = hashlib.sha256()
    if isinstance(network, StreetNetwork):
        _update(digest, network.edges, EDGE_COLUMNS, OPTIONAL_EDGE_COLUMNS, "edges")
        _update(digest, network.vertices, VERTEX_COLUMNS, OPTIONAL_VERTEX_COLUMNS, "vertices")
    elif isinstance(network, pd.DataFrame):
        stable = [c for c in GRAPH_COLUMNS if c not in EPHEMERAL_COLUMNS]
        _update(digest, network, stable, (), "graph")
    else:
        raise MalformedNetwork(f"cannot fingerprint object of type {type(network).__name__}")
    return digest.hexdigest()


def run_identity(network_hash: str, penalties: Optional[PenaltySettings] = None) -> str:
    """Identity of one weighting run: the raw network hash, plus the motorcar
    penalties whenever they differ from the defaults."""
    if penalties is None or penalties == PenaltySettings():
        return network_hash
    payload = f"{network_hash}|traffic_lights={float(penalties.traffic_lights)!r}|turn={float(penalties.turn)!r}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def short_hash(value: str, n: int = SHORT_HASH_LEN) -> str:
    return value[:n]


__all__ = ["fingerprint", "run_identity", "short_hash", "SHORT_HASH_LEN"]
