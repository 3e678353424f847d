"""m4ra_cache

Content-addressed cache of mode-weighted street networks for multi-modal
routing (foot, bicycle, motorcar).

Primary entrypoints:
 - weighting.py (weight_networks: per-mode weighting + vertex indices)
 - batch.py (batch_weight_networks over a directory of city networks)
 - cache.py (CacheContext: cache root, paths and artifact store)
 - cli.py (Typer CLI)
"""

from .batch import batch_weight_networks
from .cache import CacheContext, normalize_city
from .hashing import fingerprint
from .network import StreetNetwork
from .profile import build_motorcar_profile
from .schema import MODES, CacheSettings, CompletionPolicy, Mode, PenaltySettings
from .vertex_index import ReadyNetworks, build_vertex_indices, load_vert_index
from .weighting import cache_networks, weight_networks

__all__ = [
    "CacheContext",
    "CacheSettings",
    "CompletionPolicy",
    "MODES",
    "Mode",
    "PenaltySettings",
    "ReadyNetworks",
    "StreetNetwork",
    "batch_weight_networks",
    "build_motorcar_profile",
    "build_vertex_indices",
    "cache_networks",
    "fingerprint",
    "load_vert_index",
    "normalize_city",
    "weight_networks",
]
