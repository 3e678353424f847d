"""Weight a directory of raw per-city networks."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from .backend import WeightingBackend
from .cache import CacheContext
from .errors import AmbiguousCityMatch, NoCityMatch
from .network import load_street_network
from .utils import heading
from .weighting import weight_networks

logger = logging.getLogger(__name__)

NETWORK_GLOB = "*.pkl"
SC_SUFFIX = re.compile(r"-sc.*$")
# Multi-word city names kept whole, e.g. "san-francisco".
MULTIWORD_PREFIX = "san-"


def network_stem(name: str) -> str:
    """Strip the "-sc..." suffix ("paris-sc-2023.pkl" -> "paris"), else the extension."""
    name = Path(name).name
    stem = SC_SUFFIX.sub("", name)
    return Path(name).stem if stem == name else stem


def city_from_stem(stem: str) -> str:
    if stem.startswith(MULTIWORD_PREFIX):
        return stem
    return re.split(r"[-\s]", stem, maxsplit=1)[0]


def city_from_filename(name: str) -> str:
    return city_from_stem(network_stem(name))


def plan_batch(net_dir: Union[str, Path], excluded: Optional[Iterable[str]] = None) -> List[Tuple[str, str, Path]]:
    """Resolve every city in ``net_dir`` to exactly one network file.

    Returns (stem, city, file) triples. Any ambiguous or missing match raises
    before a single city is weighted.
    """
    flist = sorted(p for p in Path(net_dir).glob(NETWORK_GLOB) if p.is_file())
    excluded = set(excluded or ())
    plan = []
    for stem in [network_stem(p.name) for p in flist]:
        if stem in excluded:
            continue
        city = city_from_stem(stem)
        matches = [p for p in flist if city in p.name]
        if len(matches) > 1:
            names = ", ".join(p.name for p in matches)
            raise AmbiguousCityMatch(f"Error determining network file for [{city}]: {names}", city, matches)
        if not matches:
            raise NoCityMatch(f"Error determining network file for [{city}]: no match", city)
        plan.append((stem, city, matches[0]))
    return plan


def batch_weight_networks(
    net_dir: Union[str, Path],
    excluded: Optional[Iterable[str]] = None,
    context: Optional[CacheContext] = None,
    backend: Optional[WeightingBackend] = None,
) -> List[Path]:
    """Run :func:`weight_networks` for each city network in ``net_dir``.

    Stops at the first failing city. Returns all cached paths across cities.
    """
    context = context or CacheContext.from_env()
    plan = plan_batch(net_dir, excluded)
    out = []
    for count, (stem, city, f) in enumerate(plan, start=1):
        heading(stem, count, len(plan))
        logger.info("Weighting %s from %s", city, f)
        net = load_street_network(f)
        out.extend(weight_networks(net, city, quiet=False, context=context, backend=backend))
    return out


__all__ = ["batch_weight_networks", "city_from_filename", "network_stem", "plan_batch"]
