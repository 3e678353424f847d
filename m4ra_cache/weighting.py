"""Weight a street network once per content identity and cache the results.

For a raw network with fingerprint H, the city's done flag
``m4ra-<city>-<H>-done`` decides between reuse and recompute. When the
motorcar penalties differ from the defaults, H also covers them, so a run
with other penalties gets its own flag. Under the default ``claim-first``
policy the flag is written before any weighting, so a run that fails part
way leaves the flag behind and the cache directory needs manual inspection.
``verify-then-mark`` writes the flag only once every per-mode file is on
disk, guarding the work with an exclusive claim file.

A completed run rewrites its flag with the post-weighting hash of every mode
it produced. Vertex indices are then built from exactly those networks.
"""
from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import orjson

from .backend import DefaultBackend, WeightingBackend
from .cache import CacheContext, atomic_write, normalize_city
from .errors import CacheClaimHeld, MissingPrerequisiteArtifact
from .hashing import fingerprint, run_identity, short_hash
from .network import StreetNetwork
from .profile import write_wt_profile
from .schema import MODES, CompletionPolicy, Mode
from .utils import alert_info, alert_success
from .vertex_index import ReadyNetworks, build_vertex_indices

logger = logging.getLogger(__name__)


def _ordered_modes(profiles: Iterable[Union[Mode, str]]) -> List[Mode]:
    requested = {Mode(p) for p in profiles}
    return [m for m in MODES if m in requested]


def _write_flag(flag: Path, hashes: Optional[Dict[Mode, str]] = None) -> None:
    if hashes is None:
        content = b"done\n"
    else:
        content = orjson.dumps({"networks": {mode.value: h for mode, h in hashes.items()}})
    atomic_write(flag, lambda p: p.write_bytes(content))


def read_flag(flag: Path) -> Optional[Dict[Mode, str]]:
    """Per-mode post-weighting hashes recorded in a done flag.

    Returns None for a bare flag, i.e. one whose run never completed under
    ``claim-first``.
    """
    try:
        doc = orjson.loads(flag.read_bytes())
    except orjson.JSONDecodeError:
        return None
    networks = doc.get("networks") if isinstance(doc, dict) else None
    if not isinstance(networks, dict):
        return None
    return {mode: networks[mode.value] for mode in MODES if mode.value in networks}


def _acquire_claim(context: CacheContext, city: str, h: str) -> Path:
    claim = context.resolve_claim(city, h)
    stale_after = context.settings.stale_claim_after_s
    for attempt in range(2):
        try:
            fd = os.open(claim, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            try:
                age = time.time() - claim.stat().st_mtime
            except FileNotFoundError:
                continue
            if attempt == 0 and age > stale_after:
                logger.warning("Removing stale claim %s (%.0fs old)", claim.name, age)
                claim.unlink(missing_ok=True)
                continue
            break
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(f"{os.getpid()}\n")
        return claim
    raise CacheClaimHeld(f"Another run is weighting '{city}' ({short_hash(h)}): {claim}", city=city, path=claim)


def _weight_modes(
    network: StreetNetwork,
    city: str,
    modes: List[Mode],
    context: CacheContext,
    backend: WeightingBackend,
    quiet: bool,
) -> Tuple[List[Path], Dict[Mode, str]]:
    filenames = []
    hashes = {}
    for mode in modes:
        if not quiet:
            alert_info(f"Weighting network with '{mode.value}' profile")
        if mode is Mode.MOTORCAR:
            f = write_wt_profile(context, city, context.settings.penalties, backend)
            net_w = backend.weight_streetnet(network, mode.value, wt_profile_file=f, turn_penalty=True)
        else:
            net_w = backend.weight_streetnet(network, mode.value)
        net_w.attrs["wt_profile"] = mode.value
        # The backend assigns fresh edge ids on each call, so only a forced
        # hash of the weighted table is a stable cache key.
        net_w.attrs["hash"] = hashes[mode] = fingerprint(net_w, force=True)
        filenames.extend(context.cache_network(net_w, city, mode, backend))
        if not quiet:
            alert_success(f"Weighted network with '{mode.value}' profile")
    return filenames, hashes


def _cache_networks(
    network: StreetNetwork,
    city: str,
    context: CacheContext,
    backend: WeightingBackend,
    profiles: Iterable[Union[Mode, str]],
    quiet: bool,
) -> Tuple[List[Path], Optional[Dict[Mode, str]]]:
    city = normalize_city(city)
    modes = _ordered_modes(profiles)
    penalties = context.settings.penalties if Mode.MOTORCAR in modes else None
    h = run_identity(fingerprint(network), penalties)

    context.ensure_city_dir(city)
    filenames = context.cached_networks(city)

    flag = context.resolve_done(city, h)
    if flag.exists():
        logger.info("Networks for '%s' (%s) already cached", city, short_hash(h))
        return filenames, read_flag(flag)

    if context.settings.completion_policy is CompletionPolicy.CLAIM_FIRST:
        _write_flag(flag)
        new, hashes = _weight_modes(network, city, modes, context, backend, quiet)
        _write_flag(flag, hashes)
    else:
        claim = _acquire_claim(context, city, h)
        try:
            new, hashes = _weight_modes(network, city, modes, context, backend, quiet)
            for path in new:
                if not path.exists():
                    raise MissingPrerequisiteArtifact(
                        f"Weighted network vanished before completion: {path}", city=city, path=path
                    )
            _write_flag(flag, hashes)
        finally:
            claim.unlink(missing_ok=True)

    return sorted(set(filenames) | set(new)), hashes


def cache_networks(
    network: StreetNetwork,
    city: str,
    context: Optional[CacheContext] = None,
    backend: Optional[WeightingBackend] = None,
    profiles: Iterable[Union[Mode, str]] = MODES,
    quiet: bool = True,
) -> List[Path]:
    """Weight ``network`` for each profile unless its done flag already exists.

    Returns the sorted manifest of cached per-mode network files for the
    city: those already present plus any written by this call.
    """
    context = context or CacheContext.from_env()
    backend = backend or DefaultBackend()
    filenames, _ = _cache_networks(network, city, context, backend, profiles, quiet)
    return filenames


def weight_networks(
    network: StreetNetwork,
    city: str,
    quiet: bool = True,
    context: Optional[CacheContext] = None,
    backend: Optional[WeightingBackend] = None,
) -> List[Path]:
    """Cache all per-mode weighted networks of ``network`` plus their vertex indices.

    ``city`` only names the cache directory and files. Returns the network
    manifest followed by the 6 vertex-index paths. The indices are built from
    the networks recorded in the done flag; a bare flag falls back to the
    most recent contracted network of each mode.
    """
    context = context or CacheContext.from_env()
    backend = backend or DefaultBackend()
    filenames, hashes = _cache_networks(network, city, context, backend, MODES, quiet)
    ready = None
    if hashes is not None and all(mode in hashes for mode in MODES):
        paths = {mode: context.resolve_network(city, mode, hashes[mode], contracted=True) for mode in MODES}
        ready = ReadyNetworks.confirm(context, city, paths=paths)
    return filenames + build_vertex_indices(city, context, backend, ready=ready)


__all__ = ["cache_networks", "read_flag", "weight_networks"]
