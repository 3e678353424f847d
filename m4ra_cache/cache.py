"""Cache locations and artifact store for weighted networks.

All artifacts for a city live under ``<root>/<city>/`` where ``city`` is the
normalized name. The root is held by an explicit :class:`CacheContext`; it is
taken from settings, then ``M4RA_CACHE_DIR``, then the platform user cache
directory.
"""
from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Mapping, Optional, Union

import pandas as pd
import yaml
from platformdirs import user_cache_dir

from .errors import MissingPrerequisiteArtifact
from .network import read_graph, write_graph
from .schema import CacheSettings, Mode, PenaltySettings

if TYPE_CHECKING:
    from .backend import WeightingBackend

logger = logging.getLogger(__name__)

CACHE_DIR_ENV = "M4RA_CACHE_DIR"
APP_NAME = "m4ra"
PREFIX = "m4ra"
EXT = "parquet"
PROFILE_FILENAME = "wt_profile.json"
CONTRACTED_SUFFIX = "-contracted"


def normalize_city(city: str) -> str:
    """Lowercase and collapse whitespace/hyphen runs: "New  York" -> "new-york"."""
    if not isinstance(city, str) or not city.strip():
        raise ValueError("city must be a non-empty string")
    return re.sub(r"[\s-]+", "-", city.strip().lower()).strip("-")


def default_cache_root(environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    override = env.get(CACHE_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path(user_cache_dir(APP_NAME))


def load_settings(path: Union[str, Path, None]) -> CacheSettings:
    """Read ``CacheSettings`` from a YAML file; ``None`` gives the defaults."""
    if path is None:
        return CacheSettings()
    with open(path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    return CacheSettings.model_validate(raw)


def atomic_write(path: Path, writer: Callable[[Path], None]) -> Path:
    """Write ``path`` through a sibling temp file so readers never see a partial file."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    os.close(fd)
    tmp_path = Path(tmp)
    try:
        writer(tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return path


class CacheContext:
    """Root directory plus settings, passed explicitly to every entry point.

    Path methods only build paths; ``ensure_city_dir`` and the store methods
    touch the filesystem.
    """

    def __init__(self, root: Union[str, Path], settings: Optional[CacheSettings] = None):
        self.root = Path(root)
        self.settings = settings or CacheSettings(cache_dir=self.root)

    @classmethod
    def from_settings(cls, settings: CacheSettings, environ: Optional[Mapping[str, str]] = None) -> "CacheContext":
        root = settings.cache_dir or default_cache_root(environ)
        return cls(root, settings)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CacheContext":
        return cls.from_settings(CacheSettings(), environ)

    def __repr__(self) -> str:
        return f"CacheContext(root={str(self.root)!r})"

    # Paths

    def city_dir(self, city: str) -> Path:
        return self.root / normalize_city(city)

    def ensure_city_dir(self, city: str) -> Path:
        d = self.city_dir(city)
        d.mkdir(parents=True, exist_ok=True)
        return d

    def resolve_network(self, city: str, mode: Union[Mode, str], hash: str, contracted: bool = False) -> Path:
        city = normalize_city(city)
        suffix = CONTRACTED_SUFFIX if contracted else ""
        return self.root / city / f"{PREFIX}-{city}-{Mode(mode).value}-{hash}{suffix}.{EXT}"

    def resolve_done(self, city: str, hash: str) -> Path:
        city = normalize_city(city)
        return self.root / city / f"{PREFIX}-{city}-{hash}-done"

    def resolve_claim(self, city: str, hash: str) -> Path:
        city = normalize_city(city)
        return self.root / city / f"{PREFIX}-{city}-{hash}-claim"

    def resolve_vertex_index(
        self,
        city: str,
        mode_a: Union[Mode, str],
        mode_b: Union[Mode, str],
        hash_a6: str,
        hash_b6: str,
    ) -> Path:
        city = normalize_city(city)
        name = f"{PREFIX}-{city}-vert-index-{Mode(mode_a).value}-{Mode(mode_b).value}-{hash_a6}-{hash_b6}.{EXT}"
        return self.root / city / name

    def resolve_profile(self, city: str, penalties: Optional[PenaltySettings] = None) -> Path:
        """``wt_profile.json`` for the default penalties, else a file named after them."""
        if penalties is None or penalties == PenaltySettings():
            return self.city_dir(city) / PROFILE_FILENAME
        name = f"wt_profile-tl{penalties.traffic_lights:g}-turn{penalties.turn:g}.json"
        return self.city_dir(city) / name

    # Store

    def _network_pattern(self, city: str, mode: Optional[Mode] = None) -> re.Pattern:
        modes = Mode(mode).value if mode is not None else "|".join(m.value for m in Mode)
        return re.compile(
            rf"^{PREFIX}-{re.escape(city)}-(?P<mode>{modes})-(?P<hash>[0-9a-f]+)"
            rf"(?P<contracted>{CONTRACTED_SUFFIX})?\.{EXT}$"
        )

    def cached_networks(self, city: str) -> List[Path]:
        """List cached per-mode weighted networks (full and contracted) for ``city``."""
        d = self.city_dir(city)
        if not d.is_dir():
            return []
        pattern = self._network_pattern(normalize_city(city))
        return sorted(p for p in d.iterdir() if pattern.match(p.name))

    def cache_network(
        self,
        graph: pd.DataFrame,
        city: str,
        mode: Union[Mode, str],
        backend: "WeightingBackend",
    ) -> List[Path]:
        """Persist a weighted graph and its contracted form; returns both paths.

        ``graph.attrs["hash"]`` must hold the post-weighting fingerprint.
        """
        h = graph.attrs["hash"]
        self.ensure_city_dir(city)
        full = self.resolve_network(city, mode, h)
        atomic_write(full, lambda p: write_graph(graph, p))
        contracted = backend.contract_graph(graph)
        contracted.attrs.update(graph.attrs)
        contracted_path = self.resolve_network(city, mode, h, contracted=True)
        atomic_write(contracted_path, lambda p: write_graph(contracted, p))
        logger.info("Cached %s network for %s: %s", Mode(mode).value, normalize_city(city), full.name)
        return [full, contracted_path]

    def load_cached_network(
        self,
        city: str,
        mode: Union[Mode, str],
        contracted: bool = False,
        hash: Optional[str] = None,
    ) -> pd.DataFrame:
        """Load a cached weighted network.

        Without ``hash`` the most recently written matching file is used, since
        stale generations are never removed.
        """
        path = self.find_network(city, mode, contracted=contracted, hash=hash)
        graph = read_graph(path)
        m = self._network_pattern(normalize_city(city), Mode(mode)).match(path.name)
        graph.attrs["hash"] = m.group("hash")
        graph.attrs["wt_profile"] = Mode(mode).value
        return graph

    def find_network(
        self,
        city: str,
        mode: Union[Mode, str],
        contracted: bool = False,
        hash: Optional[str] = None,
    ) -> Path:
        if hash is not None:
            path = self.resolve_network(city, mode, hash, contracted=contracted)
            if not path.exists():
                raise MissingPrerequisiteArtifact(
                    f"No cached {Mode(mode).value} network at {path}",
                    city=normalize_city(city),
                    mode=Mode(mode).value,
                    path=path,
                )
            return path
        pattern = self._network_pattern(normalize_city(city), Mode(mode))
        candidates = []
        for p in self.cached_networks(city):
            m = pattern.match(p.name)
            if m and bool(m.group("contracted")) == contracted:
                candidates.append(p)
        if not candidates:
            kind = "contracted " if contracted else ""
            raise MissingPrerequisiteArtifact(
                f"No cached {kind}{Mode(mode).value} network for '{normalize_city(city)}' in {self.city_dir(city)}",
                city=normalize_city(city),
                mode=Mode(mode).value,
                path=self.city_dir(city),
            )
        return max(candidates, key=lambda p: p.stat().st_mtime_ns)


__all__ = [
    "CACHE_DIR_ENV",
    "CacheContext",
    "atomic_write",
    "default_cache_root",
    "load_settings",
    "normalize_city",
]
