"""Motorcar penalty overrides on the collaborator's default weighting profile.

The weighting backend only writes its built-in profile document, so the two
motorcar penalties are applied by rewriting that document: parse, override
``penalties[name == "motorcar"].traffic_lights`` and ``.turn``, re-serialize.
All other fields are carried through unchanged.
"""
from __future__ import annotations

import copy
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

import orjson

from .backend import DefaultBackend, WeightingBackend
from .cache import CacheContext, normalize_city
from .errors import ProfileConflict, ProfileTemplateMismatch
from .schema import Mode, PenaltySettings

logger = logging.getLogger(__name__)


def _number(value: float) -> Union[int, float]:
    value = float(value)
    return int(value) if value.is_integer() else value


def _motorcar_penalties(document: Dict[str, Any]) -> Dict[str, Any]:
    penalties = document.get("penalties") if isinstance(document, dict) else None
    if not isinstance(penalties, list):
        raise ProfileTemplateMismatch("profile document has no 'penalties' list")
    for block in penalties:
        if isinstance(block, dict) and block.get("name") == Mode.MOTORCAR.value:
            missing = [k for k in ("traffic_lights", "turn") if k not in block]
            if missing:
                raise ProfileTemplateMismatch(
                    f"motorcar penalty block lacks {', '.join(missing)}", mode=Mode.MOTORCAR.value
                )
            return block
    raise ProfileTemplateMismatch("profile document has no motorcar penalty block", mode=Mode.MOTORCAR.value)


def patch_penalties(document: Dict[str, Any], traffic_lights: float, turn: float) -> Dict[str, Any]:
    """Return a copy of ``document`` with the motorcar penalties overridden."""
    PenaltySettings(traffic_lights=traffic_lights, turn=turn)
    patched = copy.deepcopy(document)
    block = _motorcar_penalties(patched)
    block["traffic_lights"] = _number(traffic_lights)
    block["turn"] = _number(turn)
    return patched


def build_motorcar_profile(
    traffic_light_penalty: float = 16,
    turn_penalty: float = 1,
    backend: Optional[WeightingBackend] = None,
) -> Dict[str, Any]:
    backend = backend or DefaultBackend()
    with tempfile.TemporaryDirectory() as td:
        f = backend.write_default_profile(Path(td) / "wt_profile.json")
        document = orjson.loads(Path(f).read_bytes())
    return patch_penalties(document, traffic_light_penalty, turn_penalty)


def dump_profile(document: Dict[str, Any]) -> bytes:
    return orjson.dumps(document, option=orjson.OPT_INDENT_2)


def write_wt_profile(
    context: CacheContext,
    city: str,
    penalties: Optional[PenaltySettings] = None,
    backend: Optional[WeightingBackend] = None,
) -> Path:
    """Return the city's cached motorcar profile file for ``penalties``, creating it if absent.

    Each penalty pair has its own file (``wt_profile.json`` for the defaults)
    and the first written file wins. A cached file whose motorcar penalties
    differ from ``penalties``, e.g. after a hand edit, raises ProfileConflict.
    """
    penalties = penalties or context.settings.penalties
    target = context.resolve_profile(city, penalties)
    if target.exists():
        _check_cached(target, penalties, normalize_city(city))
        return target
    document = build_motorcar_profile(penalties.traffic_lights, penalties.turn, backend)
    fd, tmp = tempfile.mkstemp(suffix="-wt_profile.json")
    tmp_path = Path(tmp)
    try:
        with open(fd, "wb") as fh:
            fh.write(dump_profile(document))
        if target.exists():
            _check_cached(target, penalties, normalize_city(city))
        else:
            context.ensure_city_dir(city)
            shutil.copyfile(tmp_path, target)
            logger.info("Wrote motorcar weighting profile %s", target)
    finally:
        tmp_path.unlink(missing_ok=True)
    return target


def _check_cached(path: Path, penalties: PenaltySettings, city: str) -> None:
    block = _motorcar_penalties(orjson.loads(path.read_bytes()))
    cached = (float(block["traffic_lights"]), float(block["turn"]))
    wanted = (float(penalties.traffic_lights), float(penalties.turn))
    if cached != wanted:
        raise ProfileConflict(
            f"Cached profile {path} has motorcar penalties traffic_lights={cached[0]:g}, turn={cached[1]:g} "
            f"but traffic_lights={wanted[0]:g}, turn={wanted[1]:g} were requested; remove the file to rebuild it",
            city=city,
            mode=Mode.MOTORCAR.value,
            path=path,
        )


__all__ = ["build_motorcar_profile", "patch_penalties", "write_wt_profile", "dump_profile"]
