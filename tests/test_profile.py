import tempfile

import orjson
import pydantic
import pytest

from m4ra_cache.backend import DEFAULT_PROFILE, DefaultBackend
from m4ra_cache.errors import ProfileConflict, ProfileTemplateMismatch
from m4ra_cache.profile import build_motorcar_profile, dump_profile, patch_penalties, write_wt_profile
from m4ra_cache.schema import PenaltySettings


class TemplateBackend(DefaultBackend):
    def __init__(self, document):
        super().__init__()
        self.document = document

    def write_default_profile(self, path):
        path.write_bytes(orjson.dumps(self.document))
        return path


def _default():
    return orjson.loads(DEFAULT_PROFILE.read_bytes())


def _motorcar(doc):
    return next(p for p in doc["penalties"] if p["name"] == "motorcar")


def test_patch_only_touches_motorcar_penalties():
    default = _default()
    patched = build_motorcar_profile(16, 1)
    assert _motorcar(patched)["traffic_lights"] == 16
    assert _motorcar(patched)["turn"] == 1

    restored = orjson.loads(orjson.dumps(patched))
    _motorcar(restored)["traffic_lights"] = _motorcar(default)["traffic_lights"]
    _motorcar(restored)["turn"] = _motorcar(default)["turn"]
    assert restored == default


def test_serialized_profile_differs_in_two_lines_only():
    before = dump_profile(_default()).decode().splitlines()
    after = dump_profile(build_motorcar_profile(16, 1)).decode().splitlines()
    assert len(before) == len(after)
    changed = [new.strip() for old, new in zip(before, after) if old != new]
    assert changed == ['"traffic_lights": 16,', '"turn": 1']


def test_patch_does_not_mutate_input():
    default = _default()
    patch_penalties(default, 30, 2.5)
    assert default == _default()
    assert _motorcar(patch_penalties(default, 30, 2.5))["turn"] == 2.5


@pytest.mark.parametrize(
    "document",
    [
        {"weighting_profiles": []},
        {"penalties": {"motorcar": {"traffic_lights": 1, "turn": 1}}},
        {"penalties": [{"name": "foot", "traffic_lights": 0, "turn": 0}]},
        {"penalties": [{"name": "motorcar", "traffic_lights": 8}]},
    ],
)
def test_template_mismatch(document):
    with pytest.raises(ProfileTemplateMismatch):
        build_motorcar_profile(16, 1, backend=TemplateBackend(document))


def test_negative_penalties_rejected():
    with pytest.raises(pydantic.ValidationError):
        build_motorcar_profile(-1, 1)


def test_cached_profile_first_writer_wins(context, monkeypatch, tmp_path):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))

    f = write_wt_profile(context, "Paris", PenaltySettings(traffic_lights=16, turn=1))
    assert f == context.root / "paris" / "wt_profile.json"
    written = f.read_bytes()
    assert write_wt_profile(context, "paris", PenaltySettings()) == f
    assert f.read_bytes() == written
    # temp round-trip files are removed
    assert list(scratch.iterdir()) == []


def test_other_penalties_get_their_own_profile(context):
    default = write_wt_profile(context, "Paris", PenaltySettings())
    custom = write_wt_profile(context, "Paris", PenaltySettings(traffic_lights=40, turn=9))
    assert custom.name == "wt_profile-tl40-turn9.json"
    assert _motorcar(orjson.loads(default.read_bytes()))["traffic_lights"] == 16
    assert _motorcar(orjson.loads(custom.read_bytes()))["traffic_lights"] == 40
    assert _motorcar(orjson.loads(custom.read_bytes()))["turn"] == 9


def test_edited_cached_profile_conflicts(context):
    f = write_wt_profile(context, "Paris", PenaltySettings())
    doc = orjson.loads(f.read_bytes())
    _motorcar(doc)["traffic_lights"] = 99
    f.write_bytes(dump_profile(doc))
    with pytest.raises(ProfileConflict, match="traffic_lights=99") as exc:
        write_wt_profile(context, "paris", PenaltySettings())
    assert exc.value.path == f
    assert exc.value.city == "paris"
