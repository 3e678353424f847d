from pathlib import Path

import pytest

from m4ra_cache import cache as cache_mod
from m4ra_cache.cache import CacheContext, default_cache_root, load_settings, normalize_city
from m4ra_cache.errors import MissingPrerequisiteArtifact
from m4ra_cache.hashing import fingerprint
from m4ra_cache.schema import CacheSettings, CompletionPolicy, Mode, PenaltySettings


@pytest.mark.parametrize("raw", ["New York", "new  york", "NEW-YORK", " new york\t", "New--York", "-new york-"])
def test_normalize_city(raw):
    assert normalize_city(raw) == "new-york"


def test_normalize_city_rejects_empty():
    with pytest.raises(ValueError):
        normalize_city("   ")


def test_resolved_paths(context):
    root = context.root
    assert context.resolve_network("New York", "foot", "abc123") == root / "new-york" / "m4ra-new-york-foot-abc123.parquet"
    assert context.resolve_network("Paris", Mode.MOTORCAR, "ff", contracted=True).name == "m4ra-paris-motorcar-ff-contracted.parquet"
    assert context.resolve_done("Paris", "ff") == root / "paris" / "m4ra-paris-ff-done"
    assert context.resolve_vertex_index("Paris", "foot", "bicycle", "aaaaaa", "bbbbbb").name == (
        "m4ra-paris-vert-index-foot-bicycle-aaaaaa-bbbbbb.parquet"
    )
    assert context.resolve_profile("Paris") == root / "paris" / "wt_profile.json"
    assert context.resolve_profile("Paris", PenaltySettings()) == root / "paris" / "wt_profile.json"
    assert context.resolve_profile("Paris", PenaltySettings(traffic_lights=40, turn=2.5)).name == "wt_profile-tl40-turn2.5.json"
    # path construction never touches the filesystem
    assert not root.exists()


def test_resolve_rejects_unknown_mode(context):
    with pytest.raises(ValueError):
        context.resolve_network("paris", "tram", "ff")


def test_ensure_city_dir_is_idempotent(context):
    d1 = context.ensure_city_dir("Paris")
    d2 = context.ensure_city_dir("PARIS")
    assert d1 == d2 == context.root / "paris"
    assert d1.is_dir()


def test_default_cache_root_env_override(tmp_path):
    assert default_cache_root({"M4RA_CACHE_DIR": str(tmp_path)}) == tmp_path


def test_default_cache_root_platform_fallback(monkeypatch, tmp_path):
    monkeypatch.setattr(cache_mod, "user_cache_dir", lambda name: str(tmp_path / "platform" / name))
    assert default_cache_root({}) == tmp_path / "platform" / "m4ra"


def test_settings_cache_dir_beats_environment(tmp_path):
    ctx = CacheContext.from_settings(CacheSettings(cache_dir=tmp_path / "a"), {"M4RA_CACHE_DIR": str(tmp_path / "b")})
    assert ctx.root == tmp_path / "a"
    assert CacheContext.from_env({"M4RA_CACHE_DIR": str(tmp_path / "b")}).root == tmp_path / "b"


def test_load_settings_yaml(tmp_path):
    cfg = tmp_path / "m4ra.yaml"
    cfg.write_text(
        "cache_dir: /tmp/m4ra\ncompletion_policy: verify-then-mark\npenalties:\n  traffic_lights: 20\n",
        encoding="utf-8",
    )
    settings = load_settings(cfg)
    assert settings.cache_dir == Path("/tmp/m4ra")
    assert settings.completion_policy is CompletionPolicy.VERIFY_THEN_MARK
    assert settings.penalties.traffic_lights == 20
    assert settings.penalties.turn == 1
    assert load_settings(None) == CacheSettings()


def test_cache_and_load_network(context, backend, network):
    graph = backend.weight_streetnet(network, "foot")
    graph.attrs["hash"] = fingerprint(graph, force=True)
    full, contracted = context.cache_network(graph, "Paris", "foot", backend)
    assert full.exists() and contracted.exists()

    loaded = context.load_cached_network("paris", "foot")
    assert len(loaded) == len(graph)
    assert loaded.attrs["hash"] == graph.attrs["hash"]
    assert loaded.attrs["wt_profile"] == "foot"
    assert fingerprint(loaded, force=True) == graph.attrs["hash"]
    assert len(context.load_cached_network("paris", "foot", contracted=True)) < len(graph)


def test_cached_networks_skips_indices_and_temp_files(context):
    d = context.ensure_city_dir("paris")
    keep = [d / "m4ra-paris-foot-abc.parquet", d / "m4ra-paris-motorcar-abc-contracted.parquet"]
    skip = [
        d / "m4ra-paris-vert-index-foot-bicycle-abcabc-defdef.parquet",
        d / ".m4ra-paris-foot-abc.parquet.x1.tmp",
        d / "m4ra-paris-abc-done",
        d / "wt_profile.json",
    ]
    for p in keep + skip:
        p.write_bytes(b"")
    assert context.cached_networks("Paris") == sorted(keep)


def test_missing_network_raises_with_context(context):
    with pytest.raises(MissingPrerequisiteArtifact) as exc:
        context.load_cached_network("paris", "bicycle", contracted=True)
    assert exc.value.city == "paris"
    assert exc.value.mode == "bicycle"
    with pytest.raises(MissingPrerequisiteArtifact):
        context.find_network("paris", "foot", hash="abc")
