import pandas as pd
import pytest

from m4ra_cache.backend import DefaultBackend
from m4ra_cache.cache import CacheContext
from m4ra_cache.network import StreetNetwork
from m4ra_cache.schema import CacheSettings, CompletionPolicy


def make_network(extra_edge: bool = False) -> StreetNetwork:
    """Small street network:

        a - b - c -> d
                |
                e - f

    b and e only pass traffic through; c carries traffic signals; c -> d is one-way.
    """
    vertices = pd.DataFrame({
        "vertex_id": ["a", "b", "c", "d", "e", "f"],
        "x": [0.000, 0.001, 0.002, 0.003, 0.002, 0.002],
        "y": [51.500, 51.500, 51.500, 51.500, 51.501, 51.502],
        "signals": [False, False, True, False, False, False],
    })
    edges = pd.DataFrame({
        "edge_id": ["e1", "e2", "e3", "e4", "e5"],
        "from_id": ["a", "b", "c", "c", "e"],
        "to_id": ["b", "c", "d", "e", "f"],
        "object_id": ["w1", "w1", "w2", "w3", "w3"],
        "highway": ["residential"] * 5,
        "oneway": [False, False, True, False, False],
    })
    if extra_edge:
        edges = pd.concat([edges, pd.DataFrame({
            "edge_id": ["e6"],
            "from_id": ["d"],
            "to_id": ["f"],
            "object_id": ["w4"],
            "highway": ["residential"],
            "oneway": [False],
        })], ignore_index=True)
    return StreetNetwork(edges, vertices)


class CountingBackend(DefaultBackend):
    """DefaultBackend that records every weighting call."""

    def __init__(self, fail_on=None):
        super().__init__()
        self.calls = []
        self.kwargs = {}
        self.fail_on = fail_on

    def weight_streetnet(self, network, wt_profile, wt_profile_file=None, turn_penalty=False):
        self.calls.append(wt_profile)
        self.kwargs[wt_profile] = {"wt_profile_file": wt_profile_file, "turn_penalty": turn_penalty}
        if wt_profile == self.fail_on:
            raise RuntimeError(f"weighting failed for {wt_profile}")
        return super().weight_streetnet(network, wt_profile, wt_profile_file, turn_penalty)


@pytest.fixture
def network():
    return make_network()


@pytest.fixture
def backend():
    return CountingBackend()


@pytest.fixture
def context(tmp_path):
    return CacheContext(tmp_path / "cache")


@pytest.fixture
def verify_context(tmp_path):
    settings = CacheSettings(
        cache_dir=tmp_path / "cache",
        completion_policy=CompletionPolicy.VERIFY_THEN_MARK,
        stale_claim_after_s=60,
    )
    return CacheContext.from_settings(settings)
