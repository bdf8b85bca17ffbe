"""End-to-end runs: config file → engine → trajectory file → reader."""

from pathlib import Path

import numpy as np
import pytest

from phenoevo.config import load_config
from phenoevo.engine import SimulationEngine
from phenoevo.trajectory import iter_frames
from phenoevo.types import WEIGHT_TOLERANCE
from phenoevo.utils import file_sha256

CONFIG_DIR = Path(__file__).resolve().parent.parent / "configs"


def _small_overrides(seed=0):
    return {
        'model': {'n_agt_init': 200},
        'simulation': {'seed': seed, 'steps_per_save': 5, 'saves_per_file': 8},
    }


def _run(tmp_path, name, seed=0, scenario=None):
    config = load_config(CONFIG_DIR / "default.yaml", scenario_path=scenario,
                         sweep_overrides=_small_overrides(seed))
    engine = SimulationEngine(config)
    engine.initialize()
    path = tmp_path / name
    engine.run(path)
    return config, engine, path


class TestReproducibility:
    def test_same_seed_same_bytes(self, tmp_path):
        _, _, a = _run(tmp_path, "a.bin", seed=3)
        _, _, b = _run(tmp_path, "b.bin", seed=3)
        assert file_sha256(a) == file_sha256(b)

    def test_different_seed_different_bytes(self, tmp_path):
        _, _, a = _run(tmp_path, "a.bin", seed=3)
        _, _, b = _run(tmp_path, "b.bin", seed=4)
        assert file_sha256(a) != file_sha256(b)


@pytest.mark.parametrize("scenario", [None, CONFIG_DIR / "three_phenotypes.yaml"])
def test_invariants_hold_in_every_frame(tmp_path, scenario):
    config, engine, path = _run(tmp_path, "traj.bin", seed=11, scenario=scenario)
    m = config.model
    frames = list(iter_frames(path, m.n_phe))
    assert len(frames) == 8
    for frame in frames:
        assert 0 <= frame.environment < m.n_env
        assert frame.n_agents <= m.n_agt_init
        for agent in frame.agents:
            assert 0 <= agent.phenotype < m.n_phe
            w = agent.inheritance_weights
            assert np.all(w >= 0.0)
            assert abs(w.sum() - 1.0) <= WEIGHT_TOLERANCE
    assert frames[-1].equivalent(engine.snapshot)
