"""Tests for phenoevo.types — Agent, PopulationSnapshot and StepReport."""

import dataclasses

import numpy as np
import pytest

from phenoevo.errors import AgentInvalid
from phenoevo.types import (
    WEIGHT_TOLERANCE,
    Agent,
    PopulationSnapshot,
    StepReport,
    make_agent,
)


# ── Agent tests ───────────────────────────────────────────────────────

class TestAgent:
    def test_valid(self):
        agent = Agent(1, [0.25, 0.75])
        assert agent.phenotype == 1
        assert agent.n_phe == 2
        assert agent.inheritance_weights.dtype == np.float64

    def test_weights_are_readonly_copy(self):
        source = np.array([0.5, 0.5])
        agent = Agent(0, source)
        source[0] = 0.9
        assert agent.inheritance_weights[0] == 0.5
        with pytest.raises(ValueError):
            agent.inheritance_weights[0] = 0.1

    def test_frozen(self):
        agent = Agent(0, [1.0])
        with pytest.raises(dataclasses.FrozenInstanceError):
            agent.phenotype = 1

    def test_numpy_integer_phenotype(self):
        agent = Agent(np.int64(1), [0.5, 0.5])
        assert type(agent.phenotype) is int

    def test_phenotype_may_have_zero_weight(self):
        Agent(1, [1.0, 0.0])  # phenotype and weights are independent

    def test_phenotype_out_of_range(self):
        with pytest.raises(AgentInvalid, match=r"\[0, 2\)"):
            Agent(2, [0.5, 0.5])

    def test_negative_phenotype(self):
        with pytest.raises(AgentInvalid, match="phenotype"):
            Agent(-1, [0.5, 0.5])

    def test_fractional_phenotype(self):
        with pytest.raises(AgentInvalid, match="phenotype"):
            Agent(0.5, [0.5, 0.5])

    def test_weights_must_sum_to_one(self):
        with pytest.raises(AgentInvalid, match="sum to 1.0"):
            Agent(0, [0.5, 0.4])

    def test_sum_tolerance(self):
        Agent(0, [0.5, 0.5 + 0.5 * WEIGHT_TOLERANCE])
        with pytest.raises(AgentInvalid):
            Agent(0, [0.5, 0.5 + 2 * WEIGHT_TOLERANCE])

    def test_negative_weight(self):
        with pytest.raises(AgentInvalid, match="non-negative"):
            Agent(0, [1.5, -0.5])

    def test_non_finite_weight(self):
        with pytest.raises(AgentInvalid, match="finite"):
            Agent(0, [np.nan, 1.0])

    def test_matrix_weights(self):
        with pytest.raises(AgentInvalid, match="length"):
            Agent(0, [[0.5, 0.5]])

    def test_isclose(self):
        a = Agent(0, [0.5, 0.5])
        assert a.isclose(Agent(0, [0.5 + 1e-12, 0.5 - 1e-12]))
        assert not a.isclose(Agent(1, [0.5, 0.5]))
        assert not a.isclose(Agent(0, [0.6, 0.4]))
        assert not a.isclose(Agent(0, [0.5, 0.25, 0.25]))


class TestMakeAgent:
    def test_valid(self):
        agent = make_agent(2, [0.2, 0.3, 0.5], n_phe=3)
        assert agent.n_phe == 3

    def test_wrong_length(self):
        with pytest.raises(AgentInvalid, match="length 3"):
            make_agent(0, [0.5, 0.5], n_phe=3)

    def test_phenotype_checked(self):
        with pytest.raises(AgentInvalid, match="phenotype"):
            make_agent(3, [0.2, 0.3, 0.5], n_phe=3)

    def test_agent_invalid_is_value_error(self):
        assert issubclass(AgentInvalid, ValueError)


# ── PopulationSnapshot tests ──────────────────────────────────────────

@pytest.fixture
def snapshot():
    return PopulationSnapshot(
        environment=1,
        agents=[Agent(0, [1.0, 0.0]), Agent(1, [0.3, 0.7]), Agent(1, [0.5, 0.5])],
        step_delta=-2,
    )


class TestPopulationSnapshot:
    def test_defaults(self):
        snap = PopulationSnapshot()
        assert snap.environment == 0
        assert snap.agents == []
        assert snap.step_delta == 0
        assert snap.n_agents == 0

    def test_n_agents(self, snapshot):
        assert snapshot.n_agents == 3

    def test_copy_is_independent(self, snapshot):
        clone = snapshot.copy()
        clone.agents.pop()
        clone.environment = 0
        assert snapshot.n_agents == 3
        assert snapshot.environment == 1

    def test_equivalent_ignores_order(self, snapshot):
        shuffled = snapshot.copy()
        shuffled.agents.reverse()
        assert snapshot.equivalent(shuffled)

    def test_equivalent_detects_environment(self, snapshot):
        other = snapshot.copy()
        other.environment = 0
        assert not snapshot.equivalent(other)

    def test_equivalent_detects_delta(self, snapshot):
        other = snapshot.copy()
        other.step_delta = 0
        assert not snapshot.equivalent(other)

    def test_equivalent_detects_agent_change(self, snapshot):
        other = snapshot.copy()
        other.agents[1] = Agent(1, [0.31, 0.69])
        assert not snapshot.equivalent(other)

    def test_equivalent_detects_size(self, snapshot):
        other = snapshot.copy()
        other.agents.append(Agent(0, [1.0, 0.0]))
        assert not snapshot.equivalent(other)

    def test_equivalent_when_near_equal_weights_reorder(self):
        """First weight components swap order within atol; agents still pair."""
        left = PopulationSnapshot(agents=[
            Agent(0, [0.2, 0.3, 0.5]),
            Agent(0, [0.2 + 5e-10, 0.1, 0.7 - 5e-10]),
        ])
        right = PopulationSnapshot(agents=[
            Agent(0, [0.2 + 6e-10, 0.3, 0.5 - 6e-10]),
            Agent(0, [0.2 + 4e-10, 0.1, 0.7 - 4e-10]),
        ])
        assert left.agents[0].isclose(right.agents[0])
        assert left.agents[1].isclose(right.agents[1])
        assert left.equivalent(right)
        assert right.equivalent(left)

    def test_equivalent_each_agent_matched_once(self):
        left = PopulationSnapshot(agents=[Agent(0, [1.0, 0.0]),
                                          Agent(0, [1.0, 0.0])])
        right = PopulationSnapshot(agents=[Agent(0, [1.0, 0.0]),
                                           Agent(0, [0.5, 0.5])])
        assert not left.equivalent(right)


class TestStepReport:
    def test_step_delta(self):
        report = StepReport(environment=0, n_reproduced=5, n_died=7,
                            n_trimmed=3, n_agents=10)
        assert report.step_delta == -2
