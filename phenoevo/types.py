"""Core data types for PhenoEvo.

This module is the SINGLE SOURCE OF TRUTH for:
  - Agent: one individual (phenotype + inheritance weight vector)
  - PopulationSnapshot: environment, agents and the per-step delta counter
  - StepReport: per-step event counts returned by the engine
  - Numerical tolerances shared by validation and serialization

Agents are immutable values. Reproduction creates a new Agent rather than
modifying the parent, and removal simply drops the reference.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np

from phenoevo.errors import AgentInvalid


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

WEIGHT_TOLERANCE: float = 1e-6   # |sum(weights) - 1| bound for every agent
ROUND_TRIP_ATOL: float = 1e-9    # weight equality used by snapshot comparison


# ═══════════════════════════════════════════════════════════════════════
# AGENT
# ═══════════════════════════════════════════════════════════════════════

def _check_weights(weights: np.ndarray, n_phe: int) -> None:
    if weights.ndim != 1 or weights.shape[0] != n_phe:
        raise AgentInvalid(
            f"inheritance_weights must have length {n_phe}, "
            f"got shape {weights.shape}"
        )
    if not np.all(np.isfinite(weights)):
        raise AgentInvalid(
            f"inheritance_weights must be finite, got {weights.tolist()}"
        )
    if np.any(weights < 0.0):
        raise AgentInvalid(
            f"inheritance_weights must be non-negative, got {weights.tolist()}"
        )
    total = float(weights.sum())
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise AgentInvalid(
            f"inheritance_weights must sum to 1.0, got {total!r}"
        )


@dataclass(frozen=True, eq=False)
class Agent:
    """One member of the population.

    Attributes:
        phenotype: Observable category in [0, n_phe).
        inheritance_weights: (n_phe,) read-only float64 probability vector
            used to draw offspring phenotypes; mutated copies are passed on.

    Construction validates both fields against n_phe = len(weights).
    Use ``make_agent`` when n_phe is known from the parameters.
    """
    phenotype: int
    inheritance_weights: np.ndarray

    def __post_init__(self):
        weights = np.array(self.inheritance_weights, dtype=np.float64)
        n_phe = weights.shape[0] if weights.ndim == 1 else -1
        _check_weights(weights, n_phe)
        try:
            phenotype = int(self.phenotype)
        except (TypeError, ValueError) as exc:
            raise AgentInvalid(
                f"phenotype must be an integer, got {self.phenotype!r}"
            ) from exc
        if phenotype != self.phenotype or not 0 <= phenotype < n_phe:
            raise AgentInvalid(
                f"phenotype must be in [0, {n_phe}), got {self.phenotype!r}"
            )
        weights.setflags(write=False)
        object.__setattr__(self, 'phenotype', phenotype)
        object.__setattr__(self, 'inheritance_weights', weights)

    @property
    def n_phe(self) -> int:
        return self.inheritance_weights.shape[0]

    def isclose(self, other: 'Agent', atol: float = ROUND_TRIP_ATOL) -> bool:
        """Same phenotype and weights equal within ``atol``."""
        return (
            self.phenotype == other.phenotype
            and self.n_phe == other.n_phe
            and bool(np.allclose(self.inheritance_weights,
                                 other.inheritance_weights,
                                 rtol=0.0, atol=atol))
        )


def make_agent(phenotype: int, weights, n_phe: int) -> Agent:
    """Build a validated Agent for a model with ``n_phe`` phenotypes.

    Raises:
        AgentInvalid: If the weight vector length differs from n_phe, or if
            Agent validation fails.
    """
    arr = np.asarray(weights, dtype=np.float64)
    if arr.ndim != 1 or arr.shape[0] != n_phe:
        raise AgentInvalid(
            f"inheritance_weights must have length {n_phe}, "
            f"got shape {arr.shape}"
        )
    return Agent(phenotype, arr)


# ═══════════════════════════════════════════════════════════════════════
# POPULATION SNAPSHOT
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class PopulationSnapshot:
    """State of the population between steps.

    step_delta counts (reproductions - deaths) of the last completed step.
    Capacity trimming is not reflected in it, so a persisted delta
    overstates net change whenever trimming occurred.
    """
    environment: int = 0
    agents: List[Agent] = field(default_factory=list)
    step_delta: int = 0

    @property
    def n_agents(self) -> int:
        return len(self.agents)

    def copy(self) -> 'PopulationSnapshot':
        """Shallow copy; agents are immutable so sharing them is safe."""
        return PopulationSnapshot(
            environment=self.environment,
            agents=list(self.agents),
            step_delta=self.step_delta,
        )

    def equivalent(
        self,
        other: 'PopulationSnapshot',
        atol: float = ROUND_TRIP_ATOL,
    ) -> bool:
        """Compare as multisets of agents (agent order is not meaningful)."""
        if (self.environment != other.environment
                or self.step_delta != other.step_delta
                or self.n_agents != other.n_agents):
            return False
        return _agents_match(self.agents, other.agents, atol)


def _agents_match(
    left: Sequence[Agent],
    right: Sequence[Agent],
    atol: float,
) -> bool:
    """Pair every agent of ``left`` with an unused close agent of ``right``.

    Agents are grouped by phenotype and matched greedily within a group,
    so near-equal weights that would sort in a different order still pair.
    """
    unmatched: Dict[int, List[Agent]] = {}
    for agent in right:
        unmatched.setdefault(agent.phenotype, []).append(agent)
    for agent in left:
        candidates = unmatched.get(agent.phenotype, [])
        for j, other in enumerate(candidates):
            if agent.isclose(other, atol):
                del candidates[j]
                break
        else:
            return False
    return True


# ═══════════════════════════════════════════════════════════════════════
# STEP REPORT
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StepReport:
    """Event counts for one completed step."""
    environment: int
    n_reproduced: int
    n_died: int
    n_trimmed: int
    n_agents: int

    @property
    def step_delta(self) -> int:
        return self.n_reproduced - self.n_died
