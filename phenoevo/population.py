"""Population-level helpers.

Handles: initial population generation, order-disturbing removal of agents
(swap-with-last), and population summaries (phenotype counts, mean
inheritance weights).

Removal batches must be applied in strictly descending index order:
removing index i only moves the agent from the last position into i, so
every lower, not-yet-processed index stays valid.
"""

from __future__ import annotations

from typing import Iterable, List

import numpy as np

from phenoevo.types import Agent, PopulationSnapshot, make_agent


def initialize_agents(
    n_agents: int,
    n_phe: int,
    rng: np.random.Generator,
) -> List[Agent]:
    """Uniformly random phenotypes with uniform inheritance weights.

    Draws one phenotype per agent, in order, from [0, n_phe).
    """
    weights = np.full(n_phe, 1.0 / n_phe)
    agents = []
    for _ in range(n_agents):
        phenotype = int(rng.integers(0, n_phe))
        agents.append(make_agent(phenotype, weights, n_phe))
    return agents


def swap_remove(agents: List[Agent], index: int) -> Agent:
    """Remove ``agents[index]`` in O(1); the last agent takes its place."""
    if not 0 <= index < len(agents):
        raise IndexError(
            f"agent index {index} out of range for population of {len(agents)}"
        )
    last = agents.pop()
    if index == len(agents):
        return last
    removed = agents[index]
    agents[index] = last
    return removed


def remove_indices(agents: List[Agent], indices: Iterable[int]) -> int:
    """Remove a batch of agents by pre-removal index.

    Indices are sorted descending before removal. Duplicates are rejected
    since the second removal would hit a different agent.

    Returns:
        Number of agents removed.
    """
    order = sorted((int(i) for i in indices), reverse=True)
    for a, b in zip(order, order[1:]):
        if a == b:
            raise ValueError(f"duplicate removal index {a}")
    if order and (order[0] >= len(agents) or order[-1] < 0):
        raise IndexError(
            f"removal indices {order[-1]}..{order[0]} out of range for "
            f"population of {len(agents)}"
        )
    for i in order:
        swap_remove(agents, i)
    return len(order)


# ═══════════════════════════════════════════════════════════════════════
# SUMMARIES
# ═══════════════════════════════════════════════════════════════════════

def phenotype_counts(snapshot: PopulationSnapshot, n_phe: int) -> np.ndarray:
    """(n_phe,) int64 count of agents per phenotype."""
    phenotypes = np.fromiter(
        (a.phenotype for a in snapshot.agents), dtype=np.int64,
        count=snapshot.n_agents,
    )
    return np.bincount(phenotypes, minlength=n_phe)


def mean_inheritance_weights(
    snapshot: PopulationSnapshot,
    n_phe: int,
) -> np.ndarray:
    """(n_phe,) population-mean inheritance weights; NaN when empty."""
    if snapshot.n_agents == 0:
        return np.full(n_phe, np.nan)
    stacked = np.stack([a.inheritance_weights for a in snapshot.agents])
    return stacked.mean(axis=0)
