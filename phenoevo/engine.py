"""Simulation engine: initial conditions, the per-step update and runs.

Step order (each phase depends on the previous ones):
  1. Environment update: draw the next environment from row
     ``environment`` of prob_env.
  2. Reset step_delta.
  3. Per-phenotype Bernoulli parameters for reproduction and death, taken
     from the NEW environment's column of prob_rep / prob_dec.
  4. Selection: one reproduction draw and one death draw per agent, agent
     by agent, on the pre-step population.
  5. Reproduction + mutation: for each selected parent in index order the
     child phenotype is drawn from the parent's weights, then every weight
     is multiplied by an independent LogNormal(0, std_dev_mut) factor and
     the vector is renormalized. Children are appended.
  6. Death: selected indices (pre-reproduction positions, still valid
     because reproduction only appends) are removed in descending order
     by swap-with-last.
  7. Capacity: if the population exceeds n_agt_init, the excess is removed
     by distinct uniform sampling over the whole population. Trimming does
     not change step_delta.

All random draws come from the engine's single Generator, in exactly this
order, so a fixed seed reproduces a run bit for bit.

A step is atomic from the caller's point of view: it runs on a working copy
of the population, and on any error the previous snapshot and generator
state are kept and the error propagates.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Union

import numpy as np

from phenoevo.config import BATCH_RANGE, SimulationConfig, check_number_range
from phenoevo.distributions import (
    bernoulli_draws,
    bernoulli_table,
    categorical,
    lognormal_factors,
)
from phenoevo.errors import AgentInvalid
from phenoevo.population import initialize_agents, remove_indices
from phenoevo.rng import create_rng, restore_rng_state, rng_state_snapshot
from phenoevo.trajectory import TrajectoryWriter
from phenoevo.types import Agent, PopulationSnapshot, StepReport, make_agent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class SimulationEngine:
    """Owns the population snapshot, the parameters and the random stream.

    Args:
        config: Validated SimulationConfig (see ``validate_config``).
        rng: Optional generator to use instead of one built from
            ``config.simulation`` (tests pass fixed-seed generators).
    """

    def __init__(
        self,
        config: SimulationConfig,
        rng: Optional[np.random.Generator] = None,
    ):
        self.config = config
        if rng is None:
            rng = create_rng(config.simulation.seed,
                             config.simulation.seed_policy)
        self.rng = rng

        m = config.model
        self.n_env = int(m.n_env)
        self.n_phe = int(m.n_phe)
        self.n_agt_init = int(m.n_agt_init)
        self.std_dev_mut = float(m.std_dev_mut)
        self._prob_env = np.asarray(m.prob_env, dtype=np.float64)
        self._prob_rep = np.asarray(m.prob_rep, dtype=np.float64)
        self._prob_dec = np.asarray(m.prob_dec, dtype=np.float64)

        self.snapshot = PopulationSnapshot()
        self.n_steps = 0
        self.last_report: Optional[StepReport] = None
        self._ready = False

    # ───────────────────────────────────────────────────────────────────
    # State
    # ───────────────────────────────────────────────────────────────────

    def initialize(self) -> PopulationSnapshot:
        """Uniform random environment and n_agt_init uniform agents."""
        environment = int(self.rng.integers(0, self.n_env))
        agents = initialize_agents(self.n_agt_init, self.n_phe, self.rng)
        self.snapshot = PopulationSnapshot(
            environment=environment, agents=agents, step_delta=0,
        )
        self.n_steps = 0
        self.last_report = None
        self._ready = True
        logger.info("initial condition: environment=%d, %d agents, %d phenotypes",
                    environment, len(agents), self.n_phe)
        return self.snapshot

    def load_state(self, snapshot: PopulationSnapshot) -> None:
        """Install an externally supplied snapshot (e.g. to resume a run).

        Raises:
            ValueError: If the environment is out of range.
            AgentInvalid: If an agent does not match this model's n_phe.
        """
        if not 0 <= snapshot.environment < self.n_env:
            raise ValueError(
                f"environment must be in [0, {self.n_env}), "
                f"got {snapshot.environment}"
            )
        for i, agent in enumerate(snapshot.agents):
            if agent.n_phe != self.n_phe:
                raise AgentInvalid(
                    f"agent {i} has {agent.n_phe} weights, "
                    f"model has {self.n_phe} phenotypes"
                )
        self.snapshot = snapshot.copy()
        self.last_report = None
        self._ready = True
        logger.info("loaded state: environment=%d, %d agents",
                    snapshot.environment, snapshot.n_agents)

    # ───────────────────────────────────────────────────────────────────
    # Step
    # ───────────────────────────────────────────────────────────────────

    def step(self) -> StepReport:
        """Advance the population by one step.

        Raises:
            RuntimeError: If neither initialize() nor load_state() was called.
            AgentInvalid: If a mutated child fails validation.
            DistributionConstructionError: If a sampling distribution
                cannot be built from its parameters.
        """
        if not self._ready:
            raise RuntimeError("call initialize() or load_state() before step()")
        rng_state = rng_state_snapshot(self.rng)
        try:
            snapshot, report = self._advance(self.snapshot)
        except Exception:
            restore_rng_state(self.rng, rng_state)
            raise
        self.snapshot = snapshot
        self.last_report = report
        self.n_steps += 1
        logger.debug(
            "step %d: env=%d rep=%d dec=%d trim=%d n=%d",
            self.n_steps, report.environment, report.n_reproduced,
            report.n_died, report.n_trimmed, report.n_agents,
        )
        return report

    def _advance(self, current: PopulationSnapshot):
        rng = self.rng
        agents = list(current.agents)

        # 1. Environment update
        environment = categorical(self._prob_env[current.environment], rng)

        # 2. Reset counter
        step_delta = 0

        # 3. Trial parameters for the new environment
        p_rep = bernoulli_table(self._prob_rep, environment)
        p_dec = bernoulli_table(self._prob_dec, environment)

        # 4. Selection: (rep, dec) per agent, agent by agent
        n_agents = len(agents)
        phenotypes = np.fromiter((a.phenotype for a in agents),
                                 dtype=np.int64, count=n_agents)
        trial_p = np.column_stack((p_rep[phenotypes], p_dec[phenotypes]))
        selected = bernoulli_draws(trial_p, rng)
        i_rep = np.flatnonzero(selected[:, 0])
        i_dec = np.flatnonzero(selected[:, 1])

        # 5. Reproduction + mutation
        for i in i_rep:
            agents.append(self._offspring(agents[i]))
            step_delta += 1

        # 6. Death
        step_delta -= remove_indices(agents, i_dec)

        # 7. Capacity
        n_trimmed = 0
        if len(agents) > self.n_agt_init:
            excess = len(agents) - self.n_agt_init
            i_trim = rng.choice(len(agents), size=excess, replace=False)
            n_trimmed = remove_indices(agents, i_trim)

        snapshot = PopulationSnapshot(
            environment=environment,
            agents=agents,
            step_delta=step_delta,
        )
        report = StepReport(
            environment=environment,
            n_reproduced=int(i_rep.size),
            n_died=int(i_dec.size),
            n_trimmed=n_trimmed,
            n_agents=len(agents),
        )
        return snapshot, report

    def _offspring(self, parent: Agent) -> Agent:
        """Child with phenotype drawn from, and weights mutated from, parent."""
        weights = parent.inheritance_weights
        phenotype = categorical(weights, self.rng)
        factors = lognormal_factors(self.std_dev_mut, weights.shape[0], self.rng)
        child = weights * factors
        norm = float(child.sum())
        if not np.isfinite(norm) or norm <= 0.0:
            raise AgentInvalid(
                f"cannot renormalize mutated weights (sum={norm!r}) "
                f"of parent with phenotype {parent.phenotype}"
            )
        return make_agent(phenotype, child / norm, self.n_phe)

    # ───────────────────────────────────────────────────────────────────
    # Run
    # ───────────────────────────────────────────────────────────────────

    def run(
        self,
        path: Union[str, Path],
        steps_per_save: Optional[int] = None,
        saves_per_file: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None,
        append: bool = False,
    ) -> int:
        """Run saves_per_file batches of steps_per_save steps, one frame each.

        Each frame is flushed as soon as it is written; an error aborts the
        run but leaves every earlier frame intact.

        Args:
            path: Trajectory file (truncated unless append=True).
            steps_per_save: Steps per frame (default: config.simulation).
            saves_per_file: Frames to write (default: config.simulation).
            progress_callback: Optional callable(n_saved, saves_per_file)
                invoked after every frame.
            append: Append to an existing file instead of truncating it.

        Returns:
            Number of frames written.
        """
        if not self._ready:
            raise RuntimeError("call initialize() or load_state() before run()")
        sim = self.config.simulation
        if steps_per_save is None:
            steps_per_save = sim.steps_per_save
        if saves_per_file is None:
            saves_per_file = sim.saves_per_file
        check_number_range(steps_per_save, "steps_per_save", *BATCH_RANGE)
        check_number_range(saves_per_file, "saves_per_file", *BATCH_RANGE)

        logger.info("running %d x %d steps into %s",
                    saves_per_file, steps_per_save, path)
        with TrajectoryWriter(path, append=append) as writer:
            for i_save in range(saves_per_file):
                for _ in range(steps_per_save):
                    self.step()
                writer.append(self.snapshot)

                logger.info("progress: %06.2f%% (step %d, %d agents)",
                            100.0 * (i_save + 1) / saves_per_file,
                            self.n_steps, self.snapshot.n_agents)
                if progress_callback is not None:
                    progress_callback(i_save + 1, saves_per_file)

        logger.info("simulation ended")
        return writer.n_frames
