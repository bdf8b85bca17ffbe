"""Seeded RNG factory for reproducible simulations.

Uses NumPy's SeedSequence → PCG64 to guarantee bit-exact replay with the
same seed. A simulation owns exactly one Generator; every sampling
operation in a step draws from it in a fixed order, so substituting a
generator built from a known seed gives a deterministic run.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


def create_rng(
    seed: Optional[int] = 0,
    policy: str = "fixed",
) -> np.random.Generator:
    """Create the simulation's random generator.

    Args:
        seed: Non-negative integer seed (used when policy is "fixed").
        policy: "fixed" seeds from ``seed``; "entropy" draws fresh OS
            entropy and logs it so the run can be replayed with
            ``seed=<entropy>`` under the fixed policy.

    Returns:
        numpy Generator backed by PCG64.

    Raises:
        ValueError: If the policy is unknown or the seed is negative.

    Example:
        >>> rng = create_rng(42)
        >>> rng.random()  # reproducible
    """
    if policy == "fixed":
        if seed is None or seed < 0:
            raise ValueError(f"fixed seed policy needs a seed >= 0, got {seed!r}")
        ss = np.random.SeedSequence(seed)
    elif policy == "entropy":
        ss = np.random.SeedSequence()
        logger.info("seeded from OS entropy: %d", ss.entropy)
    else:
        raise ValueError(
            f"seed policy must be 'fixed' or 'entropy', got '{policy}'"
        )
    return np.random.Generator(np.random.PCG64(ss))


def rng_state_snapshot(rng: np.random.Generator) -> dict:
    """Capture the full bit-generator state.

    Returns a dict that can be passed to ``restore_rng_state`` to rewind
    the generator to this point.
    """
    return rng.bit_generator.state


def restore_rng_state(rng: np.random.Generator, state: dict) -> None:
    """Restore a generator from ``rng_state_snapshot`` output.

    Raises:
        ValueError: If the state belongs to a different bit generator.
    """
    expected = type(rng.bit_generator).__name__
    found = state.get('bit_generator') if isinstance(state, dict) else None
    if found != expected:
        raise ValueError(
            f"cannot restore {found!r} state into a {expected} generator"
        )
    rng.bit_generator.state = state
