"""PhenoEvo: stochastic phenotype evolution in a switching environment.

A finite population of agents, each carrying a discrete phenotype and an
inheritable probability vector over phenotypes, evolves under:
  - A Markov-switching environment shared by every agent
  - Environment-dependent Bernoulli reproduction and death
  - Multiplicative log-normal mutation of the inheritance weights
  - Random capacity trimming back to the initial population size

Snapshots of the population are appended to binary trajectory files.
"""

from phenoevo.errors import (
    AgentInvalid,
    DistributionConstructionError,
    ParameterInvalid,
    PhenoEvoError,
    SerializationError,
)

__version__ = "0.1.0"

__all__ = [
    "AgentInvalid",
    "DistributionConstructionError",
    "ParameterInvalid",
    "PhenoEvoError",
    "SerializationError",
    "__version__",
]
