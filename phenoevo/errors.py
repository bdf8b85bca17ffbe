"""Exception types raised by PhenoEvo.

Every error subclasses both ``PhenoEvoError`` and the builtin it refines,
so callers can catch either the package base class or the usual
``ValueError`` / ``OSError``.
"""


class PhenoEvoError(Exception):
    """Base class for all PhenoEvo errors."""


class ParameterInvalid(PhenoEvoError, ValueError):
    """Parameter shape, range or stochasticity violation."""


class AgentInvalid(PhenoEvoError, ValueError):
    """Phenotype out of range or inheritance weights not a distribution."""


class DistributionConstructionError(PhenoEvoError, ValueError):
    """A sampling distribution could not be built from its parameters."""


class SerializationError(PhenoEvoError, OSError):
    """Malformed or truncated trajectory frame, or a failed write."""
