"""Configuration system for PhenoEvo.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Sections map 1:1 to YAML top-level keys. Probability matrices are written
as nested lists in YAML and become read-only float64 arrays once the
configuration has been validated.

Seeding decision: the default policy is "fixed" with seed 0, so two runs
with the same parameter file produce byte-identical trajectories. The
"entropy" policy draws OS entropy instead (and logs it for replay).
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import yaml

from phenoevo.errors import ParameterInvalid

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

STOCHASTIC_TOLERANCE: float = 1e-6   # row-sum tolerance for prob_env

# Half-open [lower, upper) bounds for the scalar parameters
N_ENV_RANGE = (1, 1024)
N_PHE_RANGE = (1, 1024)
N_AGT_INIT_RANGE = (1, 100_000_000)
STD_DEV_MUT_RANGE = (0.0, 1.0)
BATCH_RANGE = (1, 2**31)

SEED_POLICIES = {"fixed", "entropy"}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ModelSection:
    """Environment, phenotype and demographic parameters.

    prob_env: (n_env, n_env) row-stochastic environment transition kernel.
    prob_rep: (n_phe, n_env) per-(phenotype, environment) reproduction
              probabilities. Entries are independent Bernoulli parameters;
              rows need not sum to 1.
    prob_dec: (n_phe, n_env) death probabilities, same layout as prob_rep.
    """
    n_env: int = 2
    n_phe: int = 2
    prob_env: Any = field(
        default_factory=lambda: [[0.99, 0.01], [0.01, 0.99]]
    )
    prob_rep: Any = field(
        default_factory=lambda: [[0.10, 0.02], [0.02, 0.10]]
    )
    prob_dec: Any = field(
        default_factory=lambda: [[0.05, 0.05], [0.05, 0.05]]
    )
    n_agt_init: int = 1000        # Initial population size and capacity cap
    std_dev_mut: float = 0.01     # Log-space std dev of mutation noise


@dataclass
class SimulationSection:
    """Run control: seeding and persistence batching."""
    seed: int = 0
    seed_policy: str = "fixed"    # 'fixed' or 'entropy'
    steps_per_save: int = 100     # Steps between two saved frames
    saves_per_file: int = 100     # Frames written per trajectory file


@dataclass
class OutputSection:
    """Output control."""
    directory: str = "results/"
    trajectory_name: str = "trajectory.bin"

    @property
    def trajectory_path(self) -> Path:
        return Path(self.directory) / self.trajectory_name


@dataclass
class LoggingSection:
    """Console logging."""
    level: str = "INFO"
    show_location: bool = True    # Append [file:line] to each record


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    model: ModelSection = field(default_factory=ModelSection)
    simulation: SimulationSection = field(default_factory=SimulationSection)
    output: OutputSection = field(default_factory=OutputSection)
    logging: LoggingSection = field(default_factory=LoggingSection)


_SECTION_MAP = {
    'model': ModelSection,
    'simulation': SimulationSection,
    'output': OutputSection,
    'logging': LoggingSection,
}

_MATRIX_FIELDS = ('prob_env', 'prob_rep', 'prob_dec')


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced (matrices are replaced whole)
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    unknown = sorted(set(data) - valid_fields)
    if unknown:
        logger.warning("ignoring unknown %s keys: %s",
                       section_cls.__name__, ", ".join(unknown))
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict[str, Dict[str, Any]]:
    """Plain-Python form of a configuration (arrays become nested lists)."""
    out: Dict[str, Dict[str, Any]] = {}
    for key in _SECTION_MAP:
        section = getattr(config, key)
        values = {}
        for f in dataclasses.fields(section):
            value = getattr(section, f.name)
            if isinstance(value, np.ndarray):
                value = value.tolist()
            elif isinstance(value, np.generic):
                value = value.item()
            values[f.name] = value
        out[key] = values
    return out


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def check_number_range(number, name: str, lower, upper) -> None:
    """Raise ParameterInvalid unless lower <= number < upper."""
    if not (lower <= number < upper):
        raise ParameterInvalid(
            f"The {name} value {number} is out of range ({lower}-{upper})."
        )


def _check_integer(number, name: str) -> int:
    if isinstance(number, bool) or not isinstance(number, (int, np.integer)):
        raise ParameterInvalid(
            f"{name} must be an integer, got {number!r}"
        )
    return int(number)


def _as_matrix(value, name: str, shape) -> np.ndarray:
    """Convert a nested list to a read-only float64 matrix of given shape."""
    try:
        arr = np.array(value, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ParameterInvalid(
            f"{name} must be a numeric matrix: {exc}"
        ) from exc
    if arr.shape != shape:
        raise ParameterInvalid(
            f"{name} must have shape {shape}, got {arr.shape}"
        )
    if not np.all(np.isfinite(arr)):
        raise ParameterInvalid(f"{name} entries must be finite")
    if np.any(arr < 0.0) or np.any(arr > 1.0):
        raise ParameterInvalid(f"{name} entries must lie in [0, 1]")
    arr.setflags(write=False)
    return arr


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ParameterInvalid on failure.

    Checks:
      - Counts and batching sizes are integers within sane bounds
      - std_dev_mut in [0, 1)
      - Matrix shapes match (n_env, n_phe); entries finite and in [0, 1]
      - prob_env rows sum to 1 within STOCHASTIC_TOLERANCE
      - Seed policy and logging level are recognized

    Matrices are replaced in place by read-only float64 arrays.
    """
    m = config.model
    n_env = _check_integer(m.n_env, "model.n_env")
    n_phe = _check_integer(m.n_phe, "model.n_phe")
    n_agt_init = _check_integer(m.n_agt_init, "model.n_agt_init")
    check_number_range(n_env, "model.n_env", *N_ENV_RANGE)
    check_number_range(n_phe, "model.n_phe", *N_PHE_RANGE)
    check_number_range(n_agt_init, "model.n_agt_init", *N_AGT_INIT_RANGE)
    try:
        std_dev_mut = float(m.std_dev_mut)
    except (TypeError, ValueError) as exc:
        raise ParameterInvalid(
            f"model.std_dev_mut must be a number, got {m.std_dev_mut!r}"
        ) from exc
    check_number_range(std_dev_mut, "model.std_dev_mut", *STD_DEV_MUT_RANGE)

    prob_env = _as_matrix(m.prob_env, "model.prob_env", (n_env, n_env))
    prob_rep = _as_matrix(m.prob_rep, "model.prob_rep", (n_phe, n_env))
    prob_dec = _as_matrix(m.prob_dec, "model.prob_dec", (n_phe, n_env))

    row_sums = prob_env.sum(axis=1)
    bad_rows = np.flatnonzero(np.abs(row_sums - 1.0) > STOCHASTIC_TOLERANCE)
    if bad_rows.size:
        i = int(bad_rows[0])
        raise ParameterInvalid(
            f"model.prob_env row {i} must sum to 1.0, got {row_sums[i]!r}"
        )

    m.n_env, m.n_phe, m.n_agt_init = n_env, n_phe, n_agt_init
    m.std_dev_mut = std_dev_mut
    m.prob_env, m.prob_rep, m.prob_dec = prob_env, prob_rep, prob_dec

    s = config.simulation
    seed = _check_integer(s.seed, "simulation.seed")
    if seed < 0:
        raise ParameterInvalid("simulation.seed must be non-negative")
    if s.seed_policy not in SEED_POLICIES:
        raise ParameterInvalid(
            f"simulation.seed_policy must be one of {sorted(SEED_POLICIES)}, "
            f"got '{s.seed_policy}'"
        )
    for name in ("steps_per_save", "saves_per_file"):
        value = _check_integer(getattr(s, name), f"simulation.{name}")
        check_number_range(value, f"simulation.{name}", *BATCH_RANGE)

    level = str(config.logging.level).upper()
    if level not in LOG_LEVELS:
        raise ParameterInvalid(
            f"logging.level must be one of {sorted(LOG_LEVELS)}, "
            f"got '{config.logging.level}'"
        )
    config.logging.level = level

    if not config.output.trajectory_name:
        raise ParameterInvalid("output.trajectory_name must not be empty")


def _read_yaml(path: Path) -> Dict:
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ParameterInvalid(f"cannot parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ParameterInvalid(
            f"{path} must contain a mapping at the top level"
        )
    return data


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        sweep_overrides: Optional dict of parameter overrides.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path or scenario_path doesn't exist.
        ParameterInvalid: If parsing or validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    config_dict = _read_yaml(base_path)

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario file not found: {scenario_path}")
        deep_merge(config_dict, _read_yaml(scenario_path))

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    logger.debug("loaded parameters from %s: %s",
                 base_path, config_to_dict(config))
    return config


def save_config(config: SimulationConfig, path: Union[str, Path]) -> Path:
    """Write the fully resolved configuration as YAML.

    Returns:
        The path written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.safe_dump(config_to_dict(config), f,
                       sort_keys=False, default_flow_style=None)
    return path


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
