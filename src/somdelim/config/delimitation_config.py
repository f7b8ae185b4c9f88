"""
SOM Delimitation Configuration System

Dataclass configuration for the SOM species-delimitation pipeline, with
YAML loading and a module-level accessor for the shared instance.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple
from dataclasses import dataclass, field, asdict, fields
import threading
import logging

from somdelim.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_SECTION = 'som_delimitation'
CONFIG_ENV_VAR = 'SOMDELIM_CONFIG_PATH'


@dataclass(frozen=True)
class DelimitationConfigValidation:
    """Validation rules for delimitation parameters."""
    min_steps: int = 1
    max_steps: int = 100000
    min_replicates: int = 1
    min_clusters: int = 1
    # Label matching enumerates k! permutations
    max_clusters: int = 12
    neighbourhood_functions: Tuple[str, ...] = ('gaussian', 'bubble')
    linkage_methods: Tuple[str, ...] = ('average', 'complete', 'single', 'weighted', 'ward')


@dataclass
class DelimitationConfig:
    """Configuration container for a SOM delimitation run.

    Attributes:
        n_steps: Training epochs per replicate
        n_replicates: Number of independently trained maps
        max_k: Largest number of clusters considered
        learning_rate: Initial and final learning rate
        max_na_fraction: Largest tolerated fraction of missing values per comparison
        kmeans_n_init: Random restarts for every k-means fit
        kmeans_max_iter: Iteration cap for every k-means fit
        neighbourhood_fct: 'gaussian' or 'bubble'
        linkage: Hierarchical linkage used to cut the codebook
        layer_weights: Optional user weights per layer (multi-layer runs)
        missing_markers: String values treated as missing on input
        random_seed: Global seed, per-replicate seeds are spawned from it
        n_jobs: Worker processes for replicates (-1 for all physical cores)
        replicate_timeout: Seconds to wait for each replicate result when running
            worker processes, counted from when it is awaited (None waits forever)
        overwrite: Recompute even when a cached result exists
        output_path: Location of the cached result bundle
    """
    n_steps: int = 100
    n_replicates: int = 30
    max_k: int = 8
    learning_rate: Tuple[float, float] = (0.5, 0.2)
    max_na_fraction: float = 0.1
    kmeans_n_init: int = 25
    kmeans_max_iter: int = 100000
    neighbourhood_fct: str = 'gaussian'
    linkage: str = 'average'
    layer_weights: Optional[List[float]] = None
    missing_markers: List[str] = field(default_factory=lambda: ['?', '-', 'NA', ''])
    random_seed: Optional[int] = 42
    n_jobs: int = 1
    replicate_timeout: Optional[float] = None
    overwrite: bool = False
    output_path: Optional[str] = None

    _validation = DelimitationConfigValidation()

    def __post_init__(self):
        # YAML gives lists
        self.learning_rate = tuple(float(a) for a in self.learning_rate)

    def validate(self) -> 'DelimitationConfig':
        """Check every parameter against its valid range.

        Raises:
            ConfigurationError: On the first invalid parameter
        """
        rules = self._validation

        if not (rules.min_steps <= self.n_steps <= rules.max_steps):
            raise ConfigurationError(
                f"n_steps must be between {rules.min_steps} and {rules.max_steps}, got {self.n_steps}"
            )

        if self.n_replicates < rules.min_replicates:
            raise ConfigurationError(f"n_replicates must be at least 1, got {self.n_replicates}")

        if not (rules.min_clusters <= self.max_k <= rules.max_clusters):
            raise ConfigurationError(
                f"max_k must be between {rules.min_clusters} and {rules.max_clusters}, got {self.max_k}"
            )

        if len(self.learning_rate) != 2:
            raise ConfigurationError(
                f"learning_rate must hold an initial and a final value, got {self.learning_rate}"
            )
        initial, final = self.learning_rate
        if not (0.0 < initial <= 1.0 and 0.0 <= final <= initial):
            raise ConfigurationError(
                f"learning_rate must satisfy 0 <= final <= initial <= 1 and initial > 0, "
                f"got {self.learning_rate}"
            )

        if not (0.0 <= self.max_na_fraction <= 1.0):
            raise ConfigurationError(
                f"max_na_fraction must be between 0 and 1, got {self.max_na_fraction}"
            )

        if self.kmeans_n_init < 1 or self.kmeans_max_iter < 1:
            raise ConfigurationError("kmeans_n_init and kmeans_max_iter must be positive")

        if self.neighbourhood_fct not in rules.neighbourhood_functions:
            raise ConfigurationError(
                f"neighbourhood_fct must be one of {rules.neighbourhood_functions}, "
                f"got '{self.neighbourhood_fct}'"
            )

        if self.linkage not in rules.linkage_methods:
            raise ConfigurationError(
                f"linkage must be one of {rules.linkage_methods}, got '{self.linkage}'"
            )

        if self.n_jobs == 0 or self.n_jobs < -1:
            raise ConfigurationError(f"n_jobs must be -1 or a positive integer, got {self.n_jobs}")

        if self.replicate_timeout is not None and self.replicate_timeout <= 0:
            raise ConfigurationError(
                f"replicate_timeout must be positive, got {self.replicate_timeout}"
            )

        if self.layer_weights is not None and any(w <= 0 for w in self.layer_weights):
            raise ConfigurationError(f"layer_weights must be positive, got {self.layer_weights}")

        return self

    def with_overrides(self, **overrides) -> 'DelimitationConfig':
        """Return a copy with the given fields replaced.

        Every passed value is applied, including None (e.g. an unseeded run).
        """
        data = self.to_dict()
        data.update(overrides)
        return DelimitationConfig.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data['learning_rate'] = list(self.learning_rate)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DelimitationConfig':
        """Create from dictionary, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**data)


class DelimitationConfigManager:
    """Manager for delimitation configuration files."""

    def __init__(self, config_file: Optional[Path] = None):
        """Initialize with optional config file."""
        self.config = DelimitationConfig()
        self.config_file = config_file

        if config_file and Path(config_file).exists():
            self.load_from_file(Path(config_file))

    def load_from_file(self, config_file: Path) -> None:
        """Load the som_delimitation section of a YAML file.

        Raises:
            ConfigurationError: If the file is not valid YAML or holds invalid values
        """
        try:
            with open(config_file, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing YAML configuration {config_file}: {e}", e)

        if data is None:
            logger.warning(f"Configuration file {config_file} is empty, using defaults")
            return

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a YAML dictionary, got {type(data).__name__}"
            )

        section = data.get(CONFIG_SECTION, {})
        self.config = DelimitationConfig.from_dict(section or {}).validate()
        self.config_file = config_file
        logger.info(f"Loaded delimitation config from {config_file}")

    def save_to_file(self, config_file: Optional[Path] = None) -> None:
        """Save configuration to YAML file."""
        file_to_use = config_file or self.config_file
        if not file_to_use:
            raise ConfigurationError("No config file specified")

        data = {CONFIG_SECTION: self.config.to_dict()}

        with open(file_to_use, 'w') as f:
            yaml.safe_dump(data, f, default_flow_style=False)
        logger.info(f"Saved delimitation config to {file_to_use}")

    def get_config(self) -> DelimitationConfig:
        """Get the current configuration."""
        return self.config

    def update(self, **updates) -> DelimitationConfig:
        """Apply updates to the current configuration and validate them."""
        self.config = self.config.with_overrides(**updates).validate()
        return self.config


def find_config_file() -> Optional[Path]:
    """Locate a delimitation configuration file.

    Search order: SOMDELIM_CONFIG_PATH, the project root, the working directory.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path and Path(env_path).exists():
        return Path(env_path)

    project_root = Path(__file__).parent.parent.parent.parent
    potential_files = [
        project_root / 'delimitation_config.yml',
        Path.cwd() / 'delimitation_config.yml',
        Path.cwd() / 'config' / 'delimitation_config.yml'
    ]

    for f in potential_files:
        if f.exists():
            return f
    return None


_config_manager: Optional[DelimitationConfigManager] = None
_config_lock = threading.Lock()


def get_delimitation_config() -> DelimitationConfigManager:
    """Get or create the global delimitation config manager."""
    global _config_manager

    if _config_manager is None:
        with _config_lock:
            if _config_manager is None:
                _config_manager = DelimitationConfigManager(find_config_file())

    return _config_manager


def reset_delimitation_config() -> None:
    """Drop the global manager so the next access reloads from disk."""
    global _config_manager
    with _config_lock:
        _config_manager = None
