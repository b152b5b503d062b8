"""
Analysis parameters for the compositional pipeline.

Parameters are read from the same kind of YAML file the analysis scripts use
(``config/analysis_parameters.yml``) and validated before any computation
starts.
"""

import logging
import numbers
from dataclasses import dataclass, field, fields, asdict
from typing import Optional

import yaml

from .coda_errors import ConfigurationError

logger = logging.getLogger(__name__)

ZERO_METHODS = ('CZM', 'GBM', 'SQ', 'BL')
DEGENERATE_SAMPLE_POLICIES = ('exclude', 'raise')
TESTS = ('welch', 'wilcoxon')
# Reference features of the log-ratio: every feature, or those with
# interquartile clr variance
DENOMINATORS = ('all', 'iqlr')

# Below this many draws the expected p-values are too noisy to report
MIN_RECOMMENDED_MC_SAMPLES = 16

# YAML section -> AnalysisConfig fields read from it
_SECTIONS = {
    'metadata': {
        'filename': 'metadata_file',
        'sample_id_column': 'sample_id_column',
        'group_variable': 'group_variable',
    },
    'zero_replacement': {
        'method': 'zero_method',
        'frac': 'zero_frac',
        'threshold': 'zero_threshold',
    },
    'filtering': {
        'min_abundance': 'min_abundance',
    },
    'differential_abundance': {
        'mc_samples': 'mc_samples',
        'prior': 'prior',
        'denominator': 'denominator',
        'seed': 'seed',
        'paired': 'paired',
        'test': 'test',
        'p_value_threshold': 'p_value_threshold',
        'adjusted': 'adjusted',
        'effect_threshold': 'effect_threshold',
        'degenerate_samples': 'degenerate_samples',
    },
    'execution': {
        'n_jobs': 'n_jobs',
    },
}


@dataclass
class AnalysisConfig:
    """Parameters of one compositional analysis run."""

    zero_method: str = 'CZM'
    zero_frac: float = 0.65
    zero_threshold: float = 0.5
    min_abundance: float = 1e-4
    mc_samples: int = 128
    prior: float = 0.5
    denominator: str = 'all'
    seed: Optional[int] = None
    paired: bool = False
    test: str = 'welch'
    p_value_threshold: float = 0.05
    adjusted: bool = False
    effect_threshold: Optional[float] = None
    degenerate_samples: str = 'exclude'
    n_jobs: int = 1
    metadata_file: Optional[str] = None
    sample_id_column: str = 'SampleID'
    group_variable: Optional[str] = None
    extra: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, config):
        """
        Build a config from a parsed YAML mapping.

        Parameters:
        -----------
        config : dict
            Mapping with the sections ``metadata``, ``zero_replacement``,
            ``filtering``, ``differential_abundance`` and ``execution``.
            Unknown sections are kept in ``extra``.

        Returns:
        --------
        AnalysisConfig
            Validated configuration
        """
        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise ConfigurationError(
                f"Configuration must be a mapping, got {type(config).__name__}"
            )

        kwargs = {}
        extra = {}
        for section, values in config.items():
            if section not in _SECTIONS:
                extra[section] = values
                continue
            if values is None:
                continue
            if not isinstance(values, dict):
                raise ConfigurationError(f"Section '{section}' must be a mapping")
            for key, value in values.items():
                if key not in _SECTIONS[section]:
                    raise ConfigurationError(f"Unknown option '{section}.{key}'")
                kwargs[_SECTIONS[section][key]] = value

        cfg = cls(extra=extra, **kwargs)
        cfg.validate()
        return cfg

    def replace(self, **overrides):
        """
        Return a validated copy with some fields overridden.

        Every given keyword is applied, None included, so ``replace(seed=None)``
        resets the seed. Callers holding optional command-line values should
        drop the unset ones first.
        """
        names = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - names)
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {unknown}")
        values = {name: getattr(self, name) for name in names}
        values.update(overrides)
        cfg = AnalysisConfig(**values)
        cfg.validate()
        return cfg

    def to_dict(self):
        values = asdict(self)
        values.pop('extra')
        return values

    def validate(self):
        """Raise ConfigurationError on the first invalid parameter."""
        if self.zero_method not in ZERO_METHODS:
            raise ConfigurationError(
                f"Unknown zero replacement method '{self.zero_method}'. "
                f"Use one of {', '.join(ZERO_METHODS)}."
            )
        _check_fraction('zero_frac', self.zero_frac, open_interval=True)
        if not _is_real(self.zero_threshold) or self.zero_threshold <= 0:
            raise ConfigurationError(f"zero_threshold must be > 0, got {self.zero_threshold!r}")
        _check_fraction('min_abundance', self.min_abundance)
        _check_draws(self.mc_samples)
        if not _is_real(self.prior) or self.prior <= 0:
            raise ConfigurationError(f"prior must be > 0, got {self.prior!r}")
        if self.denominator not in DENOMINATORS:
            raise ConfigurationError(
                f"denominator must be one of {', '.join(DENOMINATORS)}, got {self.denominator!r}"
            )
        check_seed(self.seed)
        if not isinstance(self.paired, bool):
            raise ConfigurationError(f"paired must be true or false, got {self.paired!r}")
        if self.test not in TESTS:
            raise ConfigurationError(f"test must be one of {', '.join(TESTS)}, got {self.test!r}")
        _check_fraction('p_value_threshold', self.p_value_threshold)
        if not isinstance(self.adjusted, bool):
            raise ConfigurationError(f"adjusted must be true or false, got {self.adjusted!r}")
        if self.effect_threshold is not None and (
                not _is_real(self.effect_threshold) or self.effect_threshold < 0):
            raise ConfigurationError(
                f"effect_threshold must be a non-negative number, got {self.effect_threshold!r}"
            )
        if self.degenerate_samples not in DEGENERATE_SAMPLE_POLICIES:
            raise ConfigurationError(
                f"degenerate_samples must be one of {', '.join(DEGENERATE_SAMPLE_POLICIES)}, "
                f"got {self.degenerate_samples!r}"
            )
        if not _is_int(self.n_jobs) or self.n_jobs < 1:
            raise ConfigurationError(f"n_jobs must be an integer >= 1, got {self.n_jobs!r}")
        return self


def load_config(filepath):
    """
    Load and validate analysis parameters from a YAML file.

    Parameters:
    -----------
    filepath : str or Path
        Path to the YAML configuration file

    Returns:
    --------
    AnalysisConfig
        Validated configuration
    """
    try:
        with open(filepath, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse configuration file {filepath}: {e}") from e

    logger.info(f"Loaded configuration from {filepath}")
    return AnalysisConfig.from_dict(config)


def check_seed(seed):
    """Seeds must be None or a non-negative integer."""
    if seed is None:
        return None
    if not _is_int(seed) or seed < 0:
        raise ConfigurationError(f"seed must be None or a non-negative integer, got {seed!r}")
    return int(seed)


def check_mc_samples(n_draws):
    """Validate a Monte-Carlo draw count, warning when it is below the usable minimum."""
    _check_draws(n_draws)
    if n_draws < MIN_RECOMMENDED_MC_SAMPLES:
        logger.warning(
            f"Only {n_draws} Monte-Carlo draws requested; at least "
            f"{MIN_RECOMMENDED_MC_SAMPLES} are needed for stable expected p-values"
        )
    return int(n_draws)


def _check_draws(n_draws):
    if not _is_int(n_draws) or n_draws < 1:
        raise ConfigurationError(f"mc_samples must be an integer >= 1, got {n_draws!r}")


def _check_fraction(name, value, open_interval=False):
    if not _is_real(value):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    if open_interval and not 0 < value < 1:
        raise ConfigurationError(f"{name} must be between 0 and 1 (exclusive), got {value}")
    if not 0 <= value <= 1:
        raise ConfigurationError(f"{name} must be between 0 and 1, got {value}")


def _is_int(value):
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _is_real(value):
    return isinstance(value, numbers.Real) and not isinstance(value, bool)
