"""
Configuration Loader
Parses YAML config and returns structured configs for the trainer and optimizer.

Example file:

    trainer:
      C: 10.0
      epsilon: 0.0001
      nonnegative_weights: true
      num_threads: 4
    optimizer:
      inactive_plane_threshold: 30
"""

from typing import Any, Dict, Tuple

import yaml

from .exceptions import ConfigurationError
from .optimizer import OptimizerConfig
from .trainer import RankTrainer, RankTrainerConfig

# Optimizer keys owned by the trainer section
_TRAINER_OWNED_OPTIMIZER_KEYS = {"epsilon", "max_iterations", "nonnegative", "verbose", "max_seconds"}


def load_yaml_config(path: str) -> Dict[str, Any]:
    """Load a YAML configuration file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return data


def trainer_config_from_dict(data: Dict[str, Any]) -> Tuple[RankTrainerConfig, OptimizerConfig]:
    """Build validated trainer and optimizer configs from a parsed mapping."""
    trainer_cfg = data.get("trainer", {}) or {}
    optimizer_cfg = data.get("optimizer", {}) or {}

    owned = _TRAINER_OWNED_OPTIMIZER_KEYS.intersection(optimizer_cfg)
    if owned:
        raise ConfigurationError(
            f"Set {', '.join(sorted(owned))} in the trainer section, not the optimizer section"
        )
    try:
        trainer = RankTrainerConfig(**trainer_cfg)
        optimizer = OptimizerConfig(**optimizer_cfg)
    except TypeError as e:
        raise ConfigurationError(f"Unknown configuration key: {e}") from e

    trainer.validate()
    optimizer.validate()
    return trainer, optimizer


def load_trainer_config(path: str) -> Tuple[RankTrainerConfig, OptimizerConfig]:
    """
    Load RankTrainerConfig and OptimizerConfig from a YAML file, falling back
    to defaults for missing keys.
    """
    return trainer_config_from_dict(load_yaml_config(path))


def load_trainer(path: str) -> RankTrainer:
    """Construct a RankTrainer from a YAML configuration file."""
    trainer_cfg, optimizer_cfg = load_trainer_config(path)
    return RankTrainer(config=trainer_cfg, optimizer_config=optimizer_cfg)
