"""Configuration system using platformdirs for cross-platform paths."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import platformdirs

from .errors import ValidationError

logger = logging.getLogger(__name__)

APP_NAME = "planning-orchestrator"
ENV_PREFIX = "PLANNING_ORCHESTRATOR_"

# Hard system-wide ceiling on concurrently dispatched agents
AGENT_CEILING = 5


@dataclass
class Config:
	"""Paths and planning limits for one installation."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	state_db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Planning limits
	max_agents: int = AGENT_CEILING
	max_step_attempts: int = 2
	max_breakdown_depth: int = 2
	context_token_budget: int = 200_000
	log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

	def __post_init__(self) -> None:
		self.state_db_path = self.data_dir / "sessions.db"
		self.log_dir = self.data_dir / "logs"
		self.max_agents = max(1, min(int(self.max_agents), AGENT_CEILING))

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		for path in (self.config_dir, self.data_dir, self.log_dir):
			path.mkdir(parents=True, exist_ok=True)


def _as_path(raw: Any) -> Path:
	return Path(os.path.expanduser(str(raw)))


def _int_at_least(minimum: int) -> Callable[[Any], int]:
	def convert(raw: Any) -> int:
		try:
			value = int(raw)
		except (TypeError, ValueError):
			raise ValidationError(f"expected an integer, got {raw!r}") from None
		if value < minimum:
			raise ValidationError(f"expected a value >= {minimum}, got {value}")
		return value
	return convert


def _level(raw: Any) -> str:
	name = str(raw).upper()
	if name not in logging.getLevelNamesMapping():
		raise ValidationError(f"unknown log level {raw!r}")
	return name


# attribute -> converter; env names are ENV_PREFIX + attribute.upper()
_SETTINGS: dict[str, Callable[[Any], Any]] = {
	"config_dir": _as_path,
	"data_dir": _as_path,
	"max_agents": _int_at_least(1),
	"max_step_attempts": _int_at_least(1),
	"max_breakdown_depth": _int_at_least(0),
	"context_token_budget": _int_at_least(1),
	"log_level": _level,
}


def _set(config: Config, attr: str, raw: Any, source: str) -> None:
	try:
		setattr(config, attr, _SETTINGS[attr](raw))
	except ValidationError as e:
		raise ValidationError(f"{source}: invalid {attr}: {e}") from None


def _apply_env_overrides(config: Config) -> Config:
	"""Apply PLANNING_ORCHESTRATOR_* environment variable overrides."""
	for attr in _SETTINGS:
		env_key = ENV_PREFIX + attr.upper()
		val = os.getenv(env_key)
		if val:
			_set(config, attr, val, env_key)
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		try:
			data = tomllib.load(f)
		except tomllib.TOMLDecodeError as e:
			raise ValidationError(f"{toml_path}: {e}") from e

	for key, val in data.items():
		if key in _SETTINGS:
			_set(config, key, val, str(toml_path))
		else:
			logger.warning(f"Ignoring unknown setting {key!r} in {toml_path}")

	config.__post_init__()
	return config


def load_config() -> Config:
	"""
	Load config with precedence: env vars > config.toml > defaults.

	The environment is applied twice: first so that
	PLANNING_ORCHESTRATOR_CONFIG_DIR can point at the config.toml to read,
	then again so env values win over anything the file sets.
	"""
	config = Config()
	config = _apply_env_overrides(config)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
