"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

APP_NAME = "content-refinery"
ENV_PREFIX = "CONTENT_REFINERY_"


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Capability service (OpenAI-compatible chat completions)
	api_base_url: str = "https://api.venice.ai/api/v1"
	api_key: str = ""
	model: str = "llama-3.3-70b"
	temperature: float = 0.7

	# Stage client policy
	stage_timeout: float = 120.0
	max_retries: int = 3
	retry_base_delay: float = 1.0
	retry_jitter: float = 1.0

	# Claim verification fan-out
	verify_concurrency: int = 4

	# Run defaults (threshold on the external 0-10 scale)
	default_max_cycles: int = 3
	default_quality_threshold: float = 7.0

	log_level: str = "INFO"

	def __post_init__(self) -> None:
		self.db_path = self.data_dir / "refinery.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


_PATH_FIELDS = {"config_dir", "data_dir"}
_INT_FIELDS = {"max_retries", "verify_concurrency", "default_max_cycles"}
_FLOAT_FIELDS = {
	"temperature", "stage_timeout", "retry_base_delay", "retry_jitter",
	"default_quality_threshold",
}


def _coerce(attr: str, val):
	if attr in _PATH_FIELDS:
		return Path(os.path.expanduser(str(val)))
	if attr in _INT_FIELDS:
		return int(val)
	if attr in _FLOAT_FIELDS:
		return float(val)
	return val


def _apply_env_overrides(config: Config) -> Config:
	"""Apply CONTENT_REFINERY_* environment variable overrides."""
	env_map = {
		f"{ENV_PREFIX}CONFIG_DIR": "config_dir",
		f"{ENV_PREFIX}DATA_DIR": "data_dir",
		f"{ENV_PREFIX}API_BASE_URL": "api_base_url",
		f"{ENV_PREFIX}API_KEY": "api_key",
		f"{ENV_PREFIX}MODEL": "model",
		f"{ENV_PREFIX}VERIFY_CONCURRENCY": "verify_concurrency",
		f"{ENV_PREFIX}LOG_LEVEL": "log_level",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, _coerce(attr, val))
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if key in ("db_path", "log_dir"):
			continue
		if hasattr(config, key):
			setattr(config, key, _coerce(key, val))

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	config = _apply_env_overrides(config)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config

