"""Unified configuration system for the construction site fleet simulator.

This module centralises application settings using :mod:`pydantic-settings`.
Configuration values are assembled from (in order of precedence):

1. Explicit keyword arguments when instantiating :class:`AppSettings`.
2. Environment variables prefixed with ``SF_`` (supports nested fields using ``__``).
3. A ``.env`` file located at the project root.
4. YAML configuration files: ``config/settings.yaml`` (base) and
   ``config/environments/<environment>.yaml`` (environment-specific overrides).

All sources are deeply merged, so an environment file only needs to carry the
handful of values it changes. World units are meters; the tick loop and the
task pipeline read their tuning knobs from the sections below.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, NonNegativeFloat, PositiveFloat, PositiveInt, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
	"GridSettings",
	"TimingSettings",
	"FleetSettings",
	"TaskSettings",
	"SensorSettings",
	"EngineSettings",
	"MQTTSettings",
	"TelemetrySettings",
	"LoggingSettings",
	"AppSettings",
	"get_settings",
	"load_yaml_file",
]


_ENVIRONMENT_VAR = "SF_ENVIRONMENT"
_CONFIG_DIR_ENV_VAR = "SF_CONFIG_DIR"


def _project_root() -> Path:
	"""Return the absolute project root directory."""

	return Path(__file__).resolve().parents[3]


DEFAULT_CONFIG_DIR = _project_root() / "config"


class GridSettings(BaseModel):
	"""Quantisation of the site floor used for occupancy and path queries."""

	cell_size: PositiveFloat = Field(0.5, description="Edge length of a grid cell in world units.")
	obstacle_inflation: NonNegativeFloat = Field(
		0.0,
		description="Clearance added around every obstacle rectangle before rasterising.",
	)


class TimingSettings(BaseModel):
	"""Tick cadence and time scaling of the simulation loop."""

	tick_rate_hz: PositiveFloat = Field(10.0, description="Ticks emitted per wall-clock second.")
	min_time_multiplier: PositiveFloat = Field(0.1, description="Lowest accepted speed multiplier.")
	max_time_multiplier: PositiveFloat = Field(5.0, description="Highest accepted speed multiplier.")
	default_time_multiplier: PositiveFloat = Field(1.0, description="Multiplier applied after reset.")

	@property
	def tick_seconds(self) -> float:
		return 1.0 / self.tick_rate_hz

	@model_validator(mode="after")
	def _check_bounds(self) -> "TimingSettings":
		if self.min_time_multiplier > self.max_time_multiplier:
			raise ValueError("min_time_multiplier must not exceed max_time_multiplier")
		if not self.min_time_multiplier <= self.default_time_multiplier <= self.max_time_multiplier:
			raise ValueError("default_time_multiplier must lie within the multiplier bounds")
		return self


class FleetSettings(BaseModel):
	"""Battery, motion and fault thresholds shared by every robot."""

	assignment_battery_floor: float = Field(
		30.0, ge=0.0, le=100.0, description="Minimum battery percentage to accept a task."
	)
	charge_threshold: float = Field(
		20.0, ge=0.0, le=100.0, description="Battery percentage below which a robot must recharge."
	)
	charge_rate_per_second: PositiveFloat = Field(5.0, description="Battery percent restored per simulated second.")
	arrival_epsilon: PositiveFloat = Field(0.05, description="Snap distance for reaching a waypoint.")
	max_reroute_attempts: PositiveInt = Field(5, description="Reroutes tolerated within one movement step before it fails.")
	max_stalled_ticks: PositiveInt = Field(100, description="Ticks without progress before a robot faults.")
	collision_avoidance: bool = Field(True, description="Reserve occupied cells to keep robots apart.")


class TaskSettings(BaseModel):
	"""Task pipeline behaviour: retries, action durations and policies."""

	max_retries: PositiveInt = Field(3, description="Step failures tolerated before a task fails.")
	retry_backoff_seconds: NonNegativeFloat = Field(
		1.0, description="Simulated seconds to wait per retry before re-entering a step."
	)
	gripper_action_seconds: PositiveFloat = Field(1.0, description="Duration of a pick or place action.")
	inspection_seconds: PositiveFloat = Field(2.0, description="Duration of an inspection action.")
	pick_reach: PositiveFloat = Field(0.75, description="Maximum robot-to-object distance for a pick.")
	auto_assign: bool = Field(True, description="Dispatch pending tasks to idle robots every tick.")
	charge_interrupt_policy: Literal["requeue", "fail"] = Field(
		"requeue",
		description="What happens to a task whose robot must leave to recharge.",
	)
	requeue_resume: Literal["resume", "restart"] = Field(
		"resume",
		description="Whether a requeued task resumes at its last movement step or starts over.",
	)


class SensorSettings(BaseModel):
	"""Synthetic sensor sampling attached to robot telemetry."""

	enabled: bool = True
	every_n_ticks: PositiveInt = Field(5, description="Sample sensors once every N running ticks.")
	lidar_rays: PositiveInt = Field(36, description="Number of rays in a ranging scan.")
	lidar_max_range: PositiveFloat = Field(10.0, description="Maximum ranging distance.")
	proximity_max_range: PositiveFloat = Field(5.0, description="Maximum proximity sensor distance.")
	proximity_cone_degrees: PositiveFloat = Field(45.0, description="Half-angle of each proximity cone.")
	detection_radius: PositiveFloat = Field(10.0, description="Radius for labelled detections.")


class EngineSettings(BaseModel):
	"""Sizing of the engine's queues and buffers."""

	command_queue_size: PositiveInt = Field(1024, description="Commands buffered between ticks.")
	event_log_size: PositiveInt = Field(500, description="Recent events retained for queries.")
	subscriber_queue_size: PositiveInt = Field(256, description="Messages buffered per stream subscriber.")
	max_path_expansions: PositiveInt = Field(50_000, description="Upper bound on A* node expansions.")
	random_seed: Optional[int] = Field(None, description="Seed for object placement randomness.")
	world_file: Optional[str] = Field(None, description="Optional YAML file describing the initial world.")


class MQTTSettings(BaseModel):
	"""Message bus bridge configuration."""

	enabled: bool = Field(False, description="Bridge engine output onto the message bus.")
	broker_host: str = Field(..., description="MQTT broker hostname or IP address.")
	port: PositiveInt = Field(1883, description="MQTT broker port.")
	topic_events: str = Field("site_fleet/events", description="Topic receiving discrete engine events.")
	topic_snapshots: str = Field("site_fleet/snapshots", description="Topic receiving world snapshots.")
	topic_commands: str = Field("site_fleet/commands", description="Topic carrying inbound commands.")
	snapshot_every_n_ticks: PositiveInt = Field(10, description="Publish one snapshot every N ticks.")
	username: Optional[str] = Field(None, description="Username for authenticated MQTT sessions.")
	password: Optional[str] = Field(None, description="Password for authenticated MQTT sessions.")
	use_tls: bool = Field(False, description="Enable TLS for MQTT connections.")
	ca_path: Optional[str] = Field(None, description="Path to CA certificate for TLS validation.")
	client_cert_path: Optional[str] = Field(None, description="Path to client certificate for mutual TLS.")
	client_key_path: Optional[str] = Field(None, description="Path to client private key for mutual TLS.")
	amqp_url: Optional[str] = Field(
		None,
		description="Optional AMQP URL to use when MQTT is unavailable.",
	)


class TelemetrySettings(BaseModel):
	"""Tracing and metrics configuration."""

	otlp_endpoint: Optional[str] = Field(None, description="OTLP collector endpoint for traces.")
	metrics_enabled: bool = Field(True, description="Enable Prometheus metrics collection.")


class LoggingSettings(BaseModel):
	"""Logging verbosity and related tuning parameters."""

	level: str = Field("INFO", description="Root log level (DEBUG, INFO, etc.).")
	json_output: bool = Field(False, description="Emit logs as JSON for aggregators.")


def load_yaml_file(path: Path) -> Dict[str, Any]:
	"""Safely load a YAML file into a dictionary.

	Parameters
	----------
	path:
		Path to the YAML file.

	Returns
	-------
	dict
		Parsed YAML content or an empty dict if the file does not exist.
	"""

	if not path.exists() or path.is_dir():
		return {}

	with path.open("r", encoding="utf-8") as handle:
		data = yaml.safe_load(handle)
		return data or {}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
	"""Recursively merge ``override`` into ``base``.

	Nested dictionaries are merged rather than replaced, enabling granular
	overrides in environment-specific configuration files.
	"""

	result = base.copy()
	for key, value in override.items():
		if (
			key in result
			and isinstance(result[key], dict)
			and isinstance(value, dict)
		):
			result[key] = _deep_merge(result[key], value)
		else:
			result[key] = value
	return result


class AppSettings(BaseSettings):
	"""Primary configuration model for the application."""

	environment: str = Field("dev", description="Active environment name (dev, test, prod, ...).")
	grid: GridSettings = GridSettings()
	timing: TimingSettings = TimingSettings()
	fleet: FleetSettings = FleetSettings()
	tasks: TaskSettings = TaskSettings()
	sensors: SensorSettings = SensorSettings()
	engine: EngineSettings = EngineSettings()
	mqtt: MQTTSettings = MQTTSettings(broker_host="localhost")
	telemetry: TelemetrySettings = TelemetrySettings()
	logging: LoggingSettings = LoggingSettings()

	model_config = SettingsConfigDict(
		env_prefix="SF_",
		env_file=".env",
		env_file_encoding="utf-8",
		env_nested_delimiter="__",
		extra="ignore",
		validate_assignment=True,
	)

	@classmethod
	def _yaml_settings_source(cls) -> Dict[str, Any]:
		"""Produce settings from YAML configuration files."""

		config_dir = Path(os.getenv(_CONFIG_DIR_ENV_VAR, DEFAULT_CONFIG_DIR))
		base = load_yaml_file(config_dir / "settings.yaml")
		env_name = os.getenv(_ENVIRONMENT_VAR, base.get("environment", "dev"))
		env_override = load_yaml_file(config_dir / "environments" / f"{env_name}.yaml")

		merged = _deep_merge(base, env_override)
		merged.setdefault("environment", env_name)
		return merged

	@classmethod
	def settings_customise_sources(
		cls,
		_settings_cls,
		init_settings,
		env_settings,
		dotenv_settings,
		file_secret_settings,
	):
		"""Inject YAML files as the lowest-precedence settings source."""

		return (
			init_settings,
			env_settings,
			dotenv_settings,
			cls._yaml_settings_source,
			file_secret_settings,
		)


@lru_cache()
def get_settings(**overrides: Any) -> AppSettings:
	"""Return a cached :class:`AppSettings` instance.

	Keyword arguments are forwarded to :class:`AppSettings` and therefore have
	the highest precedence. The result is cached to avoid repeatedly parsing
	YAML files and environment variables.
	"""

	return AppSettings(**overrides)
