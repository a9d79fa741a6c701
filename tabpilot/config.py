"""Configuration system for tabpilot, read from the environment and an optional .env file."""

import os
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OldConfig:
	"""Lazy-loading configuration class for environment variables."""

	@property
	def TABPILOT_LOGGING_LEVEL(self) -> str:
		return os.getenv('TABPILOT_LOGGING_LEVEL', 'info').lower()

	@property
	def CDP_LOGGING_LEVEL(self) -> str:
		return os.getenv('CDP_LOGGING_LEVEL', 'WARNING')

	@property
	def TABPILOT_CDP_URL(self) -> str:
		url = os.getenv('TABPILOT_CDP_URL', 'http://localhost:9222')
		assert '://' in url, 'TABPILOT_CDP_URL must be a valid URL'
		return url

	# Attach / retry behaviour
	@property
	def TABPILOT_ATTACH_RETRIES(self) -> int:
		return int(os.getenv('TABPILOT_ATTACH_RETRIES', '3'))

	@property
	def TABPILOT_COMMAND_RETRIES(self) -> int:
		return int(os.getenv('TABPILOT_COMMAND_RETRIES', '2'))

	@property
	def TABPILOT_RETRY_BASE_DELAY(self) -> float:
		return float(os.getenv('TABPILOT_RETRY_BASE_DELAY', '0.25'))

	@property
	def TABPILOT_RETRY_MAX_DELAY(self) -> float:
		return float(os.getenv('TABPILOT_RETRY_MAX_DELAY', '4.0'))

	@property
	def TABPILOT_STATS_LOG_INTERVAL(self) -> int:
		return int(os.getenv('TABPILOT_STATS_LOG_INTERVAL', '50'))

	# Screenshot / coordinate space
	@property
	def TABPILOT_SCREENSHOT_DELAY(self) -> float:
		return float(os.getenv('TABPILOT_SCREENSHOT_DELAY', '1.1'))

	@property
	def TABPILOT_DEFAULT_DPR(self) -> float:
		return float(os.getenv('TABPILOT_DEFAULT_DPR', '1.0'))

	@property
	def TABPILOT_CANVAS_WIDTH(self) -> int:
		return int(os.getenv('TABPILOT_CANVAS_WIDTH', '1024'))

	@property
	def TABPILOT_CANVAS_HEIGHT(self) -> int:
		return int(os.getenv('TABPILOT_CANVAS_HEIGHT', '768'))

	# Companion UI
	@property
	def TABPILOT_CUE_TIMEOUT(self) -> float:
		return float(os.getenv('TABPILOT_CUE_TIMEOUT', '60'))

	@property
	def TABPILOT_MAX_STEPS(self) -> int:
		return int(os.getenv('TABPILOT_MAX_STEPS', '100'))


class FlatEnvConfig(BaseSettings):
	"""All environment variables in a flat namespace."""

	model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', case_sensitive=True, extra='allow')

	# Logging
	TABPILOT_LOGGING_LEVEL: str = Field(default='info')
	CDP_LOGGING_LEVEL: str = Field(default='WARNING')

	# Connection
	TABPILOT_CDP_URL: str = Field(default='http://localhost:9222')
	TABPILOT_ATTACH_RETRIES: int = Field(default=3)
	TABPILOT_COMMAND_RETRIES: int = Field(default=2)
	TABPILOT_RETRY_BASE_DELAY: float = Field(default=0.25)
	TABPILOT_RETRY_MAX_DELAY: float = Field(default=4.0)
	TABPILOT_STATS_LOG_INTERVAL: int = Field(default=50)

	# Screenshots
	TABPILOT_SCREENSHOT_DELAY: float = Field(default=1.1)
	TABPILOT_DEFAULT_DPR: float = Field(default=1.0)
	TABPILOT_CANVAS_WIDTH: int = Field(default=1024)
	TABPILOT_CANVAS_HEIGHT: int = Field(default=768)

	# Agent
	TABPILOT_CUE_TIMEOUT: float = Field(default=60.0)
	TABPILOT_MAX_STEPS: int = Field(default=100)
	TABPILOT_COPILOT: bool = Field(default=False)


class Config:
	"""Configuration class that merges all config sources.

	Re-reads environment variables on every access so tests can monkeypatch them.
	"""

	def __getattr__(self, name: str) -> Any:
		"""Dynamically proxy all attributes to fresh instances."""
		if name.startswith('_'):
			raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")

		# Create fresh instances on every access
		old_config = OldConfig()
		if hasattr(old_config, name):
			return getattr(old_config, name)

		# For settings only declared on the flat env model (e.g. values coming from .env)
		env_config = FlatEnvConfig()
		if hasattr(env_config, name):
			return getattr(env_config, name)

		raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")


# Create singleton instance
CONFIG = Config()
