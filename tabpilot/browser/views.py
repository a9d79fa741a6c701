from collections import deque
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PrivateAttr


class SessionState(str, Enum):
	DETACHED = 'detached'
	ATTACHING = 'attaching'
	ATTACHED = 'attached'
	CLOSED = 'closed'


# Pydantic
class TargetInfo(BaseModel):
	"""Represents one remotely controllable browser tab"""

	model_config = ConfigDict(
		extra='ignore',
		validate_by_name=True,
		validate_by_alias=True,
		populate_by_name=True,
	)

	target_id: str = Field(validation_alias=AliasChoices('targetId', 'target_id'))
	url: str = 'about:blank'
	title: str = ''
	type: str = 'page'
	attached: bool = False

	@property
	def origin(self) -> str:
		parsed = urlparse(self.url)
		if not parsed.scheme or not parsed.netloc:
			return ''
		return f'{parsed.scheme}://{parsed.netloc}'

	@classmethod
	def from_cdp(cls, target_info: dict[str, Any]) -> 'TargetInfo':
		return cls.model_validate(target_info)

	def __str__(self) -> str:
		return f'🅣 {self.target_id[-4:]} {self.url}'


class CommandStats(BaseModel):
	"""Rolling counters for a single protocol method"""

	total: int = 0
	succeeded: int = 0
	failed: int = 0
	avg_latency_ms: float = 0.0

	_last_errors: deque[str] = PrivateAttr(default_factory=lambda: deque(maxlen=10))

	@property
	def last_errors(self) -> list[str]:
		return list(self._last_errors)

	def record(self, latency_ms: float, error: str | None = None) -> None:
		self.total += 1
		if error is None:
			self.succeeded += 1
		else:
			self.failed += 1
			self._last_errors.append(error)
		# running mean over every completed call
		self.avg_latency_ms += (latency_ms - self.avg_latency_ms) / self.total


class SessionStats(BaseModel):
	"""Per-method command statistics for one ProtocolSession"""

	commands: dict[str, CommandStats] = Field(default_factory=dict)
	completed: int = 0

	def record(self, method: str, latency_ms: float, error: str | None = None) -> None:
		self.commands.setdefault(method, CommandStats()).record(latency_ms, error)
		self.completed += 1

	def summary(self) -> str:
		parts = []
		for method, stats in sorted(self.commands.items()):
			parts.append(f'{method}: {stats.succeeded}/{stats.total} ok, avg {stats.avg_latency_ms:.0f}ms')
		return '; '.join(parts)


class BrowserError(Exception):
	"""Error raised when the remote browser rejects or fails a protocol operation."""

	message: str
	details: dict[str, Any] | None = None

	def __init__(self, message: str, details: dict[str, Any] | None = None):
		self.message = message
		self.details = details
		super().__init__(message)

	def __str__(self) -> str:
		if self.details:
			return f'{self.message} ({self.details})'
		return self.message


class TargetLostError(BrowserError):
	"""No tab is available to attach to, retrying will not help."""


class CommandFailedError(BrowserError):
	"""A protocol command failed after every retry and reattach attempt."""

	def __init__(self, method: str, attempts: int, last_error: BaseException | str | None):
		self.method = method
		self.attempts = attempts
		self.last_error = last_error
		super().__init__(f'{method} failed after {attempts} attempt(s): {last_error}')


class SessionClosedError(BrowserError):
	"""The session was cleaned up and can no longer send commands."""


class CoordinateFrameError(BrowserError):
	"""Coordinates were mapped before any screenshot established a capture frame."""
