"""ProtocolSession: a resilient attachment to one browser tab."""

import asyncio
import logging
import time
from typing import Any

from bubus import EventBus
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from uuid_extensions import uuid7str

from tabpilot.browser.action_queue import ActionQueue, Operation
from tabpilot.browser.events import AgentFocusChangedEvent, SessionAttachedEvent, SessionDetachedEvent
from tabpilot.browser.transport import CDPTransport
from tabpilot.browser.views import (
	BrowserError,
	CommandFailedError,
	SessionClosedError,
	SessionState,
	SessionStats,
	TargetInfo,
	TargetLostError,
)
from tabpilot.browser.watchdog_base import EventSubscription
from tabpilot.config import CONFIG
from tabpilot.input.coordinates import CoordinateMapper
from tabpilot.utils import backoff_delay, time_execution_async

# Substrings of remote error messages that mean our protocol session went away
DETACH_ERROR_MARKERS = (
	'detached',
	'not attached',
	'no session with given id',
	'session with given id not found',
	'cannot find context with specified id',
	'target closed',
)


def is_detach_error(error: BaseException) -> bool:
	message = str(error).lower()
	return any(marker in message for marker in DETACH_ERROR_MARKERS)


class ProtocolSession(BaseModel):
	"""Owns the attachment to a single target tab and every command sent to it.

	The session survives navigations, reloads and tab switches: lifecycle events
	arriving on `event_bus` (see TargetLifecycleWatchdog) mark it detached and
	reattach it, and every command re-verifies the target before it is sent.

	Usage:
		transport = await CDPClientTransport('http://localhost:9222').connect()
		session = ProtocolSession(transport=transport)
		await session.initialize()
		await session.execute_command('Runtime.evaluate', {'expression': 'document.title'})
		await session.cleanup()
	"""

	model_config = ConfigDict(
		arbitrary_types_allowed=True,
		validate_assignment=False,
		revalidate_instances='never',
		extra='forbid',
	)

	id: str = Field(default_factory=lambda: str(uuid7str()), description='Unique identifier for this session')
	transport: CDPTransport
	event_bus: EventBus = Field(default_factory=EventBus)

	# Mutable public state
	target: TargetInfo | None = None
	state: SessionState = SessionState.DETACHED
	stats: SessionStats = Field(default_factory=SessionStats)
	coordinate_mapper: CoordinateMapper = Field(default_factory=CoordinateMapper)

	# Retry / timing knobs
	attach_retries: int = Field(default_factory=lambda: CONFIG.TABPILOT_ATTACH_RETRIES)
	command_retries: int = Field(default_factory=lambda: CONFIG.TABPILOT_COMMAND_RETRIES)
	retry_base_delay: float = Field(default_factory=lambda: CONFIG.TABPILOT_RETRY_BASE_DELAY)
	retry_max_delay: float = Field(default_factory=lambda: CONFIG.TABPILOT_RETRY_MAX_DELAY)
	stats_log_interval: int = Field(default_factory=lambda: CONFIG.TABPILOT_STATS_LOG_INTERVAL)
	reattach_settle_delay: float = 0.1
	probe_timeout: float = 2.0

	_action_queue: ActionQueue = PrivateAttr(default_factory=ActionQueue)
	_attach_lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)
	_subscriptions: list[EventSubscription] = PrivateAttr(default_factory=list)
	_lifecycle_watchdog: Any | None = PrivateAttr(default=None)
	_screenshot_watchdog: Any | None = PrivateAttr(default=None)

	@property
	def logger(self) -> logging.Logger:
		"""Instance-specific logger, regenerated every time because the target can change"""
		return logging.getLogger(f'tabpilot.{self}')

	@property
	def attached(self) -> bool:
		return self.state == SessionState.ATTACHED

	@property
	def target_id(self) -> str | None:
		return self.target.target_id if self.target else None

	@property
	def action_queue(self) -> ActionQueue:
		return self._action_queue

	def __str__(self) -> str:
		tab_id = self.target.target_id[-4:] if self.target else '--'
		return f'ProtocolSession🅟 {self.id[-4:]} 🅣 {tab_id}'

	def __repr__(self) -> str:
		return f'{self} (state={self.state.value}, target={self.target})'

	# ---- lifecycle ----

	async def initialize(self, target_id: str | None = None) -> bool:
		"""Bind to a target (the foreground tab if none given), subscribe to lifecycle events and attach."""
		from tabpilot.browser.lifecycle_watchdog import TargetLifecycleWatchdog
		from tabpilot.browser.screenshot_watchdog import ScreenshotWatchdog

		if self.state == SessionState.CLOSED:
			raise SessionClosedError('Cannot initialize a session after cleanup()')

		self.transport.bind_event_bus(self.event_bus)

		if self._lifecycle_watchdog is None:
			self._lifecycle_watchdog = TargetLifecycleWatchdog(event_bus=self.event_bus, session=self)
			self._subscriptions.append(self._lifecycle_watchdog.attach_to_session())
		if self._screenshot_watchdog is None:
			self._screenshot_watchdog = ScreenshotWatchdog(event_bus=self.event_bus, session=self)
			self._subscriptions.append(self._screenshot_watchdog.attach_to_session())

		if target_id:
			self.target = await self._lookup_target(target_id)

		return await self.attach()

	async def cleanup(self) -> None:
		"""Detach, unsubscribe from lifecycle events and close the session for good."""
		if self.state == SessionState.CLOSED:
			return
		await self.detach()
		for subscription in self._subscriptions:
			subscription.cancel()
		self._subscriptions.clear()
		self._lifecycle_watchdog = None
		self._screenshot_watchdog = None
		self.state = SessionState.CLOSED
		self.logger.debug('🛑 Session closed')

	# ---- attach / detach ----

	async def attach(self, target_id: str | None = None, retries: int | None = None) -> bool:
		"""Attach to the target, returns False (never raises) when every try failed.

		Idempotent: when already attached and the liveness probe passes no remote
		attach call is made.
		"""
		if self.state == SessionState.CLOSED:
			self.logger.warning('⚠️ attach() called on a closed session')
			return False

		async with self._attach_lock:
			if target_id and target_id != self.target_id:
				if self.target is not None:
					await self.detach()
				self.target = await self._lookup_target(target_id)

			if self.target is None:
				try:
					self.target = await self.transport.get_active_target()
				except Exception as e:
					self.logger.warning(f'⚠️ Could not list targets to pick a tab: {type(e).__name__}: {e}')
					return False
				if self.target is None:
					self.logger.warning('⚠️ No tabs found to attach to')
					return False

			if self.state == SessionState.ATTACHED:
				if await self._probe():
					return True
				self.mark_detached('liveness probe failed')

			retries = self.attach_retries if retries is None else retries
			for attempt in range(retries):
				self.state = SessionState.ATTACHING
				try:
					await self.transport.attach(self.target.target_id)
					if not await self._probe():
						raise BrowserError('Liveness probe failed right after attaching')
				except Exception as e:
					self.state = SessionState.DETACHED
					self.logger.warning(
						f'⚠️ Attach attempt {attempt + 1}/{retries} to {self.target} failed: {type(e).__name__}: {e}'
					)
					if attempt < retries - 1:
						await asyncio.sleep(backoff_delay(attempt, self.retry_base_delay, self.retry_max_delay))
					continue

				self.state = SessionState.ATTACHED
				self.logger.debug(f'🔗 Attached to {self.target}')
				self.event_bus.dispatch(SessionAttachedEvent(target_id=self.target.target_id, url=self.target.url))
				return True

			self.state = SessionState.DETACHED
			self.logger.error(f'❌ Could not attach to {self.target} after {retries} attempt(s)')
			return False

	async def detach(self) -> None:
		"""Best-effort detach, local state is DETACHED afterwards even if the remote call failed."""
		if self.target is None:
			return
		try:
			await self.transport.detach(self.target.target_id)
		except Exception as e:
			self.logger.debug(f'Ignoring error while detaching from {self.target}: {type(e).__name__}: {e}')
		finally:
			self.mark_detached('detach requested')

	def mark_detached(self, reason: str) -> None:
		if self.state not in (SessionState.ATTACHED, SessionState.ATTACHING):
			return
		self.state = SessionState.DETACHED
		self.logger.debug(f'🔌 Marked detached: {reason}')
		if self.target is not None:
			self.event_bus.dispatch(SessionDetachedEvent(target_id=self.target.target_id, reason=reason))

	async def switch_target(self, target_id: str) -> bool:
		"""Move the session to another tab, detaching from the current one first."""
		if target_id == self.target_id and self.attached:
			return True
		previous = self.target
		attached = await self.attach(target_id=target_id)
		if attached and self.target is not None:
			self.logger.info(f'🔄 Switched from {previous} to {self.target}')
			self.event_bus.dispatch(AgentFocusChangedEvent(target_id=self.target.target_id, url=self.target.url))
		return attached

	async def activate_target(self, target_id: str) -> None:
		await self.transport.activate(target_id)

	async def _lookup_target(self, target_id: str) -> TargetInfo:
		try:
			targets = await self.transport.get_targets()
		except Exception as e:
			self.logger.debug(f'Could not list targets while looking up {target_id}: {type(e).__name__}: {e}')
			targets = []
		for target in targets:
			if target.target_id == target_id:
				return target
		return TargetInfo(target_id=target_id)

	async def _probe(self) -> bool:
		"""Check the attached tab still evaluates JS."""
		assert self.target is not None
		try:
			result = await asyncio.wait_for(
				self.transport.send(self.target.target_id, 'Runtime.evaluate', {'expression': '1 + 1', 'returnByValue': True}),
				timeout=self.probe_timeout,
			)
		except Exception as e:
			self.logger.debug(f'🔄 Liveness probe on {self.target} failed: {type(e).__name__}: {e}')
			return False
		return result.get('result', {}).get('value') == 2

	# ---- commands ----

	async def ensure_valid_target(self) -> TargetInfo:
		"""Make sure the tracked target still exists, falling back to the foreground tab if not."""
		try:
			targets = await self.transport.get_targets()
		except Exception as e:
			raise BrowserError(f'Could not list tabs: {type(e).__name__}: {e}') from e
		if not targets:
			raise TargetLostError('No tabs found')

		current = next((t for t in targets if t.target_id == self.target_id), None)
		if current is None:
			fallback = await self.transport.get_active_target() or targets[-1]
			self.logger.warning(f'⚠️ Target {self.target} is gone, falling back to {fallback}')
			self.mark_detached('target gone')
			self.target = fallback
			self.event_bus.dispatch(AgentFocusChangedEvent(target_id=fallback.target_id, url=fallback.url))
			return fallback

		if self.attached and not current.attached:
			self.mark_detached('remote reports target not attached')

		assert self.target is not None
		self.target.url = current.url
		self.target.title = current.title
		return self.target

	@time_execution_async('--execute_command')
	async def execute_command(self, method: str, params: dict[str, Any] | None = None, retry_count: int | None = None) -> dict:
		"""Send a protocol command, reattaching and retrying on transient failures.

		Raises TargetLostError when no tab exists at all and CommandFailedError
		once retry_count + 1 attempts are exhausted.
		"""
		if self.state == SessionState.CLOSED:
			raise SessionClosedError(f'Cannot send {method}, session is closed')

		await self.ensure_valid_target()
		if not self.attached and not await self.attach():
			raise CommandFailedError(method, 0, f'could not attach to {self.target}')
		assert self.target is not None

		retry_count = self.command_retries if retry_count is None else retry_count
		attempts = retry_count + 1
		last_error: Exception | None = None
		for attempt in range(attempts):
			start = time.monotonic()
			try:
				result = await self.transport.send(self.target.target_id, method, params or {})
			except Exception as e:
				last_error = e
				self._record(method, start, error=f'{type(e).__name__}: {e}')
				if attempt == attempts - 1:
					break

				if is_detach_error(e):
					self.logger.debug(f'🔌 {method} hit a detached session ({e}), reattaching and resubmitting')
					self.mark_detached(str(e))
					await asyncio.sleep(self.reattach_settle_delay)
					if not await self.attach():
						raise CommandFailedError(method, attempt + 1, e) from e
				else:
					self.logger.debug(f'⚠️ {method} failed (attempt {attempt + 1}/{attempts}): {type(e).__name__}: {e}')
					await asyncio.sleep(backoff_delay(attempt, self.retry_base_delay, self.retry_max_delay))
				continue

			self._record(method, start)
			return result

		self.logger.error(f'❌ {method} failed after {attempts} attempt(s): {last_error}')
		raise CommandFailedError(method, attempts, last_error) from last_error

	def _record(self, method: str, start: float, error: str | None = None) -> None:
		self.stats.record(method, (time.monotonic() - start) * 1000, error)
		if self.stats_log_interval and self.stats.completed % self.stats_log_interval == 0:
			self.logger.info(f'📊 {self.stats.completed} commands sent: {self.stats.summary()}')

	async def queue_action(self, operation: Operation) -> Any:
		"""Run an operation on the session's FIFO queue, never overlapping another one."""
		return await self._action_queue.enqueue(operation)
