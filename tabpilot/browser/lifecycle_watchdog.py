"""Keeps a ProtocolSession attached across navigations, reloads, tab switches and remote detaches."""

import asyncio
from typing import ClassVar

from bubus import BaseEvent

from tabpilot.browser.events import (
	AgentFocusChangedEvent,
	TabActivatedEvent,
	TabClosedEvent,
	TabUpdatedEvent,
	TargetDetachedEvent,
)
from tabpilot.browser.watchdog_base import BaseWatchdog
from tabpilot.utils import log_pretty_url


class TargetLifecycleWatchdog(BaseWatchdog):
	"""Reacts to remote tab lifecycle notifications for the session's target."""

	LISTENS_TO: ClassVar[list[type[BaseEvent]]] = [
		TabUpdatedEvent,
		TabActivatedEvent,
		TargetDetachedEvent,
		TabClosedEvent,
	]
	EMITS: ClassVar[list[type[BaseEvent]]] = [AgentFocusChangedEvent]

	# a freshly loaded page needs a moment before it accepts a debugger
	reattach_delay: float = 0.1
	reattach_retry_delay: float = 0.5

	def _is_ours(self, target_id: str) -> bool:
		return target_id == self.session.target_id

	async def _target_exists(self, target_id: str) -> bool:
		try:
			targets = await self.session.transport.get_targets()
		except Exception as e:
			# the next command reattaches or falls back on its own
			self.logger.debug(f'Could not list tabs after a remote detach: {type(e).__name__}: {e}')
			return False
		return any(t.target_id == target_id for t in targets)

	async def on_TabUpdatedEvent(self, event: TabUpdatedEvent) -> None:
		if not self._is_ours(event.target_id):
			return

		if event.url and self.session.target is not None and event.url != self.session.target.url:
			self.logger.debug(f'🧭 URL changed: {log_pretty_url(self.session.target.url)} -> {log_pretty_url(event.url)}')
			self.session.target.url = event.url

		if event.status == 'loading':
			self.session.mark_detached('page loading')
		elif event.status == 'complete':
			await asyncio.sleep(self.reattach_delay)
			if await self.session.attach(retries=1):
				return
			self.logger.debug('🔄 Reattach after page load failed, trying once more')
			await asyncio.sleep(self.reattach_retry_delay)
			await self.session.attach(retries=1)

	async def on_TabActivatedEvent(self, event: TabActivatedEvent) -> None:
		if self._is_ours(event.target_id):
			return
		self.logger.debug(f'🔄 Tab 🅣 {event.target_id[-4:]} activated, following it')
		await self.session.switch_target(event.target_id)

	async def on_TargetDetachedEvent(self, event: TargetDetachedEvent) -> None:
		if not self._is_ours(event.target_id):
			return
		self.session.mark_detached(f'remote detach: {event.reason}')
		if event.reason == 'target_closed':
			return

		# a closing tab is detached before it is destroyed, give the browser a moment to say so
		await asyncio.sleep(self.reattach_delay)
		if not self._is_ours(event.target_id):
			return
		if not await self._target_exists(event.target_id):
			self.logger.debug(f'🗑️ Tab 🅣 {event.target_id[-4:]} is gone, not reattaching')
			return
		await self.session.attach()

	async def on_TabClosedEvent(self, event: TabClosedEvent) -> None:
		if not self._is_ours(event.target_id):
			return
		# the next command falls back to the foreground tab
		self.session.mark_detached('tab closed')
