"""Remote-debugging transport used by ProtocolSession.

CDPTransport is the minimal surface the session needs from the browser: attach,
detach, send, list targets. CDPClientTransport implements it on top of a single
cdp_use websocket connection and bridges CDP notifications onto a bubus EventBus.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from bubus import EventBus
from cdp_use import CDPClient

from tabpilot.browser.events import TabActivatedEvent, TabClosedEvent, TabUpdatedEvent, TargetDetachedEvent
from tabpilot.browser.views import BrowserError, TargetInfo

logger = logging.getLogger(__name__)

FOCUS_BINDING = '__tabpilotReportFocus'

# Injected into every page: reports the tab whenever it is the visible one
FOCUS_TRACKING_SCRIPT = """
(() => {
	if (window.__tabpilotFocusTracking) return;
	window.__tabpilotFocusTracking = true;
	const report = () => {
		if (document.visibilityState === 'visible' && window.__tabpilotReportFocus) {
			window.__tabpilotReportFocus('visible');
		}
	};
	document.addEventListener('visibilitychange', report);
	window.addEventListener('focus', report);
	report();
})();
"""

# New tab pages can hang when a script is evaluated in them
UNTRACKED_URL_PREFIXES = ('chrome://', 'chrome-untrusted://', 'devtools://')


async def resolve_ws_url(cdp_url: str) -> str:
	"""Turn an http(s) DevTools endpoint into the browser websocket URL via /json/version."""
	if cdp_url.startswith('ws'):
		return cdp_url

	url = cdp_url.rstrip('/')
	if not url.endswith('/json/version'):
		url = url + '/json/version'

	async with httpx.AsyncClient() as client:
		version_info = await client.get(url)
		version_info.raise_for_status()
		return version_info.json()['webSocketDebuggerUrl']


class CDPTransport(ABC):
	"""Abstract remote-debugging surface consumed by ProtocolSession."""

	event_bus: EventBus | None = None
	# last tab known to be in the foreground, None until the browser reports one
	foreground_target_id: str | None = None

	def bind_event_bus(self, event_bus: EventBus) -> None:
		"""Lifecycle notifications from the browser are dispatched onto this bus."""
		self.event_bus = event_bus

	@abstractmethod
	async def attach(self, target_id: str) -> None:
		"""Open a protocol session to the target, replacing any previous one."""

	@abstractmethod
	async def detach(self, target_id: str) -> None:
		"""Close the protocol session to the target, if any."""

	@abstractmethod
	async def send(self, target_id: str, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
		"""Send one protocol command to the attached target and return its result."""

	@abstractmethod
	async def get_targets(self) -> list[TargetInfo]:
		"""List page targets known to the browser."""

	async def get_active_target(self) -> TargetInfo | None:
		"""The foreground tab if known, otherwise the most recently listed page."""
		targets = await self.get_targets()
		foreground = next((t for t in targets if t.target_id == self.foreground_target_id), None)
		return foreground or (targets[-1] if targets else None)

	async def activate(self, target_id: str) -> None:
		"""Bring a target to the foreground."""
		self.foreground_target_id = target_id
		if self.event_bus:
			self.event_bus.dispatch(TabActivatedEvent(target_id=target_id))

	async def close(self) -> None:
		pass


class CDPClientTransport(CDPTransport):
	"""CDPTransport backed by one cdp_use websocket client using flattened target sessions.

	Besides the command session of the controlled tab, every page gets a small
	watcher session with a focus binding, so tab switches made by the user show
	up as TabActivatedEvent and get_active_target() knows the real foreground tab.
	"""

	def __init__(self, cdp_url: str, track_focus: bool = True):
		self.cdp_url = cdp_url
		self.track_focus = track_focus
		self.event_bus = None
		self.foreground_target_id = None
		self._client: CDPClient | None = None
		self._sessions: dict[str, str] = {}  # target_id -> session_id
		self._watch_sessions: dict[str, str] = {}  # target_id -> focus watcher session_id
		self._watch_pending: set[str] = set()
		# targets whose session the browser dropped, a close sends detach before destroy
		self._remote_detached: set[str] = set()
		self._background_tasks: set[asyncio.Task] = set()

	@property
	def client(self) -> CDPClient:
		assert self._client is not None, 'CDP client not connected, call connect() first'
		return self._client

	async def connect(self) -> 'CDPClientTransport':
		"""Connect to a running chromium-based browser. Fails hard on any error."""
		ws_url = await resolve_ws_url(self.cdp_url)
		logger.debug(f'🌎 Connecting to chromium-based browser via CDP: {ws_url}')

		self._client = CDPClient(ws_url)
		await self._client.start()
		await self._client.send.Target.setDiscoverTargets(params={'discover': True})

		self._client.register.Target.detachedFromTarget(self._on_detached_from_target)
		self._client.register.Target.targetDestroyed(self._on_target_destroyed)
		self._client.register.Target.targetCreated(self._on_target_created)
		self._client.register.Target.targetInfoChanged(self._on_target_info_changed)
		self._client.register.Page.frameStartedLoading(self._on_frame_started_loading)
		self._client.register.Page.loadEventFired(self._on_load_event_fired)
		self._client.register.Runtime.bindingCalled(self._on_binding_called)

		if self.track_focus:
			await asyncio.gather(*(self.watch_focus(target) for target in await self.get_targets()))
		logger.debug('CDP client connected successfully')
		return self

	async def close(self) -> None:
		for task in list(self._background_tasks):
			task.cancel()
		self._sessions.clear()
		self._watch_sessions.clear()
		self._remote_detached.clear()
		if self._client is not None:
			await self._client.stop()
			self._client = None

	async def attach(self, target_id: str) -> None:
		# one live protocol session per target
		if target_id in self._sessions:
			await self.detach(target_id)

		result = await self.client.send.Target.attachToTarget(params={'targetId': target_id, 'flatten': True})
		session_id = result['sessionId']
		self._sessions[target_id] = session_id
		self._remote_detached.discard(target_id)

		# Page events drive the loading/complete lifecycle
		await asyncio.gather(
			self.client.send.Page.enable(session_id=session_id),
			self.client.send.Runtime.enable(session_id=session_id),
		)

	async def detach(self, target_id: str) -> None:
		session_id = self._sessions.pop(target_id, None)
		if session_id is None:
			return
		await self.client.send.Target.detachFromTarget(params={'sessionId': session_id})

	async def send(self, target_id: str, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
		session_id = self._sessions.get(target_id)
		if session_id is None:
			raise BrowserError(f'Target {target_id} is not attached')
		return await self.client.send_raw(method=method, params=params or {}, session_id=session_id)

	async def get_targets(self) -> list[TargetInfo]:
		result = await self.client.send.Target.getTargets()
		return [TargetInfo.from_cdp(t) for t in result['targetInfos'] if t.get('type') == 'page']

	async def activate(self, target_id: str) -> None:
		await self.client.send.Target.activateTarget(params={'targetId': target_id})
		await super().activate(target_id)

	# ---- focus tracking ----

	async def watch_focus(self, target: TargetInfo) -> bool:
		"""Install the focus binding in a page through a watcher session of its own.

		Returns False when the page was skipped or refused the script.
		"""
		if target.target_id in self._watch_sessions or target.target_id in self._watch_pending:
			return False
		if target.url.startswith(UNTRACKED_URL_PREFIXES):
			return False

		self._watch_pending.add(target.target_id)
		try:
			result = await self.client.send.Target.attachToTarget(params={'targetId': target.target_id, 'flatten': True})
			session_id = result['sessionId']
			self._watch_sessions[target.target_id] = session_id
			await self.client.send.Runtime.enable(session_id=session_id)
			await self.client.send.Runtime.addBinding(params={'name': FOCUS_BINDING}, session_id=session_id)
			await self.client.send.Page.addScriptToEvaluateOnNewDocument(
				params={'source': FOCUS_TRACKING_SCRIPT}, session_id=session_id
			)
			await self.client.send.Runtime.evaluate(params={'expression': FOCUS_TRACKING_SCRIPT}, session_id=session_id)
		except Exception as e:
			self._watch_sessions.pop(target.target_id, None)
			logger.debug(f'Could not set up focus tracking for {target}: {type(e).__name__}: {e}')
			return False
		finally:
			self._watch_pending.discard(target.target_id)
		logger.debug(f'👁️ Tracking focus of {target}')
		return True

	def _watch_in_background(self, target: TargetInfo) -> None:
		if not self.track_focus or self._client is None:
			return
		task = asyncio.create_task(self.watch_focus(target), name=f'watch_focus.{target.target_id[-4:]}')
		self._background_tasks.add(task)
		task.add_done_callback(self._background_tasks.discard)

	def _on_binding_called(self, event, session_id=None) -> None:
		if event.get('name') != FOCUS_BINDING:
			return
		target_id = next((t for t, s in self._watch_sessions.items() if s == session_id), None)
		if target_id is None or target_id == self.foreground_target_id:
			return
		previous = self.foreground_target_id
		self.foreground_target_id = target_id
		# the first report only tells us where the user already is
		if previous is None:
			return
		logger.debug(f'👁️ User brought 🅣 {target_id[-4:]} to the foreground')
		self._dispatch(TabActivatedEvent(target_id=target_id))

	# ---- CDP notification bridge ----

	def _target_for_session(self, session_id: str | None) -> str | None:
		for target_id, known_session_id in self._sessions.items():
			if known_session_id == session_id:
				return target_id
		return None

	def _dispatch(self, event) -> None:
		if self.event_bus is None:
			return
		self.event_bus.dispatch(event)

	def _on_detached_from_target(self, event, session_id=None) -> None:
		detached_session = event.get('sessionId')
		watched = next((t for t, s in self._watch_sessions.items() if s == detached_session), None)
		if watched is not None:
			del self._watch_sessions[watched]
			return

		target_id = event.get('targetId') or self._target_for_session(detached_session)
		if not target_id:
			return
		# sessions we detached ourselves are already forgotten
		if self._sessions.get(target_id) != detached_session:
			return
		self._sessions.pop(target_id, None)
		self._remote_detached.add(target_id)
		self._dispatch(TargetDetachedEvent(target_id=target_id, reason='detached_from_target'))

	def _on_target_destroyed(self, event, session_id=None) -> None:
		target_id = event['targetId']
		self._watch_sessions.pop(target_id, None)
		if self.foreground_target_id == target_id:
			self.foreground_target_id = None

		had_session = self._sessions.pop(target_id, None) is not None
		if target_id in self._remote_detached:
			self._remote_detached.discard(target_id)
			had_session = True
		if not had_session:
			return
		self._dispatch(TabClosedEvent(target_id=target_id))
		self._dispatch(TargetDetachedEvent(target_id=target_id, reason='target_closed'))

	def _on_target_created(self, event, session_id=None) -> None:
		info = event['targetInfo']
		if info.get('type') == 'page':
			self._watch_in_background(TargetInfo.from_cdp(info))

	def _on_target_info_changed(self, event, session_id=None) -> None:
		info = event['targetInfo']
		if info.get('type') != 'page':
			return
		# a new tab page becomes trackable once it navigates somewhere real
		if info['targetId'] not in self._watch_sessions:
			self._watch_in_background(TargetInfo.from_cdp(info))
		self._dispatch(TabUpdatedEvent(target_id=info['targetId'], url=info.get('url')))

	def _on_frame_started_loading(self, event, session_id=None) -> None:
		target_id = self._target_for_session(session_id)
		# only the main frame shares its id with the target
		if target_id and event.get('frameId') == target_id:
			self._dispatch(TabUpdatedEvent(target_id=target_id, status='loading'))

	def _on_load_event_fired(self, event, session_id=None) -> None:
		target_id = self._target_for_session(session_id)
		if target_id:
			self._dispatch(TabUpdatedEvent(target_id=target_id, status='complete'))
