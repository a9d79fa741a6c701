"""
Shared fixtures for the tabpilot test suite.

FakeTransport stands in for a real Chrome DevTools connection: it keeps a list
of page targets, tracks which ones are attached and records every command sent.
"""

import base64
import io
from typing import Any

import pytest
from PIL import Image

from tabpilot.agent.views import AgentSettings
from tabpilot.browser.session import ProtocolSession
from tabpilot.browser.transport import CDPTransport
from tabpilot.browser.views import BrowserError, TargetInfo
from tabpilot.input.coordinates import CoordinateFrame
from tabpilot.input.views import InputTimings


def make_png_b64(width: int, height: int, color: str = 'white') -> str:
	buffer = io.BytesIO()
	Image.new('RGB', (width, height), color).save(buffer, format='PNG')
	return base64.b64encode(buffer.getvalue()).decode('utf-8')


class FakeTransport(CDPTransport):
	"""In-memory CDPTransport that behaves like a cooperative browser unless told otherwise."""

	def __init__(self, targets: list[TargetInfo] | None = None):
		self.event_bus = None
		self.targets: list[TargetInfo] = (
			targets if targets is not None else [TargetInfo(target_id='TARGET-0001', url='https://example.com')]
		)
		self.attached: set[str] = set()
		self.attach_calls: list[str] = []
		self.detach_calls: list[str] = []
		self.sent: list[tuple[str, str, dict[str, Any]]] = []
		# raised one by one by the next send() calls, probes excluded
		self.failures: list[Exception] = []
		self.attach_failures = 0
		self.probe_ok = True
		self.device_pixel_ratio: float = 1.0
		self.screenshot_b64 = make_png_b64(1280, 800)

	async def attach(self, target_id: str) -> None:
		self.attach_calls.append(target_id)
		if self.attach_failures:
			self.attach_failures -= 1
			raise BrowserError('Cannot attach to this target')
		self.attached.add(target_id)

	async def detach(self, target_id: str) -> None:
		self.detach_calls.append(target_id)
		self.attached.discard(target_id)

	async def send(self, target_id: str, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
		params = params or {}
		if method == 'Runtime.evaluate' and params.get('expression') == '1 + 1':
			if target_id not in self.attached or not self.probe_ok:
				raise BrowserError('Target is not attached')
			return {'result': {'type': 'number', 'value': 2}}

		if target_id not in self.attached:
			raise BrowserError(f'Debugger is not attached to the tab with id: {target_id}.')

		self.sent.append((target_id, method, params))
		if self.failures:
			error = self.failures.pop(0)
			if 'not attached' in str(error).lower():
				self.attached.discard(target_id)
			raise error

		if method == 'Page.captureScreenshot':
			return {'data': self.screenshot_b64}
		if method == 'Runtime.evaluate' and params.get('expression') == 'window.devicePixelRatio':
			return {'result': {'type': 'number', 'value': self.device_pixel_ratio}}
		return {}

	async def get_targets(self) -> list[TargetInfo]:
		return [t.model_copy(update={'attached': t.target_id in self.attached}) for t in self.targets]

	# ---- helpers for assertions ----

	def calls(self, method: str) -> list[dict[str, Any]]:
		return [params for _, m, params in self.sent if m == method]

	def mouse_events(self) -> list[dict[str, Any]]:
		return self.calls('Input.dispatchMouseEvent')

	def key_events(self) -> list[dict[str, Any]]:
		return self.calls('Input.dispatchKeyEvent')

	def input_calls(self) -> list[tuple[str, dict[str, Any]]]:
		return [(m, params) for _, m, params in self.sent if m.startswith('Input.')]


@pytest.fixture
def transport() -> FakeTransport:
	return FakeTransport()


@pytest.fixture
async def session(transport: FakeTransport):
	"""An initialized ProtocolSession on the fake transport with retry delays disabled."""
	session = ProtocolSession(
		transport=transport,
		retry_base_delay=0,
		retry_max_delay=0,
		reattach_settle_delay=0,
		stats_log_interval=0,
	)
	assert await session.initialize()
	yield session
	await session.cleanup()
	await session.event_bus.stop(clear=True, timeout=5)


@pytest.fixture
def identity_frame() -> CoordinateFrame:
	return CoordinateFrame(capture_width=1024, capture_height=768, canvas_width=1024, canvas_height=768)


@pytest.fixture
def instant_timings() -> InputTimings:
	return InputTimings.instant()


@pytest.fixture
def agent_settings(instant_timings: InputTimings) -> AgentSettings:
	return AgentSettings(max_steps=10, screenshot_delay=0, cue_timeout=1, copilot=False, input_timings=instant_timings)
