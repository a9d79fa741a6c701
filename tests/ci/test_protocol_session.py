"""Tests for ProtocolSession attach, reattach, retry and fallback behaviour."""

import asyncio

import pytest

from tabpilot.browser.events import AgentFocusChangedEvent, SessionAttachedEvent
from tabpilot.browser.session import ProtocolSession, is_detach_error
from tabpilot.browser.views import (
	BrowserError,
	CommandFailedError,
	SessionClosedError,
	SessionState,
	TargetInfo,
	TargetLostError,
)
from tests.ci.conftest import FakeTransport


def _new_session(transport: FakeTransport, **kwargs) -> ProtocolSession:
	return ProtocolSession(
		transport=transport,
		retry_base_delay=0,
		retry_max_delay=0,
		reattach_settle_delay=0,
		**kwargs,
	)


class TestAttach:
	async def test_initialize_attaches_to_foreground_tab(self, session, transport):
		assert session.attached
		assert session.target_id == 'TARGET-0001'
		assert transport.attach_calls == ['TARGET-0001']

	async def test_attach_is_idempotent(self, session, transport):
		assert await session.attach()
		assert await session.attach()
		assert transport.attach_calls == ['TARGET-0001']

	async def test_failed_probe_forces_a_real_attach(self, session, transport):
		transport.attached.clear()
		assert await session.attach()
		assert transport.attach_calls == ['TARGET-0001', 'TARGET-0001']
		assert session.attached

	async def test_attach_returns_false_after_retries(self, transport):
		session = _new_session(transport)
		transport.attach_failures = 10
		try:
			assert await session.attach(retries=3) is False
			assert transport.attach_calls == ['TARGET-0001'] * 3
			assert session.state == SessionState.DETACHED
		finally:
			await session.event_bus.stop(clear=True, timeout=5)

	async def test_attach_recovers_from_transient_failures(self, transport):
		session = _new_session(transport)
		transport.attach_failures = 2
		try:
			assert await session.attach(retries=3)
			assert len(transport.attach_calls) == 3
		finally:
			await session.event_bus.stop(clear=True, timeout=5)

	async def test_no_tabs_means_no_attach(self):
		transport = FakeTransport(targets=[])
		session = _new_session(transport)
		try:
			assert await session.attach() is False
			assert transport.attach_calls == []
		finally:
			await session.event_bus.stop(clear=True, timeout=5)

	async def test_initialize_with_explicit_target(self):
		transport = FakeTransport(
			targets=[
				TargetInfo(target_id='TARGET-0001', url='https://one.example'),
				TargetInfo(target_id='TARGET-0002', url='https://two.example'),
			]
		)
		session = _new_session(transport)
		try:
			assert await session.initialize('TARGET-0001')
			assert session.target_id == 'TARGET-0001'
			assert session.target.url == 'https://one.example'
		finally:
			await session.cleanup()
			await session.event_bus.stop(clear=True, timeout=5)

	async def test_attach_dispatches_session_attached_event(self, transport):
		session = _new_session(transport)
		try:
			attached = asyncio.create_task(session.event_bus.expect(SessionAttachedEvent, timeout=2))
			await asyncio.sleep(0)
			assert await session.attach()
			event = await attached
			assert event.target_id == 'TARGET-0001'
		finally:
			await session.event_bus.stop(clear=True, timeout=5)


class TestExecuteCommand:
	async def test_sends_to_attached_target(self, session, transport):
		await session.execute_command('Page.reload', {'ignoreCache': True})
		assert transport.sent[-1] == ('TARGET-0001', 'Page.reload', {'ignoreCache': True})

	async def test_not_attached_error_reattaches_once_and_resubmits(self, session, transport):
		transport.failures = [BrowserError('Debugger is not attached to the tab with id: TARGET-0001.')]

		await session.execute_command('Page.reload')

		assert len(transport.calls('Page.reload')) == 2
		assert transport.attach_calls == ['TARGET-0001', 'TARGET-0001']
		assert session.attached

	async def test_gives_up_after_retry_count_plus_one_attempts(self, session, transport):
		transport.failures = [BrowserError('Internal error') for _ in range(5)]

		with pytest.raises(CommandFailedError) as exc_info:
			await session.execute_command('Page.reload', retry_count=2)

		assert exc_info.value.attempts == 3
		assert exc_info.value.method == 'Page.reload'
		assert len(transport.calls('Page.reload')) == 3

	async def test_not_attached_on_every_attempt_gives_up_after_three(self, session, transport):
		transport.failures = [BrowserError('Debugger is not attached to the tab with id: TARGET-0001.') for _ in range(3)]

		with pytest.raises(CommandFailedError) as exc_info:
			await session.execute_command('Page.reload', retry_count=2)

		assert exc_info.value.attempts == 3
		assert len(transport.calls('Page.reload')) == 3
		# initial attach plus one reattach before each resubmission
		assert transport.attach_calls == ['TARGET-0001'] * 3
		assert transport.failures == []

	async def test_zero_retries_fails_fast(self, session, transport):
		transport.failures = [BrowserError('Internal error')]
		with pytest.raises(CommandFailedError):
			await session.execute_command('Page.reload', retry_count=0)
		assert len(transport.calls('Page.reload')) == 1

	async def test_failed_reattach_raises(self, session, transport):
		transport.failures = [BrowserError('Debugger is not attached to the tab with id: TARGET-0001.')]
		transport.attach_failures = 10

		with pytest.raises(CommandFailedError):
			await session.execute_command('Page.reload')
		assert len(transport.calls('Page.reload')) == 1

	async def test_silently_detached_target_is_reattached_before_sending(self, session, transport):
		# the remote side dropped us without telling
		transport.attached.clear()

		await session.execute_command('Page.reload')

		assert transport.attach_calls == ['TARGET-0001', 'TARGET-0001']
		assert len(transport.calls('Page.reload')) == 1

	async def test_no_tabs_raises_target_lost(self, session, transport):
		transport.targets = []
		with pytest.raises(TargetLostError, match='No tabs found'):
			await session.execute_command('Page.reload')

	async def test_tab_listing_failure_is_a_browser_error(self, session, transport, monkeypatch):
		async def unreachable():
			raise ConnectionResetError('websocket closed')

		monkeypatch.setattr(transport, 'get_targets', unreachable)

		with pytest.raises(BrowserError, match='Could not list tabs: ConnectionResetError'):
			await session.execute_command('Page.reload')
		assert transport.calls('Page.reload') == []

	async def test_falls_back_when_target_disappears(self, session, transport):
		transport.targets = [TargetInfo(target_id='TARGET-0002', url='https://other.example')]
		focus_changed = asyncio.create_task(session.event_bus.expect(AgentFocusChangedEvent, timeout=2))
		await asyncio.sleep(0)

		await session.execute_command('Page.reload')

		assert session.target_id == 'TARGET-0002'
		assert transport.sent[-1][0] == 'TARGET-0002'
		assert (await focus_changed).target_id == 'TARGET-0002'

	async def test_refreshes_target_metadata(self, session, transport):
		transport.targets = [TargetInfo(target_id='TARGET-0001', url='https://example.com/next', title='Next')]
		await session.execute_command('Page.reload')
		assert session.target.url == 'https://example.com/next'
		assert session.target.title == 'Next'

	async def test_closed_session_rejects_commands(self, session, transport):
		await session.cleanup()

		assert session.state == SessionState.CLOSED
		assert await session.attach() is False
		with pytest.raises(SessionClosedError):
			await session.execute_command('Page.reload')

	async def test_records_stats(self, session, transport):
		transport.failures = [BrowserError('Internal error')]
		await session.execute_command('Page.reload')
		await session.execute_command('Page.reload')

		stats = session.stats.commands['Page.reload']
		assert stats.total == 3
		assert stats.succeeded == 2
		assert stats.failed == 1
		assert stats.last_errors == ['BrowserError: Internal error']
		assert session.stats.completed == 3
		assert 'Page.reload: 2/3 ok' in session.stats.summary()


class TestCleanup:
	async def test_cleanup_detaches_and_unsubscribes(self, session, transport):
		assert session.event_bus.handlers.get('TabUpdatedEvent')

		await session.cleanup()

		assert transport.detach_calls == ['TARGET-0001']
		assert not session.event_bus.handlers.get('TabUpdatedEvent')
		assert not session.event_bus.handlers.get('ScreenshotEvent')

	async def test_cleanup_twice_is_harmless(self, session, transport):
		await session.cleanup()
		await session.cleanup()
		assert transport.detach_calls == ['TARGET-0001']


@pytest.mark.parametrize(
	'message, expected',
	[
		('Debugger is not attached to the tab with id: 12.', True),
		('Session with given id not found.', True),
		('No session with given id', True),
		('Target closed', True),
		('Internal error', False),
		('Cannot navigate to invalid URL', False),
	],
)
def test_is_detach_error(message, expected):
	assert is_detach_error(BrowserError(message)) is expected
