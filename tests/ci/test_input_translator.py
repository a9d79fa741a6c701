"""Tests for translating abstract actions into Input.* protocol events."""

import asyncio

import pytest

from tabpilot.input.coordinates import CoordinateFrame
from tabpilot.input.translator import CURSOR_POSITION_TEXT, MOUSE_DOWN_UP_TEXT, InputTranslator
from tabpilot.input.views import ActionDescriptor, InputTimings


@pytest.fixture
def translator(session, identity_frame, instant_timings) -> InputTranslator:
	session.coordinate_mapper.update(identity_frame)
	return InputTranslator(session, timings=instant_timings)


def _action(name: str, **params) -> ActionDescriptor:
	return ActionDescriptor(name=name, params=params)


class TestMouse:
	async def test_left_click(self, translator, transport):
		result = await translator.execute(_action('left_click', coordinate=[100, 200]))

		assert result.success
		assert [(e['type'], e['x'], e['y'], e['button'], e['clickCount']) for e in transport.mouse_events()] == [
			('mousePressed', 100, 200, 'left', 1),
			('mouseReleased', 100, 200, 'left', 1),
		]

	async def test_right_and_middle_click(self, translator, transport):
		await translator.execute(_action('right_click', coordinate=[1, 2]))
		await translator.execute(_action('middle_click', coordinate=[3, 4]))
		assert [e['button'] for e in transport.mouse_events()] == ['right', 'right', 'middle', 'middle']

	async def test_click_coordinates_are_mapped(self, session, translator, transport):
		session.coordinate_mapper.update(
			CoordinateFrame(capture_width=1280, capture_height=800, padding_top=80, scale_x=1.25, scale_y=1.25)
		)
		await translator.execute(_action('left_click', coordinate=[512, 384]))
		assert {(e['x'], e['y']) for e in transport.mouse_events()} == {(640, 400)}

	async def test_convert_coordinates_returns_a_copy(self, session, translator):
		session.coordinate_mapper.update(CoordinateFrame(capture_width=2000, capture_height=2000, scale_x=2, scale_y=2))
		action = _action('left_click_drag', start_coordinate=[10, 10], coordinate=[20, 30])

		native = translator.convert_coordinates(action)

		assert native.params == {'start_coordinate': [20, 20], 'coordinate': [40, 60]}
		assert action.params == {'start_coordinate': [10, 10], 'coordinate': [20, 30]}

	async def test_double_and_triple_click_counts(self, translator, transport):
		await translator.execute(_action('double_click', coordinate=[5, 5]))
		assert [(e['type'], e['clickCount']) for e in transport.mouse_events()] == [
			('mousePressed', 1),
			('mouseReleased', 1),
			('mousePressed', 2),
			('mouseReleased', 2),
		]

		transport.sent.clear()
		await translator.execute(_action('triple_click', coordinate=[5, 5]))
		assert [e['clickCount'] for e in transport.mouse_events()] == [1, 1, 2, 2, 3, 3]

	async def test_mouse_move(self, translator, transport):
		await translator.execute(_action('mouse_move', coordinate=[50, 60]))
		assert transport.mouse_events() == [{'type': 'mouseMoved', 'x': 50, 'y': 60, 'button': 'none', 'clickCount': 0}]

	async def test_left_click_drag_interpolates(self, translator, transport):
		await translator.execute(_action('left_click_drag', start_coordinate=[0, 0], coordinate=[100, 50]))

		events = transport.mouse_events()
		assert events[0]['type'] == 'mousePressed'
		assert (events[0]['x'], events[0]['y']) == (0, 0)
		moves = [e for e in events if e['type'] == 'mouseMoved']
		assert len(moves) == 10
		assert (moves[0]['x'], moves[0]['y']) == (10, 5)
		assert (moves[-1]['x'], moves[-1]['y']) == (100, 50)
		assert events[-1]['type'] == 'mouseReleased'
		assert (events[-1]['x'], events[-1]['y']) == (100, 50)

	async def test_scroll_splits_total_delta(self, translator, transport):
		result = await translator.execute(_action('scroll', coordinate=[10, 10], scroll_direction='down', scroll_amount=3))

		assert result.success
		wheels = transport.mouse_events()
		assert [e['type'] for e in wheels] == ['mouseWheel'] * 3
		assert sum(e['deltaY'] for e in wheels) == 300
		assert all(e['deltaX'] == 0 for e in wheels)

	async def test_scroll_left_is_negative_x(self, translator, transport):
		await translator.execute(_action('scroll', coordinate=[10, 10], scroll_direction='left'))
		assert [(e['deltaX'], e['deltaY']) for e in transport.mouse_events()] == [(-100, 0)]

	@pytest.mark.parametrize(
		'params, error',
		[
			({'coordinate': [1, 1], 'scroll_direction': 'sideways'}, 'Invalid scroll direction'),
			({'coordinate': [1, 1], 'scroll_direction': 'up', 'scroll_amount': 0}, 'Invalid scroll_amount'),
			({'scroll_direction': 'up'}, 'requires a coordinate'),
		],
	)
	async def test_scroll_validation(self, translator, transport, params, error):
		result = await translator.execute(_action('scroll', **params))
		assert not result.success
		assert error in result.error
		assert transport.mouse_events() == []

	async def test_missing_coordinate_sends_nothing(self, translator, transport):
		result = await translator.execute(_action('left_click'))
		assert not result.success
		assert transport.input_calls() == []

	async def test_click_before_any_screenshot_fails(self, session, transport, instant_timings):
		translator = InputTranslator(session, timings=instant_timings)
		result = await translator.execute(_action('left_click', coordinate=[1, 1]))
		assert not result.success
		assert 'screenshot' in result.error
		assert transport.input_calls() == []


class TestKeyboard:
	async def test_type_inserts_text(self, translator, transport):
		await translator.execute(_action('type', text='hello world'))
		assert transport.input_calls() == [('Input.insertText', {'text': 'hello world'})]

	async def test_key_combo_presses_modifiers_around_main_key(self, translator, transport):
		await translator.execute(_action('key', text='ctrl+c'))

		events = transport.key_events()
		assert [(e['type'], e['key'], e['modifiers']) for e in events] == [
			('keyDown', 'Control', 2),
			('keyDown', 'c', 2),
			('keyUp', 'c', 2),
			('keyUp', 'Control', 2),
		]
		assert events[1]['windowsVirtualKeyCode'] == 67
		assert events[1]['code'] == 'KeyC'

	async def test_plain_printable_key_sends_char(self, translator, transport):
		await translator.execute(_action('key', text='Return'))
		assert [e['type'] for e in transport.key_events()] == ['keyDown', 'char', 'keyUp']
		assert transport.key_events()[1]['text'] == '\r'

	async def test_only_first_main_key_is_pressed(self, translator, transport):
		await translator.execute(_action('key', text='a+b'))
		assert {e['key'] for e in transport.key_events()} == {'a'}

	async def test_short_hold_sends_single_down_and_up(self, translator, transport):
		await translator.execute(_action('hold_key', text='shift+a', duration=0.1))

		main_key_events = [e['type'] for e in transport.key_events() if e['key'] == 'a']
		assert main_key_events == ['keyDown', 'keyUp']

	async def test_long_hold_auto_repeats(self, session, transport):
		timings = InputTimings.instant().model_copy(update={'hold_key_initial_delay': 0.0625, 'hold_key_repeat_interval': 0.03125})
		translator = InputTranslator(session, timings=timings)

		await translator.execute(_action('hold_key', text='down', duration=0.25))

		events = transport.key_events()
		downs = [e for e in events if e['type'] == 'keyDown']
		assert len(downs) == 1 + 6
		assert all(e.get('autoRepeat') for e in downs[1:])
		assert [e['type'] for e in events].count('keyUp') == 1

	async def test_key_requires_text(self, translator, transport):
		result = await translator.execute(_action('key'))
		assert not result.success
		assert transport.input_calls() == []

	async def test_unknown_keys_are_rejected(self, translator, transport):
		result = await translator.execute(_action('key', text='hyper'))
		assert not result.success
		assert transport.input_calls() == []


class TestNoInputVerbs:
	async def test_cursor_position_is_advisory_text(self, translator, transport):
		result = await translator.execute(_action('cursor_position'))
		assert result.text == CURSOR_POSITION_TEXT
		assert transport.input_calls() == []

	@pytest.mark.parametrize('name', ['left_mouse_down', 'left_mouse_up'])
	async def test_mouse_down_up_is_refused_with_text(self, translator, transport, name):
		result = await translator.execute(_action(name))
		assert result.success
		assert result.text == MOUSE_DOWN_UP_TEXT
		assert transport.input_calls() == []

	async def test_wait_sleeps_half_the_duration(self, translator):
		loop = asyncio.get_running_loop()
		start = loop.time()
		result = await translator.execute(_action('wait', duration=0.1))
		assert result.success
		assert loop.time() - start >= 0.04

	async def test_unknown_action_is_a_logged_no_op(self, translator, transport):
		result = await translator.execute(_action('teleport', coordinate=[1, 1]))
		assert result.success
		assert transport.input_calls() == []


class TestSerialization:
	async def test_concurrent_actions_do_not_interleave(self, translator, transport):
		await asyncio.gather(
			translator.execute(_action('double_click', coordinate=[1, 1])),
			translator.execute(_action('key', text='ctrl+a')),
		)

		methods = [m for m, _ in transport.input_calls()]
		assert methods == ['Input.dispatchMouseEvent'] * 4 + ['Input.dispatchKeyEvent'] * 4
