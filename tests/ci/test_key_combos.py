"""Tests for parsing textual key combos into key event descriptors."""

import pytest

from tabpilot.input.keys import (
	MODIFIER_ALT,
	MODIFIER_CTRL,
	MODIFIER_META,
	MODIFIER_SHIFT,
	parse_key_combo,
)


class TestParseKeyCombo:
	def test_ctrl_shift_letter(self):
		combo = parse_key_combo('ctrl+shift+a')

		assert [k.key for k in combo.modifiers] == ['Control', 'Shift']
		assert combo.modifier_mask == MODIFIER_CTRL | MODIFIER_SHIFT == 10
		assert combo.main_key is not None
		assert combo.main_key.key == 'a'
		assert combo.main_key.code == 'KeyA'
		assert combo.main_key.key_code == 65
		# the combined mask travels with the non-modifier key
		assert combo.main_key.modifiers == 10

	def test_dash_separator_and_whitespace(self):
		combo = parse_key_combo(' Ctrl - Alt - Delete ')

		assert combo.modifier_mask == MODIFIER_CTRL | MODIFIER_ALT
		assert combo.main_key is not None
		assert combo.main_key.key == 'Delete'
		assert combo.main_key.key_code == 46

	@pytest.mark.parametrize(
		'alias, expected_bit',
		[
			('cmd', MODIFIER_META),
			('command', MODIFIER_META),
			('super', MODIFIER_META),
			('option', MODIFIER_ALT),
			('control', MODIFIER_CTRL),
		],
	)
	def test_modifier_aliases(self, alias, expected_bit):
		combo = parse_key_combo(f'{alias}+c')
		assert combo.modifier_mask == expected_bit

	def test_named_keys(self):
		assert parse_key_combo('Return').main_key.key == 'Enter'
		assert parse_key_combo('esc').main_key.key == 'Escape'
		assert parse_key_combo('pagedown').main_key.key_code == 34
		assert parse_key_combo('f5').main_key.key_code == 116
		assert parse_key_combo('f12').main_key.key == 'F12'

	def test_digits_are_synthesized(self):
		key = parse_key_combo('7').main_key
		assert key.code == 'Digit7'
		assert key.key_code == ord('7')
		assert key.text == '7'

	def test_enter_is_printable_arrows_are_not(self):
		assert parse_key_combo('enter').main_key.is_printable
		assert not parse_key_combo('up').main_key.is_printable

	def test_unknown_multi_character_tokens_are_dropped(self):
		combo = parse_key_combo('ctrl+nonsense+b')
		assert [k.key for k in combo.keys] == ['Control', 'b']

	def test_only_first_main_key_is_main(self):
		combo = parse_key_combo('ctrl+a+b')
		assert [k.key for k in combo.main_keys] == ['a', 'b']
		assert combo.main_key.key == 'a'

	def test_modifiers_only(self):
		combo = parse_key_combo('shift')
		assert combo.main_key is None
		assert combo.modifier_mask == MODIFIER_SHIFT

	def test_empty_combo(self):
		assert parse_key_combo('').keys == []
		assert parse_key_combo('+').keys == []

	def test_minus_by_name(self):
		combo = parse_key_combo('ctrl+minus')
		assert combo.main_key.key == '-'
		assert combo.main_key.code == 'Minus'
