"""Parse textual key combos such as "ctrl+shift+a" into key event descriptors."""

import re

from pydantic import BaseModel, ConfigDict

# CDP Input.dispatchKeyEvent modifier bit masks
MODIFIER_ALT = 1
MODIFIER_CTRL = 2
MODIFIER_META = 4
MODIFIER_SHIFT = 8


class KeyDescriptor(BaseModel):
	"""Everything Input.dispatchKeyEvent needs to know about one key"""

	model_config = ConfigDict(frozen=True)

	key: str
	code: str
	key_code: int
	text: str | None = None
	is_modifier: bool = False
	modifier_bit: int = 0
	# combined mask of every modifier in the combo, set on non-modifier keys only
	modifiers: int = 0

	@property
	def is_printable(self) -> bool:
		return bool(self.text)


class KeyCombo(BaseModel):
	model_config = ConfigDict(frozen=True)

	keys: list[KeyDescriptor]

	@property
	def modifiers(self) -> list[KeyDescriptor]:
		return [k for k in self.keys if k.is_modifier]

	@property
	def main_keys(self) -> list[KeyDescriptor]:
		return [k for k in self.keys if not k.is_modifier]

	@property
	def main_key(self) -> KeyDescriptor | None:
		"""Only the first non-modifier key is ever dispatched."""
		main_keys = self.main_keys
		return main_keys[0] if main_keys else None

	@property
	def modifier_mask(self) -> int:
		mask = 0
		for key in self.modifiers:
			mask |= key.modifier_bit
		return mask


def _modifier(key: str, code: str, key_code: int, bit: int) -> KeyDescriptor:
	return KeyDescriptor(key=key, code=code, key_code=key_code, is_modifier=True, modifier_bit=bit)


_CTRL = _modifier('Control', 'ControlLeft', 17, MODIFIER_CTRL)
_ALT = _modifier('Alt', 'AltLeft', 18, MODIFIER_ALT)
_SHIFT = _modifier('Shift', 'ShiftLeft', 16, MODIFIER_SHIFT)
_META = _modifier('Meta', 'MetaLeft', 91, MODIFIER_META)

_ENTER = KeyDescriptor(key='Enter', code='Enter', key_code=13, text='\r')
_DELETE = KeyDescriptor(key='Delete', code='Delete', key_code=46)
_ESCAPE = KeyDescriptor(key='Escape', code='Escape', key_code=27)
_INSERT = KeyDescriptor(key='Insert', code='Insert', key_code=45)

KEY_TABLE: dict[str, KeyDescriptor] = {
	# modifiers
	'ctrl': _CTRL,
	'control': _CTRL,
	'alt': _ALT,
	'option': _ALT,
	'shift': _SHIFT,
	'meta': _META,
	'cmd': _META,
	'command': _META,
	'win': _META,
	'super': _META,
	# editing
	'enter': _ENTER,
	'return': _ENTER,
	'tab': KeyDescriptor(key='Tab', code='Tab', key_code=9, text='\t'),
	'space': KeyDescriptor(key=' ', code='Space', key_code=32, text=' '),
	'backspace': KeyDescriptor(key='Backspace', code='Backspace', key_code=8),
	'delete': _DELETE,
	'del': _DELETE,
	'escape': _ESCAPE,
	'esc': _ESCAPE,
	# navigation
	'up': KeyDescriptor(key='ArrowUp', code='ArrowUp', key_code=38),
	'down': KeyDescriptor(key='ArrowDown', code='ArrowDown', key_code=40),
	'left': KeyDescriptor(key='ArrowLeft', code='ArrowLeft', key_code=37),
	'right': KeyDescriptor(key='ArrowRight', code='ArrowRight', key_code=39),
	'home': KeyDescriptor(key='Home', code='Home', key_code=36),
	'end': KeyDescriptor(key='End', code='End', key_code=35),
	'pageup': KeyDescriptor(key='PageUp', code='PageUp', key_code=33),
	'pagedown': KeyDescriptor(key='PageDown', code='PageDown', key_code=34),
	'insert': _INSERT,
	'ins': _INSERT,
	# punctuation
	';': KeyDescriptor(key=';', code='Semicolon', key_code=186, text=';'),
	'=': KeyDescriptor(key='=', code='Equal', key_code=187, text='='),
	',': KeyDescriptor(key=',', code='Comma', key_code=188, text=','),
	'.': KeyDescriptor(key='.', code='Period', key_code=190, text='.'),
	'/': KeyDescriptor(key='/', code='Slash', key_code=191, text='/'),
	'`': KeyDescriptor(key='`', code='Backquote', key_code=192, text='`'),
	'[': KeyDescriptor(key='[', code='BracketLeft', key_code=219, text='['),
	'\\': KeyDescriptor(key='\\', code='Backslash', key_code=220, text='\\'),
	']': KeyDescriptor(key=']', code='BracketRight', key_code=221, text=']'),
	"'": KeyDescriptor(key="'", code='Quote', key_code=222, text="'"),
}
KEY_TABLE.update({f'f{n}': KeyDescriptor(key=f'F{n}', code=f'F{n}', key_code=111 + n) for n in range(1, 13)})

# '-' doubles as a separator, so it can only be reached through its name
KEY_TABLE['minus'] = KeyDescriptor(key='-', code='Minus', key_code=189, text='-')
KEY_TABLE['plus'] = KeyDescriptor(key='+', code='Equal', key_code=187, text='+')

_SEPARATORS = re.compile(r'[+\-]')


def _synthesize(char: str) -> KeyDescriptor:
	upper = char.upper()
	if char.isalpha():
		code = f'Key{upper}'
	elif char.isdigit():
		code = f'Digit{char}'
	else:
		code = ''
	return KeyDescriptor(key=char, code=code, key_code=ord(upper), text=char)


def parse_key_combo(combo: str) -> KeyCombo:
	"""Turn "ctrl+shift+a" style text into a KeyCombo.

	Tokens are split on '+' and '-', trimmed and lower-cased. Unknown single
	characters are synthesized, unknown longer tokens are dropped.
	"""
	descriptors: list[KeyDescriptor] = []
	for raw in _SEPARATORS.split(combo):
		token = raw.strip().lower()
		if not token:
			continue
		if token in KEY_TABLE:
			descriptors.append(KEY_TABLE[token])
		elif len(token) == 1:
			descriptors.append(_synthesize(token))

	mask = 0
	for descriptor in descriptors:
		mask |= descriptor.modifier_bit
	return KeyCombo(keys=[d if d.is_modifier else d.model_copy(update={'modifiers': mask}) for d in descriptors])
