import os
from typing import TYPE_CHECKING

from tabpilot.logging_config import setup_logging

# Set TABPILOT_SETUP_LOGGING=false to leave logging to the host application
if os.environ.get('TABPILOT_SETUP_LOGGING', 'true').lower() != 'false':
	logger = setup_logging()
else:
	import logging

	logger = logging.getLogger('tabpilot')

# Type stubs for lazy imports
if TYPE_CHECKING:
	from tabpilot.agent.companion import CompanionChannel, EventBusCompanion
	from tabpilot.agent.policy import PolicyProvider, ScriptedPolicy
	from tabpilot.agent.service import AgentLoop
	from tabpilot.agent.views import ActionResult, AgentSettings, CancellationToken
	from tabpilot.browser.action_queue import ActionQueue
	from tabpilot.browser.session import ProtocolSession
	from tabpilot.browser.transport import CDPClientTransport, CDPTransport
	from tabpilot.input.coordinates import CoordinateFrame, CoordinateMapper
	from tabpilot.input.keys import parse_key_combo
	from tabpilot.input.translator import InputTranslator
	from tabpilot.input.views import ActionDescriptor


# Lazy imports mapping, the agent/browser stack pulls in cdp_use, bubus and Pillow
_LAZY_IMPORTS = {
	'AgentLoop': ('tabpilot.agent.service', 'AgentLoop'),
	'AgentSettings': ('tabpilot.agent.views', 'AgentSettings'),
	'ActionResult': ('tabpilot.agent.views', 'ActionResult'),
	'CancellationToken': ('tabpilot.agent.views', 'CancellationToken'),
	'PolicyProvider': ('tabpilot.agent.policy', 'PolicyProvider'),
	'ScriptedPolicy': ('tabpilot.agent.policy', 'ScriptedPolicy'),
	'CompanionChannel': ('tabpilot.agent.companion', 'CompanionChannel'),
	'EventBusCompanion': ('tabpilot.agent.companion', 'EventBusCompanion'),
	'ProtocolSession': ('tabpilot.browser.session', 'ProtocolSession'),
	'ActionQueue': ('tabpilot.browser.action_queue', 'ActionQueue'),
	'CDPTransport': ('tabpilot.browser.transport', 'CDPTransport'),
	'CDPClientTransport': ('tabpilot.browser.transport', 'CDPClientTransport'),
	'InputTranslator': ('tabpilot.input.translator', 'InputTranslator'),
	'ActionDescriptor': ('tabpilot.input.views', 'ActionDescriptor'),
	'CoordinateFrame': ('tabpilot.input.coordinates', 'CoordinateFrame'),
	'CoordinateMapper': ('tabpilot.input.coordinates', 'CoordinateMapper'),
	'parse_key_combo': ('tabpilot.input.keys', 'parse_key_combo'),
}


def __getattr__(name: str):
	"""Lazy import mechanism, modules are imported on first attribute access."""
	if name in _LAZY_IMPORTS:
		module_path, attr_name = _LAZY_IMPORTS[name]
		try:
			from importlib import import_module

			module = import_module(module_path)
			attr = getattr(module, attr_name)
			# Cache the imported attribute in the module's globals
			globals()[name] = attr
			return attr
		except ImportError as e:
			raise ImportError(f'Failed to import {name} from {module_path}: {e}') from e

	raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
	'AgentLoop',
	'AgentSettings',
	'ActionResult',
	'CancellationToken',
	'PolicyProvider',
	'ScriptedPolicy',
	'CompanionChannel',
	'EventBusCompanion',
	'ProtocolSession',
	'ActionQueue',
	'CDPTransport',
	'CDPClientTransport',
	'InputTranslator',
	'ActionDescriptor',
	'CoordinateFrame',
	'CoordinateMapper',
	'parse_key_combo',
]
