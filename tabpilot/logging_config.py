import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from tabpilot.config import CONFIG

RESULT_LEVEL = 35  # between WARNING and ERROR, used for run summaries

CONSOLE_FORMAT = '%(levelname)-8s [%(name)s] %(message)s'
FILE_FORMAT = '%(asctime)s - %(levelname)-8s [%(name)s] %(message)s'

# Loggers that only get a say at ERROR and above
QUIET_LOGGERS = (
	'httpx',
	'httpcore',
	'asyncio',
	'websockets',
	'PIL.Image',
	'PIL.PngImagePlugin',
)
CDP_LOGGERS = ('websockets.client', 'cdp_use', 'cdp_use.client', 'cdp_use.cdp', 'cdp_use.cdp.registry')


def addLoggingLevel(levelName: str, levelNum: int, methodName: str | None = None) -> None:
	"""Register a custom level on the logging module and the logger class, e.g. logger.result(...).

	Raises AttributeError if the level or method name is already taken.
	"""
	methodName = methodName or levelName.lower()
	for owner, attr in ((logging, levelName), (logging, methodName), (logging.getLoggerClass(), methodName)):
		if hasattr(owner, attr):
			raise AttributeError(f'{attr} already defined on {getattr(owner, "__name__", owner)}')

	def logForLevel(self, message, *args, **kwargs):
		if self.isEnabledFor(levelNum):
			self._log(levelNum, message, args, **kwargs)

	def logToRoot(message, *args, **kwargs):
		logging.log(levelNum, message, *args, **kwargs)

	logging.addLevelName(levelNum, levelName)
	setattr(logging, levelName, levelNum)
	setattr(logging.getLoggerClass(), methodName, logForLevel)
	setattr(logging, methodName, logToRoot)


class TabPilotFormatter(logging.Formatter):
	"""Shortens per-instance logger names (tabpilot.AgentLoop🅐 1a2b on ...) unless debugging."""

	SHORT_NAMES = ('AgentLoop', 'ProtocolSession')

	def __init__(self, fmt: str, log_level: int):
		super().__init__(fmt)
		self.log_level = log_level

	def format(self, record: logging.LogRecord) -> str:
		if self.log_level > logging.DEBUG and record.name.startswith('tabpilot.'):
			short = next((name for name in self.SHORT_NAMES if name in record.name), None)
			record.name = short or record.name.rsplit('.', 1)[-1]
		return super().format(record)


def _level_for(log_type: str) -> int:
	return {'result': RESULT_LEVEL, 'debug': logging.DEBUG}.get(log_type, logging.INFO)


def _file_handler(path: str, level: int) -> logging.Handler:
	handler = logging.FileHandler(path, encoding='utf-8')
	handler.setLevel(level)
	handler.setFormatter(TabPilotFormatter(FILE_FORMAT, level))
	return handler


def _route(logger_name: str, handlers: list[logging.Handler], level: int) -> logging.Logger:
	"""Send a logger straight to our handlers instead of through the root logger."""
	target = logging.getLogger(logger_name)
	target.propagate = False
	target.handlers = list(handlers)
	target.setLevel(level)
	return target


def setup_logging(stream=None, log_level=None, force_setup=False, debug_log_file=None, info_log_file=None):
	"""Setup logging configuration for tabpilot.

	Args:
		stream: Output stream for logs (default: sys.stdout)
		log_level: 'debug', 'info' or 'result' (default: CONFIG.TABPILOT_LOGGING_LEVEL)
		force_setup: Reconfigure even if the root logger already has handlers
		debug_log_file: Optional file receiving everything from DEBUG up
		info_log_file: Optional file receiving everything from INFO up
	"""
	try:
		addLoggingLevel('RESULT', RESULT_LEVEL)
	except AttributeError:
		pass  # already registered by an earlier call

	if logging.getLogger().hasHandlers() and not force_setup:
		return logging.getLogger('tabpilot')

	log_type = (log_level or CONFIG.TABPILOT_LOGGING_LEVEL).lower()
	level = _level_for(log_type)

	console = logging.StreamHandler(stream or sys.stdout)
	console.setLevel(level)
	console.setFormatter(TabPilotFormatter('%(message)s' if log_type == 'result' else CONSOLE_FORMAT, level))

	handlers: list[logging.Handler] = [console]
	if debug_log_file:
		handlers.append(_file_handler(debug_log_file, logging.DEBUG))
	if info_log_file:
		handlers.append(_file_handler(info_log_file, logging.INFO))

	# a debug file wants debug records even when the console is quieter
	effective_level = logging.DEBUG if debug_log_file else level

	root = logging.getLogger()
	root.handlers = list(handlers)
	root.setLevel(effective_level)

	tabpilot_logger = _route('tabpilot', handlers, effective_level)
	# bubus narrates every handler call at DEBUG
	_route('bubus', handlers, logging.INFO if log_type == 'result' else effective_level)

	cdp_level = logging.getLevelName(CONFIG.CDP_LOGGING_LEVEL.upper())
	if not isinstance(cdp_level, int):
		cdp_level = logging.WARNING
	for logger_name in CDP_LOGGERS:
		_route(logger_name, [console], cdp_level)

	for logger_name in QUIET_LOGGERS:
		quiet = logging.getLogger(logger_name)
		quiet.setLevel(logging.ERROR)
		quiet.propagate = False

	return tabpilot_logger
