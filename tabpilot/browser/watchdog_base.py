"""Base watchdog class for components that react to session lifecycle events."""

import inspect
import time
from typing import TYPE_CHECKING, Any, ClassVar

from bubus import BaseEvent, EventBus
from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
	from tabpilot.browser.session import ProtocolSession

_RED = '\033[91m'
_GREEN = '\033[92m'
_CYAN = '\033[96m'
_RESET = '\033[0m'


class EventSubscription:
	"""Handle for handlers registered on an EventBus, cancel() unregisters all of them."""

	def __init__(self, event_bus: EventBus):
		self.event_bus = event_bus
		self._handlers: list[tuple[str, Any]] = []

	def add(self, event_name: str, handler) -> None:
		self._handlers.append((event_name, handler))

	@property
	def active(self) -> bool:
		return bool(self._handlers)

	@property
	def event_names(self) -> list[str]:
		return [event_name for event_name, _ in self._handlers]

	def cancel(self) -> None:
		for event_name, handler in self._handlers:
			registered = self.event_bus.handlers.get(event_name, [])
			if handler in registered:
				registered.remove(handler)
		self._handlers.clear()

	def __enter__(self) -> 'EventSubscription':
		return self

	def __exit__(self, *exc_info) -> None:
		self.cancel()


def _event_classes() -> dict[str, type[BaseEvent]]:
	from tabpilot.browser import events

	return {
		name: obj
		for name, obj in vars(events).items()
		if inspect.isclass(obj) and issubclass(obj, BaseEvent) and obj is not BaseEvent
	}


class BaseWatchdog(BaseModel):
	"""Base class for all session watchdogs.

	Handlers are discovered by name: a method on_TabUpdatedEvent(self, event)
	is registered for TabUpdatedEvent on the session's bus.
	"""

	model_config = ConfigDict(
		arbitrary_types_allowed=True,  # EventBus and ProtocolSession are plain objects
		extra='forbid',
		validate_assignment=False,
		revalidate_instances='never',  # keep private state intact when passed around
	)

	# Declared for readers, LISTENS_TO is also checked against the discovered handlers
	LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = []
	EMITS: ClassVar[list[type[BaseEvent[Any]]]] = []

	event_bus: EventBus = Field()
	session: Any = Field()  # ProtocolSession, typed loosely to avoid an import cycle

	@property
	def logger(self):
		return self.session.logger

	@staticmethod
	def attach_handler_to_session(session: 'ProtocolSession', event_class: type[BaseEvent[Any]], handler):
		"""Register one on_<EventName> handler on the session's bus and return the registered wrapper.

		The wrapper logs start, result and duration of every call at debug level and
		gets a unique __name__ so bubus does not flag two watchdogs as duplicates.
		"""
		handler_name = getattr(handler, '__name__', '')
		assert handler_name == f'on_{event_class.__name__}', (
			f'Handler {handler_name} must be named on_{event_class.__name__}'
		)

		owner = getattr(handler, '__self__', None)
		owner_name = type(owner).__name__ if owner is not None else 'Unknown'

		async def logged_handler(event):
			label = f'[{owner_name}.{handler_name}(#{event.event_id[-4:]})]'.ljust(54)
			started = time.time()
			session.logger.debug(f'{_CYAN}🚌 {label} ⏳ Starting...{_RESET}')
			try:
				result = await handler(event)
			except Exception as e:
				session.logger.error(
					f'{_RED}🚌 {label} ❌ Failed ({time.time() - started:.2f}s): {type(e).__name__}: {e}{_RESET}'
				)
				raise
			returned = '' if result is None else f' ➡️ <{type(result).__name__}>'
			session.logger.debug(f'{_GREEN}🚌 {label} ✅ Succeeded ({time.time() - started:.2f}s){_RESET}{returned}')
			return result

		logged_handler.__name__ = f'{owner_name}.{handler_name}'

		already_registered = [getattr(h, '__name__', None) for h in session.event_bus.handlers.get(event_class.__name__, [])]
		if logged_handler.__name__ in already_registered:
			raise RuntimeError(
				f'[{owner_name}] {logged_handler.__name__} is already registered for {event_class.__name__}, '
				f'was attach_to_session() called twice?'
			)

		session.event_bus.on(event_class, logged_handler)
		return logged_handler

	def attach_to_session(self) -> EventSubscription:
		"""Register every on_<EventName> method on the session's bus.

		Returns a subscription handle, cancelling it unregisters the handlers again.
		"""
		assert self.session is not None, 'Watchdog is not bound to a session'

		subscription = EventSubscription(self.event_bus)
		for event_name, event_class in _event_classes().items():
			method = getattr(self, f'on_{event_name}', None)
			if not callable(method):
				continue
			if self.LISTENS_TO:
				assert event_class in self.LISTENS_TO, (
					f'[{type(self).__name__}] on_{event_name} is not declared in LISTENS_TO'
				)
			subscription.add(event_name, self.attach_handler_to_session(self.session, event_class, method))

		missing = [e.__name__ for e in self.LISTENS_TO if e.__name__ not in subscription.event_names]
		if missing:
			self.logger.warning(f'[{type(self).__name__}] LISTENS_TO declares {missing} but has no handler for them')

		return subscription
