"""Event definitions for tab lifecycle, screenshots and companion UI communication."""

from typing import Any, Literal

from bubus import BaseEvent

# ============================================================================
# Transport -> ProtocolSession Events (remote tab lifecycle)
# ============================================================================


class TabUpdatedEvent(BaseEvent):
	"""A tab started loading, finished loading, or changed URL."""

	target_id: str
	status: Literal['loading', 'complete'] | None = None
	url: str | None = None

	event_timeout: float | None = 15.0  # seconds


class TabActivatedEvent(BaseEvent):
	"""A tab was brought to the foreground."""

	target_id: str

	event_timeout: float | None = 15.0  # seconds


class TargetDetachedEvent(BaseEvent):
	"""The protocol session for a target was detached by the remote side."""

	target_id: str
	reason: str = 'unknown'  # e.g. target_closed, canceled_by_user, replaced_with_devtools

	event_timeout: float | None = 15.0  # seconds


class TabClosedEvent(BaseEvent):
	"""A tab was closed."""

	target_id: str

	event_timeout: float | None = 10.0  # seconds


# ============================================================================
# ProtocolSession -> Observers
# ============================================================================


class SessionAttachedEvent(BaseEvent):
	"""The session finished attaching to a target and passed the liveness probe."""

	target_id: str
	url: str = ''


class SessionDetachedEvent(BaseEvent):
	"""The session is no longer attached to its target."""

	target_id: str
	reason: str = 'unknown'


class AgentFocusChangedEvent(BaseEvent):
	"""The session now controls a different tab."""

	target_id: str
	url: str = ''


# ============================================================================
# AgentLoop -> ScreenshotWatchdog
# ============================================================================


class ScreenshotEvent(BaseEvent[str]):
	"""Request to capture, normalize and return a base64 PNG of the viewport."""

	event_timeout: float | None = 30.0  # seconds, covers capture retries


# ============================================================================
# AgentLoop -> Companion UI
# ============================================================================


class AgentMessageEvent(BaseEvent):
	"""A message for the companion UI (assistant text, action summary, run finished, error)."""

	type: Literal['text', 'action', 'finish', 'error']
	content: str = ''
	action: dict[str, Any] | None = None


class AutopilotCueEvent(BaseEvent[bool]):
	"""Tell the companion UI an action is about to run. Handlers may return False to signal no acknowledgement."""

	action: dict[str, Any]

	event_timeout: float | None = 10.0  # seconds


class CopilotCueEvent(BaseEvent):
	"""Ask the human operator to perform an action by hand."""

	action: dict[str, Any]
	action_name: str


class CopilotDoneEvent(BaseEvent):
	"""The human operator finished the action announced by a CopilotCueEvent."""

	action_name: str
