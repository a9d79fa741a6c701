import logging
import random
import time
from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any, ParamSpec, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec('P')
R = TypeVar('R')

SLOW_CALL_THRESHOLD = 0.25  # seconds


def _owner_logger(args: tuple, kwargs: dict) -> logging.Logger:
	"""Prefer the instance logger of the decorated method (or of a session kwarg) so slow calls are attributed."""
	for candidate in (args[0] if args else None, kwargs.get('session')):
		candidate_logger = getattr(candidate, 'logger', None)
		if isinstance(candidate_logger, logging.Logger):
			return candidate_logger
	return logger


def time_execution_async(
	additional_text: str = '',
) -> Callable[[Callable[P, Coroutine[Any, Any, R]]], Callable[P, Coroutine[Any, Any, R]]]:
	"""Log coroutines that take longer than SLOW_CALL_THRESHOLD at debug level."""

	def decorator(func: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, Coroutine[Any, Any, R]]:
		label = additional_text.strip('-') or func.__name__

		@wraps(func)
		async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
			started = time.time()
			try:
				return await func(*args, **kwargs)
			finally:
				elapsed = time.time() - started
				if elapsed > SLOW_CALL_THRESHOLD:
					_owner_logger(args, kwargs).debug(f'⏳ {label}() took {elapsed:.2f}s')

		return wrapper

	return decorator


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
	"""Exponential backoff with full jitter, attempt counts from 0."""
	ceiling = min(max_delay, base_delay * (2**attempt))
	return random.uniform(0, ceiling)


def log_pretty_url(url: str, max_len: int | None = 22) -> str:
	"""Shorten a URL for log lines: drop the scheme and www., truncate with an ellipsis."""
	for prefix in ('https://', 'http://'):
		if url.startswith(prefix):
			url = url[len(prefix) :]
			break
	url = url.removeprefix('www.')
	if max_len is not None and len(url) > max_len:
		return url[:max_len] + '…'
	return url
