from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
	"""
	Process-wide gate in front of the language model.

	One call at a time, at least ``min_interval`` seconds between call starts,
	and at most ``reservoir`` calls per ``refresh_interval`` window. Callers that
	hit a limit wait in line; nothing is rejected.

	Usage:
		async with limiter:
			reply = await model.generate(prompt)
	"""

	def __init__(self, min_interval: float = 1.0, reservoir: int = 30, refresh_interval: float = 60.0) -> None:
		if reservoir < 1:
			raise ValueError("reservoir must be at least 1")
		self.min_interval = min_interval
		self.reservoir = reservoir
		self.refresh_interval = refresh_interval
		self._remaining = reservoir
		self._window_start: Optional[float] = None
		self._last_start: Optional[float] = None
		self._lock = asyncio.Lock()

	@property
	def remaining(self) -> int:
		return self._remaining

	def _refill(self, now: float) -> None:
		if self._window_start is None or now - self._window_start >= self.refresh_interval:
			self._window_start = now
			self._remaining = self.reservoir

	async def acquire(self) -> None:
		await self._lock.acquire()
		try:
			loop = asyncio.get_running_loop()
			self._refill(loop.time())
			while self._remaining <= 0:
				wait = self.refresh_interval - (loop.time() - self._window_start)
				logger.info("LLM quota exhausted, waiting %.1fs for refill", max(wait, 0.0))
				await asyncio.sleep(max(wait, 0.0))
				self._refill(loop.time())
			if self._last_start is not None:
				gap = self.min_interval - (loop.time() - self._last_start)
				if gap > 0:
					await asyncio.sleep(gap)
			self._remaining -= 1
			self._last_start = loop.time()
		except BaseException:
			self._lock.release()
			raise

	def release(self) -> None:
		self._lock.release()

	async def __aenter__(self) -> "RateLimiter":
		await self.acquire()
		return self

	async def __aexit__(self, *exc_info: Any) -> None:
		self.release()

	async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
		async with self:
			return await fn(*args, **kwargs)
