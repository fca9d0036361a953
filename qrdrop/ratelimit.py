import time
import math
from typing import Callable, Dict

from qrdrop.constants import DEFAULT_RATE_LIMIT, DEFAULT_RATE_LIMIT_WINDOW


class RateLimitEntry:
	def __init__(self, count:int, reset_at:float):
		self.count = count
		self.reset_at = reset_at

class RateLimiter:
	"""
	Fixed-window request counter keyed by client IP.
	All access happens on the event loop thread, check() never awaits so the
	check-and-increment is atomic with respect to other requests.
	"""
	def __init__(self, max_requests:int = DEFAULT_RATE_LIMIT, window:float = DEFAULT_RATE_LIMIT_WINDOW, clock:Callable[[], float] = time.monotonic):
		self.max_requests = max_requests
		self.window = window
		self.clock = clock
		self.entries:Dict[str, RateLimitEntry] = {}

	def check(self, key:str) -> bool:
		now = self.clock()
		entry = self.entries.get(key)
		if entry is None or now > entry.reset_at:
			self.entries[key] = RateLimitEntry(1, now + self.window)
			return True
		if entry.count >= self.max_requests:
			return False
		entry.count += 1
		return True

	def remaining(self, key:str) -> int:
		entry = self.entries.get(key)
		if entry is None or self.clock() > entry.reset_at:
			return self.max_requests
		return max(0, self.max_requests - entry.count)

	def reset_in(self, key:str) -> float:
		"""Seconds until the window of this key resets, 0 if there is no active window."""
		entry = self.entries.get(key)
		if entry is None:
			return 0
		return max(0, entry.reset_at - self.clock())

	def reset_in_seconds(self, key:str) -> int:
		return int(math.ceil(self.reset_in(key)))

	def cleanup(self) -> int:
		now = self.clock()
		expired = [key for key, entry in self.entries.items() if now > entry.reset_at]
		for key in expired:
			del self.entries[key]
		return len(expired)

	def clear(self):
		self.entries.clear()

	def __len__(self):
		return len(self.entries)
