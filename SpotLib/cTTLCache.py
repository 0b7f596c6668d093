#!/usr/bin/python3
'''

	 The MIT License (MIT)

	 Copyright (c) 2015-2025 Mark J Glenn

	 Permission is hereby granted, free of charge, to any person obtaining a copy
	 of this software and associated documentation files (the "Software"), to deal
	 in the Software without restriction, including without limitation the rights
	 to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
	 copies of the Software, and to permit persons to whom the Software is
	 furnished to do so, subject to the following conditions:

	 The above copyright notice and this permission notice shall be included in all
	 copies or substantial portions of the Software.

	 THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
	 IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
	 FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
	 AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
	 LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
	 OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
	 SOFTWARE.

	 Mark Glenn
	 mglenn@cox.net

'''

from __future__ import annotations

import asyncio
import time

from collections.abc import Awaitable, Callable
from dataclasses     import dataclass
from typing          import Any, Generic, TypeVar

from .cLog           import cLog

T = TypeVar('T')

DEFAULT_KEY = ''

@dataclass
class CacheEntry(Generic[T]):
	payload:    T
	fetched_at: float
	ttl:        float

class cTTLCache(Generic[T]):
	'''
		A time-bounded cache with a fixed TTL per instance.  The refresh policy
		lives with the caller (see cCachedSource); the cache only remembers the
		last successful payload and when it arrived.

		Keyed caches are bounded: each set drops the expired entries of other
		keys and, past MaxEntries, the oldest ones.
	'''
	def __init__(self, TTLSeconds: float, Clock: Callable[[], float] = time.monotonic, MaxEntries: int | None = None):
		self.TTLSeconds = TTLSeconds
		self.Clock      = Clock
		self.MaxEntries = MaxEntries
		self._Entries: dict[str, CacheEntry[T]] = {}

	def size(self) -> int:
		return len(self._Entries)

	def get(self, Key: str = DEFAULT_KEY) -> T | None:
		Entry = self._Entries.get(Key)
		return None if Entry is None else Entry.payload

	def entry(self, Key: str = DEFAULT_KEY) -> CacheEntry[T] | None:
		return self._Entries.get(Key)

	def set(self, Key: str, Value: T) -> None:
		# Stamped at completion, never at request start.
		Now = self.Clock()

		for Expired in [K for K, Entry in self._Entries.items() if K != Key and Now - Entry.fetched_at >= Entry.ttl]:
			del self._Entries[Expired]

		self._Entries.pop(Key, None)
		self._Entries[Key] = CacheEntry(payload=Value, fetched_at=Now, ttl=self.TTLSeconds)

		# Insertion order is fetch order, so the first key is the oldest.
		if self.MaxEntries is not None:
			while len(self._Entries) > self.MaxEntries:
				del self._Entries[next(iter(self._Entries))]

	def is_fresh(self, Key: str = DEFAULT_KEY) -> bool:
		Entry = self._Entries.get(Key)

		if Entry is None:
			return False

		return self.Clock() - Entry.fetched_at < Entry.ttl

	def age(self, Key: str = DEFAULT_KEY) -> float | None:
		Entry = self._Entries.get(Key)
		return None if Entry is None else self.Clock() - Entry.fetched_at

class cCachedSource(Generic[T]):
	'''
		Serves a cTTLCache in front of an upstream fetch coroutine.

		Fresh entries are returned without touching the upstream.  Otherwise one
		refresh per key is started and every concurrent caller awaits that same
		task.  A refresh that raises, returns None, or (unless AcceptEmpty)
		returns an empty result is a failure: the previous payload is served
		unchanged, or None if there never was one.
	'''
	def __init__(self, Name: str, Cache: cTTLCache[T], Fetch: Callable[..., Awaitable[T | None]], AcceptEmpty: bool = False):
		self.Name        = Name
		self.Cache       = Cache
		self.Fetch       = Fetch
		self.AcceptEmpty = AcceptEmpty
		self._Lock       = asyncio.Lock()
		self._InFlight: dict[str, asyncio.Task[T | None]] = {}

	async def get_async(self, Key: str = DEFAULT_KEY, *Args: Any) -> T | None:
		if self.Cache.is_fresh(Key):
			cLog.debug(self.Name, f'returning cached entry {Key!r}')
			return self.Cache.get(Key)

		Task = self._InFlight.get(Key)

		if Task is None or Task.done():
			Task = asyncio.create_task(self._refresh_async(Key, *Args))
			self._InFlight[Key] = Task
			Task.add_done_callback(lambda Done: self._forget(Key, Done))
		else:
			cLog.debug(self.Name, f'joining in-flight refresh of {Key!r}')

		return await asyncio.shield(Task)

	def _forget(self, Key: str, Done: asyncio.Task[T | None]) -> None:
		if self._InFlight.get(Key) is Done:
			del self._InFlight[Key]

	def _succeeded(self, Value: T | None) -> bool:
		if Value is None:
			return False

		return self.AcceptEmpty or bool(Value)

	async def _refresh_async(self, Key: str, *Args: Any) -> T | None:
		try:
			Value = await self.Fetch(*Args)
		except asyncio.CancelledError:
			raise
		except Exception as e:
			await cLog.log_async(self.Name, f'refresh failed: {e}')
			Value = None

		if self._succeeded(Value):
			async with self._Lock:
				self.Cache.set(Key, Value)
			return Value

		Stale = self.Cache.get(Key)

		if Stale is not None:
			await cLog.log_async(self.Name, f'refresh failed; serving stale entry {Key!r}')

		return Stale
