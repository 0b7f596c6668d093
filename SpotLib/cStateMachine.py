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

import time

from typing import Any, Callable

class cStateMachine:
	'''
		States are methods named STATE_<Name> that return their locals().  The
		event functions defined inside a state (ENTER, EXIT, TIMEOUT, and any
		custom events) are looked up by name when an event is sent.
	'''
	EventFunctions: dict[str, Any]

	def __init__(self, InitialState: Callable[..., Any], Debug: bool = False, Clock: Callable[[], float] = time.monotonic):
		self.Debug          = Debug
		self.Clock          = Clock
		self.Timeout: float | None = None
		self.State: Any     = None
		self.EventFunctions = {}
		self.InitialState   = InitialState

	def __CacheEventFunctions(self):
		self.EventFunctions = self.State()

		if self.EventFunctions is None:
			raise TypeError(f'Must return locals in {self.State.__name__}')

	def SendEvent(self, Event: str):
		if self.State is None:
			return

		if Event in self.EventFunctions:
			self.EventFunctions[Event]()

	def SendEventArg(self, Event: str, Arg: Any):
		if self.State is None:
			return

		if Event in self.EventFunctions:
			self.EventFunctions[Event](Arg)

	def Transition(self, To: Callable[..., Any]):
		if self.State is not None:
			if self.Debug:
				print(f'<<< {self.__class__.__name__}.{self.StateName}...')

			self.Timeout = None
			self.SendEvent('EXIT')

		self.State = To
		self.__CacheEventFunctions()

		if self.Debug:
			print(f'>>> {self.__class__.__name__}.{self.StateName}...')

		self.SendEvent('ENTER')

	@property
	def StateName(self) -> str:
		return '-' if self.State is None else self.State.__name__.removeprefix('STATE_')

	def InState(self, State: Callable[..., Any]) -> bool:
		return self.State is not None and self.State.__name__ == State.__name__

	def TimeoutInSeconds(self, Seconds: float):
		self.Timeout = self.Clock() + Seconds

	def SecondsUntilTimeout(self) -> float | None:
		if self.Timeout is None:
			return None

		return max(0.0, self.Timeout - self.Clock())

	def Run(self):
		if self.State is None:
			self.Transition(self.InitialState)
		elif self.Timeout is not None:
			if self.Clock() >= self.Timeout:
				self.Timeout = None
				self.SendEvent('TIMEOUT')

		return
