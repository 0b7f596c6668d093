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

from collections.abc import Callable
from contextlib     import suppress
from datetime       import UTC, datetime
from typing         import Final

from .cLog          import cLog
from .cSpot         import Spot, parse_dxspider_line
from .cStateMachine import cStateMachine

# Banners vary between nodes in punctuation and capitalisation, so these are
# matched as lower-case substrings of the accumulated text, in order.
LOGIN_PHRASES: Final[tuple[str, ...]] = (
	'login:',
	'please enter your call',
	'enter your callsign',
	'enter your call',
)

GREETING_PHRASES: Final[tuple[str, ...]] = (
	'hello',
	'de ',
	'>',
)

class cDXSpiderSession(cStateMachine):
	'''
		One acquisition attempt against a DX Spider node:

			Connecting -> AwaitingLogin -> AwaitingPrompt -> Streaming -> Draining -> Closed

		The session owns its socket.  Every failure ends in Closed; the spots
		collected up to that point are the result.
	'''
	def __init__(
		self,
		Host:                 str,
		Port:                 int,
		Login:                str   = 'GUEST',
		CommandCount:         int   = 25,
		TargetCount:          int   = 20,
		SessionTimeoutSeconds: float = 15.0,
		PromptGraceSeconds:   float = 1.0,
		DrainGraceSeconds:    float = 0.5,
		Debug:                bool  = False,
		Clock:                Callable[[], float] = time.monotonic,
	):
		cStateMachine.__init__(self, self.STATE_Connecting, Debug = Debug, Clock = Clock)

		self.Host                  = Host
		self.Port                  = Port
		self.Login                 = Login
		self.CommandCount          = CommandCount
		self.TargetCount           = TargetCount
		self.SessionTimeoutSeconds = SessionTimeoutSeconds
		self.PromptGraceSeconds    = PromptGraceSeconds
		self.DrainGraceSeconds     = DrainGraceSeconds

		self.Incoming  = ''
		self.bOutgoing = b''
		self.Spots:    list[Spot] = []
		self.Rejected: list[str]  = []
		self._Seen:    set[tuple[str, str]] = set()

		self.Reader: asyncio.StreamReader | None = None
		self.Writer: asyncio.StreamWriter | None = None

	@staticmethod
	def FindEnd(Phrases: tuple[str, ...], Text: str) -> int | None:
		Lower = Text.lower()

		for Phrase in Phrases:
			Index = Lower.find(Phrase)

			if Index != -1:
				return Index + len(Phrase)

		return None

	def Send(self, Line: str):
		self.bOutgoing += f'{Line}\r\n'.encode('ascii', errors='replace')

	def STATE_Connecting(self):
		def CONNECTED():
			cLog.debug('DX Spider', f'connected to {self.Host}:{self.Port}')
			self.Transition(self.STATE_AwaitingLogin)

		def REFUSED():
			self.Transition(self.STATE_Closed)

		_ = CONNECTED, REFUSED
		return locals()

	def STATE_AwaitingLogin(self):
		def RECEIVED(Text: str):
			self.Incoming += Text
			End = cDXSpiderSession.FindEnd(LOGIN_PHRASES, self.Incoming)

			if End is not None:
				self.Incoming = self.Incoming[End:]
				self.Send(self.Login)
				cLog.debug('DX Spider', 'sent login')
				self.Transition(self.STATE_AwaitingPrompt)

		_ = RECEIVED
		return locals()

	def STATE_AwaitingPrompt(self):
		Greetings = GREETING_PHRASES + (self.Login.lower(),)

		def ENTER():
			# The login reply may already hold the greeting.
			RECEIVED('')

		def RECEIVED(Text: str):
			self.Incoming += Text

			if self.Timeout is None and cDXSpiderSession.FindEnd(Greetings, self.Incoming) is not None:
				# Let the node finish flushing its banner before asking for spots.
				self.TimeoutInSeconds(self.PromptGraceSeconds)

		def TIMEOUT():
			self.Incoming = ''
			self.Send(f'sh/dx {self.CommandCount}')
			cLog.debug('DX Spider', f'sent sh/dx {self.CommandCount}')
			self.Transition(self.STATE_Streaming)

		_ = ENTER, RECEIVED, TIMEOUT
		return locals()

	def STATE_Streaming(self):
		def RECEIVED(Text: str):
			self.Incoming += Text
			*Lines, self.Incoming = self.Incoming.split('\n')
			self.ParseLines(Lines)

			if len(self.Spots) >= self.TargetCount:
				self.Send('bye')
				self.Transition(self.STATE_Draining)

		_ = RECEIVED
		return locals()

	def STATE_Draining(self):
		def ENTER():
			self.TimeoutInSeconds(self.DrainGraceSeconds)

		def TIMEOUT():
			self.Transition(self.STATE_Closed)

		_ = ENTER, TIMEOUT
		return locals()

	def STATE_Closed(self):
		def ENTER():
			if self.Writer is not None:
				self.Writer.close()

		_ = ENTER
		return locals()

	def ParseLines(self, Lines: list[str]):
		Now = datetime.now(UTC)

		for Line in Lines:
			if not (NewSpot := parse_dxspider_line(Line, Now)):
				if 'DX de' in Line:
					self.Rejected.append(Line.strip())
				continue

			if NewSpot.dedup_key in self._Seen:
				continue

			self._Seen.add(NewSpot.dedup_key)
			self.Spots.append(NewSpot)

	@property
	def Closed(self) -> bool:
		return self.InState(self.STATE_Closed)

	async def _connect_async(self):
		self.Transition(self.STATE_Connecting)

		try:
			self.Reader, self.Writer = await asyncio.open_connection(self.Host, self.Port)
		except OSError as e:
			await cLog.log_async('DX Spider', f'connection to {self.Host}:{self.Port} failed: {e}')
			self.SendEvent('REFUSED')
			return

		self.SendEvent('CONNECTED')

	async def _flush_async(self):
		if self.bOutgoing and self.Writer is not None and not self.Writer.is_closing():
			self.Writer.write(self.bOutgoing)
			self.bOutgoing = b''
			await self.Writer.drain()

	async def _run_async(self):
		await self._connect_async()

		while not self.Closed:
			self.Run()
			await self._flush_async()

			if self.Closed:
				break

			assert self.Reader is not None

			try:
				bData = await asyncio.wait_for(self.Reader.read(4 * 1024), timeout=self.SecondsUntilTimeout())
			except asyncio.TimeoutError:
				continue

			if not bData:
				cLog.debug('DX Spider', 'connection closed by node')

				# The last line may arrive without a newline.
				if self.InState(self.STATE_Streaming) and self.Incoming.strip():
					self.ParseLines([self.Incoming])
					self.Incoming = ''

				self.Transition(self.STATE_Closed)
				break

			self.SendEventArg('RECEIVED', bData.decode('utf-8', errors='replace'))

	async def fetch_spots_async(self) -> list[Spot]:
		try:
			await asyncio.wait_for(self._run_async(), timeout=self.SessionTimeoutSeconds)
		except asyncio.TimeoutError:
			await cLog.log_async('DX Spider', f'session timed out in {self.StateName} after {self.SessionTimeoutSeconds}s with {len(self.Spots)} spots')
		except (OSError, asyncio.IncompleteReadError) as e:
			await cLog.log_async('DX Spider', f'session error: {type(e).__name__}: {e}')
		finally:
			if not self.Closed:
				self.Transition(self.STATE_Closed)

			if self.Writer is not None:
				with suppress(asyncio.TimeoutError, OSError):
					await asyncio.wait_for(self.Writer.wait_closed(), timeout=2.0)

		for Line in self.Rejected:
			await cLog.bad_spot_async('DX Spider', Line)

		if self.Spots:
			await cLog.log_async('DX Spider', f'{len(self.Spots)} spots')
		else:
			await cLog.log_async('DX Spider', 'no spots received')

		return list(self.Spots)

class cDXSpider:
	def __init__(
		self,
		Host:                  str,
		Port:                  int,
		Login:                 str   = 'GUEST',
		CommandCount:          int   = 25,
		TargetCount:           int   = 20,
		SessionTimeoutSeconds: float = 15.0,
		PromptGraceSeconds:    float = 1.0,
		DrainGraceSeconds:     float = 0.5,
	):
		self.Host                  = Host
		self.Port                  = Port
		self.Login                 = Login
		self.CommandCount          = CommandCount
		self.TargetCount           = TargetCount
		self.SessionTimeoutSeconds = SessionTimeoutSeconds
		self.PromptGraceSeconds    = PromptGraceSeconds
		self.DrainGraceSeconds     = DrainGraceSeconds

	def new_session(self) -> cDXSpiderSession:
		return cDXSpiderSession(
			self.Host,
			self.Port,
			Login                 = self.Login,
			CommandCount          = self.CommandCount,
			TargetCount           = self.TargetCount,
			SessionTimeoutSeconds = self.SessionTimeoutSeconds,
			PromptGraceSeconds    = self.PromptGraceSeconds,
			DrainGraceSeconds     = self.DrainGraceSeconds,
			Debug                 = cLog.VERBOSE,
		)

	async def fetch_spots_async(self) -> list[Spot]:
		return await self.new_session().fetch_spots_async()
