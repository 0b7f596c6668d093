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

from typing import ClassVar

import aiofiles

class cLog:
	FILE_NAME:     ClassVar[str | None] = None
	VERBOSE:       ClassVar[bool]       = False
	LOG_BAD_SPOTS: ClassVar[bool]       = False
	BAD_SPOTS_FILE_NAME: ClassVar[str]  = 'Bad_Spots.log'

	@staticmethod
	def stamp() -> str:
		return time.strftime('%Y-%m-%d %H:%M:%SZ', time.gmtime())

	@classmethod
	def print(cls, Tag: str, Line: str) -> None:
		print(f'{cls.stamp()} [{Tag}] {Line}', flush=True)

	@classmethod
	def debug(cls, Tag: str, Line: str) -> None:
		if cls.VERBOSE:
			cls.print(Tag, Line)

	@classmethod
	async def log_async(cls, Tag: str, Line: str) -> None:
		cls.print(Tag, Line)

		if cls.FILE_NAME is not None:
			await cls._append_async(cls.FILE_NAME, f'{cls.stamp()} [{Tag}] {Line}\n')

	@classmethod
	async def bad_spot_async(cls, Tag: str, Line: str) -> None:
		if cls.LOG_BAD_SPOTS:
			await cls._append_async(cls.BAD_SPOTS_FILE_NAME, f'{Tag}: {Line}\n')

	@classmethod
	async def _append_async(cls, FileName: str, Text: str) -> None:
		# Logging never takes a request down with it.
		try:
			async with aiofiles.open(FileName, 'a', encoding='utf-8') as file:
				await file.write(Text)
		except OSError as e:
			cls.print('Log', f'cannot write {FileName}: {e}')
