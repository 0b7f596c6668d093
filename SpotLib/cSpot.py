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

import re

from dataclasses import dataclass, field
from datetime    import UTC, datetime, timedelta
from enum        import StrEnum
from typing      import Any, ClassVar

class cSource(StrEnum):
	HAMQTH   = 'HamQTH'
	DXSPIDER = 'DX Spider'

@dataclass(frozen=True)
class Spot:
	spotter:    str
	dx_call:    str
	freq_mhz:   str
	comment:    str
	time_utc:   str
	source:     cSource
	spotted_at: datetime | None = field(default=None, compare=False)

	def to_json(self) -> dict[str, Any]:
		return {
			'spotter': self.spotter,
			'call':    self.dx_call,
			'freq':    self.freq_mhz,
			'comment': self.comment,
			'time':    self.time_utc,
			'source':  str(self.source),
		}

	@property
	def dedup_key(self) -> tuple[str, str]:
		return self.dx_call, self.freq_mhz

class cSpotParser:
	_Zulu_RegEx: ClassVar[re.Pattern[str]] = re.compile(r'^([01][0-9]|2[0-3])[0-5][0-9]$')
	_Frequency_RegEx: ClassVar[re.Pattern[str]] = re.compile(r'\d+(?:\.\d+)?')

	# DX de W3LPL:     14195.0  TI5/AA8HH    FT8 -09 dB           1234Z
	_DXDe_RegEx: ClassVar[re.Pattern[str]] = re.compile(
		r'DX\s+de\s+(?P<spotter>[A-Z0-9/\-#]+):?\s+'
		r'(?P<freq>\d+\.?\d*)\s+'
		r'(?P<dx>[A-Z0-9/\-]+)'
		r'(?:\s+(?P<comment>.*?))?'
		r'\s+(?P<time>\d{4})Z',
		re.IGNORECASE
	)

	# 14074.0  K1ABC       18-Oct-2026 1234Z  FT8 -12 dB             <W3LPL>
	_ShowDX_RegEx: ClassVar[re.Pattern[str]] = re.compile(
		r'^\s*(?P<freq>\d+\.?\d*)\s+'
		r'(?P<dx>[A-Z0-9/\-]+)\s+'
		r'(?P<date>\d{1,2}-[A-Za-z]{3}-\d{4})\s+'
		r'(?P<time>\d{4})Z\s*'
		r'(?P<comment>.*?)\s*'
		r'<(?P<spotter>[A-Z0-9/\-#]+)>\s*$',
		re.IGNORECASE
	)

	_month_abbreviations: ClassVar[dict[str, int]] = {
		'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4,  'may': 5,  'jun': 6,
		'jul': 7, 'aug': 8, 'sep': 9, 'oct': 10, 'nov': 11, 'dec': 12,
	}

	""" Cluster month abbreviations are always English.  strptime('%b') is
		locale sensitive, so the month is looked up here instead.
	"""
	@classmethod
	def cluster_date_to_datetime(cls, Date: str, HHMM: str) -> datetime | None:
		try:
			sDay, sMonthAbbrev, sYear = Date.split('-')
			return datetime(int(sYear), cls._month_abbreviations[sMonthAbbrev.lower()], int(sDay), int(HHMM[0:2]), int(HHMM[2:4]), tzinfo=UTC)
		except (KeyError, ValueError):
			return None

	@staticmethod
	def format_mhz(FrequencyMHz: float) -> str:
		return f'{FrequencyMHz:.3f}'

	@classmethod
	def positive_mhz(cls, FrequencyMHz: float) -> str | None:
		"""None unless the formatted value is itself above zero."""
		FreqMHz = cls.format_mhz(FrequencyMHz)
		return FreqMHz if float(FreqMHz) > 0 else None

	@classmethod
	def format_zulu(cls, HHMM: str) -> str | None:
		if not cls._Zulu_RegEx.match(HHMM):
			return None

		return f'{HHMM[0:2]}:{HHMM[2:4]}z'

	@staticmethod
	def zulu_to_datetime(HHMM: str, Now: datetime | None = None) -> datetime:
		'''
			A bare HHMM token belongs to today, unless that would put it more
			than 12 hours in the future, in which case it was yesterday.
		'''
		Now = Now or datetime.now(UTC)
		When = Now.replace(hour=int(HHMM[0:2]), minute=int(HHMM[2:4]), second=0, microsecond=0)

		if When - Now > timedelta(hours=12):
			When -= timedelta(days=1)

		return When

def parse_hamqth_line(Line: str) -> Spot | None:
	'''
		HamQTH CSV format, '^' delimited:

			Spotter^Frequency^DXCall^Comment^TimeDate^^^Continent^Band^Country^DXCC
			KF0NYM^18070.0^TX5U^Correction, Good Sig MO, 73^2149 2025-05-27^^^EU^17M^France^227

		Frequencies above 1000 are kHz; anything smaller is already MHz.
	'''
	Fields = Line.strip().split('^')

	if len(Fields) < 5:
		return None

	Spotter  = Fields[0].strip().upper()
	DXCall   = Fields[2].strip().upper()
	Comment  = Fields[3].strip()
	TimeDate = Fields[4].strip()

	# float() alone would also take 'nan', 'inf' and '1e3'.
	if not cSpotParser._Frequency_RegEx.fullmatch(Fields[1].strip()):
		return None

	Frequency = float(Fields[1])

	if not Spotter or not DXCall:
		return None

	if not (FreqMHz := cSpotParser.positive_mhz(Frequency / 1000 if Frequency > 1000 else Frequency)):
		return None

	TimeUTC   = cSpotParser.format_zulu(TimeDate[0:4]) or ''
	SpottedAt = None

	if TimeUTC:
		try:
			SpottedAt = datetime.strptime(TimeDate[0:15], '%H%M %Y-%m-%d').replace(tzinfo=UTC)
		except ValueError:
			SpottedAt = None

	return Spot(
		spotter    = Spotter,
		dx_call    = DXCall,
		freq_mhz   = FreqMHz,
		comment    = Comment,
		time_utc   = TimeUTC,
		source     = cSource.HAMQTH,
		spotted_at = SpottedAt,
	)

def parse_dxspider_line(Line: str, Now: datetime | None = None) -> Spot | None:
	'''
		Accepts both the live 'DX de' broadcast format and the tabular
		'sh/dx' listing.  DX Spider frequencies are always kHz.
	'''
	Line = Line.strip()

	if Match := cSpotParser._DXDe_RegEx.search(Line):
		SpottedAt = None
	elif Match := cSpotParser._ShowDX_RegEx.match(Line):
		if not (SpottedAt := cSpotParser.cluster_date_to_datetime(Match.group('date'), Match.group('time'))):
			return None
	else:
		return None

	Spotter = Match.group('spotter').rstrip(':').upper()
	DXCall  = Match.group('dx').upper()
	Comment = (Match.group('comment') or '').strip()
	HHMM    = Match.group('time')

	try:
		FrequencyKHz = float(Match.group('freq'))
	except ValueError:
		return None

	if not (TimeUTC := cSpotParser.format_zulu(HHMM)):
		return None

	if not Spotter or not DXCall:
		return None

	if not (FreqMHz := cSpotParser.positive_mhz(FrequencyKHz / 1000)):
		return None

	if SpottedAt is None:
		SpottedAt = cSpotParser.zulu_to_datetime(HHMM, Now)

	return Spot(
		spotter    = Spotter,
		dx_call    = DXCall,
		freq_mhz   = FreqMHz,
		comment    = Comment,
		time_utc   = TimeUTC,
		source     = cSource.DXSPIDER,
		spotted_at = SpottedAt,
	)
