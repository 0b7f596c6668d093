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

from dataclasses import dataclass
from typing      import Any, Final

@dataclass(frozen=True)
class cLocation:
	lat:     float
	lon:     float
	country: str

	def to_json(self, CallSign: str) -> dict[str, Any]:
		return {
			'callsign':  CallSign,
			'lat':       self.lat,
			'lon':       self.lon,
			'country':   self.country,
			'estimated': True,
		}

_USA:         Final = cLocation( 39.8,  -98.5, 'USA')
_CANADA:      Final = cLocation( 56.1, -106.3, 'Canada')
_ENGLAND:     Final = cLocation( 52.4,   -1.5, 'England')
_GERMANY:     Final = cLocation( 51.2,   10.4, 'Germany')
_JAPAN:       Final = cLocation( 36.2,  138.3, 'Japan')
_RUSSIA:      Final = cLocation( 61.5,  105.3, 'Russia')

PREFIX_LOCATIONS: Final[dict[str, cLocation]] = {
	'K':  _USA,
	'W':  _USA,
	'N':  _USA,
	'AA': _USA,
	'AB': _USA,
	'VE': _CANADA,
	'VA': _CANADA,
	'G':  _ENGLAND,
	'M':  _ENGLAND,
	'F':  cLocation( 46.2,    2.2, 'France'),
	'DL': _GERMANY,
	'DJ': _GERMANY,
	'DK': _GERMANY,
	'I':  cLocation( 41.9,   12.6, 'Italy'),
	'JA': _JAPAN,
	'JH': _JAPAN,
	'JR': _JAPAN,
	'VK': cLocation(-25.3,  133.8, 'Australia'),
	'ZL': cLocation(-40.9,  174.9, 'New Zealand'),
	'ZS': cLocation(-30.6,   22.9, 'South Africa'),
	'LU': cLocation(-38.4,  -63.6, 'Argentina'),
	'PY': cLocation(-14.2,  -51.9, 'Brazil'),
	'EA': cLocation( 40.5,   -3.7, 'Spain'),
	'CT': cLocation( 39.4,   -8.2, 'Portugal'),
	'PA': cLocation( 52.1,    5.3, 'Netherlands'),
	'ON': cLocation( 50.5,    4.5, 'Belgium'),
	'OZ': cLocation( 56.3,    9.5, 'Denmark'),
	'SM': cLocation( 60.1,   18.6, 'Sweden'),
	'LA': cLocation( 60.5,    8.5, 'Norway'),
	'OH': cLocation( 61.9,   25.7, 'Finland'),
	'UA': _RUSSIA,
	'RU': _RUSSIA,
	'RA': _RUSSIA,
	'BY': cLocation( 35.9,  104.2, 'China'),
	'BV': cLocation( 23.7,  121.0, 'Taiwan'),
	'HL': cLocation( 35.9,  127.8, 'South Korea'),
	'VU': cLocation( 20.6,   79.0, 'India'),
	'HS': cLocation( 15.9,  100.9, 'Thailand'),
	'DU': cLocation( 12.9,  121.8, 'Philippines'),
	'YB': cLocation( -0.8,  113.9, 'Indonesia'),
	'9V': cLocation(  1.4,  103.8, 'Singapore'),
	'9M': cLocation(  4.2,  101.9, 'Malaysia'),
}

class cGeo:
	@staticmethod
	def estimate_location(CallSign: str) -> cLocation | None:
		"""Two-character prefix first, then one-character."""
		CallSign = CallSign.strip().upper()

		if not CallSign:
			return None

		return PREFIX_LOCATIONS.get(CallSign[0:2]) or PREFIX_LOCATIONS.get(CallSign[0:1])
