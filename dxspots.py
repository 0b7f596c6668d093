#!/usr/bin/python3
"""

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

"""
#
# dxspots.py
#
# Aggregates DX cluster spots from HamQTH's CSV feed and from a DX Spider
# telnet node, and serves them to a dashboard as JSON.
#

import argparse
import asyncio
import os
import re
import signal
import sys
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, ClassVar, Final, NoReturn

import aiofiles
import aiofiles.os
import aiohttp
from aiohttp import ClientTimeout, web

from SpotLib.cDXSpider import cDXSpider
from SpotLib.cGeo import cGeo
from SpotLib.cLog import cLog
from SpotLib.cSpot import Spot, parse_hamqth_line
from SpotLib.cTTLCache import cCachedSource, cTTLCache

# URL constants
HAMQTH_SPOTS_URL  = 'https://www.hamqth.com/dxc_csv.php'
HAMQTH_LOOKUP_URL = 'https://www.hamqth.com/dxcc.php'
USER_AGENT        = 'dxspots/1.0'

DXSPIDER_SERVER = 'dxspider.co.uk'
DXSPIDER_PORT   = 7300

class cUtil:
    @staticmethod
    def fatal(message: str) -> NoReturn:
        print(message)
        sys.exit(1)

    @staticmethod
    def handle_shutdown(_signum: int, _frame: object | None = None) -> None:
        """Exits immediately when Ctrl+C is detected."""
        try:
            print("\n\nExiting...")
            sys.stdout.flush()
        except OSError:
            pass
        os._exit(0)

class cConfig:
    @dataclass
    class cHamQTHSettings:
        URL:             str   = HAMQTH_SPOTS_URL
        LOOKUP_URL:      str   = HAMQTH_LOOKUP_URL
        USER_AGENT:      str   = USER_AGENT
        TIMEOUT_SECONDS: float = 10.0
        LIMIT:           int   = 25
        CACHE_SECONDS:   float = 30.0
    @classmethod
    def init_hamqth(cls) -> None:
        hamqth_config = cls.config_file.get("HAMQTH", {})
        cls.HAMQTH = cConfig.cHamQTHSettings(
            URL             =       hamqth_config.get("URL",             cConfig.cHamQTHSettings.URL),
            LOOKUP_URL      =       hamqth_config.get("LOOKUP_URL",      cConfig.cHamQTHSettings.LOOKUP_URL),
            USER_AGENT      =       hamqth_config.get("USER_AGENT",      cConfig.cHamQTHSettings.USER_AGENT),
            TIMEOUT_SECONDS = float(hamqth_config.get("TIMEOUT_SECONDS", cConfig.cHamQTHSettings.TIMEOUT_SECONDS)),
            LIMIT           =   int(hamqth_config.get("LIMIT",           cConfig.cHamQTHSettings.LIMIT)),
            CACHE_SECONDS   = float(hamqth_config.get("CACHE_SECONDS",   cConfig.cHamQTHSettings.CACHE_SECONDS)),
        )

    @dataclass
    class cDXSpiderSettings:
        HOST:                    str   = DXSPIDER_SERVER
        PORT:                    int   = DXSPIDER_PORT
        LOGIN:                   str   = 'GUEST'
        COMMAND_COUNT:           int   = 25
        TARGET_COUNT:            int   = 20
        SESSION_TIMEOUT_SECONDS: float = 15.0
        PROMPT_GRACE_SECONDS:    float = 1.0
        DRAIN_GRACE_SECONDS:     float = 0.5
        CACHE_SECONDS:           float = 60.0
    @classmethod
    def init_dxspider(cls) -> None:
        dxspider_config = cls.config_file.get("DXSPIDER", {})
        cls.DXSPIDER = cConfig.cDXSpiderSettings(
            HOST                    =       dxspider_config.get("HOST",                    cConfig.cDXSpiderSettings.HOST),
            PORT                    =   int(dxspider_config.get("PORT",                    cConfig.cDXSpiderSettings.PORT)),
            LOGIN                   =       dxspider_config.get("LOGIN",                   cConfig.cDXSpiderSettings.LOGIN).upper(),
            COMMAND_COUNT           =   int(dxspider_config.get("COMMAND_COUNT",           cConfig.cDXSpiderSettings.COMMAND_COUNT)),
            TARGET_COUNT            =   int(dxspider_config.get("TARGET_COUNT",            cConfig.cDXSpiderSettings.TARGET_COUNT)),
            SESSION_TIMEOUT_SECONDS = float(dxspider_config.get("SESSION_TIMEOUT_SECONDS", cConfig.cDXSpiderSettings.SESSION_TIMEOUT_SECONDS)),
            PROMPT_GRACE_SECONDS    = float(dxspider_config.get("PROMPT_GRACE_SECONDS",    cConfig.cDXSpiderSettings.PROMPT_GRACE_SECONDS)),
            DRAIN_GRACE_SECONDS     = float(dxspider_config.get("DRAIN_GRACE_SECONDS",     cConfig.cDXSpiderSettings.DRAIN_GRACE_SECONDS)),
            CACHE_SECONDS           = float(dxspider_config.get("CACHE_SECONDS",           cConfig.cDXSpiderSettings.CACHE_SECONDS)),
        )

    @dataclass
    class cPathsSettings:
        CACHE_SECONDS:  float = 30.0
        WINDOW_MINUTES: int   = 5
    @classmethod
    def init_paths(cls) -> None:
        paths_config = cls.config_file.get("PATHS", {})
        cls.PATHS = cConfig.cPathsSettings(
            CACHE_SECONDS  = float(paths_config.get("CACHE_SECONDS",  cConfig.cPathsSettings.CACHE_SECONDS)),
            WINDOW_MINUTES =   int(paths_config.get("WINDOW_MINUTES", cConfig.cPathsSettings.WINDOW_MINUTES)),
        )

    @dataclass
    class cLogFile:
        FILE_NAME:         str | None = None
        ENABLED:           bool = False
        DELETE_ON_STARTUP: bool = False
    @classmethod
    def init_logfile(cls) -> None:
        log_file_config = cls.config_file.get("LOG_FILE", {})
        cls.LOG_FILE = cConfig.cLogFile(
            ENABLED           = bool(log_file_config.get("ENABLED", cConfig.cLogFile.ENABLED)),
            FILE_NAME         = log_file_config.get("FILE_NAME", cConfig.cLogFile.FILE_NAME),
            DELETE_ON_STARTUP = bool(log_file_config.get("DELETE_ON_STARTUP", cConfig.cLogFile.DELETE_ON_STARTUP))
        )

    HAMQTH:   ClassVar[cHamQTHSettings]   = cHamQTHSettings()
    DXSPIDER: ClassVar[cDXSpiderSettings] = cDXSpiderSettings()
    PATHS:    ClassVar[cPathsSettings]    = cPathsSettings()
    LOG_FILE: ClassVar[cLogFile]          = cLogFile()

    CONFIG_FILE:            str   = 'dxspots.cfg'
    WEB_HOST:               str   = '0.0.0.0'
    WEB_PORT:               int   = 3000
    VERBOSE:                bool  = False
    LOG_BAD_SPOTS:          bool  = False
    CALLSIGN_CACHE_SECONDS: float = 6 * 60 * 60

    config_file:            dict[str, Any] = {}

    @classmethod
    async def init(cls, argv_v: list[str]) -> None:
        async def read_dxspots_cfg_async(FileName: str) -> dict[str, Any]:
            config_vars: dict[str, Any] = {}

            ConfigFileAbsolute = Path(FileName).resolve()

            if not await aiofiles.os.path.exists(ConfigFileAbsolute):
                print(f"No '{FileName}' found; using defaults.")
                return config_vars

            print(f"Reading {FileName} from '{ConfigFileAbsolute}'...")

            async with aiofiles.open(ConfigFileAbsolute, 'r', encoding='utf-8') as config_file:
                ConfigFileString = await config_file.read()
                exec(ConfigFileString, {}, config_vars)

            return config_vars

        args = cls._parse_args(argv_v)

        if args.config:
            cls.CONFIG_FILE = args.config

        cls.config_file = await read_dxspots_cfg_async(cls.CONFIG_FILE)

        cls.init_hamqth()
        cls.init_dxspider()
        cls.init_paths()
        cls.init_logfile()

        cls.WEB_HOST               = cls.config_file.get('WEB_HOST', cls.WEB_HOST)
        cls.WEB_PORT               = int(cls.config_file.get('WEB_PORT', cls.WEB_PORT))
        cls.VERBOSE                = bool(cls.config_file.get('VERBOSE', False))
        cls.LOG_BAD_SPOTS          = bool(cls.config_file.get('LOG_BAD_SPOTS', False))
        cls.CALLSIGN_CACHE_SECONDS = float(cls.config_file.get('CALLSIGN_CACHE_SECONDS', cls.CALLSIGN_CACHE_SECONDS))

        cls._apply_args(args)
        cls._validate_config()

        cLog.VERBOSE       = cls.VERBOSE
        cLog.LOG_BAD_SPOTS = cls.LOG_BAD_SPOTS
        cLog.FILE_NAME     = cls.LOG_FILE.FILE_NAME if cls.LOG_FILE.ENABLED else None

    @staticmethod
    def _parse_args(arg_v: list[str]) -> argparse.Namespace:
        parser = argparse.ArgumentParser(description="DX spot aggregator")

        parser.add_argument("-c", "--config", type=str, help="Configuration file (default: dxspots.cfg)")
        parser.add_argument("-H", "--host", type=str, help="Address to listen on")
        parser.add_argument("-p", "--port", type=int, help="Port to listen on")
        parser.add_argument("-C", "--cluster", type=str, help="DX Spider node as host:port")
        parser.add_argument("-l", "--logfile", type=str, help="Logfile name")
        parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose mode")

        return parser.parse_args(arg_v)

    @classmethod
    def _apply_args(cls, args: argparse.Namespace) -> None:
        if args.host:
            cls.WEB_HOST = args.host
        if args.port:
            cls.WEB_PORT = args.port
        if args.cluster:
            Host, _, Port = args.cluster.rpartition(':')
            if not Host or not Port.isdigit():
                cUtil.fatal(f"--cluster must be host:port, not '{args.cluster}'.")
            cls.DXSPIDER.HOST = Host
            cls.DXSPIDER.PORT = int(Port)
        if args.logfile:
            cls.LOG_FILE.ENABLED = True
            cls.LOG_FILE.DELETE_ON_STARTUP = True
            cls.LOG_FILE.FILE_NAME = args.logfile
        if args.verbose:
            cls.VERBOSE = True

    @classmethod
    def _validate_config(cls) -> None:
        if not 0 < cls.WEB_PORT < 65536:
            cUtil.fatal(f"WEB_PORT must be between 1 and 65535, not {cls.WEB_PORT}.")

        if not 0 < cls.DXSPIDER.PORT < 65536:
            cUtil.fatal(f"DXSPIDER['PORT'] must be between 1 and 65535, not {cls.DXSPIDER.PORT}.")

        if not cls.DXSPIDER.LOGIN:
            cUtil.fatal("DXSPIDER['LOGIN'] must not be empty.")

        if cls.DXSPIDER.TARGET_COUNT < 1:
            cUtil.fatal("DXSPIDER['TARGET_COUNT'] must be at least 1.")

        if cls.HAMQTH.LIMIT < 1:
            cUtil.fatal("HAMQTH['LIMIT'] must be at least 1.")

        for Name, Seconds in (
            ("HAMQTH['TIMEOUT_SECONDS']",           cls.HAMQTH.TIMEOUT_SECONDS),
            ("HAMQTH['CACHE_SECONDS']",             cls.HAMQTH.CACHE_SECONDS),
            ("DXSPIDER['SESSION_TIMEOUT_SECONDS']", cls.DXSPIDER.SESSION_TIMEOUT_SECONDS),
            ("DXSPIDER['CACHE_SECONDS']",           cls.DXSPIDER.CACHE_SECONDS),
            ("PATHS['CACHE_SECONDS']",              cls.PATHS.CACHE_SECONDS),
            ("CALLSIGN_CACHE_SECONDS",              cls.CALLSIGN_CACHE_SECONDS),
        ):
            if Seconds <= 0:
                cUtil.fatal(f"{Name} must be positive, not {Seconds}.")

        if cls.LOG_FILE.ENABLED and not cls.LOG_FILE.FILE_NAME:
            cUtil.fatal("LOG_FILE['FILE_NAME'] must be set when LOG_FILE is enabled.")

class cHamQTH:
    MAX_RESPONSE_BYTES: Final[int] = 256 * 1024

    def __init__(
        self,
        URL:            str   = HAMQTH_SPOTS_URL,
        LookupURL:      str   = HAMQTH_LOOKUP_URL,
        UserAgent:      str   = USER_AGENT,
        TimeoutSeconds: float = 10.0,
    ):
        self.URL            = URL
        self.LookupURL      = LookupURL
        self.UserAgent      = UserAgent
        self.TimeoutSeconds = TimeoutSeconds

    async def get_text_async(self, URL: str, Params: dict[str, str]) -> str | None:
        """One bounded GET.  Any failure, including the timeout, is None."""
        try:
            async with aiohttp.ClientSession(timeout=ClientTimeout(total=self.TimeoutSeconds), headers={'User-Agent': self.UserAgent}) as session:
                async with session.get(URL, params=Params) as response:
                    if response.status != 200:
                        await cLog.log_async('HamQTH', f'HTTP {response.status} from {URL}')
                        return None

                    bBody = b''

                    async for bChunk in response.content.iter_chunked(16 * 1024):
                        bBody += bChunk

                        if len(bBody) >= self.MAX_RESPONSE_BYTES:
                            break
        except asyncio.TimeoutError:
            await cLog.log_async('HamQTH', f'timed out after {self.TimeoutSeconds}s fetching {URL}')
            return None
        except aiohttp.ClientError as e:
            await cLog.log_async('HamQTH', f'error fetching {URL}: {e}')
            return None

        return bBody[:self.MAX_RESPONSE_BYTES].decode('utf-8', errors='replace')

    @staticmethod
    def parse_body(Text: str, Limit: int) -> tuple[list[Spot], list[str]]:
        Spots:    list[Spot] = []
        Rejected: list[str]  = []

        for Line in Text.splitlines():
            if not Line.strip():
                continue

            if NewSpot := parse_hamqth_line(Line):
                Spots.append(NewSpot)
            else:
                Rejected.append(Line)

        return Spots[:Limit], Rejected

    async def fetch_spots_async(self, Limit: int = 25) -> list[Spot] | None:
        if (Text := await self.get_text_async(self.URL, {'limit': str(Limit)})) is None:
            return None

        Spots, Rejected = cHamQTH.parse_body(Text, Limit)

        for Line in Rejected:
            await cLog.bad_spot_async('HamQTH', Line)

        if not Spots:
            await cLog.log_async('HamQTH', 'no spots in response')
            return None

        cLog.debug('HamQTH', f'{len(Spots)} spots')
        return Spots

class cSourceSelector:
    SOURCES: Final[list[dict[str, str]]] = [
        {'id': 'auto',     'name': 'Auto (Best Available)', 'description': 'Tries HamQTH first, then DX Spider'},
        {'id': 'hamqth',   'name': 'HamQTH',                'description': 'HamQTH.com CSV feed (HTTP, works everywhere)'},
        {'id': 'dxspider', 'name': 'DX Spider',             'description': 'Telnet session to a DX Spider node (works locally, may be blocked on cloud hosting)'},
    ]

    def __init__(self, HamQTH: cCachedSource[list[Spot]], DXSpider: cCachedSource[list[Spot]]):
        self.HamQTH   = HamQTH
        self.DXSpider = DXSpider

    def strategies(self, Preference: str) -> list[cCachedSource[list[Spot]]]:
        """HamQTH wins ties: no persistent connection, rarely blocked by egress policy."""
        match Preference.strip().lower():
            case 'hamqth':
                return [self.HamQTH]
            case 'dxspider':
                return [self.DXSpider, self.HamQTH]
            case _:
                return [self.HamQTH, self.DXSpider]

    async def get_spots_async(self, Preference: str = 'auto') -> list[Spot]:
        Strategies = self.strategies(Preference)

        for Index, Source in enumerate(Strategies):
            if Spots := await Source.get_async():
                return Spots

            if Index + 1 < len(Strategies):
                await cLog.log_async('DX Cluster', f'{Source.Name} returned nothing, falling back to {Strategies[Index + 1].Name}')

        return []

class cPaths:
    FETCH_LIMIT: Final[int] = 50
    MAX_LOOKUPS: Final[int] = 40
    MAX_PATHS:   Final[int] = 25

    def __init__(self, HamQTH: cHamQTH, Cache: cTTLCache[list[dict[str, Any]]], WindowMinutes: int = 5):
        self.HamQTH        = HamQTH
        self.WindowMinutes = WindowMinutes
        self.Source        = cCachedSource('DX Paths', Cache, self.compose_async, AcceptEmpty=True)

    async def get_paths_async(self) -> list[dict[str, Any]]:
        return await self.Source.get_async() or []

    async def compose_async(self) -> list[dict[str, Any]] | None:
        # HamQTH only; a DX Spider session is too expensive for a map overlay.
        if (Spots := await self.HamQTH.fetch_spots_async(cPaths.FETCH_LIMIT)) is None:
            return None

        Paths = self.compose(Spots, datetime.now(UTC))
        await cLog.log_async('DX Paths', f'{len(Paths)} paths with locations from {len(Spots)} spots')
        return Paths

    def compose(self, Spots: list[Spot], Now: datetime) -> list[dict[str, Any]]:
        Cutoff = Now - timedelta(minutes=self.WindowMinutes)

        # Spots whose time could not be parsed are kept.
        Recent = [DXSpot for DXSpot in Spots if DXSpot.spotted_at is None or DXSpot.spotted_at >= Cutoff]

        CallSigns = list(dict.fromkeys(Call for DXSpot in Recent for Call in (DXSpot.spotter, DXSpot.dx_call)))
        Locations = {
            Call: Location
            for Call in CallSigns[:cPaths.MAX_LOOKUPS]
            if (Location := cGeo.estimate_location(Call))
        }

        Paths: list[dict[str, Any]] = []

        for DXSpot in Recent:
            SpotterLocation = Locations.get(DXSpot.spotter)
            DXLocation      = Locations.get(DXSpot.dx_call)

            if SpotterLocation is None or DXLocation is None:
                continue

            Paths.append({
                'spotter':        DXSpot.spotter,
                'spotterLat':     SpotterLocation.lat,
                'spotterLon':     SpotterLocation.lon,
                'spotterCountry': SpotterLocation.country,
                'dxCall':         DXSpot.dx_call,
                'dxLat':          DXLocation.lat,
                'dxLon':          DXLocation.lon,
                'dxCountry':      DXLocation.country,
                'freq':           DXSpot.freq_mhz,
                'comment':        DXSpot.comment,
                'time':           DXSpot.time_utc,
            })

        return Paths[:cPaths.MAX_PATHS]

class cMySpots:
    FETCH_LIMIT: Final[int] = 100
    MAX_LOOKUPS: Final[int] = 10

    def __init__(self, HamQTH: cHamQTH):
        self.HamQTH = HamQTH

    async def get_spots_async(self, CallSign: str) -> list[dict[str, Any]]:
        CallSign = CallSign.strip().upper()

        if not CallSign:
            return []

        Spots = await self.HamQTH.fetch_spots_async(cMySpots.FETCH_LIMIT) or []
        Matches = cMySpots.match(Spots, CallSign)
        await cLog.log_async('My Spots', f'found {len(Matches)} spots involving {CallSign}')
        return Matches

    @staticmethod
    def match(Spots: list[Spot], CallSign: str) -> list[dict[str, Any]]:
        Involved = [DXSpot for DXSpot in Spots if CallSign in DXSpot.spotter or CallSign in DXSpot.dx_call]

        def target(DXSpot: Spot) -> str:
            return DXSpot.dx_call if CallSign in DXSpot.spotter else DXSpot.spotter

        UniqueTargets = list(dict.fromkeys(target(DXSpot) for DXSpot in Involved))
        Locations = {
            Call: Location
            for Call in UniqueTargets[:cMySpots.MAX_LOOKUPS]
            if (Location := cGeo.estimate_location(Call))
        }

        Results: list[dict[str, Any]] = []

        for DXSpot in Involved:
            TargetCall = target(DXSpot)

            if (Location := Locations.get(TargetCall)) is None:
                continue

            Results.append({
                'spotter':     DXSpot.spotter,
                'dxCall':      DXSpot.dx_call,
                'freq':        DXSpot.freq_mhz,
                'comment':     DXSpot.comment,
                'time':        DXSpot.time_utc,
                'isMySpot':    CallSign in DXSpot.spotter,
                'isSpottedMe': CallSign in DXSpot.dx_call,
                'targetCall':  TargetCall,
                'lat':         Location.lat,
                'lon':         Location.lon,
                'country':     Location.country,
            })

        return Results

class cCallsign:
    MAX_CACHED: Final[int] = 5000

    _CallSign_RegEx: ClassVar[re.Pattern[str]] = re.compile(r'^[A-Z0-9/]{3,15}$')
    _Field_RegExes:  ClassVar[dict[str, re.Pattern[str]]] = {
        Field: re.compile(rf'<{Field}>([^<]+)</{Field}>')
        for Field in ('lat', 'lng', 'name', 'cq', 'itu')
    }

    def __init__(self, HamQTH: cHamQTH, Cache: cTTLCache[dict[str, Any]]):
        self.HamQTH = HamQTH
        self.Source = cCachedSource('Callsign Lookup', Cache, self.resolve_async)

    async def lookup_async(self, CallSign: str) -> dict[str, Any] | None:
        CallSign = CallSign.strip().upper()

        if not cCallsign._CallSign_RegEx.match(CallSign):
            return None

        return await self.Source.get_async(CallSign, CallSign)

    async def resolve_async(self, CallSign: str) -> dict[str, Any] | None:
        if (Text := await self.HamQTH.get_text_async(self.HamQTH.LookupURL, {'callsign': CallSign})) is not None:
            if Result := cCallsign.parse(CallSign, Text):
                cLog.debug('Callsign Lookup', f'found {CallSign} at HamQTH')
                return Result

        if Location := cGeo.estimate_location(CallSign):
            cLog.debug('Callsign Lookup', f'estimated {CallSign} from prefix')
            return Location.to_json(CallSign)

        return None

    @classmethod
    def parse(cls, CallSign: str, Text: str) -> dict[str, Any] | None:
        Values = {
            Field: Match.group(1).strip()
            for Field, RegEx in cls._Field_RegExes.items()
            if (Match := RegEx.search(Text))
        }

        try:
            Lat = float(Values['lat'])
            Lon = float(Values['lng'])
        except (KeyError, ValueError):
            return None

        return {
            'callsign': CallSign,
            'lat':      Lat,
            'lon':      Lon,
            'country':  Values.get('name', 'Unknown'),
            'cqZone':   Values.get('cq', ''),
            'ituZone':  Values.get('itu', ''),
        }

class cWeb:
    def __init__(
        self,
        Selector: cSourceSelector,
        Paths:    cPaths,
        MySpots:  cMySpots,
        Callsign: cCallsign,
        Caches:   dict[str, cTTLCache[Any]],
    ):
        self.Selector = Selector
        self.Paths    = Paths
        self.MySpots  = MySpots
        self.Callsign = Callsign
        self.Caches   = Caches

    def routes(self) -> list[web.RouteDef]:
        return [
            web.get('/spots',                   self.spots_async),
            web.get('/spots/sources',           self.sources_async),
            web.get('/spots/paths',             self.paths_async),
            web.get('/spots/mine/{callsign}',   self.my_spots_async),
            web.get('/callsign/{callsign}',     self.callsign_async),
            web.get('/stats',                   self.stats_async),
        ]

    async def spots_async(self, request: web.Request) -> web.Response:
        Spots = await self.Selector.get_spots_async(request.query.get('source', 'auto'))
        return web.json_response([DXSpot.to_json() for DXSpot in Spots])

    async def sources_async(self, _request: web.Request) -> web.Response:
        return web.json_response(cSourceSelector.SOURCES)

    async def paths_async(self, _request: web.Request) -> web.Response:
        return web.json_response(await self.Paths.get_paths_async())

    async def my_spots_async(self, request: web.Request) -> web.Response:
        return web.json_response(await self.MySpots.get_spots_async(request.match_info['callsign']))

    async def callsign_async(self, request: web.Request) -> web.Response:
        if (Result := await self.Callsign.lookup_async(request.match_info['callsign'])) is None:
            return web.json_response({'error': 'Callsign not found'}, status=404)

        return web.json_response(Result)

    async def stats_async(self, _request: web.Request) -> web.Response:
        Stats: dict[str, dict[str, Any]] = {}

        for Name, Cache in self.Caches.items():
            Age = Cache.age()
            Stats[Name] = {
                'fresh':       Cache.is_fresh(),
                'age_seconds': None if Age is None else round(Age, 1),
                'count':       len(Cache.get() or []),
            }

        return web.json_response(Stats)

def create_app(HamQTH: cHamQTH | None = None, DXSpider: cDXSpider | None = None, Clock: Callable[[], float] | None = None) -> web.Application:
    """Composition root: every cache is created here and handed to its owner."""
    if HamQTH is None:
        HamQTH = cHamQTH(
            URL            = cConfig.HAMQTH.URL,
            LookupURL      = cConfig.HAMQTH.LOOKUP_URL,
            UserAgent      = cConfig.HAMQTH.USER_AGENT,
            TimeoutSeconds = cConfig.HAMQTH.TIMEOUT_SECONDS,
        )

    if DXSpider is None:
        DXSpider = cDXSpider(
            cConfig.DXSPIDER.HOST,
            cConfig.DXSPIDER.PORT,
            Login                 = cConfig.DXSPIDER.LOGIN,
            CommandCount          = cConfig.DXSPIDER.COMMAND_COUNT,
            TargetCount           = cConfig.DXSPIDER.TARGET_COUNT,
            SessionTimeoutSeconds = cConfig.DXSPIDER.SESSION_TIMEOUT_SECONDS,
            PromptGraceSeconds    = cConfig.DXSPIDER.PROMPT_GRACE_SECONDS,
            DrainGraceSeconds     = cConfig.DXSPIDER.DRAIN_GRACE_SECONDS,
        )

    ClockArgs: dict[str, Any] = {} if Clock is None else {'Clock': Clock}

    HamQTHCache:   cTTLCache[list[Spot]]           = cTTLCache(cConfig.HAMQTH.CACHE_SECONDS,   **ClockArgs)
    DXSpiderCache: cTTLCache[list[Spot]]           = cTTLCache(cConfig.DXSPIDER.CACHE_SECONDS, **ClockArgs)
    PathsCache:    cTTLCache[list[dict[str, Any]]] = cTTLCache(cConfig.PATHS.CACHE_SECONDS,    **ClockArgs)
    CallsignCache: cTTLCache[dict[str, Any]]       = cTTLCache(cConfig.CALLSIGN_CACHE_SECONDS, MaxEntries=cCallsign.MAX_CACHED, **ClockArgs)

    Limit = cConfig.HAMQTH.LIMIT

    async def fetch_hamqth_async() -> list[Spot] | None:
        return await HamQTH.fetch_spots_async(Limit)

    Selector = cSourceSelector(
        HamQTH   = cCachedSource('HamQTH',    HamQTHCache,   fetch_hamqth_async),
        DXSpider = cCachedSource('DX Spider', DXSpiderCache, DXSpider.fetch_spots_async),
    )

    Web = cWeb(
        Selector = Selector,
        Paths    = cPaths(HamQTH, PathsCache, WindowMinutes=cConfig.PATHS.WINDOW_MINUTES),
        MySpots  = cMySpots(HamQTH),
        Callsign = cCallsign(HamQTH, CallsignCache),
        Caches   = {'hamqth': HamQTHCache, 'dxspider': DXSpiderCache, 'paths': PathsCache},
    )

    app = web.Application()
    app.add_routes(Web.routes())
    return app

async def get_version_async() -> str:
    """
    Runs GenerateVersionStamp.py, when present, to produce cVersion.py with the
    version stamp of the HEAD commit.  Releases ship cVersion.py alone.
    """
    if Path("GenerateVersionStamp.py").is_file():
        proc = await asyncio.create_subprocess_exec(
            sys.executable, "GenerateVersionStamp.py",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        _, stderr = await proc.communicate()

        if proc.returncode != 0:
            print(f"GenerateVersionStamp.py failed:\n{stderr.decode()}")

    VERSION = "<development>"

    with suppress(ImportError):
        from cVersion import VERSION  # noqa: PLC0415

    return VERSION

async def main_loop() -> None:
    print(f'dxspots version {await get_version_async()}\n')

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, cUtil.handle_shutdown)

    await cConfig.init(sys.argv[1:])

    if cConfig.LOG_FILE.ENABLED and cConfig.LOG_FILE.DELETE_ON_STARTUP:
        Filename = cConfig.LOG_FILE.FILE_NAME
        if Filename is not None and await aiofiles.os.path.exists(Filename):
            await aiofiles.os.remove(Filename)

    runner = web.AppRunner(create_app())
    await runner.setup()

    try:
        site = web.TCPSite(runner, cConfig.WEB_HOST, cConfig.WEB_PORT)
        await site.start()
        await cLog.log_async('Server', f'listening on http://{cConfig.WEB_HOST}:{cConfig.WEB_PORT}')

        await asyncio.Event().wait()
    finally:
        await runner.cleanup()

def main() -> None:
    try:
        asyncio.run(main_loop())
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\n\nExiting...")

if __name__ == "__main__":
    main()
