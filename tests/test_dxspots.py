import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from dxspots import cCallsign, cConfig, cHamQTH, cMySpots, cPaths, cSourceSelector, create_app
from SpotLib.cDXSpider import cDXSpider
from SpotLib.cLog import cLog
from SpotLib.cSpot import Spot, cSource
from SpotLib.cTTLCache import cCachedSource, cTTLCache

CSV_BODY = (
    'W3LPL^14074.0^K1ABC^FT8 -12 dB^1234 2025-05-27^^^NA^20M^USA^291\n'
    'this line is not a spot\n'
    'DL1ABC^7030.0^JA1XYZ^CW 599^1235 2025-05-27^^^EU^40M^Japan^339\n'
)

LOOKUP_XML = '''<?xml version="1.0"?>
<HamQTH version="2.8">
<dxcc>
<callsign>K1ABC</callsign>
<name>United States</name>
<details>USA</details>
<continent>NA</continent>
<utc>-5</utc>
<waz>5</waz>
<itu>8</itu>
<cq>5</cq>
<lat>42.4</lat>
<lng>-71.2</lng>
<adif>291</adif>
</dxcc>
</HamQTH>
'''

def make_spot(spotter, dx_call, freq='14.074', source=cSource.HAMQTH, spotted_at=None) -> Spot:
    return Spot(spotter, dx_call, freq, 'CW', '12:34z', source, spotted_at)

class FakeHamQTH(cHamQTH):
    def __init__(self, Spots: str | None = CSV_BODY, Lookups: dict[str, str] | None = None):
        cHamQTH.__init__(self, URL='http://hamqth.test/dxc_csv.php', LookupURL='http://hamqth.test/dxcc.php')
        self.Spots   = Spots
        self.Lookups = Lookups or {}
        self.Requests: list[tuple[str, dict[str, str]]] = []

    async def get_text_async(self, URL, Params):
        self.Requests.append((URL, Params))

        if URL == self.LookupURL:
            return self.Lookups.get(Params['callsign'])

        return self.Spots

class FakeDXSpider(cDXSpider):
    def __init__(self, Spots: list[Spot]):
        cDXSpider.__init__(self, '127.0.0.1', 7300)
        self.Spots = Spots
        self.Fetches = 0

    async def fetch_spots_async(self):
        self.Fetches += 1
        return list(self.Spots)

@pytest.fixture
def restore_config(monkeypatch):
    for Name in ('HAMQTH', 'DXSPIDER', 'PATHS', 'LOG_FILE', 'CONFIG_FILE', 'WEB_HOST', 'WEB_PORT',
                 'VERBOSE', 'LOG_BAD_SPOTS', 'CALLSIGN_CACHE_SECONDS', 'config_file'):
        monkeypatch.setattr(cConfig, Name, getattr(cConfig, Name))

    for Name in ('FILE_NAME', 'VERBOSE', 'LOG_BAD_SPOTS'):
        monkeypatch.setattr(cLog, Name, getattr(cLog, Name))

class TestHamQTH:
    @staticmethod
    async def fetch_from(handler, Limit=25, TimeoutSeconds=2.0):
        app = web.Application()
        app.router.add_get('/dxc_csv.php', handler)

        async with TestServer(app) as server:
            hamqth = cHamQTH(URL=str(server.make_url('/dxc_csv.php')), UserAgent='dxspots-test', TimeoutSeconds=TimeoutSeconds)
            return await hamqth.fetch_spots_async(Limit)

    def test_malformed_line_skipped(self):
        seen = {}

        async def handler(request):
            seen['agent'] = request.headers.get('User-Agent')
            seen['limit'] = request.query.get('limit')
            return web.Response(text=CSV_BODY)

        spots = asyncio.run(self.fetch_from(handler, Limit=25))

        assert spots is not None
        assert [spot.dx_call for spot in spots] == ['K1ABC', 'JA1XYZ']
        assert [spot.freq_mhz for spot in spots] == ['14.074', '7.030']
        assert seen == {'agent': 'dxspots-test', 'limit': '25'}

    def test_result_capped_at_limit(self):
        async def handler(request):
            return web.Response(text=CSV_BODY * 3)

        spots = asyncio.run(self.fetch_from(handler, Limit=3))
        assert spots is not None
        assert len(spots) == 3

    def test_http_error_is_failure(self):
        async def handler(request):
            return web.Response(status=503, text='busy')

        assert asyncio.run(self.fetch_from(handler)) is None

    def test_no_spots_is_failure(self):
        async def handler(request):
            return web.Response(text='nothing here\n')

        assert asyncio.run(self.fetch_from(handler)) is None

    def test_slow_upstream_times_out(self):
        async def handler(request):
            await asyncio.sleep(2)
            return web.Response(text=CSV_BODY)

        assert asyncio.run(self.fetch_from(handler, TimeoutSeconds=0.2)) is None

    def test_unreachable_host_is_failure(self):
        async def run():
            return await cHamQTH(URL='http://127.0.0.1:9/dxc_csv.php', TimeoutSeconds=2).fetch_spots_async()

        assert asyncio.run(run()) is None

class TestSourceSelector:
    @staticmethod
    def selector(hamqth_result, dxspider_result, calls):
        async def fetch_hamqth():
            calls.append('hamqth')
            return hamqth_result

        async def fetch_dxspider():
            calls.append('dxspider')
            return dxspider_result

        return cSourceSelector(
            HamQTH   = cCachedSource('HamQTH',    cTTLCache(30), fetch_hamqth),
            DXSpider = cCachedSource('DX Spider', cTTLCache(60), fetch_dxspider),
        )

    def test_auto_prefers_hamqth(self):
        calls = []
        selector = self.selector([make_spot('W3LPL', 'K1ABC')], [make_spot('W3LPL', 'K2ABC', source=cSource.DXSPIDER)], calls)

        spots = asyncio.run(selector.get_spots_async('auto'))

        assert [spot.dx_call for spot in spots] == ['K1ABC']
        assert calls == ['hamqth']

    def test_auto_falls_back_with_provenance(self):
        calls = []
        selector = self.selector(None, [make_spot('W3LPL', 'K2ABC', source=cSource.DXSPIDER)], calls)

        spots = asyncio.run(selector.get_spots_async('auto'))

        assert [spot.source for spot in spots] == [cSource.DXSPIDER]
        assert calls == ['hamqth', 'dxspider']

    def test_dxspider_preference_falls_back_to_hamqth(self):
        calls = []
        selector = self.selector([make_spot('W3LPL', 'K1ABC')], [], calls)

        spots = asyncio.run(selector.get_spots_async('dxspider'))

        assert [spot.source for spot in spots] == [cSource.HAMQTH]
        assert calls == ['dxspider', 'hamqth']

    def test_hamqth_preference_has_no_fallback(self):
        calls = []
        selector = self.selector(None, [make_spot('W3LPL', 'K2ABC', source=cSource.DXSPIDER)], calls)

        assert asyncio.run(selector.get_spots_async('hamqth')) == []
        assert calls == ['hamqth']

    def test_unknown_preference_behaves_like_auto(self):
        calls = []
        selector = self.selector(None, None, calls)

        assert asyncio.run(selector.get_spots_async('bogus')) == []
        assert calls == ['hamqth', 'dxspider']

    def test_sources_listing(self):
        assert [source['id'] for source in cSourceSelector.SOURCES] == ['auto', 'hamqth', 'dxspider']

class TestPaths:
    NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)

    def test_unresolvable_spots_dropped(self):
        paths = cPaths(FakeHamQTH(), cTTLCache(30))
        spots = [
            make_spot('K1ABC',  'DL1ABC'),
            make_spot('W3LPL',  'VK2ABC', freq='7.030'),
            make_spot('XX9ABC', 'JA1XYZ', freq='21.074'),
        ]

        result = paths.compose(spots, self.NOW)

        assert len(result) == 2
        assert result[0] == {
            'spotter':        'K1ABC',
            'spotterLat':     39.8,
            'spotterLon':     -98.5,
            'spotterCountry': 'USA',
            'dxCall':         'DL1ABC',
            'dxLat':          51.2,
            'dxLon':          10.4,
            'dxCountry':      'Germany',
            'freq':           '14.074',
            'comment':        'CW',
            'time':           '12:34z',
        }
        assert result[1]['dxCountry'] == 'Australia'

    def test_old_spots_outside_window(self):
        paths = cPaths(FakeHamQTH(), cTTLCache(30), WindowMinutes=5)
        spots = [
            make_spot('K1ABC', 'DL1ABC', spotted_at=self.NOW - timedelta(minutes=2)),
            make_spot('K1ABC', 'G3ABC',  spotted_at=self.NOW - timedelta(minutes=10)),
            make_spot('K1ABC', 'F5ABC'),
        ]

        assert [path['dxCall'] for path in paths.compose(spots, self.NOW)] == ['DL1ABC', 'F5ABC']

    def test_capped(self):
        paths = cPaths(FakeHamQTH(), cTTLCache(30))
        spots = [make_spot('K1ABC', 'DL1ABC', freq=f'{14 + Index / 1000:.3f}') for Index in range(40)]

        assert len(paths.compose(spots, self.NOW)) == cPaths.MAX_PATHS

    def test_upstream_failure_gives_empty_list(self):
        paths = cPaths(FakeHamQTH(Spots=None), cTTLCache(30))
        assert asyncio.run(paths.get_paths_async()) == []

class TestMySpots:
    def test_spots_involving_callsign(self):
        spots = [
            make_spot('K1ABC', 'DL1ABC'),
            make_spot('JA1XYZ', 'K1ABC'),
            make_spot('W3LPL', 'G3ABC'),
            make_spot('K1ABC', 'XX9ABC'),
        ]

        result = cMySpots.match(spots, 'K1ABC')

        assert [(row['spotter'], row['dxCall']) for row in result] == [('K1ABC', 'DL1ABC'), ('JA1XYZ', 'K1ABC')]
        assert result[0]['isMySpot'] and not result[0]['isSpottedMe']
        assert result[0]['targetCall'] == 'DL1ABC'
        assert result[0]['country'] == 'Germany'
        assert result[1]['isSpottedMe'] and not result[1]['isMySpot']
        assert result[1]['targetCall'] == 'JA1XYZ'
        assert result[1]['country'] == 'Japan'

    def test_callsign_normalised(self):
        hamqth = FakeHamQTH()
        result = asyncio.run(cMySpots(hamqth).get_spots_async(' w3lpl '))

        assert [row['dxCall'] for row in result] == ['K1ABC']
        assert hamqth.Requests[0][1] == {'limit': '100'}

class TestCallsign:
    def test_parse_lookup(self):
        assert cCallsign.parse('K1ABC', LOOKUP_XML) == {
            'callsign': 'K1ABC',
            'lat':      42.4,
            'lon':      -71.2,
            'country':  'United States',
            'cqZone':   '5',
            'ituZone':  '8',
        }

    def test_parse_without_coordinates(self):
        assert cCallsign.parse('K1ABC', '<HamQTH><dxcc><name>Nowhere</name></dxcc></HamQTH>') is None

    def test_lookup_cached(self):
        hamqth = FakeHamQTH(Lookups={'K1ABC': LOOKUP_XML})
        callsign = cCallsign(hamqth, cTTLCache(60))

        async def run():
            first  = await callsign.lookup_async('k1abc')
            second = await callsign.lookup_async('K1ABC')
            return first, second

        first, second = asyncio.run(run())

        assert first == second
        assert first['lat'] == 42.4
        assert len(hamqth.Requests) == 1

    def test_falls_back_to_prefix_estimate(self):
        callsign = cCallsign(FakeHamQTH(), cTTLCache(60))
        result = asyncio.run(callsign.lookup_async('JA1XYZ'))

        assert result == {'callsign': 'JA1XYZ', 'lat': 36.2, 'lon': 138.3, 'country': 'Japan', 'estimated': True}

    def test_unknown_and_invalid(self):
        hamqth = FakeHamQTH()
        callsign = cCallsign(hamqth, cTTLCache(60))

        assert asyncio.run(callsign.lookup_async('XX9ABC')) is None
        assert asyncio.run(callsign.lookup_async('K!')) is None
        assert len(hamqth.Requests) == 1

class TestWeb:
    @staticmethod
    async def get_all(app, *paths):
        results = {}

        async with TestClient(TestServer(app)) as client:
            for path in paths:
                response = await client.get(path)
                results[path] = (response.status, await response.json())

        return results

    def test_routes(self):
        dxspider = FakeDXSpider([make_spot('W3LPL', 'K2ABC', source=cSource.DXSPIDER)])
        app = create_app(HamQTH=FakeHamQTH(Lookups={'K1ABC': LOOKUP_XML}), DXSpider=dxspider)

        results = asyncio.run(self.get_all(
            app,
            '/spots',
            '/spots?source=dxspider',
            '/spots/sources',
            '/spots/mine/W3LPL',
            '/callsign/K1ABC',
            '/callsign/XX9ABC',
            '/stats',
        ))

        status, spots = results['/spots']
        assert status == 200
        assert spots[0] == {'spotter': 'W3LPL', 'call': 'K1ABC', 'freq': '14.074', 'comment': 'FT8 -12 dB', 'time': '12:34z', 'source': 'HamQTH'}

        assert results['/spots?source=dxspider'][1][0]['source'] == 'DX Spider'
        assert [source['id'] for source in results['/spots/sources'][1]] == ['auto', 'hamqth', 'dxspider']
        assert results['/spots/mine/W3LPL'][1][0]['targetCall'] == 'K1ABC'
        assert results['/callsign/K1ABC'] == (200, cCallsign.parse('K1ABC', LOOKUP_XML))
        assert results['/callsign/XX9ABC'][0] == 404

        stats = results['/stats'][1]
        assert stats['hamqth']['fresh'] is True
        assert stats['hamqth']['count'] == 2
        assert stats['dxspider']['count'] == 1
        assert stats['paths'] == {'fresh': False, 'age_seconds': None, 'count': 0}

    def test_upstream_failures_still_200(self):
        app = create_app(HamQTH=FakeHamQTH(Spots=None), DXSpider=FakeDXSpider([]))

        results = asyncio.run(self.get_all(app, '/spots', '/spots?source=hamqth', '/spots/paths', '/spots/mine/K1ABC'))

        assert all(result == (200, []) for result in results.values())

    def test_spots_served_from_cache(self):
        hamqth = FakeHamQTH()
        app = create_app(HamQTH=hamqth, DXSpider=FakeDXSpider([]))

        asyncio.run(self.get_all(app, '/spots', '/spots'))

        assert len(hamqth.Requests) == 1

class TestConfig:
    def test_file_and_arguments(self, tmp_path, restore_config):
        config = tmp_path / 'dxspots.cfg'
        config.write_text(
            "WEB_PORT = 8080\n"
            "DXSPIDER = {'HOST': 'node.example', 'LOGIN': 'n0call', 'TARGET_COUNT': 10}\n"
            "HAMQTH = {'LIMIT': 50}\n",
            encoding='utf-8',
        )

        asyncio.run(cConfig.init(['--config', str(config), '--cluster', 'other.example:7373', '--verbose']))

        assert cConfig.WEB_PORT == 8080
        assert cConfig.DXSPIDER.HOST == 'other.example'
        assert cConfig.DXSPIDER.PORT == 7373
        assert cConfig.DXSPIDER.LOGIN == 'N0CALL'
        assert cConfig.DXSPIDER.TARGET_COUNT == 10
        assert cConfig.DXSPIDER.CACHE_SECONDS == 60.0
        assert cConfig.HAMQTH.LIMIT == 50
        assert cLog.VERBOSE is True

    def test_missing_file_uses_defaults(self, tmp_path, restore_config):
        asyncio.run(cConfig.init(['--config', str(tmp_path / 'missing.cfg')]))

        assert cConfig.WEB_PORT == 3000
        assert cConfig.HAMQTH.CACHE_SECONDS == 30.0
        assert cConfig.DXSPIDER.SESSION_TIMEOUT_SECONDS == 15.0
        assert cConfig.CALLSIGN_CACHE_SECONDS == 6 * 60 * 60
        assert cLog.FILE_NAME is None

    def test_logfile_argument(self, tmp_path, restore_config):
        log = tmp_path / 'dxspots.log'
        asyncio.run(cConfig.init(['--config', str(tmp_path / 'missing.cfg'), '--logfile', str(log)]))

        assert cLog.FILE_NAME == str(log)

    @pytest.mark.parametrize('contents', [
        "WEB_PORT = 70000\n",
        "DXSPIDER = {'LOGIN': ''}\n",
        "HAMQTH = {'CACHE_SECONDS': 0}\n",
    ])
    def test_invalid_settings_exit(self, tmp_path, restore_config, contents):
        config = tmp_path / 'dxspots.cfg'
        config.write_text(contents, encoding='utf-8')

        with pytest.raises(SystemExit):
            asyncio.run(cConfig.init(['--config', str(config)]))

    def test_bad_cluster_argument_exits(self, tmp_path, restore_config):
        with pytest.raises(SystemExit):
            asyncio.run(cConfig.init(['--config', str(tmp_path / 'missing.cfg'), '--cluster', 'nohost']))
