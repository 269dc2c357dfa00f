"""
Integration tests for shipping callables between stations.

Runs two small HTTP stations locally on free ports, each backed by its
own CallableRuntime and data directory, and moves serial forms between
them with push/pull over real sockets.

Tests:
- push defines a callable on the receiving station
- pull rebuilds a callable that behaves like the original
- Station-to-station copy keeps behavior
- Rejected and missing callables surface as TransportError
"""

import json
import shutil
import tempfile
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest


class StationHandler(BaseHTTPRequestHandler):
    """Serves /callables/{id}: GET returns the serial form, POST defines it."""

    def log_message(self, format, *args):
        pass

    def _callable_id(self):
        prefix = '/callables/'
        if not self.path.startswith(prefix):
            return None
        return self.path[len(prefix):] or None

    def _reply(self, status, payload):
        body = json.dumps(payload).encode()
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        from callable_primitive import CallableNotFoundError

        callable_id = self._callable_id()
        if callable_id is None:
            self._reply(404, {'error': 'not found'})
            return

        try:
            managed = self.server.runtime.load(callable_id)
        except CallableNotFoundError as e:
            self._reply(404, {'error': str(e)})
            return

        self._reply(200, managed.serialize())

    def do_POST(self):
        from callable_primitive import CompileError, SerialFormError

        callable_id = self._callable_id()
        if callable_id is None:
            self._reply(404, {'error': 'not found'})
            return

        length = int(self.headers.get('Content-Length', 0))
        try:
            form = json.loads(self.rfile.read(length))
            managed = self.server.runtime.import_callable(callable_id, form, author='http')
        except (ValueError, CompileError, SerialFormError) as e:
            self._reply(400, {'error': str(e)})
            return

        history = managed.get_version_history(limit=1)
        self._reply(201, {'callable_id': callable_id, 'version': history[0]['version_id']})


class LocalStation:
    """An HTTP station with its own data directory, running in a thread."""

    def __init__(self):
        from callable_primitive import CallableRuntime

        self.base_dir = Path(tempfile.mkdtemp(prefix='test_station_'))
        self.runtime = CallableRuntime(base_dir=self.base_dir)

        self.server = ThreadingHTTPServer(('127.0.0.1', 0), StationHandler)
        self.server.runtime = self.runtime
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def start(self):
        self.thread.start()

    def stop(self):
        if self.thread.is_alive():
            self.server.shutdown()
        self.server.server_close()
        shutil.rmtree(self.base_dir, ignore_errors=True)

    def url(self, callable_id):
        host, port = self.server.server_address[:2]
        return f'http://{host}:{port}/callables/{callable_id}'


@pytest.fixture(scope='module')
def stations():
    """Two running stations"""
    pair = [LocalStation(), LocalStation()]
    for station in pair:
        station.start()
    yield pair
    for station in pair:
        station.stop()


class TestPushPull:
    """Moving serial forms over real HTTP"""

    def test_push_defines_callable(self, stations):
        """push creates the callable on the station"""
        from callable_primitive import DeferredCallable
        from callable_primitive.interfaces import push

        station = stations[0]
        reply = push(station.url('square'), DeferredCallable('|i| i ** 2'), timeout=5)

        assert reply == {'callable_id': 'square', 'version': 1}
        assert station.runtime.load('square')(3) == 9

    def test_pull_round_trip(self, stations):
        """pull rebuilds a callable that behaves like the pushed one"""
        from callable_primitive import DeferredCallable
        from callable_primitive.interfaces import push, pull

        original = DeferredCallable('|i| i % 3 == 0')
        push(stations[0].url('m3'), original, timeout=5)

        rebuilt = pull(stations[0].url('m3'), timeout=5)

        assert rebuilt == original
        assert list(filter(rebuilt, range(1, 11))) == [3, 6, 9]

    def test_copy_between_stations(self, stations):
        """Pull from one station, push to the other"""
        from callable_primitive.interfaces import push, pull

        source_station, target_station = stations
        source_station.runtime.define('reverse', '|s| s[::-1]')

        push(target_station.url('reverse'), pull(source_station.url('reverse'), timeout=5), timeout=5)

        assert target_station.runtime.load('reverse')('abc') == 'cba'

    def test_push_again_adds_version(self, stations):
        """Pushing an existing ID creates a new version"""
        from callable_primitive import DeferredCallable
        from callable_primitive.interfaces import push

        station = stations[1]
        push(station.url('inc'), DeferredCallable('|i| i + 1'), timeout=5)
        reply = push(station.url('inc'), DeferredCallable('|i| i + 2'), timeout=5)

        assert reply['version'] == 2


class TestTransportErrors:
    """Failures reported by a real station"""

    def test_pull_missing(self, stations):
        """Unknown IDs come back as 404 -> TransportError"""
        from callable_primitive.interfaces import pull, TransportError

        with pytest.raises(TransportError):
            pull(stations[0].url('nothing'), timeout=5)

    def test_push_rejected(self, stations):
        """A station that refuses the form (400) -> TransportError"""
        from callable_primitive import DeferredCallable
        from callable_primitive.interfaces import push, TransportError

        class Unshippable(DeferredCallable):
            def serialize(self):
                return {'code': self.source}

        with pytest.raises(TransportError):
            push(stations[0].url('odd'), Unshippable('|i| i'), timeout=5)

        assert 'odd' not in stations[0].runtime.list_callables()

    def test_station_down(self):
        """Connection refused -> TransportError"""
        from callable_primitive.interfaces import pull, TransportError

        station = LocalStation()
        url = station.url('square')
        station.stop()

        with pytest.raises(TransportError):
            pull(url, timeout=1)
