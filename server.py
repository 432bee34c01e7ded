"""Start/stop lifecycle for the asset server.

``AssetServer`` owns one werkzeug threaded WSGI server running the Flask app
from ``app.create_app`` on a background thread, so a hosting UI can start it,
point a browser/WebView at ``server.url`` and stop it again.

Stop policy: ``stop()`` stops accepting connections and closes the listening
socket. Requests already in flight run on daemon worker threads and are left
to finish on their own; ``stop()`` does not wait for them.
"""
import enum
import errno
import logging
import socket
import threading

from werkzeug.serving import make_server

from app import create_app
from config import ServerConfig, http_url
from mimetable import MimeTable

logger = logging.getLogger(__name__)

JOIN_TIMEOUT = 5.0


class ServerState(enum.Enum):
    STOPPED = 'Stopped'
    STARTING = 'Starting'
    LISTENING = 'Listening'
    STOPPING = 'Stopping'
    FAILED = 'Failed'

    def __str__(self):
        return self.value


class BindError(OSError):
    """The configured address could not be bound."""


class ServerStateError(RuntimeError):
    """A lifecycle call is not allowed in the current state."""


class AssetServer:
    # (host, port) pairs bound by any AssetServer in this process
    _claimed_addresses: set = set()
    _claims_lock = threading.Lock()

    def __init__(self, config: ServerConfig, mime_table: MimeTable | None = None):
        self.config = config
        self.app = create_app(config, mime_table)
        self._state = ServerState.STOPPED
        self._lock = threading.RLock()
        self._listeners = []
        self._httpd = None
        self._thread = None
        self._claim = None

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def port(self) -> int:
        httpd = self._httpd
        return httpd.port if httpd is not None else self.config.port

    @property
    def url(self) -> str:
        return http_url(self.config.host, self.port)

    @property
    def mime_table(self) -> MimeTable:
        return self.app.extensions['asset_mime_table']

    @property
    def sessions(self):
        return self.app.extensions['asset_sessions']

    def add_state_listener(self, callback):
        self._listeners.append(callback)

    def remove_state_listener(self, callback):
        self._listeners.remove(callback)

    def _set_state(self, state: ServerState):
        self._state = state
        logger.info('Asset server new state - %s', state)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception('State listener %r failed', listener)

    def start(self):
        with self._lock:
            if self._state is ServerState.LISTENING:
                return
            if self._state is ServerState.FAILED:
                raise ServerStateError('server has failed; call reset() before start()')
            if self._state is not ServerState.STOPPED:
                raise ServerStateError(f'cannot start while {self._state}')
            self._set_state(ServerState.STARTING)
            try:
                self._httpd = self._bind()
            except BindError as e:
                logger.error('Could not bind %s:%s: %s', self.config.host, self.config.port, e.strerror or e)
                self._set_state(ServerState.FAILED)
                raise
            self._thread = threading.Thread(
                target=self._httpd.serve_forever,
                name=f'asset-server-{self.port}',
                daemon=True,
            )
            self._thread.start()
            self._set_state(ServerState.LISTENING)

    def _bind(self):
        host, port = self.config.address
        claim = (host, port) if port else None
        with AssetServer._claims_lock:
            if claim in AssetServer._claimed_addresses:
                raise BindError(errno.EADDRINUSE, f'{host}:{port} is already served in this process')
            family = socket.AF_INET6 if ':' in host else socket.AF_INET
            try:
                sock = socket.create_server((host, port), family=family)
            except OSError as e:
                raise BindError(e.errno, e.strerror or str(e)) from e
            try:
                # werkzeug adopts a duplicate of the already bound socket
                httpd = make_server(host, port, self.app, threaded=True, fd=sock.fileno())
            except OSError as e:
                raise BindError(e.errno, e.strerror or str(e)) from e
            finally:
                sock.close()
            if claim is not None:
                AssetServer._claimed_addresses.add(claim)
            self._claim = claim
        return httpd

    def _release(self):
        with AssetServer._claims_lock:
            AssetServer._claimed_addresses.discard(self._claim)
        self._claim = None

    def stop(self):
        with self._lock:
            if self._state is not ServerState.LISTENING:
                return
            self._set_state(ServerState.STOPPING)
            httpd, thread = self._httpd, self._thread
            try:
                httpd.shutdown()
                httpd.server_close()
                thread.join(JOIN_TIMEOUT)
            finally:
                self._httpd = None
                self._thread = None
                self._release()
                self._set_state(ServerState.STOPPED)

    def reset(self):
        """Clear a Failed state so the server can be started again."""
        with self._lock:
            if self._state is ServerState.FAILED:
                self._set_state(ServerState.STOPPED)
            elif self._state is not ServerState.STOPPED:
                raise ServerStateError(f'cannot reset while {self._state}')

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()
