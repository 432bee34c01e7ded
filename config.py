"""Server configuration for the game asset server.

A ``ServerConfig`` is built once by the hosting application (or from the
environment) and handed to ``create_app`` / ``AssetServer``. It is frozen:
nothing about the bind address, root or MIME overrides changes once a server
has been constructed from it.

Environment variables read by ``ServerConfig.from_env``:
  ASSET_SERVER_HOST      bind host (default 127.0.0.1)
  ASSET_SERVER_PORT      bind port (default 9696)
  ASSET_SERVER_ROOT      directory to serve (default ./game)
  ASSET_SERVER_CACHING   1/0, send ETag and answer 304s (default 1)
  ASSET_SERVER_SESSIONS  1/0, session affinity cookie (default 0)
  ASSET_SERVER_SECRET    secret used to sign the session cookie
"""
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional
import os
import secrets

DEFAULT_HOST = '127.0.0.1'
DEFAULT_PORT = 9696
DEFAULT_SESSION_TIMEOUT = 30 * 60

# Extensions the game build needs that the stock tables get wrong or miss.
GAME_MIME_OVERRIDES = MappingProxyType({
    '.wasm': 'application/wasm',
    '.data': 'application/octet-stream',
    '.bin': 'application/octet-stream',
    '.symbols.json': 'application/json',
})

_TRUE = {'1', 'true', 'yes', 'on'}
_FALSE = {'0', 'false', 'no', 'off'}


class ConfigurationError(ValueError):
    """Raised when a server cannot be built from the given configuration."""


def default_root(base_dir: Path | None = None) -> Path:
    """The bundled game directory next to the working directory."""
    base = Path(base_dir) if base_dir is not None else Path.cwd()
    return (base / 'game').resolve()


def http_url(host: str, port: int) -> str:
    """Origin URL for a bind address, bracketing IPv6 hosts."""
    if ':' in host:
        host = f'[{host}]'
    return f'http://{host}:{port}/'


def _normalize_overrides(overrides: Mapping[str, str]) -> Mapping[str, str]:
    out = {}
    for ext, content_type in overrides.items():
        if not isinstance(ext, str) or not ext.startswith('.') or len(ext) < 2:
            raise ConfigurationError(f"MIME override extension must look like '.ext', got {ext!r}")
        if not content_type or not isinstance(content_type, str):
            raise ConfigurationError(f"MIME override for {ext} needs a content type")
        out[ext.lower()] = content_type
    return MappingProxyType(out)


@dataclass(frozen=True)
class ServerConfig:
    root: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    mime_overrides: Mapping[str, str] = field(default_factory=lambda: dict(GAME_MIME_OVERRIDES))
    session_affinity: bool = False
    content_caching: bool = True
    cache_max_age: Optional[int] = None
    default_document: Optional[str] = 'index.html'
    session_timeout: float = DEFAULT_SESSION_TIMEOUT
    secret_key: str = field(default_factory=lambda: secrets.token_hex(32), repr=False)

    def __post_init__(self):
        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, 'root', Path(self.root).expanduser().resolve())
        object.__setattr__(self, 'mime_overrides', _normalize_overrides(self.mime_overrides))
        try:
            port = int(self.port)
        except (TypeError, ValueError):
            raise ConfigurationError(f"port must be an integer, got {self.port!r}")
        if not 0 <= port <= 65535:
            raise ConfigurationError(f"port out of range: {port}")
        object.__setattr__(self, 'port', port)
        if not self.host:
            raise ConfigurationError("host is required")
        if self.session_timeout <= 0:
            raise ConfigurationError("session_timeout must be positive")

    @property
    def address(self) -> tuple[str, int]:
        return (self.host, self.port)

    @property
    def url(self) -> str:
        return http_url(self.host, self.port)

    def validate_root(self) -> Path:
        """Check the root is an existing, readable directory and return it."""
        root = self.root
        if not root.exists():
            raise ConfigurationError(f"root directory does not exist: {root}")
        if not root.is_dir():
            raise ConfigurationError(f"root is not a directory: {root}")
        if not os.access(root, os.R_OK | os.X_OK):
            raise ConfigurationError(f"root directory is not readable: {root}")
        return root

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> 'ServerConfig':
        """Build a config from ``ASSET_SERVER_*`` variables.

        Keyword arguments win over the environment, which wins over defaults.
        """
        env = os.environ if environ is None else environ
        values = {
            'host': env.get('ASSET_SERVER_HOST', DEFAULT_HOST),
            'port': _env_int(env, 'ASSET_SERVER_PORT', DEFAULT_PORT),
            'root': env.get('ASSET_SERVER_ROOT') or default_root(),
            'content_caching': _env_bool(env, 'ASSET_SERVER_CACHING', True),
            'session_affinity': _env_bool(env, 'ASSET_SERVER_SESSIONS', False),
        }
        secret = env.get('ASSET_SERVER_SECRET')
        if secret:
            values['secret_key'] = secret
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def _env_int(env, name, default):
    raw = env.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_bool(env, name, default):
    raw = env.get(name)
    if raw is None or raw.strip() == '':
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be 0 or 1, got {raw!r}")


def parse_mime_override(text: str) -> tuple[str, str]:
    """Parse a ``.ext=content/type`` pair as given on the command line."""
    ext, sep, content_type = text.partition('=')
    ext, content_type = ext.strip(), content_type.strip()
    if not sep or not ext or not content_type:
        raise ConfigurationError(f"expected .ext=content/type, got {text!r}")
    if not ext.startswith('.'):
        ext = '.' + ext
    return ext.lower(), content_type
