import socket

import pytest

from config import ServerConfig


@pytest.fixture
def game_root(tmp_path):
    """A small game build: wasm, data, symbols and an index page."""
    root = tmp_path / 'game'
    root.mkdir()
    (root / 'index.html').write_text('<html>game</html>')
    (root / 'app.wasm').write_bytes(b'\x00asm\x01\x00\x00\x00')
    (root / 'app.data').write_bytes(b'DATA' * 64)
    (root / 'report.symbols.json').write_text('{"symbols": []}')
    (root / 'settings.json').write_text('{"volume": 3}')
    (root / 'levels').mkdir()
    (root / 'levels' / 'one.bin').write_bytes(b'\x01\x02\x03')
    (tmp_path / 'secret.txt').write_text('outside the root')
    return root


@pytest.fixture
def free_port():
    with socket.create_server(('127.0.0.1', 0)) as s:
        return s.getsockname()[1]


@pytest.fixture
def make_config(game_root):
    def _make(**kwargs):
        kwargs.setdefault('root', game_root)
        kwargs.setdefault('port', 0)
        return ServerConfig(**kwargs)
    return _make
