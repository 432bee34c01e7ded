import os

import pytest
from flask import g

import app as asset_app
from app import ERROR_PAYLOAD, create_app, resolve_target

ALL_METHODS = ['GET', 'HEAD', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS']


@pytest.fixture
def client(make_config):
    return create_app(make_config()).test_client()


def test_wasm_served_with_wasm_type(client, game_root):
    rv = client.get('/app.wasm')
    assert rv.status_code == 200
    assert rv.mimetype == 'application/wasm'
    assert rv.data == (game_root / 'app.wasm').read_bytes()


def test_symbols_json_beats_json(make_config):
    app = create_app(make_config(mime_overrides={'.symbols.json': 'application/x-symbols'}))
    client = app.test_client()
    assert client.get('/report.symbols.json').mimetype == 'application/x-symbols'
    assert client.get('/settings.json').mimetype == 'application/json'


@pytest.mark.parametrize('path,ctype', [
    ('/report.symbols.json', 'application/json'),
    ('/app.data', 'application/octet-stream'),
    ('/levels/one.bin', 'application/octet-stream'),
    ('/index.html', 'text/html'),
])
def test_content_types(client, path, ctype):
    rv = client.get(path)
    assert rv.status_code == 200
    assert rv.mimetype == ctype


def test_missing_file_returns_error_payload(client):
    rv = client.get('/missing.png')
    assert rv.status_code == 404
    assert rv.get_json() == ERROR_PAYLOAD


@pytest.mark.parametrize('method', ALL_METHODS)
def test_catch_all_answers_every_method(client, method):
    rv = client.open('/nothing/here.js', method=method)
    assert rv.status_code == 404
    if method != 'HEAD':
        assert rv.get_json() == {'Message': 'Error'}


def test_unlisted_verb_gets_catch_all(client):
    rv = client.open('/app.wasm', method='PROPFIND')
    assert rv.status_code == 404
    assert rv.get_json() == ERROR_PAYLOAD


def test_non_get_verbs_do_not_serve_assets(client):
    rv = client.post('/app.wasm')
    assert rv.status_code == 404
    assert rv.get_json() == ERROR_PAYLOAD


def test_head_sends_headers_only(client, game_root):
    rv = client.head('/app.data')
    assert rv.status_code == 200
    assert rv.data == b''
    assert int(rv.headers['Content-Length']) == (game_root / 'app.data').stat().st_size


@pytest.mark.parametrize('path', [
    '/../secret.txt',
    '/levels/../../secret.txt',
    '/%2e%2e/secret.txt',
    '/levels/%2E%2E/%2E%2E/secret.txt',
])
def test_traversal_is_not_found(client, path):
    rv = client.get(path)
    assert rv.status_code == 404
    assert rv.get_json() == ERROR_PAYLOAD
    assert b'outside the root' not in rv.data


def test_traversal_rejected_before_filesystem(game_root):
    root = game_root.resolve()
    assert resolve_target(root, '../secret.txt') is None
    assert resolve_target(root, 'levels/../../secret.txt') is None
    assert resolve_target(root, 'levels/./../app.wasm') == root / 'app.wasm'


def test_symlink_out_of_root_is_not_served(client, game_root):
    (game_root / 'link.txt').symlink_to(game_root.parent / 'secret.txt')
    assert client.get('/link.txt').status_code == 404


def test_dot_segments_inside_root_collapse(client):
    rv = client.get('/levels/../app.wasm')
    assert rv.status_code == 200
    assert rv.mimetype == 'application/wasm'


def test_directory_serves_default_document(client):
    for path in ('/', '/index.html'):
        rv = client.get(path)
        assert rv.status_code == 200
        assert rv.data == b'<html>game</html>'


def test_directory_without_index_falls_through(client):
    rv = client.get('/levels/')
    assert rv.status_code == 404
    assert rv.get_json() == ERROR_PAYLOAD


def test_default_document_can_be_disabled(make_config):
    client = create_app(make_config(default_document=None)).test_client()
    assert client.get('/').status_code == 404


def test_etag_revalidation(client):
    first = client.get('/app.wasm')
    etag = first.headers['ETag']
    assert first.headers['Last-Modified']
    second = client.get('/app.wasm', headers={'If-None-Match': etag})
    assert second.status_code == 304
    assert second.data == b''


def test_if_modified_since(client):
    first = client.get('/app.wasm')
    rv = client.get('/app.wasm', headers={'If-Modified-Since': first.headers['Last-Modified']})
    assert rv.status_code == 304


def test_range_request(client):
    rv = client.get('/app.data', headers={'Range': 'bytes=0-3'})
    assert rv.status_code == 206
    assert rv.data == b'DATA'


def test_caching_disabled_ignores_validators(make_config):
    client = create_app(make_config(content_caching=False)).test_client()
    first = client.get('/app.wasm')
    assert 'ETag' not in first.headers
    rv = client.get('/app.wasm', headers={'If-None-Match': '"anything"'})
    assert rv.status_code == 200


def test_cache_max_age(make_config):
    client = create_app(make_config(cache_max_age=3600)).test_client()
    rv = client.get('/app.wasm')
    assert rv.cache_control.max_age == 3600


def test_unreadable_file_is_server_error(client, monkeypatch):
    def denied(*args, **kwargs):
        raise PermissionError(13, 'Permission denied')

    monkeypatch.setattr(asset_app, 'send_file', denied)
    rv = client.get('/app.wasm')
    assert rv.status_code == 500
    assert rv.get_json() == ERROR_PAYLOAD


@pytest.mark.skipif(os.geteuid() == 0, reason='root can read anything')
def test_unreadable_file_on_disk_is_server_error(client, game_root):
    locked = game_root / 'locked.bin'
    locked.write_bytes(b'\x00' * 8)
    locked.chmod(0)
    try:
        rv = client.get('/locked.bin')
        assert rv.status_code == 500
        assert rv.get_json() == ERROR_PAYLOAD
    finally:
        locked.chmod(0o644)


def test_overlong_name_is_not_found(client):
    rv = client.get('/' + 'x' * 300)
    assert rv.status_code == 404
    assert rv.get_json() == ERROR_PAYLOAD


@pytest.mark.skipif(os.geteuid() == 0, reason='root can read anything')
def test_path_through_unreadable_directory_is_not_found(client, game_root):
    locked = game_root / 'private'
    locked.mkdir()
    (locked / 'save.bin').write_bytes(b'\x01')
    locked.chmod(0)
    try:
        rv = client.get('/private/save.bin')
        assert rv.status_code == 404
        assert rv.get_json() == ERROR_PAYLOAD
    finally:
        locked.chmod(0o755)


def test_no_session_cookie_by_default(client):
    rv = client.get('/app.wasm')
    assert 'X-Session-Id' not in rv.headers
    assert 'Set-Cookie' not in rv.headers


def test_session_affinity_reuses_id(make_config):
    app = create_app(make_config(session_affinity=True))
    client = app.test_client()
    first = client.get('/app.wasm')
    sid = first.headers['X-Session-Id']
    assert 'asset_session=' in first.headers['Set-Cookie']
    assert first.mimetype == 'application/wasm'

    second = client.get('/missing.png')
    assert second.headers['X-Session-Id'] == sid
    assert second.status_code == 404

    registry = app.extensions['asset_sessions']
    assert len(registry) == 1
    assert registry.get(sid).requests == 2

    other = app.test_client().get('/app.wasm')
    assert other.headers['X-Session-Id'] != sid
    assert len(registry) == 2


def test_request_context_records_resolution(make_config, game_root):
    app = create_app(make_config())
    seen = []

    @app.after_request
    def capture(response):
        seen.append(g.asset_request)
        return response

    app.test_client().get('/report.symbols.json')
    ctx = seen[0]
    assert ctx.method == 'GET'
    assert ctx.path == '/report.symbols.json'
    assert ctx.target == game_root.resolve() / 'report.symbols.json'
    assert ctx.mime_type == 'application/json'
