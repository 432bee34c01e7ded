"""Flask app that serves a game build directory as a local HTTP origin.

Run:
  pip install -e .
  python -m main serve --root game

Files under the configured root are served with content types from the MIME
table (``.wasm``, ``.data``, ``.bin`` and ``.symbols.json`` included). Any
request that does not hit a file gets the catch-all JSON error, whatever the
HTTP verb.
"""
from dataclasses import dataclass
from pathlib import Path
import logging

from flask import Flask, g, jsonify, request, send_file, session
from werkzeug.exceptions import HTTPException
from werkzeug.security import safe_join

from config import ServerConfig
from mimetable import MimeTable
from sessions import SessionRegistry

logger = logging.getLogger(__name__)

ANY_METHOD = ['GET', 'HEAD', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS']
STATIC_METHODS = ('GET', 'HEAD')
ERROR_PAYLOAD = {'Message': 'Error'}
SESSION_COOKIE = 'asset_session'
SESSION_KEY = 'sid'


@dataclass
class RequestContext:
    """What one request asked for and what it resolved to."""
    method: str
    path: str
    target: Path | None = None
    mime_type: str | None = None
    status: int | None = None
    session_id: str | None = None


def error_response(status=404):
    return jsonify(ERROR_PAYLOAD), status


def resolve_target(root: Path, subpath: str, default_document: str | None = None):
    """Map a decoded URL path onto a file under ``root``.

    Returns None when the path escapes the root (checked before the
    filesystem is touched), when nothing exists there, or when a directory
    has no default document.
    """
    joined = safe_join(str(root), subpath) if subpath else str(root)
    if joined is None:
        return None
    target = Path(joined)
    try:
        if target.is_dir():
            if not default_document:
                return None
            target = target / default_document
        if not target.is_file():
            return None
        # symlinks may still point outside the root
        if not target.resolve().is_relative_to(root):
            return None
    except OSError:
        # over-long names, unreadable parent directories
        return None
    return target


def create_app(config: ServerConfig, mime_table: MimeTable | None = None) -> Flask:
    root = config.validate_root()
    mimes = mime_table if mime_table is not None else MimeTable(config.mime_overrides)
    sessions = SessionRegistry(config.session_timeout) if config.session_affinity else None

    app = Flask(__name__, static_folder=None)
    app.secret_key = config.secret_key
    app.config['SESSION_COOKIE_NAME'] = SESSION_COOKIE
    app.config['ASSET_SERVER'] = config
    app.extensions['asset_mime_table'] = mimes
    app.extensions['asset_sessions'] = sessions

    @app.before_request
    def open_request_context():
        g.asset_request = RequestContext(method=request.method, path=request.path)
        if sessions is not None:
            info = sessions.touch(session.get(SESSION_KEY))
            if session.get(SESSION_KEY) != info.session_id:
                session[SESSION_KEY] = info.session_id
            g.asset_request.session_id = info.session_id

    @app.after_request
    def close_request_context(response):
        ctx = g.get('asset_request')
        if ctx is None:
            return response
        ctx.status = response.status_code
        if ctx.session_id:
            response.headers['X-Session-Id'] = ctx.session_id
        logger.debug('%s %s -> %s %s (%s)', ctx.method, ctx.path, ctx.status,
                     ctx.target or '-', ctx.mime_type or '-')
        return response

    @app.route('/', defaults={'subpath': ''}, methods=ANY_METHOD)
    @app.route('/<path:subpath>', methods=ANY_METHOD)
    def serve_asset(subpath):
        # static files first, the catch-all only when nothing matched
        ctx = g.asset_request
        if request.method not in STATIC_METHODS:
            return error_response(404)
        target = resolve_target(root, subpath, config.default_document)
        if target is None:
            return error_response(404)
        ctx.target = target
        ctx.mime_type = mimes.lookup(target.name)
        try:
            return send_file(
                target,
                mimetype=ctx.mime_type,
                etag=config.content_caching,
                conditional=config.content_caching,
                max_age=config.cache_max_age,
            )
        except OSError as e:
            logger.error('Cannot read %s: %s', target, e)
            return error_response(500)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        # verbs outside ANY_METHOD surface as 405; answer them like any unmatched route
        if e.code in (404, 405):
            return error_response(404)
        return error_response(e.code or 500)

    return app
