"""
ScanVault Web API
=================
Flask backend: authentication, file vault, administration and a
Server-Sent Events feed of the audit log.
"""

from __future__ import annotations

import io
import json
import logging
import unicodedata
from datetime import datetime, timezone
from functools import wraps
from typing import Iterator, Optional
from urllib.parse import quote

import click
from flask import Flask, Response, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from scanvault.core.auth.accounts import Account, Role, audit_actor
from scanvault.core.auth.lock_state import AuthOutcome
from scanvault.core.config import VaultConfig
from scanvault.core.errors import (
    AccessDenied,
    AccountLockedAdmin,
    AccountLockedBruteForce,
    InvalidCredentials,
    Unauthenticated,
    ValidationError,
    VaultError,
)
from scanvault.core.file_ops.ingest import IngestOutcome
from scanvault.core.logging import configure_root_logger
from scanvault.core.vault import Vault, build_vault
from scanvault.security.audit import AuditAction, AuditEvent, AuditOutcome
from scanvault.security.constants import AUDIT_DEFAULT_LIMIT


logger = logging.getLogger(__name__)

EXTENSION_KEY = "scanvault"
# Multipart framing on top of the file itself
UPLOAD_ENVELOPE_SLACK = 1024 * 1024


def _vault() -> Vault:
    return current_app.extensions[EXTENSION_KEY]


def _origin() -> Optional[str]:
    return request.remote_addr


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ============================================================
# AUTHENTICATION HELPERS
# ============================================================

def _bearer_token(allow_query: bool = False) -> str:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip()
    # EventSource cannot send headers
    if allow_query:
        return request.args.get("token", "")
    return ""


def _authenticate_request(allow_query: bool = False) -> Account:
    token = _bearer_token(allow_query)
    if not token:
        raise Unauthenticated("No bearer token")
    return _vault().tokens.verify(token)


def require_auth(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        g.account = _authenticate_request()
        return f(*args, **kwargs)
    return wrapper


def require_admin(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        g.account = _authenticate_request(allow_query=request.path.endswith("/events"))
        if not g.account.is_admin:
            raise AccessDenied(f"{g.account.id} is not an administrator")
        return f(*args, **kwargs)
    return wrapper


def _content_disposition(response: Response, kind: str, filename: str) -> None:
    try:
        filename.encode("ascii")
        response.headers.set("Content-Disposition", kind, filename=filename)
    except UnicodeEncodeError:
        simple = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii")
        response.headers.set(
            "Content-Disposition",
            kind,
            filename=simple or "download",
            **{"filename*": f"UTF-8''{quote(filename, safe='')}"},
        )


def _sse_frame(event: AuditEvent) -> str:
    return f"event: audit\nid: {event.id}\ndata: {json.dumps(event.to_dict())}\n\n"


# ============================================================
# APP FACTORY
# ============================================================

def create_app(vault: Vault) -> Flask:
    """Build the Flask application around an already started vault."""
    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = vault
    app.config["MAX_CONTENT_LENGTH"] = vault.config.policy.max_upload_bytes + UPLOAD_ENVELOPE_SLACK
    app.config["SSE_KEEPALIVE_SECONDS"] = 15.0
    allowed_origins = set(vault.config.app.allowed_origins)

    # CORS handler - handles both preflight and actual requests
    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
            response.headers["Access-Control-Max-Age"] = "3600"
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        return response

    @app.route("/api/<path:path>", methods=["OPTIONS"])
    def handle_options(path):
        return app.make_response("")

    # ========================================================
    # ERROR HANDLING
    # ========================================================

    @app.errorhandler(VaultError)
    def handle_vault_error(error: VaultError):
        if error.http_status >= 500:
            logger.error("%s on %s %s: %s", type(error).__name__, request.method, request.path, error.detail)
        else:
            logger.info("%s on %s %s", type(error).__name__, request.method, request.path)
        response = jsonify({"message": error.public_message})
        response.status_code = error.http_status
        if error.retryable:
            response.headers["Retry-After"] = "5"
        return response

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        response = jsonify({"message": error.description})
        response.status_code = error.code or 500
        return response

    @app.errorhandler(Exception)
    def handle_unexpected(error: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"message": "Internal server error"}), 500

    # ========================================================
    # HEALTH CHECK
    # ========================================================

    @app.route("/api/health")
    def health():
        return jsonify({
            "status": "healthy",
            "database": "SQLite",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    # ========================================================
    # AUTHENTICATION ROUTES
    # ========================================================

    @app.route("/api/auth/signup", methods=["POST"])
    def signup():
        data = _json_body()
        email, password = data.get("email"), data.get("password")
        if not email or not password:
            _vault().audit.record(audit_actor(email), AuditAction.SIGNUP, AuditOutcome.FAILED, _origin(), "missing credentials")
            raise ValidationError("Email and password are required")

        account = _vault().accounts.create_account(email, password, origin=_origin())
        return jsonify({
            "message": "User created successfully",
            "user": account.to_public_dict(),
        }), 201

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = _json_body()
        email, password = data.get("email"), data.get("password")
        vault = _vault()
        if not email or not password:
            vault.audit.record(audit_actor(email), AuditAction.LOGIN, AuditOutcome.FAILED, _origin(), "missing credentials")
            raise ValidationError("Email and password are required")

        result = vault.auth.authenticate(email, password, _origin())

        if result.outcome is AuthOutcome.AUTHENTICATED:
            return jsonify({
                "message": "Login successful",
                "token": vault.tokens.issue(result.account),
                "user": result.account.to_public_dict(),
            })
        if result.outcome is AuthOutcome.LOCKED_ADMIN:
            raise AccountLockedAdmin()
        if result.outcome is AuthOutcome.LOCKED_BRUTE_FORCE:
            raise AccountLockedBruteForce()
        raise InvalidCredentials()

    @app.route("/api/auth/logout-all", methods=["POST"])
    @require_auth
    def logout_all():
        vault = _vault()
        vault.tokens.revoke_all(g.account.id)
        vault.audit.record(g.account.email, AuditAction.LOGOUT_ALL, AuditOutcome.SUCCESS, _origin())
        return jsonify({"message": "Logged out from all sessions"})

    @app.route("/api/auth/me", methods=["GET"])
    @require_auth
    def me():
        return jsonify({"user": g.account.to_public_dict()})

    # ========================================================
    # FILE ROUTES
    # ========================================================

    @app.route("/api/files/upload", methods=["POST"])
    @require_auth
    def upload_file():
        upload = request.files.get("file")
        result = _vault().ingest.ingest(
            g.account,
            upload.stream if upload else io.BytesIO(),
            upload.filename if upload else None,
            content_type=upload.mimetype if upload else None,
            declared_size=(upload.content_length or None) if upload else None,
            origin=_origin(),
        )

        if result.outcome is IngestOutcome.BLOCKED:
            return jsonify({
                "status": "blocked",
                "message": "File rejected: malware detected",
                "hit_count": result.engine_hits,
            }), 422
        return jsonify({
            "status": "accepted",
            "message": "File uploaded securely",
            "file": result.file.to_public_dict(),
        }), 201

    @app.route("/api/files", methods=["GET"])
    @require_auth
    def list_files():
        files = _vault().catalog.list(g.account)
        return jsonify({"files": [stored.to_public_dict() for stored in files]})

    def _plaintext_response(file_id: str, action: AuditAction) -> Response:
        stream = _vault().catalog.retrieve_for_read(g.account, file_id, action, _origin())
        inline = action is AuditAction.FILE_PREVIEW
        response = Response(
            stream.iter_chunks(),
            mimetype=stream.content_type if inline else "application/octet-stream",
            direct_passthrough=True,
        )
        response.content_length = stream.size
        response.call_on_close(stream.close)
        _content_disposition(response, "inline" if inline else "attachment", stream.filename)
        response.headers["Cache-Control"] = "no-store"
        if inline:
            response.headers["Content-Security-Policy"] = "sandbox"
        return response

    @app.route("/api/files/<file_id>/download", methods=["GET"])
    @require_auth
    def download_file(file_id):
        return _plaintext_response(file_id, AuditAction.FILE_DOWNLOAD)

    @app.route("/api/files/<file_id>/preview", methods=["GET"])
    @require_auth
    def preview_file(file_id):
        return _plaintext_response(file_id, AuditAction.FILE_PREVIEW)

    @app.route("/api/files/<file_id>", methods=["DELETE"])
    @require_auth
    def delete_file(file_id):
        _vault().catalog.remove(g.account, file_id, _origin())
        return jsonify({"message": "File deleted"})

    # ========================================================
    # ADMINISTRATION
    # ========================================================

    @app.route("/api/admin/users", methods=["GET"])
    @require_admin
    def admin_list_users():
        accounts = _vault().admin.list_accounts(g.account)
        return jsonify({"users": [account.to_public_dict() for account in accounts]})

    @app.route("/api/admin/users/<user_id>/lock", methods=["PATCH"])
    @require_admin
    def admin_lock(user_id):
        account = _vault().admin.lock(g.account, user_id, _origin())
        return jsonify({"message": "User locked", "user": account.to_public_dict()})

    @app.route("/api/admin/users/<user_id>/unlock", methods=["PATCH"])
    @require_admin
    def admin_unlock(user_id):
        account = _vault().admin.unlock(g.account, user_id, _origin())
        return jsonify({"message": "User unlocked", "user": account.to_public_dict()})

    @app.route("/api/admin/users/<user_id>/promote", methods=["PATCH"])
    @require_admin
    def admin_promote(user_id):
        account = _vault().admin.promote(g.account, user_id, _origin())
        return jsonify({"message": "User promoted to admin", "user": account.to_public_dict()})

    @app.route("/api/admin/users/<user_id>/demote", methods=["PATCH"])
    @require_admin
    def admin_demote(user_id):
        account = _vault().admin.demote(g.account, user_id, _origin())
        return jsonify({"message": "Admin demoted to user", "user": account.to_public_dict()})

    @app.route("/api/admin/users/<user_id>/force-logout", methods=["PATCH"])
    @require_admin
    def admin_force_logout(user_id):
        _vault().admin.force_logout(g.account, user_id, _origin())
        return jsonify({"message": "User sessions invalidated"})

    @app.route("/api/admin/users/<user_id>", methods=["DELETE"])
    @require_admin
    def admin_delete_user(user_id):
        _vault().admin.delete(g.account, user_id, _origin())
        return jsonify({"message": "User deleted"})

    @app.route("/api/admin/audit-logs", methods=["GET"])
    @require_admin
    def admin_audit_logs():
        raw_limit = request.args.get("limit", str(AUDIT_DEFAULT_LIMIT))
        try:
            limit = int(raw_limit)
        except ValueError:
            raise ValidationError("limit must be an integer") from None
        events = _vault().audit.recent(limit)
        return jsonify({"logs": [event.to_dict() for event in events]})

    @app.route("/api/admin/analytics", methods=["GET"])
    @require_admin
    def admin_analytics():
        return jsonify(_vault().analytics.summary())

    @app.route("/api/admin/malware-files", methods=["GET"])
    @require_admin
    def admin_malware_files():
        return jsonify({"files": _vault().catalog.list_malicious()})

    @app.route("/api/admin/suspicious-activity", methods=["GET"])
    @require_admin
    def admin_suspicious_activity():
        return jsonify(_vault().analytics.suspicious_activity())

    @app.route("/api/admin/events", methods=["GET"])
    @require_admin
    def admin_events():
        subscription = _vault().audit.subscribe()
        keepalive = current_app.config["SSE_KEEPALIVE_SECONDS"]

        def generate() -> Iterator[str]:
            with subscription:
                yield ": connected\n\n"
                while not subscription.closed:
                    event = subscription.get(timeout=keepalive)
                    if event is None:
                        yield ": keep-alive\n\n"
                    else:
                        yield _sse_frame(event)

        response = Response(generate(), mimetype="text/event-stream")
        response.headers["Cache-Control"] = "no-cache"
        response.headers["X-Accel-Buffering"] = "no"
        response.call_on_close(subscription.close)
        return response

    # ========================================================
    # CLI
    # ========================================================

    @app.cli.command("create-admin")
    @click.argument("email")
    @click.password_option()
    def create_admin(email: str, password: str) -> None:
        """Create an administrator account."""
        try:
            account = _vault().accounts.create_account(email, password, role=Role.ADMIN, origin="cli")
        except VaultError as e:
            raise click.ClickException(e.public_message) from e
        click.echo(f"Administrator {account.email} created ({account.id})")

    return app


def create_app_from_env() -> Flask:
    """Deployment entry: configuration, logging and secrets from the environment."""
    config = VaultConfig.load()
    configure_root_logger(
        config.paths.log_dir if config.logging.enable_file else None,
        config.logging,
    )
    vault = build_vault(config=config)
    logger.info("ScanVault API ready (config %s)", config.config_hash)
    return create_app(vault)
