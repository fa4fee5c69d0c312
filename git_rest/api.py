"""HTTP front end for the git service.

Routes live on one blueprint mounted under the configured prefix:

- ``GET /`` lists the caller's repositories; ``POST /init`` and
  ``POST /clone`` create them.
- ``/repo/<repo>/...`` exposes config, remotes, branches, history, committed
  content (``show``, ``ls-tree``) and the working tree (``tree``).

The caller's workspace travels in the ``workspace`` cookie as an opaque
signed token; a fresh token is set whenever a new workspace had to be
created.  Every error is answered as ``{"error": <message>}`` with the
status carried by the ``GitRestError`` subclass.
"""

from __future__ import annotations

import json
import logging
from typing import Optional, TypeVar

from flask import Blueprint, Flask, Response, g, jsonify, request
from pydantic import BaseModel, ValidationError
from werkzeug.exceptions import HTTPException

from git_rest.config import Settings, load_settings
from git_rest.constants import DEFAULT_HOST, DEFAULT_PORT, SESSION_COOKIE
from git_rest.errors import GitRestError, InvalidRequest
from git_rest.logging_config import flask_request_middleware, set_context
from git_rest.models import (
    BranchRequest,
    CloneRequest,
    CommitRequest,
    ConfigSetRequest,
    ConfigUnsetRequest,
    InitRequest,
    MoveRequest,
    PushRequest,
    RemoteAddRequest,
    RemoteRemoveRequest,
)
from git_rest.records import FsEntry
from git_rest.service import GitService
from git_rest.validate import validate_commit_ref, validate_repo_name

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _make_error(message: str, status: int) -> Response:
    """Create a JSON error response."""
    return Response(
        json.dumps({"error": message}),
        status=status,
        content_type="application/json",
    )


def _body(model: type[M]) -> M:
    """Parse the request body (JSON, or form-encoded) into *model*."""
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return model.model_validate(data)


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    where = ".".join(str(part) for part in first.get("loc", ())) or "body"
    return f"Invalid field '{where}': {first.get('msg', 'invalid value')}"


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[GitService] = None,
) -> Flask:
    """Create the Flask application.

    Args:
        settings: Runtime settings (defaults to ``load_settings()``).
        service: Operation layer (defaults to one built from *settings*).
    """
    if settings is None:
        settings = service.settings if service is not None else load_settings()
    service = service or GitService(settings)
    service.startup()

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = settings.max_upload_size
    flask_request_middleware(app, verbose=settings.verbose)

    bp = Blueprint("git_rest", __name__)

    # ------------------------------------------------------------------
    # Session and path parameters
    # ------------------------------------------------------------------

    @bp.before_request
    def open_workspace():
        args = request.view_args or {}
        if "repo" in args:
            validate_repo_name(args["repo"])
        if "commit" in args:
            validate_commit_ref(args["commit"])

        ctx, issued = service.open_context(
            request.cookies.get(SESSION_COOKIE), g.get("request_id", ""),
        )
        g.ctx = ctx
        g.issued_token = ctx.workspace.token if issued else None
        set_context(workspace_id=ctx.workspace.id)

    @bp.after_request
    def set_workspace_cookie(response):
        token = g.get("issued_token")
        if token:
            response.set_cookie(
                SESSION_COOKIE,
                token,
                path=settings.prefix or "/",
                httponly=True,
                samesite="Lax",
            )
        return response

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    @bp.route("/", methods=["GET"])
    def list_repositories():
        return jsonify(service.list_repositories(g.ctx))

    @bp.route("/init", methods=["POST"])
    def init_repository():
        body = _body(InitRequest)
        repo = service.init(g.ctx, body.repo, bare=body.bare, shared=body.shared)
        return jsonify({"repo": repo})

    @bp.route("/clone", methods=["POST"])
    def clone_repository():
        body = _body(CloneRequest)
        repo = service.clone(g.ctx, body.remote, repo=body.repo, bare=body.bare)
        return jsonify({"repo": repo})

    @bp.route("/repo/<repo>", methods=["DELETE"])
    def delete_repository(repo):
        service.delete(g.ctx, repo)
        return jsonify({})

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    @bp.route("/repo/<repo>/config", methods=["GET"])
    def config_get(repo):
        values = service.config_get(g.ctx, repo, request.args.get("name", ""))
        return jsonify({"values": values})

    @bp.route("/repo/<repo>/config", methods=["POST"])
    def config_add(repo):
        body = _body(ConfigSetRequest)
        service.config_add(g.ctx, repo, body.name, body.value)
        return jsonify({})

    @bp.route("/repo/<repo>/config", methods=["PUT"])
    def config_replace(repo):
        body = _body(ConfigSetRequest)
        service.config_replace(g.ctx, repo, body.name, body.value)
        return jsonify({})

    @bp.route("/repo/<repo>/config", methods=["DELETE"])
    def config_unset(repo):
        body = _body(ConfigUnsetRequest)
        service.config_unset(g.ctx, repo, body.name, unset_all=body.unset_all)
        return jsonify({})

    # ------------------------------------------------------------------
    # Remotes and branches
    # ------------------------------------------------------------------

    @bp.route("/repo/<repo>/remote", methods=["GET"])
    def remote_list(repo):
        return jsonify([r.to_dict() for r in service.list_remotes(g.ctx, repo)])

    @bp.route("/repo/<repo>/remote", methods=["POST"])
    def remote_add(repo):
        body = _body(RemoteAddRequest)
        service.add_remote(g.ctx, repo, body.name, body.url)
        return jsonify({})

    @bp.route("/repo/<repo>/remote", methods=["DELETE"])
    def remote_remove(repo):
        body = _body(RemoteRemoveRequest)
        service.remove_remote(g.ctx, repo, body.name)
        return jsonify({})

    @bp.route("/repo/<repo>/branch", methods=["GET"])
    def branch_list(repo):
        return jsonify([b.to_dict() for b in service.list_branches(g.ctx, repo)])

    @bp.route("/repo/<repo>/branch", methods=["POST"])
    def branch_create(repo):
        body = _body(BranchRequest)
        return jsonify({"branch": service.create_branch(g.ctx, repo, body.branch)})

    @bp.route("/repo/<repo>/checkout", methods=["POST"])
    def checkout(repo):
        body = _body(BranchRequest)
        return jsonify({"branch": service.checkout(g.ctx, repo, body.branch)})

    # ------------------------------------------------------------------
    # Paths and history
    # ------------------------------------------------------------------

    @bp.route("/repo/<repo>/mv", methods=["POST"])
    def move(repo):
        body = _body(MoveRequest)
        service.move(g.ctx, repo, body.source, body.destination)
        return jsonify({})

    @bp.route("/repo/<repo>/show", defaults={"path": ""}, methods=["GET"])
    @bp.route("/repo/<repo>/show/<path:path>", methods=["GET"])
    def show(repo, path):
        data = service.show(g.ctx, repo, path, rev=request.args.get("rev"))
        return Response(data, status=200, content_type="application/octet-stream")

    @bp.route("/repo/<repo>/ls-tree", defaults={"path": ""}, methods=["GET"])
    @bp.route("/repo/<repo>/ls-tree/<path:path>", methods=["GET"])
    def ls_tree(repo, path):
        entries = service.ls_tree(g.ctx, repo, path, rev=request.args.get("rev"))
        return jsonify([e.to_dict() for e in entries])

    @bp.route("/repo/<repo>/commit/<commit>", methods=["GET"])
    def commit_info(repo, commit):
        return jsonify(service.commit_info(g.ctx, repo, commit).to_dict())

    @bp.route("/repo/<repo>/log", methods=["GET"])
    def log(repo):
        return jsonify([c.to_dict() for c in service.log(g.ctx, repo)])

    @bp.route("/repo/<repo>/commit", methods=["POST"])
    def commit(repo):
        body = _body(CommitRequest)
        summary = service.commit(g.ctx, repo, body.message, allow_empty=body.allow_empty)
        return jsonify(summary.to_dict())

    @bp.route("/repo/<repo>/push", methods=["POST"])
    def push(repo):
        body = _body(PushRequest)
        service.push(g.ctx, repo, remote=body.remote, branch=body.branch)
        return jsonify({})

    # ------------------------------------------------------------------
    # Working tree
    # ------------------------------------------------------------------

    @bp.route("/repo/<repo>/tree", defaults={"path": ""}, methods=["GET"])
    @bp.route("/repo/<repo>/tree/<path:path>", methods=["GET"])
    def tree_get(repo, path):
        result = service.read_tree(g.ctx, repo, path)
        if isinstance(result, FsEntry):
            return jsonify(result.to_dict())
        return Response(result, status=200, content_type="application/octet-stream")

    @bp.route("/repo/<repo>/tree/<path:path>", methods=["PUT"])
    def tree_put(repo, path):
        upload = request.files.get("file")
        if upload is not None:
            source = upload.stream
        elif request.mimetype in ("multipart/form-data", "application/x-www-form-urlencoded"):
            raise InvalidRequest("No file uploaded")
        else:
            source = request.stream
        service.write_file(g.ctx, repo, path, source)
        return jsonify({})

    @bp.route("/repo/<repo>/tree/<path:path>", methods=["DELETE"])
    def tree_delete(repo, path):
        service.delete_path(g.ctx, repo, path)
        return jsonify({})

    app.register_blueprint(bp, url_prefix=settings.prefix or None)

    # ------------------------------------------------------------------
    # Health and errors
    # ------------------------------------------------------------------

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"})

    @app.errorhandler(GitRestError)
    def handle_git_rest_error(e):
        if e.status_code >= 500:
            logger.error("%s: %s", type(e).__name__, e.message)
        return _make_error(e.message, e.status_code)

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return _make_error(_validation_message(e), 400)

    @app.errorhandler(404)
    def not_found(e):
        return _make_error("Not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return _make_error("Method not allowed", 405)

    @app.errorhandler(413)
    def request_too_large(e):
        return _make_error(
            f"Request body too large (max {settings.max_upload_size} bytes)", 413
        )

    @app.errorhandler(Exception)
    def unexpected_error(e):
        if isinstance(e, HTTPException):
            return _make_error(e.description or e.name, e.code or 500)
        logger.exception("Unhandled error")
        return _make_error("Internal server error", 500)

    # Attach components for external access (CLI, testing)
    app.git_service = service
    app.git_settings = settings

    return app


# ---------------------------------------------------------------------------
# Server Entry Point
# ---------------------------------------------------------------------------


def run_server(
    app: Flask,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Serve *app* with werkzeug's threaded server until interrupted."""
    from werkzeug.serving import make_server

    logger.info("Starting git-rest server on %s:%d", host, port)

    server = make_server(host, port, app, threaded=True)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("git-rest server shutting down")
    finally:
        server.shutdown()
