"""Application entry point for the Slack access request plugin."""

from __future__ import annotations

import signal
import threading
from pathlib import Path
from typing import Any
from uuid import uuid4

from flask import Flask, jsonify, request
from slack_bolt import App as SlackApp
from slack_bolt.adapter.flask import SlackRequestHandler
from slack_sdk.errors import SlackApiError
from sqlalchemy import text
import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars
from werkzeug.serving import make_server

from access_plugins.authority.local import LocalAuthority
from access_plugins.cache import RequestCache
from access_plugins.config import AppSettings, get_settings
from access_plugins.context import Context
from access_plugins.errors import AccessError
from access_plugins.job import ServiceJob, WatcherJob
from access_plugins.logging_config import configure_logging
from access_plugins.plugindata import PluginDataClient
from access_plugins.process import Process
from access_plugins.slack import APPROVE_ACTION_ID, DENY_ACTION_ID, SlackAccessBot, SlackClient

PING_TIMEOUT = 5.0

_LOGGING_CONFIGURED = False


def _load_version() -> str:
    version_file = Path(__file__).resolve().parent / "VERSION"
    if version_file.exists():
        return version_file.read_text(encoding="utf-8").strip()
    return "unknown"


def _create_bolt_app(settings: AppSettings) -> SlackApp:
    """Initialise the Slack Bolt application using validated settings."""

    return SlackApp(
        token=settings.bot_token,
        signing_secret=settings.signing_secret,
        token_verification_enabled=False,
    )


def _build_bot(settings: AppSettings, authority: LocalAuthority, ctx: Context) -> SlackAccessBot:
    return SlackAccessBot(
        authority=authority,
        slack=SlackClient(token=settings.bot_token),
        plugin_data=PluginDataClient(authority, settings.plugin_name),
        channels=settings.notify_channels,
        cache=RequestCache(ctx, ttl=settings.cache_ttl),
        cluster_name=settings.cluster_name,
    )


def _ping_store(authority: LocalAuthority) -> None:
    with authority.engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def _handle_decision_action(*, bot: SlackAccessBot, ctx: Context, timeout: float, ack, body, client) -> None:
    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id)
    log = structlog.get_logger().bind(trace_id=trace_id)
    try:
        ack()

        actions = body.get("actions") or []
        if not actions:
            log.warning("invalid_action_payload")
            return
        action_payload = actions[0]
        action_id = action_payload.get("action_id", "")
        request_id = action_payload.get("value", "")
        user_id = body.get("user", {}).get("id")
        if not request_id or not user_id:
            log.warning("invalid_action_payload", action_id=action_id)
            return

        log = log.bind(request_id=request_id, user_id=user_id, action_id=action_id)
        action_ctx = ctx.with_timeout(timeout)
        try:
            resolution = bot.handle_action(action_ctx, action_id=action_id, request_id=request_id, user_id=user_id)
        except AccessError as exc:
            log.warning("action_rejected", error=exc.message, error_kind=exc.kind.value)
            channel_id = body.get("channel", {}).get("id")
            if not channel_id:
                return
            try:
                client.chat_postEphemeral(
                    channel=channel_id,
                    user=user_id,
                    text=f"Unable to process this request: {exc.message}",
                )
            except SlackApiError as slack_exc:
                error_code = slack_exc.response.get("error") if getattr(slack_exc, "response", None) else str(slack_exc)
                log.error("ephemeral_post_failed", error=error_code)
            return
        finally:
            action_ctx.cancel()

        log.info("action_processed", resolution=resolution.value)
    finally:
        unbind_contextvars("trace_id")


def _register_action_handlers(bolt_app: SlackApp, bot: SlackAccessBot, ctx: Context, timeout: float) -> None:
    @bolt_app.action(APPROVE_ACTION_ID)
    def handle_approve(ack, body, client):
        _handle_decision_action(bot=bot, ctx=ctx, timeout=timeout, ack=ack, body=body, client=client)

    @bolt_app.action(DENY_ACTION_ID)
    def handle_deny(ack, body, client):
        _handle_decision_action(bot=bot, ctx=ctx, timeout=timeout, ack=ack, body=body, client=client)


def _register_error_handlers(flask_app: Flask) -> None:
    """Register a JSON error handler that attaches a trace identifier."""

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[override]
        trace_id = str(uuid4())
        flask_app.logger.exception("Unhandled application error", extra={"trace_id": trace_id}, exc_info=error)
        response = jsonify({"error": "internal_server_error", "trace_id": trace_id})
        response.status_code = 500
        return response


def create_app(
    *,
    authority: LocalAuthority | None = None,
    bot: SlackAccessBot | None = None,
    watcher_job: ServiceJob | None = None,
    ctx: Context | None = None,
) -> Flask:
    """Create and configure the Flask application serving Slack callbacks."""

    global _LOGGING_CONFIGURED

    if not _LOGGING_CONFIGURED:
        configure_logging()
        _LOGGING_CONFIGURED = True

    settings = get_settings()
    ctx = ctx or Context.background()
    if authority is None:
        authority = LocalAuthority(settings.database_url, cluster_name=settings.cluster_name)
    if bot is None:
        bot = _build_bot(settings, authority, ctx)

    bolt_app = _create_bolt_app(settings)
    handler = SlackRequestHandler(bolt_app)

    flask_app = Flask(__name__)
    flask_app.config["APP_VERSION"] = _load_version()
    flask_app.logger.setLevel("INFO")

    _register_error_handlers(flask_app)
    _register_action_handlers(bolt_app, bot, ctx, settings.event_func_timeout)

    @flask_app.route("/slack/events", methods=["POST"])
    def slack_events():
        return handler.handle(request)

    @flask_app.route("/healthz", methods=["GET"])
    def healthz():
        health: dict[str, object] = {"ok": True}
        health["version"] = flask_app.config.get("APP_VERSION", "unknown")

        try:
            get_settings()
            health["config"] = "valid"
        except Exception as exc:  # pragma: no cover - defensive guard
            health["config"] = "invalid"
            health["config_error"] = str(exc)
            health["ok"] = False

        try:
            _ping_store(authority)
            health["db"] = "up"
        except Exception as exc:
            health["db"] = "down"
            health["db_error"] = str(exc)
            health["ok"] = False

        if watcher_job is not None:
            ready = watcher_job.is_ready()
            health["watcher"] = "ready" if ready else "starting"
            if not ready or watcher_job.done():
                health["ok"] = False

        status = 200 if health["ok"] else 503
        return jsonify(health), status

    return flask_app


class HttpJob(ServiceJob):
    """Serve the Flask app until the job context ends."""

    def __init__(self, flask_app: Flask, host: str, port: int) -> None:
        super().__init__("http")
        self._flask_app = flask_app
        self._host = host
        self._port = port

    def do_job(self, ctx: Context) -> None:
        server = make_server(self._host, self._port, self._flask_app, threaded=True)

        def stop(_ctx: Context) -> None:
            threading.Thread(target=server.shutdown, name="http-shutdown", daemon=True).start()

        ctx.add_done_callback(stop)
        self.set_ready()
        server.serve_forever()


def main() -> None:  # pragma: no cover - manual execution helper
    configure_logging()
    global _LOGGING_CONFIGURED
    _LOGGING_CONFIGURED = True

    settings = get_settings()
    log = structlog.get_logger().bind(component="app", plugin=settings.plugin_name)

    authority = LocalAuthority(settings.database_url, cluster_name=settings.cluster_name)
    process = Process()

    ping_ctx = process.ctx.with_timeout(PING_TIMEOUT)
    try:
        pong = authority.ping(ping_ctx)
    finally:
        ping_ctx.cancel()
    pong.assert_server_version(settings.min_server_version)
    log.info("authority_connected", cluster=pong.cluster_name, server_version=pong.server_version)

    bot = _build_bot(settings, authority, process.ctx)
    watcher_job = WatcherJob(authority, bot.on_event, settings.watcher_job_config())
    flask_app = create_app(authority=authority, bot=bot, watcher_job=watcher_job, ctx=process.ctx)

    def on_signal(signum: int, _frame: Any) -> None:
        log.info("shutdown_requested", signal=signum)
        process.terminate()

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    process.spawn(watcher_job)
    process.spawn(HttpJob(flask_app, settings.http_host, settings.http_port))

    try:
        ready = watcher_job.wait_ready(process.ctx)
    except AccessError as exc:
        ready = False
        log.warning("plugin_stopped_before_ready", error=exc.message)
    if ready:
        log.info("plugin_ready", host=settings.http_host, port=settings.http_port)

    process.wait()


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    main()
