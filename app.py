"""
Flask app that probes Azure Key Vault and Azure SQL access through Azure Identity.

Behavior:
- At startup, uses DefaultAzureCredential to read Service Principal credentials from Key Vault,
  rebuilds the credential as a ClientSecretCredential and reads the SQL connection string with it
- If any of that fails the app still starts, in a degraded mode reported by /health and /api/authstatus
- The diagnostic page acquires a Key Vault token with the selected method (ManagedIdentity,
  ServicePrincipal or UserAzureId), reads the connection-string secret and runs SELECT 1 against SQL
- Shows decoded token claims (oid/appid/upn) so you can confirm which identity was used

References:
- Azure Identity credential chains:
  https://learn.microsoft.com/python/api/overview/azure/identity-readme
- Connect to Azure SQL with Microsoft Entra tokens (pyodbc):
  https://learn.microsoft.com/azure/azure-sql/database/azure-sql-python-quickstart

Security notes:
- Secret values and raw tokens are NOT displayed. Only lengths, claims and error messages are shown.
"""

import os
import logging
from datetime import datetime, timezone
from functools import partial

from flask import Blueprint, Flask, current_app, jsonify, render_template_string, request

from kvsqlprobe import config
from kvsqlprobe.bootstrap import run_bootstrap
from kvsqlprobe.connectivity import run_sql_probe
from kvsqlprobe.credentials import AuthMethod, parse_auth_method
from kvsqlprobe.errors import UnknownAuthMethod
from kvsqlprobe.health import HealthStatus, run_health_checks
from kvsqlprobe.status import StatusAggregator

def _log_level(name):
    """Numeric level for a LOG_LEVEL name; unknown names fall back to INFO."""
    level = logging.getLevelName((name or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


# Configure logging
logging.basicConfig(level=_log_level(os.environ.get("LOG_LEVEL")))
logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)
logging.getLogger("azure.identity").setLevel(logging.WARNING)
logger = logging.getLogger("kvsql-probe-app")

PORT = int(os.environ.get("PORT", "8080"))

# Longest error text returned in a response body; full detail stays in the logs.
MAX_ERROR_LENGTH = 300

TEMPLATE = """
<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Key Vault and Azure SQL auth demo</title>
    <style>
      body { font-family: Arial, Helvetica, sans-serif; margin: 2rem; }
      .ok { color: green; }
      .err { color: red; }
      .card { border: 1px solid #ddd; padding: 1rem; border-radius: 6px; margin-bottom: 1rem; }
      pre { background: #f6f8fa; padding: 0.75rem; border-radius: 4px; }
    </style>
  </head>
  <body>
    <h1>Key Vault and Azure SQL auth demo</h1>
    <div class="card">
      <strong>Key Vault:</strong> {{ keyvault_url or 'Not configured' }}<br />
      <strong>Startup authentication:</strong> {{ state.auth_method }}
      ({{ 'configured from Key Vault' if state.configured_from_vault else 'fallback' }})<br />
      <form method="get">
        <label for="selectedAuthMethod">Authentication method:</label>
        <select id="selectedAuthMethod" name="selectedAuthMethod">
          {% for option in auth_options %}
            <option value="{{ option }}" {% if option == selected %}selected{% endif %}>{{ option }}</option>
          {% endfor %}
        </select>
        <button type="submit">Run checks</button>
      </form>
      {% if method_note %}<p class="err">{{ method_note }}</p>{% endif %}
    </div>

    {% for title, stage in stages %}
    <div class="card">
      <h2>{{ title }}</h2>
      {% if stage.ok %}
        <p class="ok">{{ stage.message }}</p>
        {% if stage.value %}<pre>{{ stage.value }}</pre>{% endif %}
      {% else %}
        <p class="err">{{ stage.message }}</p>
        <p>Error{% if stage.kind %} ({{ stage.kind }}){% endif %}: <code>{{ stage.error }}</code></p>
      {% endif %}
    </div>
    {% endfor %}

    <div class="card">
      <h2>Overall</h2>
      <p class="{{ 'ok' if report.healthy else 'err' }}">{{ report.message }}</p>
    </div>
  </body>
</html>
"""

AUTH_OPTIONS = ("ManagedIdentity", "ServicePrincipal", "UserAzureId")


def _sanitize(error):
    lines = (error or "").splitlines()
    return lines[0][:MAX_ERROR_LENGTH] if lines else ""


def _selected_method(raw, settings):
    """Resolve the requested method, falling back to the configured default.

    Returns (method, note); note explains a fallback to the page.
    """
    default = settings.Azure.DefaultAuthMethod
    try:
        default_method = parse_auth_method(default)
    except UnknownAuthMethod:
        logger.warning("Invalid Azure:DefaultAuthMethod %r, using ManagedIdentity", default)
        default_method = AuthMethod.MANAGED_IDENTITY

    if not raw:
        return default_method, None
    try:
        return parse_auth_method(raw), None
    except UnknownAuthMethod:
        logger.warning("Unknown selectedAuthMethod %r, using %s", raw, default_method.value)
        return default_method, f"Unknown method '{raw}', using {default_method.value}"


def _option_for(method):
    return "UserAzureId" if method is AuthMethod.INTERACTIVE_USER else method.value


def _vault_url(bootstrap, settings):
    # The published store names the vault actually in use.
    if bootstrap.secret_store is not None:
        return bootstrap.secret_store.vault_url
    return settings.Azure.KeyVaultUrl


routes = Blueprint("routes", __name__)


def _aggregator():
    return StatusAggregator(
        current_app.config["SETTINGS"],
        current_app.config["BOOTSTRAP"],
        sql_probe=current_app.config["SQL_PROBE"],
    )


@routes.route("/")
def index():
    """Render the diagnostic page for the selected authentication method.
    Token, secret and SQL results are shown independently of each other.
    """
    settings = current_app.config["SETTINGS"]
    bootstrap = current_app.config["BOOTSTRAP"]
    method, note = _selected_method(request.args.get("selectedAuthMethod"), settings)
    report = _aggregator().run(method)

    context = {
        "keyvault_url": _vault_url(bootstrap, settings),
        "state": bootstrap.state,
        "auth_options": AUTH_OPTIONS,
        "selected": _option_for(method),
        "method_note": note,
        "stages": [
            ("Access token", report.token),
            ("Key Vault secret", report.secret),
            ("Azure SQL", report.sql),
        ],
        "report": report,
    }
    return render_template_string(TEMPLATE, **context)


@routes.route("/api/diagnostics")
def diagnostics():
    """Same checks as the diagnostic page, as JSON.
    Returns 200 when every stage passed and 503 otherwise. Never returns secret values or raw tokens.
    """
    settings = current_app.config["SETTINGS"]
    method, note = _selected_method(request.args.get("selectedAuthMethod"), settings)
    report = _aggregator().run(method)
    body = report.to_dict()
    if note:
        body["note"] = note
    return jsonify(body), 200 if report.healthy else 503


@routes.route("/db-ping")
def db_ping():
    """Database connectivity probe: opens a connection and runs SELECT 1."""
    logger.info("Database connectivity probe started")
    bootstrap = current_app.config["BOOTSTRAP"]
    result = current_app.config["SQL_PROBE"](bootstrap.state.connection_string)

    if result.ok:
        return jsonify(status="ok"), 200
    if result.kind == "UnexpectedProbeResult":
        return jsonify(status="error", message="Database returned unexpected result", result=result.value), 503
    return jsonify(status="error", message=_sanitize(result.error) or result.message, type=result.kind), 503


@routes.route("/api/authstatus")
def auth_status():
    """Report how the app authenticated at startup."""
    try:
        state = current_app.config["BOOTSTRAP"].state
        logger.info("Authentication status requested: %s, KeyVault: %s",
                    state.auth_method, state.key_vault_available)
        return jsonify(
            authenticationMethod=state.auth_method,
            configuredFromKeyVault=state.configured_from_vault,
            keyVaultAvailable=state.key_vault_available,
            status="Service Principal Active" if state.configured_from_vault else "Fallback Authentication",
            timestamp=datetime.now(timezone.utc).isoformat(),
        ), 200
    except Exception:
        logger.exception("Error retrieving authentication status")
        return jsonify(error="Failed to retrieve authentication status"), 500


@routes.route("/health")
def health():
    """Aggregate health of the database, keyvault and authentication checks.
    Returns 503 only when a check is Unhealthy; Degraded still returns 200.
    """
    overall, checks = run_health_checks(current_app.config["BOOTSTRAP"], current_app.config["SQL_PROBE"])
    body = {
        "status": overall.label,
        "checks": {name: check.to_dict() for name, check in checks.items()},
    }
    return jsonify(body), 503 if overall is HealthStatus.UNHEALTHY else 200


@routes.route("/healthz")
def healthz():
    """Simple liveness probe endpoint.
    Returns 200 immediately so platform probes do not trigger Key Vault or SQL calls.
    """
    return ("OK", 200)


def create_app(settings=None, bootstrap=None, sql_probe=None):
    """Create the Flask app.

    Bootstrap runs here, once, unless a result is passed in. The result is
    stored in ``app.config`` and only read afterwards.
    """
    if settings is None:
        settings = config.load_settings()
    if bootstrap is None:
        bootstrap = run_bootstrap(settings)
    logger.info(
        "Startup complete: auth=%s, keyVaultAvailable=%s",
        bootstrap.state.auth_method, bootstrap.state.key_vault_available,
    )

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.config["BOOTSTRAP"] = bootstrap
    app.config["SQL_PROBE"] = sql_probe or partial(run_sql_probe, odbc_driver=settings.Sql.OdbcDriver)
    app.register_blueprint(routes)
    return app


if __name__ == "__main__":
    # For local testing only; in container use a production WSGI server
    create_app().run(host="0.0.0.0", port=PORT)
