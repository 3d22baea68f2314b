"""
Single-shot SQL connectivity probe.

Connection strings may be SQLAlchemy URLs (``mssql+pyodbc://...``,
``sqlite://``) or ADO/ODBC style ``Key=Value;`` strings, which are routed
through ``mssql+pyodbc`` with ``odbc_connect``. When a credential is given
an Entra ID access token for Azure SQL is attached to the ODBC connection
before it opens, unless the connection string already names its own way to
authenticate (``Authentication=``, ``UID``/``PWD``, ``Trusted_Connection`` and
so on), since the driver rejects a token combined with those.
"""

import logging
import struct
from urllib.parse import quote_plus

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.pool import NullPool

from .config import DEFAULT_ODBC_DRIVER
from .credentials import SQL_SCOPE, acquire_token
from .errors import ConnectionFailed, ProbeError, UnexpectedProbeResult
from .models import ProbeResult

logger = logging.getLogger(__name__)

PROBE_QUERY = "SELECT 1"
EXPECTED_VALUE = "1"

# Connection attribute defined by Microsoft in msodbcsql.h
SQL_COPT_SS_ACCESS_TOKEN = 1256

# ODBC keywords that select an authentication mode of their own.
EMBEDDED_AUTH_KEYWORDS = frozenset((
    "authentication",
    "uid",
    "user id",
    "pwd",
    "password",
    "trusted_connection",
    "integrated security",
))


def token_struct(token):
    """Pack an access token the way msodbcsql expects it."""
    token_bytes = token.encode("UTF-16-LE")
    return struct.pack(f"<I{len(token_bytes)}s", len(token_bytes), token_bytes)


def _odbc_keywords(odbc):
    return {part.split("=", 1)[0].strip().lower() for part in odbc.split(";") if "=" in part}


def has_embedded_auth(connection_string):
    """True when the connection string carries credentials or an auth mode."""
    if "://" not in connection_string:
        return bool(_odbc_keywords(connection_string) & EMBEDDED_AUTH_KEYWORDS)
    try:
        url = make_url(connection_string)
    except (ArgumentError, ValueError):
        return False
    if url.username or url.password:
        return True
    keywords = {key.lower() for key in url.query}
    odbc = url.query.get("odbc_connect")
    if odbc:
        keywords |= _odbc_keywords(odbc if isinstance(odbc, str) else ";".join(odbc))
    return bool(keywords & EMBEDDED_AUTH_KEYWORDS)


def to_sqlalchemy_url(connection_string, odbc_driver=DEFAULT_ODBC_DRIVER):
    if "://" in connection_string:
        return connection_string
    odbc = connection_string.strip()
    if "driver=" not in odbc.lower():
        odbc = f"Driver={{{odbc_driver}}};{odbc}"
    return "mssql+pyodbc:///?odbc_connect=" + quote_plus(odbc)


def build_engine(connection_string, access_token=None, odbc_driver=DEFAULT_ODBC_DRIVER):
    url = make_url(to_sqlalchemy_url(connection_string, odbc_driver))
    connect_args = {}
    if access_token is not None:
        if url.get_backend_name() == "mssql":
            connect_args["attrs_before"] = {SQL_COPT_SS_ACCESS_TOKEN: token_struct(access_token)}
        else:
            logger.debug("Access token not attached: %s does not accept one", url.get_backend_name())
    return create_engine(url, poolclass=NullPool, connect_args=connect_args)


def execute_scalar(connection_string, access_token=None, query=PROBE_QUERY, odbc_driver=DEFAULT_ODBC_DRIVER):
    """Open one connection, run ``query`` and return the first column of the first row."""
    try:
        engine = build_engine(connection_string, access_token, odbc_driver)
    except Exception as ex:
        raise ConnectionFailed(f"Could not create database engine: {ex}") from ex

    try:
        with engine.connect() as conn:
            return conn.execute(text(query)).scalar()
    except Exception as ex:
        raise ConnectionFailed(str(ex).splitlines()[0] if str(ex) else type(ex).__name__) from ex
    finally:
        engine.dispose()


def run_sql_probe(connection_string, credential=None, query=PROBE_QUERY, expected=EXPECTED_VALUE,
                  odbc_driver=DEFAULT_ODBC_DRIVER):
    """Probe the database once and report the outcome as a :class:`ProbeResult`.

    No retries; callers decide whether to probe again on a later request.
    """
    access_token = None
    if credential is not None and has_embedded_auth(connection_string):
        logger.info("Connection string carries its own authentication; connecting without an access token")
        credential = None
    if credential is not None:
        try:
            access_token = acquire_token(credential, SQL_SCOPE).token
        except ProbeError as ex:
            logger.warning("SQL token acquisition failed: %s", ex)
            return ProbeResult.failure("token acquisition failed", ex, ex.kind)

    failure_message = "token-based connection failed" if access_token else "connection failed"
    try:
        result = execute_scalar(connection_string, access_token, query, odbc_driver)
    except ProbeError as ex:
        logger.error("Database connectivity probe failed: %s", ex)
        return ProbeResult.failure(failure_message, ex, ex.kind)

    if result is None or str(result) != expected:
        logger.warning("Database connectivity probe returned unexpected result: %s", result)
        ex = UnexpectedProbeResult(f"Expected {expected!r}, got {result!r}")
        return ProbeResult(
            ok=False,
            message="database returned unexpected result",
            value=None if result is None else str(result),
            error=str(ex),
            kind=ex.kind,
        )

    logger.info("Database connectivity probe succeeded")
    return ProbeResult.success("database responded", str(result))
