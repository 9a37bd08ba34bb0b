"""
HTTP adapter: aiohttp routes in front of :class:`ProtectedVault`.

Translates requests into plain calls (bearer token, PIN, body fields) and
vault errors into ``{"success": false, "error": {...}}`` responses. No vault
logic lives here.
"""
import logging
from typing import Any, Optional

import asyncpg
import orjson
from aiohttp import web

from .exceptions import StorageError, ValidationError, VaultError
from .vault.breach import BreachChecker
from .vault.config import VaultConfig
from .vault.crypto import get_codec
from .vault.passwords import DEFAULT_GENERATED_LENGTH
from .vault.service import ProtectedVault, build_protected_vault

logger = logging.getLogger("credential_vault.http")

VAULT_KEY = web.AppKey("vault", ProtectedVault)
CONFIG_KEY = web.AppKey("config", VaultConfig)

GENERIC_ERROR = "Internal server error"

routes = web.RouteTableDef()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _dumps(obj: Any) -> str:
    return orjson.dumps(obj, default=str).decode("utf-8")


def json_response(data: Any, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_dumps)


def error_response(message: str, status: int) -> web.Response:
    return json_response(
        {"success": False, "error": {"message": message, "status": status}},
        status=status,
    )


def bearer_token(request: web.Request) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


async def require_session(request: web.Request) -> None:
    """Run the session check for a request rejected before reaching the vault.

    A malformed request from an unauthenticated caller answers 401, not 400.
    """
    await _vault(request).authenticate(bearer_token(request))


async def read_body(request: web.Request) -> dict:
    """Decode a JSON object body; an absent body reads as ``{}``.

    Raises:
        AuthenticationError: If the body is unusable and the session is not valid.
        ValidationError: If the body is unusable for an authenticated caller.
    """
    if not request.can_read_body:
        return {}
    try:
        data = await request.json(loads=orjson.loads)
    except ValueError as err:
        await require_session(request)
        raise ValidationError("Invalid JSON body") from err
    if not isinstance(data, dict):
        await require_session(request)
        raise ValidationError("JSON body must be an object")
    return data


def record_id(request: web.Request) -> int:
    try:
        return int(request.match_info["id"])
    except (KeyError, ValueError) as err:
        raise ValidationError("Invalid password id") from err


def _vault(request: web.Request) -> ProtectedVault:
    return request.app[VAULT_KEY]


# ---------------------------------------------------------------------------
# Error middleware
# ---------------------------------------------------------------------------

@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Render vault errors; hide server-side details from clients."""
    try:
        return await handler(request)
    except VaultError as err:
        if err.status >= 500:
            logger.error(
                "%s %s failed with %s: %s",
                request.method, request.path, type(err).__name__, err,
                exc_info=err,
            )
            return error_response(GENERIC_ERROR, err.status)
        logger.info(
            "%s %s rejected (%s): %s",
            request.method, request.path, err.status, err,
        )
        return error_response(err.message, err.status)
    except web.HTTPException as err:
        if err.status >= 400:
            return error_response(err.reason, err.status)
        raise
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return error_response(GENERIC_ERROR, 500)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@routes.get("/api/passwords")
async def list_passwords(request: web.Request) -> web.Response:
    records = await _vault(request).list_credentials(bearer_token(request))
    return json_response({
        "success": True,
        "passwords": [record.metadata() for record in records],
        "total": len(records),
    })


@routes.post("/api/passwords")
async def add_password(request: web.Request) -> web.Response:
    body = await read_body(request)
    record = await _vault(request).add(
        bearer_token(request),
        body.get("pin"),
        body.get("site_label"),
        body.get("account_identifier"),
        body.get("password"),
        body.get("notes"),
    )
    return json_response(
        {
            "success": True,
            "message": "Password added successfully",
            "password": record.metadata(),
        },
        status=201,
    )


@routes.get("/api/passwords/generate")
async def generate_password(request: web.Request) -> web.Response:
    raw = request.query.get("length")
    try:
        length = int(raw) if raw is not None else DEFAULT_GENERATED_LENGTH
    except ValueError as err:
        await require_session(request)
        raise ValidationError("length must be an integer") from err
    password = await _vault(request).generate_password(bearer_token(request), length)
    return json_response({"success": True, "password": password})


@routes.post("/api/passwords/strength")
async def password_strength(request: web.Request) -> web.Response:
    body = await read_body(request)
    result = await _vault(request).check_strength(
        bearer_token(request), body.get("password")
    )
    return json_response({"success": True, **result})


@routes.post("/api/passwords/breach-check")
async def breach_check(request: web.Request) -> web.Response:
    body = await read_body(request)
    result = await _vault(request).check_breach(
        bearer_token(request), body.get("password")
    )
    return json_response({"success": True, **result})


@routes.post(r"/api/passwords/{id:\d+}/reveal")
async def reveal_password(request: web.Request) -> web.Response:
    body = await read_body(request)
    revealed = await _vault(request).reveal(
        bearer_token(request), body.get("pin"), record_id(request)
    )
    return json_response({"success": True, "password": revealed.to_response()})


@routes.put(r"/api/passwords/{id:\d+}")
async def update_password(request: web.Request) -> web.Response:
    body = await read_body(request)
    fields = {
        name: body[name]
        for name in ("site_label", "account_identifier", "notes")
        if name in body
    }
    if "password" in body:
        fields["secret"] = body["password"]
    record = await _vault(request).update(
        bearer_token(request), body.get("pin"), record_id(request), fields
    )
    return json_response({
        "success": True,
        "message": "Password updated successfully",
        "password": record.metadata(),
    })


@routes.delete(r"/api/passwords/{id:\d+}")
async def delete_password(request: web.Request) -> web.Response:
    body = await read_body(request)
    await _vault(request).delete(
        bearer_token(request), body.get("pin"), record_id(request)
    )
    return json_response({"success": True, "message": "Password deleted successfully"})


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

async def vault_context(app: web.Application):
    """Open the database pool and breach client for the app's lifetime."""
    config = app[CONFIG_KEY]
    if not config.database_dsn:
        raise StorageError("DATABASE_URL is not configured")
    pool = await asyncpg.create_pool(dsn=config.database_dsn)
    breach_checker = BreachChecker(
        api_url=config.breach_api_url, timeout=config.breach_timeout,
    )
    try:
        app[VAULT_KEY] = build_protected_vault(config, pool, breach_checker=breach_checker)
        logger.info("Credential vault ready")
        yield
    finally:
        await breach_checker.close()
        await pool.close()


def create_app(
    config: Optional[VaultConfig] = None,
    vault: Optional[ProtectedVault] = None,
) -> web.Application:
    """Build the aiohttp application.

    Args:
        config: Vault settings; loaded from the environment when omitted.
        vault: Prebuilt vault. When given, no database pool is opened.

    Raises:
        KeyDerivationError: If no server secret is configured. The envelope
            key is derived here so a misconfigured service never starts.
    """
    app = web.Application(middlewares=[error_middleware])
    app.add_routes(routes)
    if vault is not None:
        app[VAULT_KEY] = vault
        return app
    if config is None:
        config = VaultConfig.from_env()
    get_codec(config)
    app[CONFIG_KEY] = config
    app.cleanup_ctx.append(vault_context)
    return app
