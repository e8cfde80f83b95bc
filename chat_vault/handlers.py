"""
HTTP handlers for the Chat Vault API.

The user id is expected at ``request[USER_ID_KEY]``, placed there by the
session middleware in front of this application. Message bodies leave the
server decrypted; API keys never leave it at all.
"""
import logging
from typing import Any, Callable

import orjson
from aiohttp import web

from .conf import USER_ID_KEY
from .exceptions import (
    ChatVaultError,
    ConversationNotFound,
    EncryptionFailure,
    NotAuthenticated,
    ProviderError,
    ValidationError,
)
from .chat import MessagePipeline
from .vault import CredentialStore

logger = logging.getLogger("chat_vault.api")

pipeline_key = web.AppKey("pipeline", MessagePipeline)
credentials_key = web.AppKey("credentials", CredentialStore)


def _dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode("utf-8")


def json_response(data: Any, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_dumps)


def _error(message: str, status: int) -> web.Response:
    return json_response({"error": message}, status=status)


def get_user_id(request: web.Request) -> str:
    """Return the authenticated user id or raise NotAuthenticated."""
    user_id = request.get(USER_ID_KEY)
    if not user_id:
        raise NotAuthenticated("Unauthorized")
    return str(user_id)


async def read_json(request: web.Request) -> dict:
    try:
        body = orjson.loads(await request.read())
    except orjson.JSONDecodeError:
        raise ValidationError("Invalid JSON in request body.") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


_ERROR_STATUS: tuple[tuple[type, int], ...] = (
    (NotAuthenticated, 401),
    (ValidationError, 400),
    (ConversationNotFound, 404),
    (EncryptionFailure, 500),
)


@web.middleware
async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    """Translate Chat Vault errors into JSON error responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ChatVaultError as err:
        for exc_type, status in _ERROR_STATUS:
            if isinstance(err, exc_type):
                if status >= 500:
                    logger.error(
                        "Error in %s %s: %s", request.method, request.path,
                        err.__class__.__name__,
                    )
                    return _error("An internal server error occurred.", status)
                return _error(str(err), status)
        logger.error("Unhandled Chat Vault error in %s %s: %s", request.method, request.path, err)
        return _error("An internal server error occurred.", 500)
    except Exception:
        logger.exception("Error in %s %s", request.method, request.path)
        return _error("An internal server error occurred.", 500)


# ---------------------------------------------------------------------------
# Conversations and messages
# ---------------------------------------------------------------------------

async def list_conversations(request: web.Request) -> web.Response:
    user_id = get_user_id(request)
    conversations = await request.app[pipeline_key].list_conversations(user_id)
    return json_response({"conversations": [c.to_json() for c in conversations]})


async def conversation_messages(request: web.Request) -> web.Response:
    user_id = get_user_id(request)
    conversation_id = request.match_info["conversation_id"]
    messages = await request.app[pipeline_key].history(user_id, conversation_id)
    return json_response({"messages": [m.to_json() for m in messages]})


async def post_message(request: web.Request) -> web.Response:
    user_id = get_user_id(request)
    body = await read_json(request)
    result = await request.app[pipeline_key].post_message(
        user_id,
        body.get("content"),
        conversation_id=body.get("conversationId"),
        provider=body.get("aiProvider"),
    )
    return json_response(result.to_json(), status=201)


# ---------------------------------------------------------------------------
# Provider API keys
# ---------------------------------------------------------------------------

async def list_api_keys(request: web.Request) -> web.Response:
    user_id = get_user_id(request)
    providers = await request.app[credentials_key].configured_providers(user_id)
    return json_response({"configuredProviders": providers})


async def save_api_key(request: web.Request) -> web.Response:
    user_id = get_user_id(request)
    body = await read_json(request)
    provider_name = body.get("providerName")
    api_key = body.get("apiKey")
    if not provider_name or not api_key:
        raise ValidationError("Provider name and API key are required.")
    provider = await request.app[credentials_key].set(user_id, provider_name, api_key)
    return json_response(
        {"message": f"API key for {provider.value} saved successfully."}, status=201,
    )


async def delete_api_key(request: web.Request) -> web.Response:
    user_id = get_user_id(request)
    provider_name = request.match_info["provider_name"]
    try:
        deleted = await request.app[credentials_key].delete(user_id, provider_name)
    except ProviderError:
        raise ValidationError("Invalid provider name.") from None
    if not deleted:
        return _error(f"No API key found for provider {provider_name} to delete.", 404)
    return json_response({"message": f"API key for {provider_name} deleted successfully."})


def setup_routes(app: web.Application) -> None:
    app.router.add_get("/api/conversations", list_conversations)
    app.router.add_get(
        "/api/conversations/{conversation_id}/messages", conversation_messages,
    )
    app.router.add_post("/api/messages", post_message)
    app.router.add_get("/api/user/apikeys", list_api_keys)
    app.router.add_post("/api/user/apikeys", save_api_key)
    app.router.add_delete("/api/user/apikeys/{provider_name}", delete_api_key)
