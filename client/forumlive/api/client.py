"""Async client for the remote forum API.

Thin pass-through over ``httpx.AsyncClient``: every method maps to one
endpoint, sends a JSON body built from the request models in
:mod:`forumlive.api.schemas`, and parses the response into the matching
record model.

Error taxonomy:
    - ApiTransportError: the request never produced a response (DNS, refused
      connection, timeout, broken stream).
    - ApiResponseError: the service answered with a non-success status. The
      ``error`` string from the JSON body is kept verbatim for display.
    - MalformedResponseError: the service answered 2xx but the body is not
      the expected JSON shape.

All three derive from ForumApiError so callers that only need to surface a
failure can catch one type.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ValidationError

from .schemas import (
    CreateForumRequest,
    CreateSessionRequest,
    DeleteMessageRequest,
    EditMessageRequest,
    Forum,
    MembershipRequest,
    Message,
    SendMessageRequest,
    TypingRequest,
    User,
)

logger = logging.getLogger(__name__)

# Characters of a non-JSON error body kept in the user-facing message
ERROR_BODY_PREVIEW = 100


# =============================================================================
# Errors
# =============================================================================


class ForumApiError(Exception):
    """Base class for every failure raised by :class:`ForumApiClient`."""


class ApiTransportError(ForumApiError):
    """The request failed before a response was received."""


class ApiResponseError(ForumApiError):
    """The service returned a non-success status.

    Attributes:
        status_code: HTTP status returned by the service.
        error: Error text from the body, suitable for showing to the user.
    """

    def __init__(self, status_code: int, error: str) -> None:
        super().__init__(error)
        self.status_code = status_code
        self.error = error


class MalformedResponseError(ForumApiError):
    """A success response whose body could not be parsed."""


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        preview = response.text[:ERROR_BODY_PREVIEW]
        return f"Server error ({response.status_code}): {preview}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return "Unknown error"


# =============================================================================
# Client
# =============================================================================


class ForumApiClient:
    """Async client for the forum service REST endpoints.

    Args:
        base_url: Service root, e.g. ``http://localhost:3000``.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (used by tests to mount a fake
            service or a mock transport).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    @property
    def http(self) -> httpx.AsyncClient:
        """Underlying httpx client, shared with the push channel."""
        return self._http

    async def aclose(self) -> None:
        await self._http.aclose()

    # -------------------------------------------------------------------------
    # Request plumbing
    # -------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[BaseModel] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Send one request and raise for transport or status failures."""
        # AsyncClient.delete() takes no body, so every call goes through request().
        content = body.model_dump_json() if body is not None else None
        try:
            response = await self._http.request(method, path, content=content, params=params)
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise ApiTransportError(str(e) or e.__class__.__name__) from e

        if response.is_error:
            error = _error_text(response)
            logger.error("%s %s returned %s: %s", method, path, response.status_code, error)
            raise ApiResponseError(response.status_code, error)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Invalid JSON from %s: %s", response.request.url, response.text[:ERROR_BODY_PREVIEW])
            raise MalformedResponseError("Invalid response from server") from e

    @classmethod
    def _parse(cls, model: type, response: httpx.Response) -> Any:
        data = cls._json(response)
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error("Unexpected %s payload: %s", model.__name__, e)
            raise MalformedResponseError(f"Invalid {model.__name__} data from server") from e

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    async def create_session(
        self, display_name: str, about_me: str = "", interests: Optional[List[str]] = None
    ) -> User:
        """``POST /api/auth``: register a participant and return the user."""
        body = CreateSessionRequest(
            displayName=display_name, aboutMe=about_me, interests=interests or []
        )
        response = await self._request("POST", "/api/auth", body)
        return self._parse(User, response)

    async def fetch_session(self, user_id: str) -> User:
        """``GET /api/auth?userId=``: revalidate a persisted identity."""
        response = await self._request("GET", "/api/auth", params={"userId": user_id})
        return self._parse(User, response)

    async def delete_session(self, user_id: str) -> None:
        await self._request("DELETE", "/api/auth", MembershipRequest(userId=user_id))

    # -------------------------------------------------------------------------
    # Forums
    # -------------------------------------------------------------------------

    async def list_forums(self, topic: Optional[str] = None, trending: bool = False) -> List[Forum]:
        """``GET /api/forums`` with the optional ``topic``/``trending`` filters.

        Records that fail validation are skipped with a log line rather than
        failing the whole listing.
        """
        params: Dict[str, str] = {}
        if topic:
            params["topic"] = topic
        if trending:
            params["trending"] = "true"

        response = await self._request("GET", "/api/forums", params=params or None)
        data = self._json(response)
        if not isinstance(data, list):
            logger.error("Forums data is not a list: %r", data)
            raise MalformedResponseError("Invalid forum list from server")

        forums: List[Forum] = []
        for item in data:
            try:
                forums.append(Forum.model_validate(item))
            except ValidationError:
                logger.error("Invalid forum data: %r", item)
        return forums

    async def create_forum(self, title: str, topic: str, host_id: str) -> Forum:
        body = CreateForumRequest(title=title, topic=topic, hostId=host_id)
        response = await self._request("POST", "/api/forums", body)
        return self._parse(Forum, response)

    async def join_forum(self, forum_id: str, user_id: str) -> Forum:
        """``POST /api/forums/{id}/join``: returns the forum with its new count."""
        response = await self._request(
            "POST", f"/api/forums/{forum_id}/join", MembershipRequest(userId=user_id)
        )
        return self._parse(Forum, response)

    async def leave_forum(self, forum_id: str, user_id: str) -> None:
        await self._request(
            "POST", f"/api/forums/{forum_id}/leave", MembershipRequest(userId=user_id)
        )

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def list_messages(self, forum_id: str) -> List[Message]:
        """``GET /api/messages?forumId=``.

        Accepts both ``{"messages": [...]}`` and a bare list. Invalid entries
        (for example a message without text) are skipped.
        """
        response = await self._request("GET", "/api/messages", params={"forumId": forum_id})
        data = self._json(response)
        if isinstance(data, dict):
            data = data.get("messages", [])
        if not isinstance(data, list):
            raise MalformedResponseError("Invalid message list from server")

        messages: List[Message] = []
        for item in data:
            try:
                messages.append(Message.model_validate(item))
            except ValidationError:
                logger.error("Invalid message data: %r", item)
        return messages

    async def send_message(self, request: SendMessageRequest) -> None:
        await self._request("POST", "/api/messages", request)

    async def edit_message(self, message_id: str, user_id: str, text: str) -> None:
        body = EditMessageRequest(messageId=message_id, userId=user_id, text=text)
        await self._request("PUT", "/api/messages", body)

    async def delete_message(self, message_id: str, user_id: str) -> None:
        body = DeleteMessageRequest(messageId=message_id, userId=user_id)
        await self._request("DELETE", "/api/messages", body)

    async def start_typing(self, forum_id: str, user_id: str) -> None:
        await self._request("POST", "/api/messages/typing", TypingRequest(forumId=forum_id, userId=user_id))

    async def stop_typing(self, forum_id: str, user_id: str) -> None:
        await self._request("DELETE", "/api/messages/typing", TypingRequest(forumId=forum_id, userId=user_id))

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    async def check_connectivity(self) -> Dict[str, bool]:
        """Probe ``/api/test`` and ``/api/auth``; never raises.

        Returns:
            Mapping of probed path to whether it answered with a 2xx status.
        """
        results: Dict[str, bool] = {}
        for path in ("/api/test", "/api/auth"):
            try:
                response = await self._http.get(path)
                results[path] = response.is_success
                if response.is_success:
                    logger.info("API probe %s ok", path)
                else:
                    logger.error("API probe %s returned %s", path, response.status_code)
            except httpx.HTTPError as e:
                logger.error("API probe %s failed: %s", path, e)
                results[path] = False
        return results
