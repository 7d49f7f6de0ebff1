"""Tests for ForumApiClient: request shapes, parsing and the error taxonomy."""
import httpx
import pytest

from forumlive.api.client import (
    ApiResponseError,
    ApiTransportError,
    ForumApiClient,
    ForumApiError,
    MalformedResponseError,
)
from forumlive.api.schemas import SendMessageRequest


def mock_client(handler):
    return ForumApiClient("http://testserver", transport=httpx.MockTransport(handler))


class TestRequests:

    @pytest.mark.asyncio
    async def test_create_session(self, api, fake_service):
        user = await api.create_session("Ann", "bio", ["tech"])

        assert user.displayName == "Ann"
        assert user.id in fake_service.users

    @pytest.mark.asyncio
    async def test_fetch_session_unknown_user(self, api):
        with pytest.raises(ApiResponseError) as exc_info:
            await api.fetch_session("nobody")
        assert exc_info.value.status_code == 404
        assert exc_info.value.error == "User not found"

    @pytest.mark.asyncio
    async def test_join_returns_updated_forum(self, api, fake_service):
        forum = fake_service.add_forum("Python", participants=4)
        joined = await api.join_forum(forum["id"], "u1")
        assert joined.participants == 5

    @pytest.mark.asyncio
    async def test_message_crud(self, api, fake_service):
        forum = fake_service.add_forum("Python")
        await api.send_message(SendMessageRequest(forumId=forum["id"], userId="u1", text="hi"))
        [message] = await api.list_messages(forum["id"])

        await api.edit_message(message.id, "u1", "hello")
        [edited] = await api.list_messages(forum["id"])
        assert edited.text == "hello"
        assert edited.edited is True

        await api.delete_message(message.id, "u1")
        assert await api.list_messages(forum["id"]) == []
        assert fake_service.calls_to("DELETE", "/api/messages") == [{"messageId": message.id, "userId": "u1"}]

    @pytest.mark.asyncio
    async def test_typing_signals(self, api, fake_service):
        await api.start_typing("f1", "u1")
        await api.stop_typing("f1", "u1")
        assert fake_service.calls_to("POST", "/api/messages/typing") == [{"forumId": "f1", "userId": "u1"}]
        assert fake_service.calls_to("DELETE", "/api/messages/typing") == [{"forumId": "f1", "userId": "u1"}]


class TestParsing:

    @pytest.mark.asyncio
    async def test_bare_message_list_is_accepted(self):
        client = mock_client(lambda request: httpx.Response(200, json=[{"id": 1, "text": "a"}]))
        messages = await client.list_messages("f1")
        assert [m.id for m in messages] == ["1"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_invalid_messages_are_skipped(self):
        payload = {"messages": [{"id": "m1", "text": ""}, {"id": "m2", "text": "ok"}, "junk"]}
        client = mock_client(lambda request: httpx.Response(200, json=payload))
        messages = await client.list_messages("f1")
        assert [m.id for m in messages] == ["m2"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_forum_defaults(self):
        payload = [{"id": 3, "title": "Untitled host", "topic": None, "host": "", "participants": None}]
        client = mock_client(lambda request: httpx.Response(200, json=payload))
        [forum] = await client.list_forums()
        assert (forum.id, forum.topic, forum.host, forum.participants) == ("3", "general", "Unknown", 0)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_forum_list_must_be_a_list(self):
        client = mock_client(lambda request: httpx.Response(200, json={"forums": []}))
        with pytest.raises(MalformedResponseError):
            await client.list_forums()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_success_body(self):
        client = mock_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(MalformedResponseError):
            await client.fetch_session("u1")
        await client.aclose()


class TestErrors:

    @pytest.mark.asyncio
    async def test_error_text_is_kept_verbatim(self, api, fake_service):
        fake_service.fail("POST", "/api/messages", status=400, body={"error": "Text is required"})
        with pytest.raises(ApiResponseError) as exc_info:
            await api.send_message(SendMessageRequest(forumId="f1", userId="u1", text="x"))
        assert str(exc_info.value) == "Text is required"

    @pytest.mark.asyncio
    async def test_error_without_message(self):
        client = mock_client(lambda request: httpx.Response(500, json={"detail": "x"}))
        with pytest.raises(ApiResponseError) as exc_info:
            await client.leave_forum("f1", "u1")
        assert exc_info.value.error == "Unknown error"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_html_error_is_truncated(self):
        client = mock_client(lambda request: httpx.Response(503, text="x" * 500))
        with pytest.raises(ApiResponseError) as exc_info:
            await client.list_forums()
        assert exc_info.value.error == "Server error (503): " + "x" * 100
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = mock_client(refuse)
        with pytest.raises(ApiTransportError) as exc_info:
            await client.list_forums()
        assert isinstance(exc_info.value, ForumApiError)
        await client.aclose()


class TestConnectivity:

    @pytest.mark.asyncio
    async def test_probes_report_per_path(self, api):
        assert await api.check_connectivity() == {"/api/test": True, "/api/auth": False}

    @pytest.mark.asyncio
    async def test_probes_never_raise(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = mock_client(refuse)
        assert await client.check_connectivity() == {"/api/test": False, "/api/auth": False}
        await client.aclose()
