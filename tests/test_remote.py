"""GraphQLClient tests against an in-process httpx.MockTransport."""

import json

import httpx
import pytest

from intake_engine.errors import MutationError, ResponderError
from intake_engine.models.message import Message
from intake_engine.remote import GraphQLClient

URL = "https://onboarding.example.test/graphql"


def client_for(handler):
    """Build a GraphQLClient whose requests are answered by *handler*."""
    seen = []

    def _handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        return handler(body)

    http = httpx.AsyncClient(transport=httpx.MockTransport(_handler))
    return GraphQLClient(URL, client=http), seen


def data(field, payload):
    return lambda body: httpx.Response(200, json={"data": {field: payload}})


# =====================================================================
# Mutations
# =====================================================================


class TestMutations:

    @pytest.mark.asyncio
    async def test_success_and_request_shape(self):
        client, seen = client_for(data("submitParentInfo", {"parent": {"id": "p1"}, "errors": []}))
        result = await client.submit_parent_info("s1", {"firstName": "Dana"})

        assert result.success
        assert result.errors == []
        assert "submitParentInfo" in seen[0]["query"]
        assert seen[0]["variables"] == {"sessionId": "s1", "parentInfo": {"firstName": "Dana"}}

    @pytest.mark.asyncio
    async def test_child_info_uses_snake_case_variables(self):
        client, seen = client_for(data("submitChildInfo", {"child": {"id": "c1"}, "errors": []}))
        await client.submit_child_info("s1", {"first_name": "Leo"})
        assert seen[0]["variables"] == {"session_id": "s1", "child_info": {"first_name": "Leo"}}

    @pytest.mark.asyncio
    async def test_insurance_fields_are_spread(self):
        client, seen = client_for(data("submitInsuranceInfo", {"insurance": {"id": "i1"}, "errors": []}))
        await client.submit_insurance_info("s1", {"payerName": "Aetna", "memberId": "M1"})
        assert seen[0]["variables"] == {"sessionId": "s1", "payerName": "Aetna", "memberId": "M1"}

    @pytest.mark.asyncio
    async def test_complete_assessment_input(self):
        client, seen = client_for(data("completeAssessment", {"success": True, "errors": []}))
        result = await client.complete_assessment("s1", force=True)
        assert result.success
        assert seen[0]["variables"] == {"input": {"sessionId": "s1", "force": True}}

    @pytest.mark.asyncio
    async def test_payload_field_errors(self):
        client, _ = client_for(
            data(
                "submitInsuranceInfo",
                {"insurance": None, "errors": [{"field": "memberId", "message": "is invalid"}]},
            )
        )
        result = await client.submit_insurance_info("s1", {})
        assert not result.success
        assert result.errors == ["memberId: is invalid"]

    @pytest.mark.asyncio
    async def test_graphql_errors(self):
        client, _ = client_for(
            lambda body: httpx.Response(200, json={"errors": [{"message": "Session not found"}]})
        )
        result = await client.submit_assessment_response("s1", "phq_a_1", "Several days", 1)
        assert not result.success
        assert result.errors == ["Session not found"]

    @pytest.mark.asyncio
    async def test_missing_payload(self):
        client, _ = client_for(lambda body: httpx.Response(200, json={"data": {}}))
        result = await client.submit_child_info("s1", {})
        assert result.errors == ["submitChildInfo returned no data"]

    @pytest.mark.asyncio
    async def test_unsuccessful_without_errors(self):
        client, _ = client_for(data("selectSelfPay", {"success": False}))
        result = await client.select_self_pay("s1")
        assert not result.success
        assert result.errors == ["selectSelfPay was not successful"]

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        client, _ = client_for(lambda body: httpx.Response(503))
        with pytest.raises(MutationError) as exc_info:
            await client.select_self_pay("s1")
        assert exc_info.value.step == "selectSelfPay"


# =====================================================================
# Chat responder
# =====================================================================


class TestRespond:

    @pytest.mark.asyncio
    async def test_sends_latest_user_message(self):
        client, seen = client_for(
            data("sendMessage", {"assistantMessage": {"id": "m2", "content": "Thanks for sharing."}})
        )
        messages = [
            Message(sender="ai", content="Hi!"),
            Message(sender="user", content="She cries at night"),
            Message(sender="system", content="note"),
        ]
        reply = await client.respond("s1", messages, {})

        assert reply.content == "Thanks for sharing."
        assert seen[0]["variables"] == {"sessionId": "s1", "content": "She cries at night"}

    @pytest.mark.asyncio
    async def test_empty_reply(self):
        client, _ = client_for(data("sendMessage", {"assistantMessage": {"content": ""}}))
        with pytest.raises(ResponderError, match="empty reply"):
            await client.respond("s1", [Message(sender="user", content="hello")], {})

    @pytest.mark.asyncio
    async def test_payload_errors(self):
        client, _ = client_for(data("sendMessage", {"errors": ["Rate limited"]}))
        with pytest.raises(ResponderError, match="Rate limited"):
            await client.respond("s1", [Message(sender="user", content="hello")], {})

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        client, _ = client_for(lambda body: httpx.Response(500))
        with pytest.raises(ResponderError, match="unavailable"):
            await client.respond("s1", [Message(sender="user", content="hello")], {})

    @pytest.mark.asyncio
    async def test_no_user_message(self):
        client, seen = client_for(data("sendMessage", {}))
        with pytest.raises(ResponderError):
            await client.respond("s1", [Message(sender="ai", content="Hi!")], {})
        assert seen == []


# =====================================================================
# Lifecycle
# =====================================================================


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_borrowed_client_left_open(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        async with GraphQLClient(URL, client=http):
            pass
        assert not http.is_closed
        await http.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        client = GraphQLClient(URL)
        await client.aclose()
        assert client._client.is_closed
