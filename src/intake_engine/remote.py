"""GraphQLClient — httpx client for the onboarding system of record.

Implements both :class:`OnboardingMutations` (used by the sync reconciler)
and :class:`ChatResponder` (the conversational ``sendMessage`` mutation).

Error handling:
    - Transport failures (connection, timeout, non-2xx) raise
      :class:`MutationError` / :class:`ResponderError`.
    - GraphQL-level ``errors`` and payload ``errors`` lists are returned as
      ``MutationResult(success=False, errors=[...])`` so the caller can
      report them per step.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from intake_engine.errors import MutationError, ResponderError
from intake_engine.interfaces import ChatResponder, OnboardingMutations
from intake_engine.models.message import Message, ResponderReply
from intake_engine.models.sync import MutationResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

SUBMIT_PARENT_INFO = """
mutation SubmitParentInfo($sessionId: ID!, $parentInfo: ParentInput!) {
  submitParentInfo(sessionId: $sessionId, parentInfo: $parentInfo) {
    parent { id }
    errors
  }
}
"""

SUBMIT_CHILD_INFO = """
mutation SubmitChildInfo($session_id: ID!, $child_info: ChildInput!) {
  submitChildInfo(session_id: $session_id, child_info: $child_info) {
    child { id }
    errors
  }
}
"""

SELECT_SELF_PAY = """
mutation SelectSelfPay($sessionId: ID!) {
  selectSelfPay(sessionId: $sessionId) {
    success
  }
}
"""

SUBMIT_INSURANCE_INFO = """
mutation SubmitInsuranceInfo(
  $sessionId: ID!
  $payerName: String
  $memberId: String
  $groupNumber: String
  $subscriberName: String
  $subscriberDob: String
) {
  submitInsuranceInfo(
    sessionId: $sessionId
    payerName: $payerName
    memberId: $memberId
    groupNumber: $groupNumber
    subscriberName: $subscriberName
    subscriberDob: $subscriberDob
  ) {
    insurance { id verificationStatus }
    errors { field message }
  }
}
"""

SUBMIT_ASSESSMENT_RESPONSE = """
mutation SubmitAssessmentResponse(
  $sessionId: ID!
  $questionId: String!
  $responseText: String!
  $responseValue: Int
) {
  submitAssessmentResponse(
    sessionId: $sessionId
    questionId: $questionId
    responseText: $responseText
    responseValue: $responseValue
  ) {
    assessment { id status }
    errors
  }
}
"""

COMPLETE_ASSESSMENT = """
mutation CompleteAssessment($input: CompleteAssessmentInput!) {
  completeAssessment(input: $input) {
    success
    errors
  }
}
"""

SEND_MESSAGE = """
mutation SendMessage($sessionId: ID!, $content: String!) {
  sendMessage(sessionId: $sessionId, content: $content) {
    assistantMessage { id content }
    errors
  }
}
"""


def _error_text(error: Any) -> str:
    """Payload errors are either strings or ``{field, message}`` objects."""
    if isinstance(error, dict):
        field = error.get("field")
        message = error.get("message", "")
        return f"{field}: {message}" if field else message
    return str(error)


class GraphQLClient(OnboardingMutations, ChatResponder):
    """Async GraphQL client over a shared :class:`httpx.AsyncClient`.

    Args:
        url: the GraphQL endpoint.
        timeout: request timeout in seconds.
        client: optional pre-built ``httpx.AsyncClient`` (tests pass one
            with a ``MockTransport``).  A client created here is closed by
            :meth:`aclose`.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GraphQLClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ==================================================================
    # Transport
    # ==================================================================

    async def execute(self, document: str, variables: dict[str, Any]) -> dict[str, Any]:
        """POST one GraphQL operation and return the decoded response body.

        Raises:
            httpx.HTTPError: on transport failure or a non-2xx status.
        """
        response = await self._client.post(
            self.url, json={"query": document, "variables": variables}
        )
        response.raise_for_status()
        return response.json()

    async def _mutate(
        self, field: str, document: str, variables: dict[str, Any]
    ) -> MutationResult:
        try:
            body = await self.execute(document, variables)
        except httpx.HTTPError as exc:
            logger.warning("Mutation %s failed: %s", field, type(exc).__name__)
            raise MutationError(f"{field} request failed: {exc}", step=field) from exc

        if body.get("errors"):
            return MutationResult(
                success=False,
                errors=[_error_text(e) for e in body["errors"]],
            )
        payload = (body.get("data") or {}).get(field)
        if payload is None:
            return MutationResult(success=False, errors=[f"{field} returned no data"])
        errors = [_error_text(e) for e in payload.get("errors") or []]
        success = payload.get("success", True) and not errors
        if not success and not errors:
            errors = [f"{field} was not successful"]
        return MutationResult(success=success, errors=errors)

    # ==================================================================
    # OnboardingMutations
    # ==================================================================

    async def submit_parent_info(self, session_id, parent_info):
        return await self._mutate(
            "submitParentInfo",
            SUBMIT_PARENT_INFO,
            {"sessionId": session_id, "parentInfo": parent_info},
        )

    async def submit_child_info(self, session_id, child_info):
        return await self._mutate(
            "submitChildInfo",
            SUBMIT_CHILD_INFO,
            {"session_id": session_id, "child_info": child_info},
        )

    async def select_self_pay(self, session_id):
        return await self._mutate(
            "selectSelfPay", SELECT_SELF_PAY, {"sessionId": session_id}
        )

    async def submit_insurance_info(self, session_id, insurance):
        return await self._mutate(
            "submitInsuranceInfo",
            SUBMIT_INSURANCE_INFO,
            {"sessionId": session_id, **insurance},
        )

    async def submit_assessment_response(
        self, session_id, question_id, response_text, response_value
    ):
        return await self._mutate(
            "submitAssessmentResponse",
            SUBMIT_ASSESSMENT_RESPONSE,
            {
                "sessionId": session_id,
                "questionId": question_id,
                "responseText": response_text,
                "responseValue": response_value,
            },
        )

    async def complete_assessment(self, session_id, force=False):
        return await self._mutate(
            "completeAssessment",
            COMPLETE_ASSESSMENT,
            {"input": {"sessionId": session_id, "force": force}},
        )

    # ==================================================================
    # ChatResponder
    # ==================================================================

    async def respond(
        self,
        session_id: str,
        messages: list[Message],
        context: dict[str, Any],
    ) -> ResponderReply:
        """Send the latest user message and return the assistant's reply."""
        latest = next((m for m in reversed(messages) if m.sender == "user"), None)
        if latest is None:
            raise ResponderError("No user message to respond to")
        try:
            body = await self.execute(
                SEND_MESSAGE, {"sessionId": session_id, "content": latest.content}
            )
        except httpx.HTTPError as exc:
            logger.warning("sendMessage failed for %s: %s", session_id, type(exc).__name__)
            raise ResponderError(f"Chat service unavailable: {exc}") from exc

        if body.get("errors"):
            raise ResponderError("; ".join(_error_text(e) for e in body["errors"]))
        payload = (body.get("data") or {}).get("sendMessage") or {}
        if payload.get("errors"):
            raise ResponderError("; ".join(_error_text(e) for e in payload["errors"]))
        reply = payload.get("assistantMessage") or {}
        content = reply.get("content")
        if not content:
            raise ResponderError("Chat service returned an empty reply")
        return ResponderReply(content=content)
