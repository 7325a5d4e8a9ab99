"""Abstract interfaces for the collaborators the engines depend on.

These ABCs define the contract that external implementations must fulfil.
The SDK ships one concrete implementation of each (a keyword crisis
classifier and an httpx GraphQL client in :mod:`intake_engine.remote`);
tests bind them to in-memory fakes.

Typical integration flow::

    store = SessionStore(InMemoryBackend())
    engine = ConversationEngine(
        session_id,
        store=store,
        bank=bank,
        responder=GraphQLClient(url),          # ChatResponder
        classifier=KeywordCrisisClassifier.from_yaml(),
    )
    state = await engine.start()
    state = await engine.dispatch(SendMessage(text="..."))

    # Later, once onboarding is complete locally
    reconciler = SyncReconciler(session_id, store=store, mutations=client)
    status = await reconciler.detect(remote_snapshot)
    if status.needs_sync:
        result = await reconciler.sync()
"""

from abc import ABC, abstractmethod
from typing import Any

from intake_engine.models.message import Message, ResponderReply
from intake_engine.models.sync import MutationResult


class ChatResponder(ABC):
    """Interface for the opaque conversational responder.

    The SDK imposes no constraints on *how* replies are produced; only the
    input/output contract is specified here.
    """

    @abstractmethod
    async def respond(
        self,
        session_id: str,
        messages: list[Message],
        context: dict[str, Any],
    ) -> ResponderReply:
        """Produce the assistant's reply to the latest user message.

        Parameters
        ----------
        session_id:
            The onboarding session the conversation belongs to.
        messages:
            The full, append-only conversation so far (latest message last).
        context:
            Extracted data gathered so far plus the ids of the structured
            sections that are still unanswered.

        Returns
        -------
        ResponderReply
            The reply text, optionally asking the engine to open a
            structured question section.

        Raises
        ------
        ResponderError
            When no reply could be produced; the engine offers a retry.
        """
        ...


class CrisisClassifier(ABC):
    """Flags user-authored text that may indicate self-harm risk.

    ``detect`` is synchronous on purpose: the engines call it inline with
    message intake, before any await.
    """

    @abstractmethod
    def detect(self, text: str) -> bool:
        ...


class OnboardingMutations(ABC):
    """Remote mutation contract of the onboarding system of record.

    Every method returns a :class:`MutationResult`; payload-level failures
    are reported through ``success=False`` / ``errors``, transport failures
    raise :class:`~intake_engine.errors.MutationError`.
    """

    @abstractmethod
    async def submit_parent_info(
        self, session_id: str, parent_info: dict[str, Any]
    ) -> MutationResult:
        ...

    @abstractmethod
    async def submit_child_info(
        self, session_id: str, child_info: dict[str, Any]
    ) -> MutationResult:
        ...

    @abstractmethod
    async def select_self_pay(self, session_id: str) -> MutationResult:
        ...

    @abstractmethod
    async def submit_insurance_info(
        self, session_id: str, insurance: dict[str, Any]
    ) -> MutationResult:
        ...

    @abstractmethod
    async def submit_assessment_response(
        self,
        session_id: str,
        question_id: str,
        response_text: str,
        response_value: int | None,
    ) -> MutationResult:
        ...

    @abstractmethod
    async def complete_assessment(
        self, session_id: str, force: bool = False
    ) -> MutationResult:
        ...
