"""FastAPI dependency injection — provides the registry, store and bank.

All shared objects are built once in the app lifespan and stashed on
``app.state``.
"""

from fastapi import Request

from intake_engine.question_bank import QuestionBank
from intake_engine.storage import SessionStore

from intake_server.config import ServerSettings
from intake_server.registry import EngineRegistry


def get_settings(request: Request) -> ServerSettings:
    return request.app.state.settings


def get_registry(request: Request) -> EngineRegistry:
    """Return the engine registry singleton from ``app.state``."""
    return request.app.state.registry


def get_store(request: Request) -> SessionStore:
    """Return the SessionStore singleton from ``app.state``."""
    return request.app.state.store


def get_bank(request: Request) -> QuestionBank:
    """Return the QuestionBank singleton from ``app.state``."""
    return request.app.state.bank
