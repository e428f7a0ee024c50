from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

import pytest

from survey_gateway.auth.context import Principal
from survey_gateway.auth.gate import AuthorizationGate
from survey_gateway.auth.jwt import AuthenticationError, IdentityVerifier, VerifiedToken
from survey_gateway.config.settings import AppSettings, get_settings
from survey_gateway.events.bus import InMemoryNotificationBus
from survey_gateway.gateway.context import RequestContext
from survey_gateway.loaders.registry import RequestLoaders
from survey_gateway.models.entities import (
    Identity,
    Question,
    QuestionRules,
    QuestionType,
    Role,
    Survey,
    SurveyStatus,
    Tenant,
)
from survey_gateway.services.registry import ServiceRegistry
from survey_gateway.storage.base import BackingStore, Tables
from survey_gateway.storage.memory import InMemoryStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_settings(monkeypatch):
    monkeypatch.delenv("SURVEY_ENV", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class StaticVerifier(IdentityVerifier):
    """Maps fixed bearer tokens to identity ids."""

    def __init__(self, tokens: Mapping[str, str] | None = None) -> None:
        self.tokens = dict(tokens or {})

    async def verify(self, token: str) -> VerifiedToken:
        subject = self.tokens.get(token)
        if subject is None:
            raise AuthenticationError("unknown token")
        return VerifiedToken(subject=subject)


@dataclass
class World:
    acme: Tenant
    globex: Tenant
    root: Identity
    admin: Identity
    analyst: Identity
    user: Identity
    viewer: Identity
    rival: Identity
    survey: Survey
    draft: Survey
    foreign: Survey
    questions: tuple[Question, ...]

    def tokens(self) -> dict[str, str]:
        """Bearer token per identity, named after the fixture attribute."""
        return {
            f"{name}-token": getattr(self, name).id
            for name in ("root", "admin", "analyst", "user", "viewer", "rival")
        }


async def _put(store: BackingStore, table: str, entity):
    await store.insert(table, entity.model_dump())
    return entity


async def seed_world(store: BackingStore) -> World:
    acme = await _put(store, Tables.TENANTS, Tenant(id="acme", name="Acme"))
    globex = await _put(store, Tables.TENANTS, Tenant(id="globex", name="Globex"))

    def person(identifier: str, role: Role, tenant_id: str | None) -> Identity:
        return Identity(
            id=identifier, email=f"{identifier}@example.com", role=role, tenant_id=tenant_id
        )

    root = await _put(store, Tables.IDENTITIES, person("root", Role.SYSTEM_ADMIN, None))
    admin = await _put(store, Tables.IDENTITIES, person("admin", Role.TENANT_ADMIN, "acme"))
    analyst = await _put(store, Tables.IDENTITIES, person("analyst", Role.ANALYST, "acme"))
    user = await _put(store, Tables.IDENTITIES, person("user", Role.USER, "acme"))
    viewer = await _put(store, Tables.IDENTITIES, person("viewer", Role.VIEWER, "acme"))
    rival = await _put(store, Tables.IDENTITIES, person("rival", Role.TENANT_ADMIN, "globex"))

    survey = await _put(
        store,
        Tables.SURVEYS,
        Survey(
            id="s-live",
            tenant_id="acme",
            created_by="admin",
            title="Customer satisfaction",
            status=SurveyStatus.ACTIVE,
            tags=("cx",),
        ),
    )
    draft = await _put(
        store,
        Tables.SURVEYS,
        Survey(id="s-draft", tenant_id="acme", created_by="user", title="Draft survey"),
    )
    foreign = await _put(
        store,
        Tables.SURVEYS,
        Survey(id="s-globex", tenant_id="globex", created_by="rival", title="Globex pulse", status=SurveyStatus.ACTIVE),
    )
    questions = (
        Question(
            id="q-text",
            survey_id="s-live",
            type=QuestionType.TEXT,
            title="What did you like?",
            required=True,
            order=0,
            validation=QuestionRules(max_length=50),
        ),
        Question(
            id="q-choice",
            survey_id="s-live",
            type=QuestionType.SINGLE_CHOICE,
            title="Favourite colour",
            order=1,
            options=("Red", "Green", "Blue"),
        ),
        Question(
            id="q-scale",
            survey_id="s-live",
            type=QuestionType.SCALE,
            title="How likely are you to recommend us?",
            order=2,
            validation=QuestionRules(min_value=1, max_value=5),
        ),
    )
    for question in questions:
        await _put(store, Tables.QUESTIONS, question)
    await _put(
        store,
        Tables.QUESTIONS,
        Question(id="q-globex", survey_id="s-globex", type=QuestionType.TEXT, title="Thoughts?"),
    )
    return World(
        acme=acme,
        globex=globex,
        root=root,
        admin=admin,
        analyst=analyst,
        user=user,
        viewer=viewer,
        rival=rival,
        survey=survey,
        draft=draft,
        foreign=foreign,
        questions=questions,
    )


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def bus() -> InMemoryNotificationBus:
    return InMemoryNotificationBus(queue_size=10)


@pytest.fixture
async def world(store, anyio_backend) -> World:
    return await seed_world(store)


@pytest.fixture
def verifier(world) -> StaticVerifier:
    return StaticVerifier(world.tokens())


@pytest.fixture
def make_context(store, bus, settings):
    """Build a request context acting as ``identity`` (anonymous for ``None``)."""

    def build(identity: Identity | None = None) -> RequestContext:
        loaders = RequestLoaders(store, settings.loaders)
        principal = Principal.from_identity(identity) if identity is not None else None
        return RequestContext(
            gate=AuthorizationGate(principal),
            loaders=loaders,
            services=ServiceRegistry(store, loaders, settings),
            bus=bus,
            settings=settings,
        )

    return build


@pytest.fixture
def services(store, settings):
    """Return a factory for a fresh service registry over the shared store."""

    def build() -> ServiceRegistry:
        return ServiceRegistry(store, RequestLoaders(store, settings.loaders), settings)

    return build
