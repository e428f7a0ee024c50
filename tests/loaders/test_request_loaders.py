import asyncio

import pytest

from survey_gateway.config.settings import LoaderSettings
from survey_gateway.loaders.registry import RequestLoaders
from survey_gateway.models.entities import Session, SessionStatus, Tenant
from survey_gateway.storage.base import StoreError, Tables
from survey_gateway.storage.memory import InMemoryStore


class CountingStore(InMemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.fetches: list[tuple[str, tuple[str, ...]]] = []
        self.queries: list[str] = []
        self.failing: set[str] = set()
        self.in_flight = 0
        self.peak_in_flight = 0

    async def fetch_many(self, table, ids):
        self.fetches.append((table, tuple(ids)))
        if self.failing.intersection(ids):
            raise StoreError("disk on fire")
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            return await super().fetch_many(table, ids)
        finally:
            self.in_flight -= 1

    async def query(self, table, conditions=(), **kwargs):
        self.queries.append(table)
        return await super().query(table, conditions, **kwargs)


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()


def _fetches(store: CountingStore, table: str) -> list[tuple[str, ...]]:
    return [ids for name, ids in store.fetches if name == table]


@pytest.mark.anyio("asyncio")
async def test_concurrent_loads_share_one_batch(store, world):
    loaders = RequestLoaders(store)

    async def creator_email(survey_id: str) -> str:
        survey = await loaders.surveys.load(survey_id)
        identity = await loaders.identities.load(survey.created_by)
        return identity.email

    emails = await asyncio.gather(*(creator_email(key) for key in ("s-live", "s-draft", "s-globex")))

    assert emails == ["admin@example.com", "user@example.com", "rival@example.com"]
    assert len(_fetches(store, Tables.SURVEYS)) == 1
    assert len(_fetches(store, Tables.IDENTITIES)) == 1
    assert sorted(_fetches(store, Tables.IDENTITIES)[0]) == ["admin", "rival", "user"]


@pytest.mark.anyio("asyncio")
async def test_results_follow_key_order_and_misses_are_cached(store, world):
    loaders = RequestLoaders(store)

    first = await loaders.tenants.load_many(["globex", "missing", "acme"])
    assert [tenant.id if tenant else None for tenant in first] == ["globex", None, "acme"]

    assert await loaders.tenants.load("missing") is None
    assert len(_fetches(store, Tables.TENANTS)) == 1


@pytest.mark.anyio("asyncio")
async def test_duplicate_keys_are_fetched_once(store, world):
    loaders = RequestLoaders(store)
    results = await asyncio.gather(loaders.tenants.load("acme"), loaders.tenants.load("acme"))
    assert results[0] is results[1]
    assert _fetches(store, Tables.TENANTS) == [("acme",)]


@pytest.mark.anyio("asyncio")
async def test_batches_are_split_at_max_batch_size(store, world):
    loaders = RequestLoaders(store, LoaderSettings(max_batch_size=2, overrides={}))
    ids = ["root", "admin", "analyst", "user", "viewer"]

    found = await loaders.identities.load_many(ids)

    assert [identity.id for identity in found] == ids
    assert loaders.identities.dispatched_batches == 3
    assert all(len(batch) <= 2 for batch in _fetches(store, Tables.IDENTITIES))
    assert store.peak_in_flight == 1


@pytest.mark.anyio("asyncio")
async def test_failed_batch_falls_back_to_single_keys(store, world):
    loaders = RequestLoaders(store)
    store.failing.add("globex")

    acme, globex = await loaders.tenants.load_many(["acme", "globex"])

    assert isinstance(acme, Tenant)
    assert globex is None
    assert len(_fetches(store, Tables.TENANTS)) == 3


@pytest.mark.anyio("asyncio")
async def test_rows_that_fail_validation_resolve_to_none(store, world):
    await store.insert(Tables.TENANTS, {"id": "broken", "settings": {}})
    loaders = RequestLoaders(store)
    assert await loaders.tenants.load("broken") is None


@pytest.mark.anyio("asyncio")
async def test_relation_loader_orders_children_and_primes_entities(store, world):
    loaders = RequestLoaders(store)

    questions = await loaders.questions_by_survey.load("s-live")
    assert [question.id for question in questions] == ["q-text", "q-choice", "q-scale"]
    assert await loaders.questions_by_survey.load("s-draft") == ()

    question = await loaders.questions.load("q-choice")
    assert question.options == ("Red", "Green", "Blue")
    assert _fetches(store, Tables.QUESTIONS) == []


@pytest.mark.anyio("asyncio")
async def test_priming_keeps_existing_entries_unless_replaced(store, world):
    loaders = RequestLoaders(store)
    original = await loaders.tenants.load("acme")
    renamed = original.model_copy(update={"name": "Renamed"})

    loaders.tenants.prime("acme", renamed, replace=False)
    assert (await loaders.tenants.load("acme")).name == "Acme"

    loaders.tenants.prime("acme", renamed)
    assert (await loaders.tenants.load("acme")).name == "Renamed"

    loaders.tenants.clear("acme")
    assert (await loaders.tenants.load("acme")).name == "Acme"


@pytest.mark.anyio("asyncio")
async def test_clearing_keys_that_were_never_loaded(store, world):
    loaders = RequestLoaders(store)
    loaders.surveys.clear("s-live")
    loaders.sessions_by_survey.clear_many(["s-live", "s-draft"])
    loaders.survey_stats.clear("s-live")
    assert not loaders.surveys.is_cached("s-live")

    await loaders.surveys.load("s-live")
    assert loaders.surveys.is_cached("s-live")
    loaders.surveys.clear_many(["s-live", "missing"])
    assert not loaders.surveys.is_cached("s-live")


@pytest.mark.anyio("asyncio")
async def test_survey_stats_counts_sessions_and_responses(store, world):
    for index, status in enumerate(
        [SessionStatus.COMPLETED, SessionStatus.COMPLETED, SessionStatus.ABANDONED, SessionStatus.IN_PROGRESS]
    ):
        session = Session(id=f"sess-{index}", survey_id="s-live", status=status)
        await store.insert(Tables.SESSIONS, session.model_dump())
    await store.insert(
        Tables.RESPONSES,
        {
            "id": "r-1",
            "session_id": "sess-0",
            "question_id": "q-text",
            "survey_id": "s-live",
            "answer": {"type": "text", "text": "great"},
        },
    )
    loaders = RequestLoaders(store)

    live, draft = await loaders.survey_stats.load_many(["s-live", "s-draft"])

    assert (live.total_sessions, live.completed_sessions, live.abandoned_sessions) == (4, 2, 1)
    assert live.total_responses == 1
    assert live.completion_rate == 0.5
    assert draft.total_sessions == 0
    assert draft.completion_rate == 0.0
    assert store.queries.count(Tables.SESSIONS) == 1


@pytest.mark.anyio("asyncio")
async def test_each_request_gets_its_own_cache(store, world):
    first = RequestLoaders(store)
    await first.tenants.load("acme")
    await store.update(Tables.TENANTS, "acme", {"name": "Acme Corp"})

    assert (await first.tenants.load("acme")).name == "Acme"
    assert (await RequestLoaders(store).tenants.load("acme")).name == "Acme Corp"


@pytest.mark.anyio("asyncio")
async def test_entity_lookup_by_table():
    loaders = RequestLoaders(InMemoryStore())
    assert loaders.entity(Tables.SURVEYS) is loaders.surveys
    assert loaders.surveys.max_batch_size == 50
    assert loaders.tenants.max_batch_size == 100
    assert len(list(loaders)) == 16
