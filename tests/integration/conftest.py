"""Fixtures for integration tests.

The decision cycle runs against a real FileDataStore and FileVectorStore;
only the external model providers are replaced by in-memory fakes.
"""
import random
import tempfile
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest


PROPOSAL_A = {
    "direction": "LONG",
    "scenario_label": "Wave 3 impulse",
    "confirmation_trigger": "Break above 68000",
    "invalidation_level": "Close below 64000",
    "risk_reward_estimate": 2.5,
    "rule_citations": ["Wave 3 is never the shortest"],
    "explanation": "Wave 2 held the 61.8% retracement.",
}

PROPOSAL_B = {
    "direction": "SHORT",
    "scenario_label": "Expanded flat correction",
    "confirmation_trigger": "Break below 65000",
    "invalidation_level": "Close above 69000",
    "risk_reward_estimate": 1.8,
    "rule_citations": ["Wave b exceeds wave a"],
    "alternative_reasoning": "The rally from 62000 is corrective.",
}

VALID_TOP_SCORE = {
    "rule_validity": True,
    "invalidation_clarity": 2,
    "risk_reward": 2,
    "structure_simplicity": 2,
    "resolution_speed": 2,
    "stop_distance": 1.5,
}

RULE_VIOLATION = {
    "rule_validity": False,
    "invalidation_clarity": 2,
    "risk_reward": 2,
    "structure_simplicity": 1,
    "resolution_speed": 1,
    "stop_distance": 0.8,
}


class FakeEmbedder:
    """Embeds every query onto the first axis."""

    def __init__(self, error: Exception | None = None):
        self.error = error

    async def embed(self, text):
        if self.error:
            raise self.error
        return [1.0, 0.0, 0.0]


class FakeProvider:
    """Scenario provider returning a preset proposal."""

    def __init__(self, raw: dict | None = None, error: Exception | None = None):
        self.raw = raw
        self.error = error
        self.calls = []

    async def propose(self, query, context_text, other, symbol, timeframe):
        from wavearbiter.models import ScenarioProposal

        self.calls.append({
            "query": query,
            "context_text": context_text,
            "other": other,
            "symbol": symbol,
            "timeframe": timeframe,
        })
        if self.error:
            raise self.error
        return ScenarioProposal.from_dict(self.raw)


class FakeValidator:
    """Rule validator answering by scenario label."""

    def __init__(self, evaluations: dict[str, dict] | None = None, error: Exception | None = None):
        self.evaluations = evaluations or {}
        self.error = error

    async def evaluate(self, proposal, context_text):
        if self.error:
            raise self.error
        return self.evaluations[proposal.scenario_label]


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: datetime = datetime(2026, 1, 5, 10, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_config(path: str):
    from wavearbiter.core.config import (
        ArbitrationConfig,
        Config,
        DataStoreConfig,
        ProviderConfig,
        ProvidersConfig,
    )

    provider = ProviderConfig(base_url="http://localhost:9/v1", model="fake")
    return Config(
        providers=ProvidersConfig(embedding=provider, primary=provider, alternative=provider, validator=provider),
        data_store=DataStoreConfig(backend="file", path=path),
        arbitration=ArbitrationConfig(chat_label="general chat", seed=7),
    )


def seed_knowledge(store) -> None:
    from wavearbiter.models import FragmentCategory, KnowledgeFragment

    store.write_fragments("neowave", [
        KnowledgeFragment("k1", "neowave", FragmentCategory.RULE, "Impulse rules",
                          "Wave 3 is never the shortest impulse wave", 42, (1.0, 0.0, 0.0)),
        KnowledgeFragment("k2", "neowave", FragmentCategory.EXCEPTION, "Extensions",
                          "An extended wave 1 allows a shorter wave 3 only in terminals", 57, (0.9, 0.2, 0.0)),
        KnowledgeFragment("k3", "neowave", FragmentCategory.DEFINITION, "Flats",
                          "A flat is a 3-3-5 correction", 80, (0.0, 1.0, 0.0)),
    ])


@pytest.fixture
def data_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def build_orchestrator(data_dir, clock):
    """Factory for an orchestrator wired to fakes and a temporary data store."""
    from wavearbiter.core.data_store import FileDataStore
    from wavearbiter.core.orchestrator import DecisionOrchestrator
    from wavearbiter.retrieval import FileVectorStore, RetrievalRanker

    def _build(
        proposal_a: dict = PROPOSAL_A,
        proposal_b: dict = PROPOSAL_B,
        evaluations: dict | None = None,
        data_store=None,
        embedder=None,
        primary=None,
        alternative=None,
        validator=None,
        config=None,
    ):
        config = config or make_config(data_dir)
        store = data_store or FileDataStore(data_dir, loss_threshold=config.risk.consecutive_loss_threshold)
        seed_knowledge(store)

        ranker = RetrievalRanker(
            embedder=embedder or FakeEmbedder(),
            store=FileVectorStore(store),
            default_top_k=config.retrieval.top_k,
            default_threshold=config.retrieval.similarity_threshold,
        )
        if evaluations is None:
            evaluations = {
                proposal_a["scenario_label"]: VALID_TOP_SCORE,
                proposal_b["scenario_label"]: RULE_VIOLATION,
            }

        return DecisionOrchestrator(
            config,
            data_store=store,
            ranker=ranker,
            primary=primary or FakeProvider(proposal_a),
            alternative=alternative or FakeProvider(proposal_b),
            validator=validator or FakeValidator(evaluations),
            rng=random.Random(config.arbitration.seed),
            clock=clock,
        )

    return _build


@pytest.fixture
def fakes():
    """Fake collaborators and canned provider output."""
    return SimpleNamespace(
        Embedder=FakeEmbedder,
        Provider=FakeProvider,
        Validator=FakeValidator,
        proposal_a=dict(PROPOSAL_A),
        proposal_b=dict(PROPOSAL_B),
        valid_top_score=dict(VALID_TOP_SCORE),
        rule_violation=dict(RULE_VIOLATION),
    )
