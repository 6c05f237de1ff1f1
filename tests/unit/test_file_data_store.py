"""Tests for FileDataStore implementation."""
from datetime import datetime
import tempfile
import pytest


@pytest.fixture
def temp_store():
    """Create a FileDataStore with a temporary directory."""
    from wavearbiter.core.data_store import FileDataStore

    with tempfile.TemporaryDirectory() as tmpdir:
        yield FileDataStore(base_path=tmpdir)


def make_fragment(fragment_id: str, document_id: str = "neowave", category: str = "rule",
                  content: str = "Wave 3 is never the shortest impulse wave", embedding=(1.0, 0.0, 0.0)):
    from wavearbiter.models import FragmentCategory, KnowledgeFragment

    return KnowledgeFragment(
        id=fragment_id,
        document_id=document_id,
        category=FragmentCategory(category),
        section_title="Impulse rules",
        content=content,
        source_page=42,
        embedding=tuple(embedding),
    )


def make_decision(direction: str = "LONG"):
    from wavearbiter.models import Decision, Direction, ProposalTag, ScenarioScore, TradingState

    return Decision(
        symbol="BTCUSDT",
        timeframe="4H",
        direction=Direction(direction),
        entry_trigger="Break above 68000",
        invalidation="Close below 64000",
        risk_percent=1.5,
        alternate_scenario="Running flat",
        state=TradingState.BREAKOUT_WATCH,
        selected=ProposalTag.A,
        scores={
            ProposalTag.A: ScenarioScore(ProposalTag.A, True, 2, 2, 2, 2, stop_distance=1.2),
            ProposalTag.B: ScenarioScore(ProposalTag.B, False, 1, 1, 1, 1, stop_distance=3.0),
        },
        reasoning="Primary count selected.",
        created_at=datetime(2026, 1, 5, 10, 0, 0),
    )


# =============================================================================
# Knowledge Fragment Tests
# =============================================================================

def test_write_and_read_fragments(temp_store):
    fragments = [make_fragment("f1"), make_fragment("f2", category="exception", embedding=(0.0, 1.0, 0.0))]

    temp_store.write_fragments("neowave", fragments)

    result = temp_store.read_fragments("neowave")

    assert len(result) == 2
    assert result[0].id == "f1"
    assert result[0].source_page == 42
    assert result[1].category.value == "exception"
    assert result[1].embedding == pytest.approx((0.0, 1.0, 0.0))


def test_read_fragments_across_documents(temp_store):
    temp_store.write_fragments("doc-a", [make_fragment("a1", document_id="doc-a")])
    temp_store.write_fragments("doc-b", [make_fragment("b1", document_id="doc-b")])

    result = temp_store.read_fragments()

    assert {f.id for f in result} == {"a1", "b1"}


def test_read_fragments_empty_for_missing_document(temp_store):
    assert temp_store.read_fragments("missing") == []


def test_write_fragments_rejects_foreign_document(temp_store):
    with pytest.raises(ValueError, match="belongs to"):
        temp_store.write_fragments("doc-a", [make_fragment("b1", document_id="doc-b")])


def test_fragment_without_embedding(temp_store):
    temp_store.write_fragments("neowave", [make_fragment("f1", embedding=())])

    result = temp_store.read_fragments("neowave")

    assert result[0].embedding == ()


def test_delete_document_removes_fragments(temp_store):
    temp_store.write_fragments("neowave", [make_fragment("f1"), make_fragment("f2")])

    removed = temp_store.delete_document("neowave")

    assert removed == 2
    assert temp_store.read_fragments("neowave") == []
    assert temp_store.delete_document("neowave") == 0


# =============================================================================
# Trading State Tests
# =============================================================================

def test_save_and_load_trading_state(temp_store):
    from wavearbiter.models import StateKey, StateRecord, TradingState

    key = StateKey("conv-1", "BTCUSDT", "4H")
    record = StateRecord(
        key=key,
        state=TradingState.BREAKOUT_WATCH,
        state_data={"last_decision": "LONG"},
        updated_at=datetime(2026, 1, 5, 10, 0, 0),
    )

    temp_store.save_trading_state(record)
    loaded = temp_store.load_trading_state(key)

    assert loaded is not None
    assert loaded.key == key
    assert loaded.state == TradingState.BREAKOUT_WATCH
    assert loaded.state_data["last_decision"] == "LONG"
    assert loaded.reset_deadline is None


def test_load_trading_state_missing(temp_store):
    from wavearbiter.models import StateKey

    assert temp_store.load_trading_state(StateKey("conv-1", "BTCUSDT", "4H")) is None


def test_save_trading_state_upserts(temp_store):
    from wavearbiter.models import StateKey, StateRecord, TradingState

    key = StateKey("conv-1", "BTCUSDT", "4H")
    temp_store.save_trading_state(StateRecord(key=key, state=TradingState.BREAKOUT_WATCH))
    temp_store.save_trading_state(StateRecord(
        key=key,
        state=TradingState.INVALIDATED_RESET,
        reset_deadline=datetime(2026, 1, 5, 10, 0, 5),
    ))

    records = temp_store.list_trading_states()

    assert len(records) == 1
    assert records[0].state == TradingState.INVALIDATED_RESET
    assert records[0].reset_deadline == datetime(2026, 1, 5, 10, 0, 5)


def test_trading_state_is_scoped_per_triple(temp_store):
    from wavearbiter.models import StateKey, StateRecord, TradingState

    temp_store.save_trading_state(StateRecord(StateKey("conv-1", "BTCUSDT", "4H"), TradingState.BREAKOUT_WATCH))
    temp_store.save_trading_state(StateRecord(StateKey("conv-1", "BTCUSDT", "1D"), TradingState.WAITING))
    temp_store.save_trading_state(StateRecord(StateKey("conv-2", "BTCUSDT", "4H"), TradingState.CONFIRMED_IMPULSE))

    assert temp_store.load_trading_state(StateKey("conv-1", "BTCUSDT", "4H")).state == TradingState.BREAKOUT_WATCH
    assert temp_store.load_trading_state(StateKey("conv-1", "BTCUSDT", "1D")).state == TradingState.WAITING
    assert temp_store.load_trading_state(StateKey("conv-2", "BTCUSDT", "4H")).state == TradingState.CONFIRMED_IMPULSE
    assert len(temp_store.list_trading_states()) == 3


def test_identifiers_with_path_separators(temp_store):
    from wavearbiter.models import StateKey, StateRecord, TradingState

    key = StateKey("../conv", "BTC/USDT", "4H")
    temp_store.save_trading_state(StateRecord(key, TradingState.BREAKOUT_WATCH))

    assert temp_store.load_trading_state(key).state == TradingState.BREAKOUT_WATCH


def test_underscored_identifiers_do_not_collide(temp_store):
    from wavearbiter.models import StateKey, StateRecord, TradingState

    first = StateKey("conv", "A__B", "C")
    second = StateKey("conv", "A", "B__C")
    temp_store.save_trading_state(StateRecord(first, TradingState.CONFIRMED_IMPULSE))

    assert temp_store.load_trading_state(second) is None

    temp_store.save_trading_state(StateRecord(second, TradingState.BREAKOUT_WATCH))

    assert temp_store.load_trading_state(first).state == TradingState.CONFIRMED_IMPULSE
    assert temp_store.load_trading_state(second).state == TradingState.BREAKOUT_WATCH
    assert len(temp_store.list_trading_states()) == 2


@pytest.mark.parametrize("conversation_id", [".", ".."])
def test_dot_conversation_ids_stay_inside_state_dir(temp_store, conversation_id):
    from wavearbiter.models import StateKey, StateRecord, TradingState

    key = StateKey(conversation_id, "BTCUSDT", "4H")
    temp_store.save_trading_state(StateRecord(key, TradingState.INVALIDATED_RESET))

    records = temp_store.list_trading_states()
    assert [r.key for r in records] == [key]
    assert temp_store.load_trading_state(key).state == TradingState.INVALIDATED_RESET
    assert not (temp_store.base_path / "state" / "BTCUSDT__4H.json").exists()


def test_list_trading_states_skips_unreadable_files(temp_store):
    from wavearbiter.models import StateKey, StateRecord, TradingState

    key = StateKey("conv-1", "BTCUSDT", "4H")
    temp_store.save_trading_state(StateRecord(key, TradingState.BREAKOUT_WATCH))
    broken_dir = temp_store.base_path / "state" / "conv-2"
    broken_dir.mkdir()
    (broken_dir / "ETHUSDT__1H.json").write_text("{ not json")
    (broken_dir / "SOLUSDT__1H.json").write_text(
        '{"conversation_id": "conv-2", "symbol": "SOLUSDT", "timeframe": "1H", "current_state": "FLYING"}'
    )

    records = temp_store.list_trading_states()

    assert [r.key for r in records] == [key]


def test_delete_conversation_cascades_states(temp_store):
    from wavearbiter.models import StateKey, StateRecord, TradingState

    temp_store.save_trading_state(StateRecord(StateKey("conv-1", "BTCUSDT", "4H"), TradingState.BREAKOUT_WATCH))
    temp_store.save_trading_state(StateRecord(StateKey("conv-1", "ETHUSDT", "4H"), TradingState.WAITING))
    temp_store.save_trading_state(StateRecord(StateKey("conv-2", "BTCUSDT", "4H"), TradingState.WAITING))

    removed = temp_store.delete_conversation("conv-1")

    assert removed == 2
    assert temp_store.load_trading_state(StateKey("conv-1", "BTCUSDT", "4H")) is None
    assert len(temp_store.list_trading_states()) == 1
    assert temp_store.delete_conversation("conv-1") == 0


# =============================================================================
# Risk Tracking Tests
# =============================================================================

def test_load_risk_context_defaults(temp_store):
    context = temp_store.load_risk_context("anonymous")

    assert context.active_positions == 0
    assert context.consecutive_losses == 0
    assert context.is_trading_enabled is True


def test_save_and_load_risk_context(temp_store):
    from wavearbiter.models import RiskContext

    temp_store.save_risk_context("user-1", RiskContext(active_positions=2, consecutive_losses=1))

    context = temp_store.load_risk_context("user-1")

    assert context.active_positions == 2
    assert context.consecutive_losses == 1


def test_record_trade_outcome_disables_after_threshold(temp_store):
    for _ in range(2):
        context = temp_store.record_trade_outcome("user-1", is_loss=True)
    assert context.consecutive_losses == 2
    assert context.is_trading_enabled is True

    context = temp_store.record_trade_outcome("user-1", is_loss=True)

    assert context.consecutive_losses == 3
    assert context.is_trading_enabled is False
    assert temp_store.load_risk_context("user-1").is_trading_enabled is False


def test_record_trade_outcome_win_resets(temp_store):
    temp_store.record_trade_outcome("user-1", is_loss=True)
    temp_store.record_trade_outcome("user-1", is_loss=True)

    context = temp_store.record_trade_outcome("user-1", is_loss=False)

    assert context.consecutive_losses == 0
    assert context.is_trading_enabled is True


def test_record_trade_outcome_uses_store_threshold():
    from wavearbiter.core.data_store import FileDataStore

    with tempfile.TemporaryDirectory() as tmpdir:
        store = FileDataStore(base_path=tmpdir, loss_threshold=5)
        for _ in range(4):
            context = store.record_trade_outcome("user-1", is_loss=True)
        assert context.is_trading_enabled is True

        context = store.record_trade_outcome("user-1", is_loss=True)

    assert context.consecutive_losses == 5
    assert context.is_trading_enabled is False


# =============================================================================
# Audit Logging Tests
# =============================================================================

def test_log_decision(temp_store):
    temp_store.log_decision(
        "run-1", "conv-1", "Where are we in the count?", make_decision(),
        extra={"proposal_a": {"direction": "LONG"}},
    )

    entries = temp_store.read_decisions()

    assert len(entries) == 1
    assert entries[0]["run_id"] == "run-1"
    assert entries[0]["user_query"] == "Where are we in the count?"
    assert entries[0]["final_decision"]["decision"] == "LONG"
    assert entries[0]["final_decision"]["judge_scores"]["A"]["total_score"] == 8
    assert entries[0]["final_decision"]["judge_scores"]["B"]["total_score"] == 0
    assert entries[0]["proposal_a"] == {"direction": "LONG"}


def test_read_decisions_newest_first_and_filtered(temp_store):
    temp_store.log_decision("run-1", "conv-1", "q1", make_decision())
    temp_store.log_decision("run-2", "conv-2", "q2", make_decision("SHORT"))
    temp_store.log_decision("run-3", "conv-1", "q3", make_decision("HOLD"))

    assert [e["run_id"] for e in temp_store.read_decisions()] == ["run-3", "run-2", "run-1"]
    assert [e["run_id"] for e in temp_store.read_decisions(conversation_id="conv-1")] == ["run-3", "run-1"]
    assert len(temp_store.read_decisions(limit=1)) == 1


def test_log_dead_letter(temp_store):
    import json

    temp_store.log_dead_letter("run-9", "conv-1", make_decision(), "disk full")

    path = temp_store.base_path / "audit" / "dead_letter" / "decisions.jsonl"
    lines = path.read_text().splitlines()

    assert len(lines) == 1
    entry = json.loads(lines[0])
    assert entry["run_id"] == "run-9"
    assert entry["error"] == "disk full"
    assert entry["final_decision"]["symbol"] == "BTCUSDT"
