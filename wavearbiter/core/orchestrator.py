"""Decision orchestrator wiring retrieval, arbitration, state and risk."""
import logging
import random
import uuid
from datetime import datetime
from typing import Any, Callable

from wavearbiter.arbitration import ScenarioScorer, build_reasoning, risk_percent_for, select, select_chat
from wavearbiter.core.config import Config
from wavearbiter.core.data_store import FileDataStore
from wavearbiter.core.event_bus import EventBus
from wavearbiter.core.reset_sweeper import ResetSweeper
from wavearbiter.core.risk_gate import RiskGate
from wavearbiter.core.state_machine import TradingStateMachine
from wavearbiter.models import (
    CycleResult,
    Decision,
    Direction,
    Event,
    GateResult,
    ProposalTag,
    RetrievalResult,
    ScenarioProposal,
    ScenarioScore,
    StateKey,
    TradingState,
)
from wavearbiter.providers import (
    ALTERNATIVE,
    PRIMARY,
    ChatCompletionClient,
    LLMRuleValidator,
    LLMScenarioProvider,
    RuleValidator,
    ScenarioProvider,
)
from wavearbiter.retrieval import FileVectorStore, OpenAIEmbeddingClient, RetrievalRanker, format_context

logger = logging.getLogger(__name__)

NOT_APPLICABLE = "n/a"


class CycleInputError(ValueError):
    """Raised when a decision cycle is requested with missing fields."""

    pass


class DecisionOrchestrator:
    """Runs one decision cycle per request and owns the reset sweeper.

    Cycle: load state -> retrieve context -> primary proposal -> alternative
    proposal (given the primary) -> score both -> select -> risk percent ->
    advance state -> risk gate -> persist -> return.

    Collaborators default to the ones described by the config; any of them
    can be passed in directly.
    """

    def __init__(
        self,
        config: Config,
        data_store: FileDataStore | None = None,
        ranker: RetrievalRanker | None = None,
        primary: ScenarioProvider | None = None,
        alternative: ScenarioProvider | None = None,
        validator: RuleValidator | None = None,
        event_bus: EventBus | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the orchestrator.

        Args:
            config: System configuration
            data_store: Persistence backend (FileDataStore at config path by default)
            ranker: Knowledge retrieval ranker
            primary: Provider of proposal A
            alternative: Provider of proposal B
            validator: Rule validator used by the scorer
            event_bus: Bus for decision, transition and invalidation events
            rng: Random source for chat-cycle tie-breaks
            clock: Time source
        """
        self.config = config
        self._clock = clock
        self._running = False
        self._clients: list[Any] = []

        self.event_bus = event_bus or EventBus()
        self.data_store = data_store or FileDataStore(
            config.data_store.path, loss_threshold=config.risk.consecutive_loss_threshold
        )

        providers = config.providers
        chat_label = config.arbitration.chat_label

        if ranker is None:
            embedder = OpenAIEmbeddingClient(providers.embedding)
            self._clients.append(embedder)
            ranker = RetrievalRanker(
                embedder=embedder,
                store=FileVectorStore(self.data_store),
                default_top_k=config.retrieval.top_k,
                default_threshold=config.retrieval.similarity_threshold,
            )
        self.ranker = ranker

        if primary is None:
            client = ChatCompletionClient(providers.primary)
            self._clients.append(client)
            primary = LLMScenarioProvider(client, role=PRIMARY, chat_label=chat_label)
        self.primary = primary

        if alternative is None:
            client = ChatCompletionClient(providers.alternative)
            self._clients.append(client)
            alternative = LLMScenarioProvider(client, role=ALTERNATIVE, chat_label=chat_label)
        self.alternative = alternative

        if validator is None:
            client = ChatCompletionClient(providers.validator)
            self._clients.append(client)
            validator = LLMRuleValidator(client)
        self.scorer = ScenarioScorer(validator)

        self.risk_gate = RiskGate(config.risk)
        self.rng = rng or random.Random(config.arbitration.seed)

        self.sweeper = ResetSweeper(
            data_store=self.data_store,
            interval_seconds=config.state_machine.sweep_interval_seconds,
            reset_cooldown_seconds=config.state_machine.reset_cooldown_seconds,
        )

        self.event_bus.subscribe(["invalidation"], self._on_invalidation)

        logger.info("Orchestrator initialized")

    @property
    def is_running(self) -> bool:
        """Check if the background sweeper is running."""
        return self._running

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the reset sweeper on the running event loop."""
        logger.info("Starting orchestrator...")
        self._running = True
        self.sweeper.start()

    async def stop(self) -> None:
        """Stop the sweeper and close provider sessions."""
        logger.info("Stopping orchestrator...")
        self._running = False
        await self.sweeper.stop()
        for client in self._clients:
            await client.close()
        logger.info("Orchestrator stopped")

    # =========================================================================
    # State access
    # =========================================================================

    def _load_machine(self, key: StateKey, now: datetime) -> tuple[TradingStateMachine, dict[str, Any]]:
        """Load the machine for key, recovering an expired reset on the way."""
        record = self.data_store.load_trading_state(key)
        machine = TradingStateMachine.from_record(record, self.config.state_machine.reset_cooldown_seconds)
        state_data = record.state_data if record else {}

        if machine.recover_if_expired(now):
            self.data_store.save_trading_state(machine.to_record(key, state_data, now=now))
        return machine, state_data

    def get_state(self, conversation_id: str, symbol: str, timeframe: str) -> TradingState:
        """Current trading state for a triple; WAITING if none is stored."""
        machine, _ = self._load_machine(StateKey(conversation_id, symbol, timeframe), self._clock())
        return machine.state

    def describe_state(self, conversation_id: str, symbol: str, timeframe: str) -> dict[str, Any]:
        """State, description and time in state for display."""
        now = self._clock()
        machine, state_data = self._load_machine(StateKey(conversation_id, symbol, timeframe), now)
        return {
            "current_state": machine.state.value,
            "description": machine.describe(),
            "duration_ms": int(machine.state_duration(now).total_seconds() * 1000),
            "reset_deadline": machine.reset_deadline.isoformat() if machine.reset_deadline else None,
            "state_data": state_data,
        }

    def invalidate(self, conversation_id: str, symbol: str, timeframe: str,
                   reason: str = "Invalidation level hit") -> TradingState:
        """Move a triple to INVALIDATED_RESET; used by external price monitors."""
        key = StateKey(conversation_id, symbol, timeframe)
        now = self._clock()
        machine, state_data = self._load_machine(key, now)
        previous = machine.state
        machine.invalidate(reason, now=now)
        self.data_store.save_trading_state(machine.to_record(key, state_data, now=now))
        self._publish_transition(key, previous, machine.state, reason)
        return machine.state

    def _on_invalidation(self, event: Event) -> None:
        self.invalidate(
            event.conversation_id,
            event.symbol,
            event.timeframe,
            reason=event.payload.get("reason", "Invalidation level hit"),
        )

    # =========================================================================
    # Decision cycle
    # =========================================================================

    @staticmethod
    def _validate_input(**fields: str) -> None:
        missing = [name for name, value in fields.items() if not isinstance(value, str) or not value.strip()]
        if missing:
            raise CycleInputError(f"Missing required field(s): {', '.join(missing)}")

    async def _retrieve(self, query: str) -> RetrievalResult:
        retrieval = self.config.retrieval
        return await self.ranker.retrieve_for_mode(
            query,
            mode=retrieval.mode,
            top_k=retrieval.top_k,
            preferred_document_id=retrieval.preferred_document_id,
        )

    def _chat_decision(
        self,
        symbol: str,
        timeframe: str,
        proposals: dict[ProposalTag, ScenarioProposal],
        state: TradingState,
    ) -> Decision:
        """Decision for a non-trading exchange: HOLD with a randomly chosen reply."""
        selected = select_chat(self.rng)
        chosen = proposals[selected]
        return Decision(
            symbol=symbol,
            timeframe=timeframe,
            direction=Direction.HOLD,
            entry_trigger=NOT_APPLICABLE,
            invalidation=NOT_APPLICABLE,
            risk_percent=0.0,
            alternate_scenario=proposals[selected.other].scenario_label,
            state=state,
            selected=selected,
            scores={ProposalTag.A: ScenarioScore.zero(ProposalTag.A), ProposalTag.B: ScenarioScore.zero(ProposalTag.B)},
            reasoning=chosen.rationale or chosen.scenario_label,
            created_at=self._clock(),
        )

    async def run_decision_cycle(
        self,
        query: str,
        conversation_id: str,
        symbol: str,
        timeframe: str,
        user_id: str = "anonymous",
    ) -> CycleResult:
        """Run one full decision cycle.

        Raises:
            CycleInputError: If a required field is missing (nothing is touched)
            RetrievalError: If knowledge retrieval fails
            ProviderError: If either scenario provider fails
        """
        self._validate_input(
            query=query,
            conversation_id=conversation_id,
            symbol=symbol,
            timeframe=timeframe,
            user_id=user_id,
        )

        run_id = str(uuid.uuid4())
        key = StateKey(conversation_id, symbol, timeframe)
        now = self._clock()

        machine, _ = self._load_machine(key, now)
        previous_state = machine.state
        logger.info(f"Cycle {run_id} for {key} starting in {previous_state.value}")

        retrieval = await self._retrieve(query)
        context_text = format_context(retrieval)
        logger.info(f"Retrieved {retrieval.total_retrieved} knowledge fragments")

        proposal_a = await self.primary.propose(query, context_text, None, symbol, timeframe)
        proposal_b = await self.alternative.propose(query, context_text, proposal_a, symbol, timeframe)
        proposals = {ProposalTag.A: proposal_a, ProposalTag.B: proposal_b}

        if proposal_a.scenario_label == self.config.arbitration.chat_label:
            state = machine.advance(Direction.HOLD, proposal_a.scenario_label, now=now)
            decision = self._chat_decision(symbol, timeframe, proposals, state)
            risk_check = GateResult(allowed=True)
        else:
            score_a = await self.scorer.score(ProposalTag.A, proposal_a, context_text)
            score_b = await self.scorer.score(ProposalTag.B, proposal_b, context_text)

            selected = select(score_a, score_b)
            winner = proposals[selected]
            state = machine.advance(winner.direction, winner.scenario_label, now=now)

            decision = Decision(
                symbol=symbol,
                timeframe=timeframe,
                direction=winner.direction,
                entry_trigger=winner.confirmation_trigger,
                invalidation=winner.invalidation_level,
                risk_percent=risk_percent_for(winner.risk_reward_estimate),
                alternate_scenario=proposals[selected.other].scenario_label,
                state=state,
                selected=selected,
                scores={ProposalTag.A: score_a, ProposalTag.B: score_b},
                reasoning=build_reasoning(score_a, score_b, selected),
                created_at=now,
            )

            risk = self.data_store.load_risk_context(user_id)
            risk_check = self.risk_gate.gate(decision, risk.active_positions, risk.consecutive_losses)
            decision = self.risk_gate.apply(decision, risk_check)

        logger.info(
            f"Cycle {run_id}: {decision.direction.value} {symbol} ({timeframe}) "
            f"selected={decision.selected.value} state={state.value} risk={decision.risk_percent}%"
        )

        recorded = self._persist(
            run_id=run_id,
            key=key,
            query=query,
            machine=machine,
            decision=decision,
            extra={
                "proposal_a": proposal_a.to_dict(),
                "proposal_b": proposal_b.to_dict(),
                "rag_context": {
                    "total_retrieved": retrieval.total_retrieved,
                    "top_chunks": retrieval.summary(),
                },
                "risk_check": {"allowed": risk_check.allowed, "reason": risk_check.reason},
            },
            now=now,
        )

        self._publish_transition(key, previous_state, state, f"cycle {run_id}")
        self.event_bus.publish(Event(
            type="decision",
            conversation_id=conversation_id,
            symbol=symbol,
            timeframe=timeframe,
            source="orchestrator",
            payload={"run_id": run_id, "recorded": recorded, **decision.to_dict()},
        ))

        return CycleResult(
            run_id=run_id,
            conversation_id=conversation_id,
            decision=decision,
            proposal_a=proposal_a,
            proposal_b=proposal_b,
            retrieval=retrieval,
            risk_check=risk_check,
            recorded=recorded,
        )

    def _persist(
        self,
        run_id: str,
        key: StateKey,
        query: str,
        machine: TradingStateMachine,
        decision: Decision,
        extra: dict[str, Any],
        now: datetime,
    ) -> bool:
        """Save state and decision, retrying; dead-letter the decision on failure.

        State is upserted before the decision is appended so a retry never
        duplicates an audit entry.

        Returns:
            True if both were written
        """
        state_data = {
            "last_decision": decision.direction.value,
            "last_analysis": now.isoformat(),
            "run_id": run_id,
        }
        attempts = self.config.persistence.max_attempts
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                self.data_store.save_trading_state(machine.to_record(key, state_data, now=now))
                self.data_store.log_decision(run_id, key.conversation_id, query, decision, extra)
                return True
            except (OSError, ValueError, TypeError) as e:
                last_error = e
                logger.warning(f"Persisting cycle {run_id} failed (attempt {attempt}/{attempts}): {e}")

        logger.error(f"Decision {run_id} was not recorded: {last_error}")
        try:
            self.data_store.log_dead_letter(run_id, key.conversation_id, decision, str(last_error))
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Dead letter write failed for {run_id}: {e}")
        return False

    def _publish_transition(self, key: StateKey, previous: TradingState, current: TradingState, trigger: str) -> None:
        if previous == current:
            return
        self.event_bus.publish(Event(
            type="state_transition",
            conversation_id=key.conversation_id,
            symbol=key.symbol,
            timeframe=key.timeframe,
            source="orchestrator",
            payload={"from": previous.value, "to": current.value, "trigger": trigger},
        ))
