"""Scenario-generating providers.

Two providers produce competing wave counts for the same query. The primary
count is conservative; the alternative count receives the primary output and
is asked to challenge it rather than repeat it.
"""
import json
import logging
from typing import Protocol, runtime_checkable

from wavearbiter.models import ProposalFormatError, ScenarioProposal
from wavearbiter.providers.llm import ChatCompletionClient, ProviderError

logger = logging.getLogger(__name__)

PRIMARY = "primary"
ALTERNATIVE = "alternative"

TRADING_KEYWORDS = (
    "analysis", "analyze", "buy", "sell", "long", "short", "wave", "trend",
    "support", "resistance", "btc", "eth", "usdt", "coin", "chart", "impulse",
    "correction", "breakout", "stop", "entry", "exit", "candle", "rsi", "macd",
    "moving average", "price", "position", "bull", "bear", "rally", "dump",
    "trade", "invest",
)

PROPOSAL_SCHEMA = """{
  "direction": "LONG | SHORT | HOLD",
  "scenario_label": "one-line scenario summary",
  "confirmation_trigger": "what signal confirms the scenario",
  "invalidation_level": "price or condition that invalidates it",
  "risk_reward_estimate": 0.0,
  "rule_citations": ["rules applied"],
  "rationale": "2-3 sentence explanation"
}"""


def is_trading_query(query: str) -> bool:
    """Whether a query asks for market analysis rather than general chat."""
    lowered = query.lower()
    return any(keyword in lowered for keyword in TRADING_KEYWORDS)


@runtime_checkable
class ScenarioProvider(Protocol):
    """Produces one scenario proposal for a query."""

    async def propose(
        self,
        query: str,
        context_text: str,
        other: ScenarioProposal | None,
        symbol: str,
        timeframe: str,
    ) -> ScenarioProposal:
        ...


class LLMScenarioProvider:
    """Scenario provider backed by a chat completion model.

    Args:
        client: Chat completion client for the model
        role: PRIMARY (conservative count) or ALTERNATIVE (contrasting count)
        chat_label: Scenario label used for non-trading replies
    """

    def __init__(self, client: ChatCompletionClient, role: str = PRIMARY, chat_label: str = "general chat"):
        if role not in (PRIMARY, ALTERNATIVE):
            raise ValueError(f"Unknown provider role: {role}")
        self.client = client
        self.role = role
        self.chat_label = chat_label

    def _chat_messages(self, query: str, other: ScenarioProposal | None) -> list[dict[str, str]]:
        chat_schema = json.dumps({
            "direction": "HOLD",
            "scenario_label": self.chat_label,
            "confirmation_trigger": "n/a",
            "invalidation_level": "n/a",
            "risk_reward_estimate": 0,
            "rule_citations": [self.chat_label],
            "rationale": "natural conversational reply (2-3 sentences)",
        }, indent=2)
        system = (
            "You are a friendly assistant having a relaxed conversation.\n"
            f"Always answer with JSON in exactly this shape:\n{chat_schema}"
        )
        if other is not None:
            system += (
                "\n\nAnother assistant already replied:\n"
                f"{json.dumps(other.to_dict(), indent=2)}\n"
                "Answer in a different style: more humorous, more detailed, or from another angle."
            )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": f"User message: {query}"},
        ]

    def _analysis_messages(
        self,
        query: str,
        context_text: str,
        other: ScenarioProposal | None,
        symbol: str,
        timeframe: str,
    ) -> list[dict[str, str]]:
        if self.role == PRIMARY:
            system = (
                "You are a NEoWave expert producing the PRIMARY wave count with a conservative approach.\n"
                "Guidelines:\n"
                "1. Follow the NEoWave rules strictly\n"
                "2. Recommend HOLD when uncertain\n"
                "3. Always give a clear invalidation level\n\n"
                f"{context_text}"
            )
        else:
            system = (
                "You are a NEoWave expert producing an ALTERNATIVE wave count.\n"
                "Challenge the primary count: find what it missed or where it is too cautious, "
                "and argue a different interpretation. Stay within the NEoWave rules; be bold, not reckless.\n\n"
                f"{context_text}"
            )
            if other is not None:
                system += f"\n\nPrimary count:\n{json.dumps(other.to_dict(), indent=2)}"

        user = (
            f"Analyze: {symbol} ({timeframe})\n"
            f"Question: {query}\n\n"
            f"Respond with JSON:\n{PROPOSAL_SCHEMA}"
        )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    def _is_chat(self, query: str, other: ScenarioProposal | None) -> bool:
        if other is not None:
            return other.scenario_label == self.chat_label
        return not is_trading_query(query)

    async def propose(
        self,
        query: str,
        context_text: str,
        other: ScenarioProposal | None,
        symbol: str,
        timeframe: str,
    ) -> ScenarioProposal:
        """Ask the model for a scenario.

        Raises:
            ProviderError: If the model fails or returns an invalid proposal
        """
        if self._is_chat(query, other):
            messages = self._chat_messages(query, other)
            temperature = 0.9
        else:
            messages = self._analysis_messages(query, context_text, other, symbol, timeframe)
            temperature = None

        raw = await self.client.complete_json(messages, temperature=temperature)
        try:
            proposal = ScenarioProposal.from_dict(raw)
        except ProposalFormatError as e:
            raise ProviderError(f"{self.role} count from {self.client.model} is invalid: {e}") from e

        logger.info(
            f"{self.role.capitalize()} count for {symbol} ({timeframe}): "
            f"{proposal.direction.value} - {proposal.scenario_label}"
        )
        return proposal
