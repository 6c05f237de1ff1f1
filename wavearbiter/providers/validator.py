"""Rule-validator evaluator backed by a chat completion model."""
import json
import logging
from typing import Any, Protocol, runtime_checkable

from wavearbiter.models import ScenarioProposal
from wavearbiter.providers.llm import ChatCompletionClient

logger = logging.getLogger(__name__)

VALIDATOR_PROMPT = """You are a strict NEoWave rule validator.

Evaluate this trading scenario against NEoWave rules:

{proposal}

Rules context:
{context}

Score each criterion:

1. Rule Validity (pass/fail): does this violate any NEoWave rule?
2. Invalidation Clarity (0-2): how clear and specific is the invalidation level?
3. Risk Reward (0-2): 2R or better = 2, 1.5-2R = 1, below 1.5R = 0
4. Structure Simplicity (0-2): how simple and clear is the wave structure?
5. Resolution Speed (0-2): how soon will the scenario be confirmed or invalidated?

Also estimate the stop distance in percent.

Respond with JSON:
{{
  "rule_validity": true,
  "invalidation_clarity": 0,
  "risk_reward": 0,
  "structure_simplicity": 0,
  "resolution_speed": 0,
  "stop_distance": 0.0
}}"""


@runtime_checkable
class RuleValidator(Protocol):
    """Judges one proposal against the rule rubric."""

    async def evaluate(self, proposal: ScenarioProposal, context_text: str) -> dict[str, Any]:
        """Return rule_validity, the four sub-scores and stop_distance."""
        ...


class LLMRuleValidator:
    """RuleValidator that asks a model to apply the rubric."""

    def __init__(self, client: ChatCompletionClient):
        self.client = client

    async def evaluate(self, proposal: ScenarioProposal, context_text: str) -> dict[str, Any]:
        prompt = VALIDATOR_PROMPT.format(
            proposal=json.dumps(proposal.to_dict(), indent=2, ensure_ascii=False),
            context=context_text,
        )
        return await self.client.complete_json([{"role": "user", "content": prompt}])
