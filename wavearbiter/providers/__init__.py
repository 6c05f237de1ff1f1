"""External model providers used by the decision cycle."""

from wavearbiter.providers.llm import ChatCompletionClient, ProviderError, extract_json_object
from wavearbiter.providers.scenario import (
    ALTERNATIVE,
    PRIMARY,
    LLMScenarioProvider,
    ScenarioProvider,
    is_trading_query,
)
from wavearbiter.providers.validator import LLMRuleValidator, RuleValidator

__all__ = [
    "ChatCompletionClient",
    "ProviderError",
    "extract_json_object",
    "ALTERNATIVE",
    "PRIMARY",
    "LLMScenarioProvider",
    "ScenarioProvider",
    "is_trading_query",
    "LLMRuleValidator",
    "RuleValidator",
]
