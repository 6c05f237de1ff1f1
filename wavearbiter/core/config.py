"""Configuration loading and validation."""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

RETRIEVAL_MODES = ("vector", "priority", "document", "hybrid")


class ConfigError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class ProviderConfig:
    """Connection settings for one OpenAI-compatible endpoint."""

    base_url: str
    model: str
    api_key_env: str = "OPENAI_API_KEY"
    timeout_s: float = 60.0
    temperature: float = 0.3


@dataclass
class ProvidersConfig:
    """External model endpoints used by the decision cycle."""

    embedding: ProviderConfig
    primary: ProviderConfig
    alternative: ProviderConfig
    validator: ProviderConfig


@dataclass
class RetrievalConfig:
    """Knowledge retrieval configuration."""

    top_k: int = 8
    similarity_threshold: float = 0.7
    mode: str = "vector"
    preferred_document_id: str | None = None


@dataclass
class RiskConfig:
    """Risk gate thresholds."""

    max_concurrent_positions: int = 3
    consecutive_loss_threshold: int = 3
    min_risk_reward: float = 1.5


@dataclass
class StateMachineConfig:
    """Trading state machine timing."""

    reset_cooldown_seconds: float = 5.0
    sweep_interval_seconds: float = 1.0


@dataclass
class PersistenceConfig:
    """Decision persistence behaviour."""

    max_attempts: int = 3


@dataclass
class ArbitrationConfig:
    """Arbitration settings."""

    chat_label: str = "general chat"
    seed: int | None = None


@dataclass
class DataStoreConfig:
    """Data store configuration."""

    backend: str
    path: str


@dataclass
class Config:
    """Main configuration container."""

    providers: ProvidersConfig
    data_store: DataStoreConfig
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    state_machine: StateMachineConfig = field(default_factory=StateMachineConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    arbitration: ArbitrationConfig = field(default_factory=ArbitrationConfig)


def _parse_provider(name: str, raw: dict[str, Any] | None) -> ProviderConfig:
    if not raw:
        raise ConfigError(f"Missing provider configuration: {name}")
    for key in ("base_url", "model"):
        if key not in raw:
            raise ConfigError(f"Provider '{name}' is missing '{key}'")
    return ProviderConfig(
        base_url=raw["base_url"],
        model=raw["model"],
        api_key_env=raw.get("api_key_env", "OPENAI_API_KEY"),
        timeout_s=raw.get("timeout_s", 60.0),
        temperature=raw.get("temperature", 0.3),
    )


def load_config(path: str) -> Config:
    """Load configuration from YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Config object with validated configuration

    Raises:
        ConfigError: If file not found, invalid YAML, or missing required fields
    """
    config_path = Path(path)

    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML: {e}") from e

    if raw is None:
        raise ConfigError("Configuration file is empty")

    # Validate required sections
    required_sections = ["providers", "data_store"]
    for section in required_sections:
        if section not in raw:
            raise ConfigError(f"Missing required configuration section: {section}")

    # Parse providers
    prov_raw = raw["providers"] or {}
    providers = ProvidersConfig(
        embedding=_parse_provider("embedding", prov_raw.get("embedding")),
        primary=_parse_provider("primary", prov_raw.get("primary")),
        alternative=_parse_provider("alternative", prov_raw.get("alternative")),
        validator=_parse_provider("validator", prov_raw.get("validator")),
    )

    # Parse data store config
    ds_raw = raw["data_store"] or {}
    data_store = DataStoreConfig(
        backend=ds_raw.get("backend", "file"),
        path=ds_raw.get("path", "./data"),
    )

    # Parse retrieval config
    ret_raw = raw.get("retrieval") or {}
    retrieval = RetrievalConfig(
        top_k=ret_raw.get("top_k", 8),
        similarity_threshold=ret_raw.get("similarity_threshold", 0.7),
        mode=ret_raw.get("mode", "vector"),
        preferred_document_id=ret_raw.get("preferred_document_id"),
    )
    if retrieval.mode not in RETRIEVAL_MODES:
        raise ConfigError(f"Unknown retrieval mode: {retrieval.mode} (expected one of {RETRIEVAL_MODES})")
    if retrieval.top_k <= 0:
        raise ConfigError("retrieval.top_k must be positive")

    # Parse risk config
    risk_raw = raw.get("risk") or {}
    risk = RiskConfig(
        max_concurrent_positions=risk_raw.get("max_concurrent_positions", 3),
        consecutive_loss_threshold=risk_raw.get("consecutive_loss_threshold", 3),
        min_risk_reward=risk_raw.get("min_risk_reward", 1.5),
    )

    sm_raw = raw.get("state_machine") or {}
    state_machine = StateMachineConfig(
        reset_cooldown_seconds=sm_raw.get("reset_cooldown_seconds", 5.0),
        sweep_interval_seconds=sm_raw.get("sweep_interval_seconds", 1.0),
    )

    persist_raw = raw.get("persistence") or {}
    persistence = PersistenceConfig(
        max_attempts=max(1, persist_raw.get("max_attempts", 3)),
    )

    arb_raw = raw.get("arbitration") or {}
    arbitration = ArbitrationConfig(
        chat_label=arb_raw.get("chat_label", "general chat"),
        seed=arb_raw.get("seed"),
    )

    config = Config(
        providers=providers,
        data_store=data_store,
        retrieval=retrieval,
        risk=risk,
        state_machine=state_machine,
        persistence=persistence,
        arbitration=arbitration,
    )

    logger.info(f"Loaded configuration from {path}")
    logger.debug(f"Retrieval: mode={retrieval.mode}, top_k={retrieval.top_k}, threshold={retrieval.similarity_threshold}")
    logger.debug(
        f"Risk: max_positions={risk.max_concurrent_positions}, "
        f"loss_threshold={risk.consecutive_loss_threshold}, min_rr={risk.min_risk_reward}"
    )

    return config
