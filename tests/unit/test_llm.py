"""Tests for the chat completion helpers."""
import pytest


def test_extract_plain_json():
    from wavearbiter.providers import extract_json_object

    assert extract_json_object('{"direction": "LONG"}') == {"direction": "LONG"}


def test_extract_fenced_json():
    from wavearbiter.providers import extract_json_object

    text = 'Here is my count:\n```json\n{"direction": "SHORT", "risk_reward_estimate": 2.1}\n```\nGood luck.'

    assert extract_json_object(text) == {"direction": "SHORT", "risk_reward_estimate": 2.1}


def test_extract_json_surrounded_by_prose():
    from wavearbiter.providers import extract_json_object

    text = 'Sure. {"direction": "HOLD", "rule_citations": ["a", "b"]} Hope that helps.'

    assert extract_json_object(text)["rule_citations"] == ["a", "b"]


def test_extract_json_failure():
    from wavearbiter.providers import ProviderError, extract_json_object

    with pytest.raises(ProviderError, match="No JSON object"):
        extract_json_object("I cannot answer that.")


def test_extract_json_rejects_arrays():
    from wavearbiter.providers import ProviderError, extract_json_object

    with pytest.raises(ProviderError):
        extract_json_object("[1, 2, 3]")


def test_client_endpoint_and_api_key(monkeypatch):
    from wavearbiter.core.config import ProviderConfig
    from wavearbiter.providers import ChatCompletionClient

    monkeypatch.setenv("WAVE_TEST_KEY", "secret")
    config = ProviderConfig(base_url="https://api.example.com/v1/", model="test-model", api_key_env="WAVE_TEST_KEY")

    client = ChatCompletionClient(config)

    assert client.endpoint == "https://api.example.com/v1/chat/completions"
    assert client._api_key == "secret"
    assert client.model == "test-model"


def test_embedding_endpoint():
    from wavearbiter.core.config import ProviderConfig
    from wavearbiter.retrieval import OpenAIEmbeddingClient

    client = OpenAIEmbeddingClient(
        ProviderConfig(base_url="https://api.openai.com/v1", model="text-embedding-ada-002"),
        api_key="key",
    )

    assert client.endpoint == "https://api.openai.com/v1/embeddings"


def test_normalize_query():
    from wavearbiter.retrieval import normalize_query

    assert normalize_query("  Is wave-3   extended?!  ") == "Is wave 3 extended"
    assert normalize_query("") == ""
