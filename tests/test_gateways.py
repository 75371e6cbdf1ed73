"""Tests for the gateway filtering policy and concrete gateways."""

import json
from types import SimpleNamespace

import pytest

from conftest import RecordingGateway, make_fragments
from docbridge.configuration import DocbridgeSettings
from docbridge.errors import (
    GatewayConfigurationError,
    SplitterLimitError,
    TranslationGatewayError,
)
from docbridge.gateways import (
    EchoGateway,
    GoogleCloudGateway,
    LegacyOpenAIGateway,
    OpenAIGateway,
    TranslationGateway,
    build_gateway,
)
from docbridge.pipeline import translate_fragments


class ShortGateway(TranslationGateway):
    name = "short"

    def _translate_texts(self, texts, *, target_language, source_language):
        return texts[:-1]


class TestFilteringPolicy:
    def test_empty_entries_are_not_sent(self):
        gateway = RecordingGateway()
        result = gateway.translate_batch(["", "a", None, "b"], target_language="es")
        assert result == ["", "a!", "", "b!"]
        assert gateway.calls == [["a", "b"]]

    def test_all_empty_batch_makes_no_call(self):
        gateway = RecordingGateway()
        assert gateway.translate_batch(["", None], target_language="es") == ["", ""]
        assert gateway.calls == []

    def test_same_language_returns_input(self):
        gateway = RecordingGateway()
        result = gateway.translate_batch(
            ["a", None, "b"], target_language="pt", source_language="pt"
        )
        assert result == ["a", "", "b"]
        assert gateway.calls == []

    def test_length_mismatch_fails_whole_batch(self):
        with pytest.raises(TranslationGatewayError):
            ShortGateway().translate_batch(["a", "b"], target_language="es")

    def test_default_limits(self):
        gateway = EchoGateway()
        assert (gateway.max_items, gateway.max_request_size) == (25, 5000)
        gateway = EchoGateway(max_items=0, max_request_size=0)
        assert (gateway.max_items, gateway.max_request_size) == (0, 0)
        gateway = EchoGateway(max_items=3, max_request_size=40)
        assert (gateway.max_items, gateway.max_request_size) == (3, 40)


def _responses_client(payload):
    response = SimpleNamespace(output_text=payload, output=None)
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return response

    client = SimpleNamespace(responses=SimpleNamespace(create=create))
    return client, calls


class TestOpenAIGateway:
    def test_maps_translations_by_position(self):
        payload = json.dumps(
            {
                "translations": [
                    {"id": "1", "translated": "Mundo"},
                    {"id": "0", "translated": "Hola"},
                ]
            }
        )
        client, calls = _responses_client(payload)
        gateway = OpenAIGateway(client=client)

        result = gateway.translate_batch(["Hello", "", "World"], target_language="es")

        assert result == ["Hola", "", "Mundo"]
        sent = json.loads(calls[0]["input"][1]["content"][0]["text"])
        assert sent["segments"] == [
            {"id": "0", "text": "Hello"},
            {"id": "1", "text": "World"},
        ]
        assert sent["source_language"] is None

    def test_code_fenced_list_is_accepted(self):
        payload = '```json\n[{"id": 0, "translated": "Hallo"}]\n```'
        client, _ = _responses_client(payload)
        gateway = OpenAIGateway(client=client, model="custom-model")

        assert gateway.translate_batch(["Hello"], target_language="de") == ["Hallo"]
        assert gateway.model == "custom-model"

    def test_missing_segment_fails(self):
        payload = json.dumps({"translations": [{"id": "0", "translated": "Hola"}]})
        client, _ = _responses_client(payload)
        gateway = OpenAIGateway(client=client)

        with pytest.raises(TranslationGatewayError, match="missing segments"):
            gateway.translate_batch(["Hello", "World"], target_language="es")

    def test_invalid_json_fails(self):
        client, _ = _responses_client("not json")
        with pytest.raises(TranslationGatewayError, match="invalid JSON"):
            OpenAIGateway(client=client).translate_batch(["Hello"], target_language="es")

    def test_missing_key_is_configuration_error(self):
        with pytest.raises(GatewayConfigurationError):
            OpenAIGateway(settings=DocbridgeSettings())

    def test_incomplete_azure_settings(self):
        settings = DocbridgeSettings(LLM_PROVIDER="azure-openai", AZURE_OPENAI_API_KEY="k")
        with pytest.raises(GatewayConfigurationError, match="AZURE_OPENAI_ENDPOINT"):
            OpenAIGateway(settings=settings)


class TestLegacyOpenAIGateway:
    def test_reads_chat_completion_content(self):
        content = json.dumps({"translations": [{"id": "0", "translated": "Bonjour"}]})
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
        )
        client = SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(create=lambda **_: response))
        )
        gateway = LegacyOpenAIGateway(client=client)

        assert gateway.translate_batch(["Hello"], target_language="fr") == ["Bonjour"]


class FakeGoogleClient:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def translate(self, values, target_language, source_language=None, format_=None):
        self.calls.append((list(values), target_language, source_language, format_))
        if self.fail:
            raise RuntimeError("quota exceeded")
        return [{"translatedText": value.upper()} for value in values]


class TestGoogleCloudGateway:
    def test_translates_non_empty_values(self):
        client = FakeGoogleClient()
        gateway = GoogleCloudGateway(client=client)

        result = gateway.translate_batch(["ab", "", "cd"], target_language="es")

        assert result == ["AB", "", "CD"]
        assert client.calls == [(["ab", "cd"], "es", None, "text")]
        assert (gateway.max_items, gateway.max_request_size) == (25, 5000)

    def test_remote_failure_becomes_gateway_error(self):
        gateway = GoogleCloudGateway(client=FakeGoogleClient(fail=True))
        with pytest.raises(TranslationGatewayError, match="quota exceeded"):
            gateway.translate_batch(["ab"], target_language="es")


class TestBuildGateway:
    def test_aliases(self):
        assert isinstance(build_gateway("mock"), EchoGateway)
        assert isinstance(build_gateway("ECHO"), EchoGateway)

    def test_limits_from_settings(self):
        settings = DocbridgeSettings(DOCBRIDGE_MAX_ITEMS=7, DOCBRIDGE_MAX_REQUEST_SIZE=300)
        gateway = build_gateway("echo", settings=settings)
        assert (gateway.max_items, gateway.max_request_size) == (7, 300)

    def test_explicit_limits_win(self):
        settings = DocbridgeSettings(DOCBRIDGE_MAX_ITEMS=7)
        gateway = build_gateway("echo", settings=settings, max_items=2)
        assert gateway.max_items == 2

    def test_zero_limit_is_kept_and_rejected(self):
        gateway = build_gateway("echo", max_items=0)
        assert gateway.max_items == 0
        fragments, _ = make_fragments(["a"])
        with pytest.raises(SplitterLimitError):
            translate_fragments(fragments, gateway, target_language="es")

    def test_unknown_gateway(self):
        with pytest.raises(GatewayConfigurationError):
            build_gateway("babelfish")
