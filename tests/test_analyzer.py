"""
Tests for the vision analyzer
"""

import json
import os

import pytest
import requests
from unittest.mock import Mock, patch

from fakes import FRAME
from ojo.analyzer import (
    AnalyzerConfig,
    GEMINI_URL,
    OPENAI_URL,
    VisionAnalyzer,
    limit_sentences,
    parse_scene_response,
    resolve_api_key,
)
from ojo.config import config
from ojo.exceptions import AnalysisError, ConfigurationError


def _response(data, ok=True, status_code=200):
    response = Mock()
    response.ok = ok
    response.status_code = status_code
    response.json.return_value = data
    response.text = json.dumps(data)
    return response


def _scene(description="Hay una silla a tu derecha.", objects=("silla",)):
    return json.dumps({"description": description, "detectedObjects": list(objects)})


class TestLimitSentences:
    """Test sentence limiting"""

    def test_keeps_first_two(self):
        text = "Hay una mesa. A tu izquierda una puerta. El suelo está mojado."
        assert limit_sentences(text) == "Hay una mesa. A tu izquierda una puerta."

    def test_short_text_unchanged(self):
        assert limit_sentences("Camino despejado.") == "Camino despejado."

    def test_collapses_whitespace(self):
        assert limit_sentences("  Hay\nuna   silla.  ") == "Hay una silla."

    def test_zero_means_unlimited(self):
        text = "Uno. Dos. Tres."
        assert limit_sentences(text, max_sentences=0) == text

    def test_abbreviations_do_not_end_sentence(self):
        text = "El Sr. García está a tu izquierda. Detrás hay una puerta. Más texto."
        assert limit_sentences(text) == "El Sr. García está a tu izquierda. Detrás hay una puerta."

    def test_street_abbreviation(self):
        text = "Estás en la Av. Central. El semáforo está en verde. Cruza con cuidado."
        assert limit_sentences(text, max_sentences=1) == "Estás en la Av. Central."

    def test_initials(self):
        text = "Un cartel dice J. Pérez abogado. La puerta está cerrada. Hay un timbre."
        assert limit_sentences(text, max_sentences=1) == "Un cartel dice J. Pérez abogado."

    def test_short_answer_is_a_sentence(self):
        assert limit_sentences("No. Hay una silla. Sigue.", max_sentences=2) == "No. Hay una silla."


class TestParseSceneResponse:
    """Test vision model reply parsing"""

    def test_valid_reply(self):
        description = parse_scene_response(_scene())

        assert description.text == "Hay una silla a tu derecha."
        assert description.detected_entities == ("silla",)

    def test_code_fenced_reply(self):
        raw = "```json\n" + _scene() + "\n```"
        assert parse_scene_response(raw).text == "Hay una silla a tu derecha."

    def test_snake_case_key_accepted(self):
        raw = json.dumps({"description": "Puerta al frente.", "detected_objects": ["puerta"]})
        assert parse_scene_response(raw).detected_entities == ("puerta",)

    def test_objects_optional(self):
        raw = json.dumps({"description": "Pasillo vacío."})
        assert parse_scene_response(raw).detected_entities == ()

    def test_entities_deduplicated(self):
        raw = _scene(objects=["silla", " silla ", "", "mesa"])
        assert parse_scene_response(raw).detected_entities == ("silla", "mesa")

    def test_long_description_trimmed(self):
        raw = _scene(description="Uno. Dos. Tres.")
        assert parse_scene_response(raw).text == "Uno. Dos."

    @pytest.mark.parametrize("raw", [
        "",
        "not json",
        json.dumps({"detectedObjects": []}),
        json.dumps({"description": ""}),
        json.dumps({"description": "   "}),
    ])
    def test_invalid_reply(self, raw):
        with pytest.raises(AnalysisError):
            parse_scene_response(raw)


class TestAnalyzerConfig:
    """Test analyzer configuration"""

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            AnalyzerConfig(provider="invalid")

    def test_default_model_per_provider(self):
        assert AnalyzerConfig(provider="ollama", model="").model == "llava:7b"
        assert AnalyzerConfig(provider="openai", model="").model == "gpt-4o-mini"

    def test_provider_case_insensitive(self):
        assert AnalyzerConfig(provider="Gemini").provider == "gemini"

    def test_from_env_drops_gemini_model_for_ollama(self):
        with patch.dict(config._config, {"OJO_MODEL": "gemini-2.5-flash"}):
            analyzer_config = AnalyzerConfig.from_env(provider="ollama")

        assert analyzer_config.provider == "ollama"
        assert analyzer_config.model == "llava:7b"

    def test_from_env_values(self):
        with patch.dict(config._config, {
            "OJO_LLM_PROVIDER": "gemini",
            "OJO_MODEL": "gemini-2.0-flash",
            "OJO_LLM_TIMEOUT": "12",
            "OJO_LLM_TEMPERATURE": "0.1",
            "OJO_TARGET_LANGUAGE": "en",
        }):
            analyzer_config = AnalyzerConfig.from_env()

        assert analyzer_config.model == "gemini-2.0-flash"
        assert analyzer_config.timeout == 12
        assert analyzer_config.temperature == 0.1
        assert analyzer_config.target_language == "en"

    def test_resolve_api_key_fallbacks(self):
        with patch.dict(config._config, {"OJO_GEMINI_API_KEY": "", "OJO_OPENAI_API_KEY": ""}), \
                patch.dict(os.environ, {"GEMINI_API_KEY": "gem-key", "OPENAI_API_KEY": "oa-key"}):
            assert resolve_api_key("gemini") == "gem-key"
            assert resolve_api_key("openai") == "oa-key"
            assert resolve_api_key("ollama") == ""

    def test_resolve_api_key_prefers_config(self):
        with patch.dict(config._config, {"OJO_GEMINI_API_KEY": "from-config"}), \
                patch.dict(os.environ, {"GEMINI_API_KEY": "from-env"}):
            assert resolve_api_key("gemini") == "from-config"


@pytest.fixture
def make_analyzer():
    created = []

    def factory(**kwargs):
        kwargs.setdefault("api_key", "test-key")
        kwargs.setdefault("target_language", "es")
        analyzer = VisionAnalyzer(AnalyzerConfig(**kwargs))
        analyzer._session.post = Mock()
        created.append(analyzer)
        return analyzer

    yield factory
    for analyzer in created:
        analyzer.close()


class TestGemini:
    """Test Gemini requests"""

    def test_request_shape(self, make_analyzer):
        analyzer = make_analyzer(provider="gemini", model="gemini-2.5-flash")
        analyzer._session.post.return_value = _response({
            "candidates": [{"content": {"parts": [{"text": _scene()}]}}],
        })

        description = analyzer.analyze_sync(FRAME)

        assert description.text == "Hay una silla a tu derecha."
        args, kwargs = analyzer._session.post.call_args
        assert args[0] == f"{GEMINI_URL}/gemini-2.5-flash:generateContent"
        assert kwargs["headers"] == {"x-goog-api-key": "test-key"}
        payload = kwargs["json"]
        assert "Español" in payload["systemInstruction"]["parts"][0]["text"]
        inline = payload["contents"][0]["parts"][0]["inlineData"]
        assert inline["mimeType"] == "image/jpeg"
        assert payload["generationConfig"]["responseMimeType"] == "application/json"
        assert payload["generationConfig"]["temperature"] == 0.3
        assert payload["generationConfig"]["responseSchema"]["required"] == ["description", "detectedObjects"]

    def test_missing_key(self, make_analyzer):
        analyzer = make_analyzer(provider="gemini", api_key="")

        with pytest.raises(AnalysisError, match="API key"):
            analyzer.analyze_sync(FRAME)
        analyzer._session.post.assert_not_called()

    def test_no_candidates(self, make_analyzer):
        analyzer = make_analyzer(provider="gemini")
        analyzer._session.post.return_value = _response({"candidates": []})

        with pytest.raises(AnalysisError, match="No response"):
            analyzer.analyze_sync(FRAME)

    def test_parts_not_objects(self, make_analyzer):
        analyzer = make_analyzer(provider="gemini")
        analyzer._session.post.return_value = _response({
            "candidates": [{"content": {"parts": ["raw text"]}}],
        })

        with pytest.raises(AnalysisError):
            analyzer.analyze_sync(FRAME)

    def test_content_not_object(self, make_analyzer):
        analyzer = make_analyzer(provider="gemini")
        analyzer._session.post.return_value = _response({"candidates": ["blocked"]})

        with pytest.raises(AnalysisError, match="No response"):
            analyzer.analyze_sync(FRAME)

    @pytest.mark.asyncio
    async def test_async_analyze(self, make_analyzer):
        analyzer = make_analyzer(provider="gemini")
        analyzer._session.post.return_value = _response({
            "candidates": [{"content": {"parts": [{"text": _scene("Camino despejado.", [])}]}}],
        })

        description = await analyzer.analyze(FRAME)

        assert description.text == "Camino despejado."


class TestOllama:
    """Test Ollama requests"""

    def test_request_shape(self, make_analyzer):
        analyzer = make_analyzer(provider="ollama", model="llava:7b", ollama_url="http://gpu:11434/")
        analyzer._session.post.return_value = _response({"response": _scene()})

        description = analyzer.analyze_sync(FRAME)

        assert description.detected_entities == ("silla",)
        args, kwargs = analyzer._session.post.call_args
        assert args[0] == "http://gpu:11434/api/generate"
        payload = kwargs["json"]
        assert payload["model"] == "llava:7b"
        assert payload["stream"] is False
        assert payload["format"] == "json"
        assert len(payload["images"]) == 1
        assert "detectedObjects" in payload["prompt"]


class TestOpenAI:
    """Test OpenAI requests"""

    def test_request_shape(self, make_analyzer):
        analyzer = make_analyzer(provider="openai", model="gpt-4o-mini", target_language="en")
        analyzer._session.post.return_value = _response({
            "choices": [{"message": {"content": _scene("A door ahead.", ["door"])}}],
        })

        description = analyzer.analyze_sync(FRAME)

        assert description.text == "A door ahead."
        args, kwargs = analyzer._session.post.call_args
        assert args[0] == OPENAI_URL
        assert kwargs["headers"] == {"Authorization": "Bearer test-key"}
        payload = kwargs["json"]
        assert payload["response_format"] == {"type": "json_object"}
        image_part = payload["messages"][1]["content"][1]
        assert image_part["image_url"]["url"].startswith("data:image/jpeg;base64,")

    def test_content_not_text(self, make_analyzer):
        analyzer = make_analyzer(provider="openai")
        analyzer._session.post.return_value = _response({
            "choices": [{"message": {"content": [{"type": "text", "text": _scene()}]}}],
        })

        with pytest.raises(AnalysisError, match="No response"):
            analyzer.analyze_sync(FRAME)

    def test_no_choices(self, make_analyzer):
        analyzer = make_analyzer(provider="openai")
        analyzer._session.post.return_value = _response({"choices": []})

        with pytest.raises(AnalysisError, match="No response"):
            analyzer.analyze_sync(FRAME)


class TestTransportErrors:
    """Test HTTP failures map to AnalysisError"""

    def test_http_error(self, make_analyzer):
        analyzer = make_analyzer(provider="ollama")
        analyzer._session.post.return_value = _response({"error": "overloaded"}, ok=False, status_code=503)

        with pytest.raises(AnalysisError) as exc_info:
            analyzer.analyze_sync(FRAME)

        assert exc_info.value.status_code == 503
        assert exc_info.value.provider == "ollama"

    def test_timeout(self, make_analyzer):
        analyzer = make_analyzer(provider="ollama", timeout=5)
        analyzer._session.post.side_effect = requests.exceptions.Timeout()

        with pytest.raises(AnalysisError, match="Timeout after 5s"):
            analyzer.analyze_sync(FRAME)

    def test_connection_error(self, make_analyzer):
        analyzer = make_analyzer(provider="ollama")
        analyzer._session.post.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(AnalysisError, match="Connection error"):
            analyzer.analyze_sync(FRAME)

    def test_invalid_json_body(self, make_analyzer):
        analyzer = make_analyzer(provider="ollama")
        response = _response({})
        response.json.side_effect = ValueError("no json")
        analyzer._session.post.return_value = response

        with pytest.raises(AnalysisError, match="Invalid JSON"):
            analyzer.analyze_sync(FRAME)

    @pytest.mark.parametrize("body", [[{"response": "x"}], "ok", 42, None])
    def test_body_not_an_object(self, make_analyzer, body):
        analyzer = make_analyzer(provider="ollama")
        analyzer._session.post.return_value = _response(body)

        with pytest.raises(AnalysisError, match="Invalid JSON") as exc_info:
            analyzer.analyze_sync(FRAME)

        assert exc_info.value.provider == "ollama"

    def test_metrics(self, make_analyzer):
        analyzer = make_analyzer(provider="ollama")
        analyzer._session.post.side_effect = [
            _response({"response": _scene()}),
            requests.exceptions.Timeout(),
        ]

        analyzer.analyze_sync(FRAME)
        with pytest.raises(AnalysisError):
            analyzer.analyze_sync(FRAME)

        metrics = analyzer.get_metrics()
        assert metrics["total_calls"] == 2
        assert metrics["successful"] == 1
        assert metrics["failed"] == 1
