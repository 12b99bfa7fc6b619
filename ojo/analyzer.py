"""
Scene Analyzer for Ojo

Sends a captured frame to a remote vision model and turns the reply into a
short, localized Description:
- Gemini (default): JSON schema constrained response
- Ollama: ``format: json``
- OpenAI: ``response_format: json_object``

HTTP calls are blocking ``requests`` calls run on a dedicated thread pool,
so ``await analyzer.analyze(frame)`` never blocks the event loop. There is
no retry logic here; the cycle controller owns the retry policy.

Usage:
    from ojo.analyzer import VisionAnalyzer

    analyzer = VisionAnalyzer()
    description = await analyzer.analyze(frame)
    print(description.text, description.detected_entities)
"""

import asyncio
import base64
import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import config
from .exceptions import AnalysisError, ConfigurationError
from .i18n import get_messages
from .models import Description, Frame

logger = logging.getLogger(__name__)

PROVIDERS = ("gemini", "ollama", "openai")

DEFAULT_MODELS = {
    "gemini": "gemini-2.5-flash",
    "ollama": "llava:7b",
    "openai": "gpt-4o-mini",
}

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

# Periods after these do not end a sentence
ABBREVIATIONS = {
    "sr", "sra", "srta", "dr", "dra", "av", "avda", "c", "pl", "prof", "ud", "uds",
    "mr", "mrs", "ms", "st", "ave", "approx", "vs",
}


class Analyzer(ABC):
    """Asynchronous scene description capability."""

    @abstractmethod
    async def analyze(self, frame: Frame) -> Description:
        """Describe ``frame``; raise AnalysisError on any failure."""
        raise NotImplementedError

    def close(self) -> None:
        """Release resources (sessions, worker threads)."""


class SceneResponse(BaseModel):
    """Vision model reply."""
    model_config = ConfigDict(populate_by_name=True)

    description: str = Field(min_length=1)
    detected_objects: List[str] = Field(default_factory=list, alias="detectedObjects")


def limit_sentences(text: str, max_sentences: int = 2) -> str:
    """Keep at most ``max_sentences`` sentences of ``text``."""
    text = " ".join(text.split())
    if max_sentences <= 0:
        return text
    sentences = []
    for piece in _SENTENCE_END.split(text):
        if sentences and _ends_with_abbreviation(sentences[-1]):
            sentences[-1] = f"{sentences[-1]} {piece}"
        else:
            sentences.append(piece)
    return " ".join(sentences[:max_sentences]).strip()


def _ends_with_abbreviation(sentence: str) -> bool:
    if not sentence.endswith("."):
        return False
    word = sentence[:-1].rsplit(" ", 1)[-1]
    # Initials such as "J." in "J. Pérez"
    if len(word) == 1 and word.isupper():
        return True
    return word.lower() in ABBREVIATIONS


def parse_scene_response(raw: str, max_sentences: int = 2) -> Description:
    """Validate a JSON reply and build a Description from it."""
    if not raw or not raw.strip():
        raise AnalysisError("Empty response from vision model")

    cleaned = _CODE_FENCE.sub("", raw.strip())
    try:
        scene = SceneResponse.model_validate_json(cleaned)
    except ValidationError as e:
        raise AnalysisError(f"Invalid response from vision model: {e.errors()[0]['msg']}") from e

    text = limit_sentences(scene.description, max_sentences)
    if not text:
        raise AnalysisError("Vision model returned an empty description")

    entities = []
    for name in scene.detected_objects:
        name = name.strip()
        if name and name not in entities:
            entities.append(name)

    return Description(text=text, detected_entities=tuple(entities))


@dataclass
class AnalyzerMetrics:
    """Track analyzer call metrics."""
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_time_ms: float = 0

    @property
    def avg_time_ms(self) -> float:
        return self.total_time_ms / max(1, self.total_calls)

    def to_dict(self) -> dict:
        return {
            "total_calls": self.total_calls,
            "successful": self.successful_calls,
            "failed": self.failed_calls,
            "avg_time_ms": round(self.avg_time_ms, 1),
        }


@dataclass
class AnalyzerConfig:
    """Vision service configuration."""
    provider: str = "gemini"
    model: str = DEFAULT_MODELS["gemini"]
    api_key: str = ""
    ollama_url: str = "http://localhost:11434"
    timeout: int = 30
    temperature: float = 0.3
    target_language: str = "es"
    max_sentences: int = 2

    def __post_init__(self):
        self.provider = (self.provider or "gemini").lower()
        if self.provider not in PROVIDERS:
            raise ConfigurationError(
                f"Unknown provider: {self.provider} (expected one of {', '.join(PROVIDERS)})"
            )
        if not self.model:
            self.model = DEFAULT_MODELS[self.provider]

    @classmethod
    def from_env(cls, provider: Optional[str] = None, model: Optional[str] = None) -> "AnalyzerConfig":
        """Load config from environment/.env"""
        provider = (provider or config.get("OJO_LLM_PROVIDER", "gemini")).lower()

        configured_model = config.get("OJO_MODEL", "")
        if model is None:
            # A model configured for another provider is not usable here
            model = configured_model
            if provider != "gemini" and model.startswith("gemini"):
                model = ""

        return cls(
            provider=provider,
            model=model,
            api_key=resolve_api_key(provider),
            ollama_url=config.get("OJO_OLLAMA_URL", "http://localhost:11434"),
            timeout=config.get_int("OJO_LLM_TIMEOUT", 30),
            temperature=config.get_float("OJO_LLM_TEMPERATURE", 0.3),
            target_language=config.get("OJO_TARGET_LANGUAGE", "es"),
        )


def resolve_api_key(provider: str) -> str:
    """API key for a provider from config, then common environment names."""
    if provider == "gemini":
        return (
            config.get("OJO_GEMINI_API_KEY")
            or os.environ.get("GEMINI_API_KEY", "")
            or os.environ.get("API_KEY", "")
        )
    if provider == "openai":
        return config.get("OJO_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY", "")
    return ""


class VisionAnalyzer(Analyzer):
    """Remote vision model client with connection pooling and metrics."""

    def __init__(self, analyzer_config: Optional[AnalyzerConfig] = None, max_workers: int = 1):
        self.config = analyzer_config or AnalyzerConfig.from_env()
        self.messages = get_messages(self.config.target_language)
        self.metrics = AnalyzerMetrics()

        self._session = requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
        })
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="analyzer")

    async def analyze(self, frame: Frame) -> Description:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.analyze_sync, frame)

    def analyze_sync(self, frame: Frame) -> Description:
        """Blocking analysis of one frame."""
        start_time = time.time()
        self.metrics.total_calls += 1

        try:
            image_b64 = base64.b64encode(frame.data).decode()

            if self.config.provider == "gemini":
                raw = self._call_gemini(image_b64, frame.mime_type)
            elif self.config.provider == "ollama":
                raw = self._call_ollama(image_b64)
            else:
                raw = self._call_openai(image_b64, frame.mime_type)

            description = parse_scene_response(raw, self.config.max_sentences)
        except AnalysisError:
            self.metrics.failed_calls += 1
            raise
        finally:
            self.metrics.total_time_ms += (time.time() - start_time) * 1000

        self.metrics.successful_calls += 1
        logger.debug(
            f"{self.config.provider}/{self.config.model} answered in "
            f"{(time.time() - start_time) * 1000:.0f} ms ({frame.size_bytes} bytes sent)"
        )
        return description

    def _response_schema(self) -> Dict[str, Any]:
        return {
            "type": "OBJECT",
            "properties": {
                "description": {
                    "type": "STRING",
                    "description": self.messages.schema_description,
                },
                "detectedObjects": {
                    "type": "ARRAY",
                    "items": {"type": "STRING"},
                    "description": self.messages.schema_objects,
                },
            },
            "required": ["description", "detectedObjects"],
        }

    def _call_gemini(self, image_b64: str, mime_type: str) -> str:
        """Call Gemini generateContent API."""
        if not self.config.api_key:
            raise AnalysisError("Gemini API key not set (OJO_GEMINI_API_KEY)", provider="gemini")

        data = self._post(
            f"{GEMINI_URL}/{self.config.model}:generateContent",
            headers={"x-goog-api-key": self.config.api_key},
            payload={
                "systemInstruction": {
                    "parts": [{"text": self.messages.format_system_prompt()}],
                },
                "contents": [{
                    "role": "user",
                    "parts": [
                        {"inlineData": {"mimeType": mime_type, "data": image_b64}},
                        {"text": self.messages.user_prompt},
                    ],
                }],
                "generationConfig": {
                    "temperature": self.config.temperature,
                    "responseMimeType": "application/json",
                    "responseSchema": self._response_schema(),
                },
            },
        )

        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        except (KeyError, IndexError, TypeError, AttributeError):
            raise AnalysisError("No response from Gemini", provider="gemini")
        return text

    def _call_ollama(self, image_b64: str) -> str:
        """Call Ollama vision API."""
        prompt = "\n\n".join([
            self.messages.format_system_prompt(),
            self.messages.json_instructions,
            self.messages.user_prompt,
        ])
        data = self._post(
            f"{self.config.ollama_url.rstrip('/')}/api/generate",
            payload={
                "model": self.config.model,
                "prompt": prompt,
                "images": [image_b64],
                "stream": False,
                "format": "json",
                "options": {"temperature": self.config.temperature},
            },
        )
        return str(data.get("response", ""))

    def _call_openai(self, image_b64: str, mime_type: str) -> str:
        """Call OpenAI chat completions API with an image."""
        if not self.config.api_key:
            raise AnalysisError("OpenAI API key not set (OJO_OPENAI_API_KEY)", provider="openai")

        data = self._post(
            OPENAI_URL,
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            payload={
                "model": self.config.model,
                "messages": [
                    {
                        "role": "system",
                        "content": "\n\n".join([
                            self.messages.format_system_prompt(),
                            self.messages.json_instructions,
                        ]),
                    },
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": self.messages.user_prompt},
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:{mime_type};base64,{image_b64}"},
                            },
                        ],
                    },
                ],
                "response_format": {"type": "json_object"},
                "temperature": self.config.temperature,
                "max_tokens": 300,
            },
        )

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            raise AnalysisError("No response from OpenAI", provider="openai")
        if not isinstance(content, str):
            raise AnalysisError("No response from OpenAI", provider="openai")
        return content

    def _post(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Dict:
        provider = self.config.provider
        try:
            response = self._session.post(
                url,
                json=payload,
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.exceptions.Timeout:
            raise AnalysisError(f"Timeout after {self.config.timeout}s", provider=provider)
        except requests.exceptions.RequestException as e:
            raise AnalysisError(f"Connection error: {e}", provider=provider)

        if not response.ok:
            raise AnalysisError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                provider=provider,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except (ValueError, json.JSONDecodeError):
            raise AnalysisError("Invalid JSON from vision service", provider=provider)

        if not isinstance(data, dict):
            raise AnalysisError("Invalid JSON from vision service", provider=provider)
        return data

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics."""
        return self.metrics.to_dict()

    def close(self) -> None:
        self._session.close()
        self._executor.shutdown(wait=False)
