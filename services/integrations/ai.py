"""AI actions (sentiment, categorization, extraction, replies, translation) via OpenRouter."""

import json
import logging
from typing import Any, Dict, List, Optional
import requests
from requests.exceptions import RequestException, Timeout, ConnectionError
from services.integrations.webhook import parse_retry_after
from shared.constants import AI_MODEL_MAP, DEFAULT_AI_CATEGORIES, DEFAULT_AI_MODEL, DEFAULT_EXTRACTION_FIELDS, RETRYABLE_HTTP_STATUS_CODES
from shared.exceptions import CollaboratorError, TaskError
from shared.node_configs import AIConfig
from shared.settings import get_settings
from shared.utils import utc_now

AI_REQUEST_TIMEOUT_SECONDS = 60
JSON_ONLY = "Respond only with valid JSON, no other text."

SENTIMENT_PROMPT = """Analyze the sentiment of the following customer message and respond with a JSON object containing:
- sentiment: one of "positive", "negative", "neutral", "mixed"
- confidence: a number between 0 and 1
- emotions: an array of detected emotions (e.g., "happy", "frustrated", "confused")
- summary: a brief one-line summary of the message tone

Message: "{message}"

""" + JSON_ONLY

CATEGORIZE_PROMPT = """Categorize the following customer message into exactly one of these categories: {categories}.

Message: "{message}"

Respond with a JSON object containing:
- category: the selected category (must be one from the list)
- confidence: a number between 0 and 1
- reason: brief explanation for the categorization

""" + JSON_ONLY

EXTRACT_PROMPT = """Extract the following information from this customer message: {fields}.
{instructions}
Message: "{message}"

Respond with a JSON object where keys are the field names and values are the extracted values (or null if not found).
Include a "confidence" field with extraction confidence (0-1).

""" + JSON_ONLY

RESPONSE_SYSTEM_PROMPT = """You are a helpful customer service assistant. Generate a friendly, professional response to the customer's message.
{context}{instructions}
Keep the response concise and helpful. Do not use markdown formatting as this will be sent via WhatsApp."""

TRANSLATE_PROMPT = """Translate the following text to {target}.
{source}

Text: "{message}"

Respond with a JSON object containing:
- translated: the translated text
- sourceLanguage: the detected source language code
- confidence: translation confidence (0-1)

""" + JSON_ONLY


def map_model(model: str) -> str:
    return AI_MODEL_MAP.get(model, model)


def parse_json_reply(text: str) -> Optional[Dict[str, Any]]:
    """Parses a model reply as a JSON object, tolerating ```json fences."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class OpenRouterClient:
    """Runs AI node actions; returns deterministic mock results when no API key is configured."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        app_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.openrouter_api_key
        self.base_url = (base_url or settings.openrouter_base_url).rstrip("/")
        self.app_url = app_url or settings.app_url
        self.session = session or requests.Session()

    def run(self, action: str, config: AIConfig, message: str) -> Dict[str, Any]:
        if not self.api_key:
            logging.warning("No AI API key configured, using mock response", extra={"action": action})
            return self.mock_result(action, config)

        if action == "sentiment_analysis":
            return self._sentiment(config, message)
        if action == "categorize":
            return self._categorize(config, message)
        if action == "extract_info":
            return self._extract(config, message)
        if action == "generate_response":
            return self._respond(config, message)
        if action == "translate":
            return self._translate(config, message)
        raise CollaboratorError(TaskError(
            error_type="AI_ERROR",
            error_message=f"Unknown AI action: {action}",
            is_retryable=False,
        ))

    def _sentiment(self, config: AIConfig, message: str) -> Dict[str, Any]:
        if not message:
            return {"sentiment": "neutral", "confidence": 0}
        reply = self._complete(SENTIMENT_PROMPT.format(message=message), config)
        return parse_json_reply(reply) or {"sentiment": "neutral", "confidence": 0.5, "raw": reply}

    def _categorize(self, config: AIConfig, message: str) -> Dict[str, Any]:
        if not message:
            return {"category": "uncategorized"}
        categories: List[str] = config.categories or list(DEFAULT_AI_CATEGORIES)
        reply = self._complete(CATEGORIZE_PROMPT.format(categories=", ".join(categories), message=message), config)
        data = parse_json_reply(reply)
        if data is None:
            return {"category": "other", "confidence": 0.5, "raw": reply}
        if data.get("category") not in categories:
            data["category"] = "other"
        return data

    def _extract(self, config: AIConfig, message: str) -> Dict[str, Any]:
        if not message:
            return {}
        fields = config.extraction_fields or list(DEFAULT_EXTRACTION_FIELDS)
        instructions = f"Additional instructions: {config.extraction_prompt}\n" if config.extraction_prompt else ""
        reply = self._complete(
            EXTRACT_PROMPT.format(fields=", ".join(fields), instructions=instructions, message=message),
            config,
        )
        return parse_json_reply(reply) or {"raw": reply, "extractionFailed": True}

    def _respond(self, config: AIConfig, message: str) -> Dict[str, Any]:
        system = RESPONSE_SYSTEM_PROMPT.format(
            context=f"Context: {config.response_context}\n" if config.response_context else "",
            instructions=f"Instructions: {config.response_prompt}\n" if config.response_prompt else "",
        )
        prompt = f'Customer message: "{message or "Hello"}"\n\nGenerate an appropriate response.'
        reply = self._complete(prompt, config, system_prompt=system)
        return {"response": reply, "generatedAt": utc_now().isoformat()}

    def _translate(self, config: AIConfig, message: str) -> Dict[str, Any]:
        if not message:
            return {"translated": "", "sourceLanguage": "unknown"}
        source_language = config.source_language or "auto"
        source = f"Source language: {source_language}" if source_language != "auto" else "Detect the source language."
        reply = self._complete(
            TRANSLATE_PROMPT.format(target=config.target_language or "en", source=source, message=message),
            config,
        )
        return parse_json_reply(reply) or {"translated": reply, "sourceLanguage": source_language, "confidence": 0.5}

    def _complete(self, prompt: str, config: AIConfig, system_prompt: Optional[str] = None) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        model = map_model(config.model or DEFAULT_AI_MODEL)

        try:
            response = self.session.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                    "HTTP-Referer": self.app_url,
                    "X-Title": "Campaign Workflow Engine",
                },
                json={
                    "model": model,
                    "messages": messages,
                    "temperature": config.temperature,
                    "max_tokens": config.max_tokens,
                },
                timeout=AI_REQUEST_TIMEOUT_SECONDS,
            )
        except (Timeout, ConnectionError) as e:
            raise CollaboratorError(TaskError(
                error_type="NETWORK_ERROR",
                error_message=f"Network error: {str(e)}",
                is_retryable=True,
                context={"model": model},
            ))
        except RequestException as e:
            raise CollaboratorError(TaskError(
                error_type="AI_ERROR",
                error_message=f"AI request failed: {str(e)}",
                is_retryable=False,
                context={"model": model},
            ))

        if response.status_code >= 400:
            raise CollaboratorError(TaskError(
                error_type="AI_SERVICE_ERROR",
                error_message=f"AI API error: {response.status_code} - {response.text[:200]}",
                http_status_code=response.status_code,
                is_retryable=response.status_code in RETRYABLE_HTTP_STATUS_CODES,
                retry_after_seconds=parse_retry_after(response.headers.get("Retry-After")),
                context={"model": model},
            ))

        data = response.json()
        choices = data.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""

    def mock_result(self, action: str, config: AIConfig) -> Dict[str, Any]:
        if action == "sentiment_analysis":
            return {"sentiment": "neutral", "confidence": 0.5, "emotions": [], "summary": "Mock sentiment - AI not configured"}
        if action == "categorize":
            categories = config.categories or list(DEFAULT_AI_CATEGORIES)
            category = "inquiry" if "inquiry" in categories else categories[0]
            return {"category": category, "confidence": 0.5, "reason": "Mock categorization - AI not configured"}
        if action == "extract_info":
            fields = config.extraction_fields or list(DEFAULT_EXTRACTION_FIELDS)
            return {**{f: None for f in fields}, "confidence": 0.3}
        if action == "generate_response":
            return {"response": "Thank you for your message. An agent will assist you shortly.", "generatedAt": utc_now().isoformat()}
        if action == "translate":
            return {"translated": "[Translation not available - AI not configured]", "sourceLanguage": "unknown", "confidence": 0}
        raise CollaboratorError(TaskError(
            error_type="AI_ERROR",
            error_message=f"Unknown AI action: {action}",
            is_retryable=False,
        ))
