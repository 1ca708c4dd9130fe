import json
import logging
import re

import requests
import vertexai
from pydantic import ValidationError
from vertexai.generative_models import GenerationConfig, GenerativeModel

from env_utils import resolve_gcp_project_id

from .categories import FIXED_CATEGORIES, TRANSACTION_TYPES
from .errors import ConfigurationError, ExternalServiceError, MalformedResponseError
from .schemas import ParsedTransaction

LOGGER = logging.getLogger("tracker_proxy.extract")

# Greedy: spans the first "[" through the last "]".
_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

PROMPT_TEMPLATE = """You are a financial transaction parser. Extract structured transaction data from the following text.
Return a JSON array of transactions with this exact format:
[{{
  "amount": number (positive value),
  "type": "credit" or "debit",
  "category": one of [{categories}],
  "merchant": string (store/company name),
  "description": string (brief description),
  "transaction_date": ISO date string (YYYY-MM-DD)
}}]

Text to parse:
{text}

Return ONLY valid JSON, no markdown or explanations."""

RESPONSE_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "amount": {"type": "NUMBER"},
            "type": {"type": "STRING", "format": "enum", "enum": list(TRANSACTION_TYPES)},
            "category": {"type": "STRING", "format": "enum", "enum": list(FIXED_CATEGORIES)},
            "merchant": {"type": "STRING"},
            "description": {"type": "STRING"},
            "transaction_date": {"type": "STRING"},
        },
        "required": ["amount", "type", "category", "description", "transaction_date"],
    },
}


def build_prompt(text):
    categories = ", ".join(f'"{category}"' for category in FIXED_CATEGORIES)
    return PROMPT_TEMPLATE.format(categories=categories, text=text)


def extract_json_array(response_text):
    """
    Pull the first bracketed JSON array out of free-form model output.

    Returns an empty list when the text has no brackets at all. Raises
    MalformedResponseError when the bracketed part is not valid JSON.
    """
    match = _JSON_ARRAY_RE.search(response_text or "")
    if not match:
        return []
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"Model returned malformed JSON: {exc.msg}") from exc
    if not isinstance(data, list):
        raise MalformedResponseError("Model response is not a JSON array")
    return data


def validate_records(items):
    records = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            LOGGER.warning("Dropping item %s: expected an object, got %r", idx, item)
            continue
        try:
            records.append(ParsedTransaction.model_validate(item))
        except ValidationError as exc:
            LOGGER.warning(
                "Dropping item %s: %s", idx, "; ".join(err["msg"] for err in exc.errors())
            )
    return records


class GeminiRestClient:
    """Calls the Generative Language ``generateContent`` endpoint with an API key."""

    def __init__(self, api_key, model="gemini-2.0-flash", base_url=None, timeout=60.0,
                 strict_json=True, session=None):
        self.api_key = api_key
        self.model = model
        self.base_url = (base_url or "https://generativelanguage.googleapis.com/v1beta").rstrip("/")
        self.timeout = timeout
        self.strict_json = strict_json
        self._session = session or requests.Session()

    def _payload(self, prompt, json_output):
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        if json_output and self.strict_json:
            payload["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            }
        return payload

    def generate(self, prompt, json_output=False):
        url = f"{self.base_url}/models/{self.model}:generateContent"
        try:
            response = self._session.post(
                url,
                params={"key": self.api_key},
                json=self._payload(prompt, json_output),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ExternalServiceError(f"Gemini API request failed: {exc}") from exc

        if not response.ok:
            LOGGER.error("Gemini API returned %s: %s", response.status_code, response.text[:500])
            raise ExternalServiceError(
                f"Gemini API request failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError("Gemini API returned a non-JSON body") from exc
        return _candidate_text(data)


def _candidate_text(data):
    candidates = (data or {}).get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    if not parts:
        return ""
    return parts[0].get("text") or ""


class VertexGenerationClient:
    """Same contract as GeminiRestClient, backed by the Vertex AI SDK."""

    def __init__(self, project_id, location="europe-west1", model="gemini-2.0-flash",
                 strict_json=True):
        self.project_id = project_id
        self.location = location
        self.model_name = model
        self.strict_json = strict_json
        self._model = None

    def _get_model(self):
        if self._model is None:
            vertexai.init(project=self.project_id, location=self.location)
            self._model = GenerativeModel(self.model_name)
        return self._model

    def generate(self, prompt, json_output=False):
        config = None
        if json_output and self.strict_json:
            config = GenerationConfig(
                response_mime_type="application/json",
                response_schema=RESPONSE_SCHEMA,
            )
        try:
            response = self._get_model().generate_content(prompt, generation_config=config)
            # .text raises ValueError when the candidate was blocked.
            return response.text or ""
        except Exception as exc:
            LOGGER.exception("Vertex AI generation failed: %s", exc)
            raise ExternalServiceError(f"Vertex AI generation failed: {exc}") from exc


class TransactionExtractor:
    def __init__(self, client):
        self.client = client

    def parse(self, raw_text):
        text = (raw_text or "").strip()
        if not text:
            return []

        response_text = self.client.generate(build_prompt(text), json_output=True)
        items = extract_json_array(response_text or "[]")
        records = validate_records(items)
        LOGGER.info("Extracted %s of %s transactions from model output", len(records), len(items))
        return records


def build_generation_client(settings):
    if settings.generation_backend == "vertex":
        project = settings.gcp_project_id or resolve_gcp_project_id(set_env=True)
        if not project:
            raise ConfigurationError(
                "GCP_PROJECT_ID (or GOOGLE_CLOUD_PROJECT) is not set and project auto-detection failed"
            )
        return VertexGenerationClient(
            project,
            location=settings.gcp_location,
            model=settings.gemini_model,
            strict_json=settings.strict_json_responses,
        )
    if settings.generation_backend != "api_key":
        raise ConfigurationError(
            f"GENERATION_BACKEND must be 'api_key' or 'vertex', got {settings.generation_backend!r}"
        )
    return GeminiRestClient(
        settings.require_gemini_key(),
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        timeout=settings.request_timeout_seconds,
        strict_json=settings.strict_json_responses,
    )
