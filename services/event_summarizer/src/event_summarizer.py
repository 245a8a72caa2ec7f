# services/event_summarizer/src/event_summarizer.py

import json
import logging
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import quote

import google.auth
import requests
from google import genai
from google.genai.types import Content, GenerateContentConfig, HttpOptions, Part

from services.event_summarizer.src.config import (
    GEMINI_MAX_OUTPUT_TOKENS,
    GEMINI_MODEL_NAME,
    GEMINI_TEMPERATURE,
    GEMINI_TOP_P,
    SummarizerConfig,
)

EVENT_ENDPOINT = 'Admin_SelectEventIntoCEF'
CLOUD_PLATFORM_SCOPE = 'https://www.googleapis.com/auth/cloud-platform'

# encodeURIComponent leaves these unescaped on top of quote()'s own "_.-~"
URI_COMPONENT_SAFE = "!*'()"

SUMMARY_PROMPT_TEMPLATE = """You are an intelligent event summarizer. Based on the following JSON data, generate a clear and professional summary.
Include the key details such as time, location, event description, and any notable highlights:
{record_json}
Return the summary in concise, third-person English."""


# ———————————————————————————————
# Failure taxonomy
# ———————————————————————————————
class FailureKind(str, Enum):
    BAD_REQUEST = 'BadRequest'
    CONFIGURATION_ERROR = 'ConfigurationError'
    UPSTREAM_FETCH_ERROR = 'UpstreamFetchError'
    BACKEND_ERROR = 'BackendError'
    BACKEND_RETURN_ERROR = 'BackendReturnError'
    NOT_FOUND = 'NotFound'
    EMPTY_MODEL_RESPONSE = 'EmptyModelResponse'
    UNHANDLED_ERROR = 'UnhandledError'


# kind -> (HTTP status, client-facing error message)
FAILURE_RESPONSES = {
    FailureKind.BAD_REQUEST:          (400, 'eventID is required'),
    FailureKind.CONFIGURATION_ERROR:  (500, 'Missing environment variables'),
    FailureKind.UPSTREAM_FETCH_ERROR: (502, 'Failed to fetch event data'),
    FailureKind.BACKEND_ERROR:        (500, 'Backend API error'),
    FailureKind.BACKEND_RETURN_ERROR: (500, 'Backend returned failure'),
    FailureKind.NOT_FOUND:            (404, 'No event data found'),
    FailureKind.EMPTY_MODEL_RESPONSE: (500, 'Empty response from Vertex AI'),
    FailureKind.UNHANDLED_ERROR:      (500, 'Failed to generate summary'),
}


@dataclass(frozen=True)
class SummaryFailure:
    kind: FailureKind
    details: Any = None
    exc: BaseException | None = field(default=None, compare=False, repr=False)

    @property
    def status(self) -> int:
        return FAILURE_RESPONSES[self.kind][0]

    @property
    def error(self) -> str:
        return FAILURE_RESPONSES[self.kind][1]

    def to_payload(self, include_stack: bool = False) -> dict:
        payload = {'error': self.error}
        if self.details is not None:
            payload['details'] = self.details
        if include_stack and self.kind is FailureKind.UNHANDLED_ERROR:
            exc = self.exc if self.exc is not None else ValueError(self.details)
            payload['stack'] = ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return payload


@dataclass(frozen=True)
class StageResult:
    """Outcome of one pipeline stage: a value, or the failure that stopped it."""
    value: Any = None
    failure: SummaryFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value):
        return cls(value=value)

    @classmethod
    def fail(cls, kind: FailureKind, details=None, exc=None):
        return cls(failure=SummaryFailure(kind, details, exc))


@dataclass(frozen=True)
class SummaryOutcome:
    status: int
    payload: dict


# ———————————————————————————————
# Backend envelope types
# ———————————————————————————————
@dataclass(frozen=True)
class BackendEnvelope:
    """Outer response body: either an error object with Message, or a JSON string."""
    message: Any = None
    payload: str | None = None

    @classmethod
    def from_body(cls, body):
        if isinstance(body, dict):
            return cls(message=body.get('Message'))
        if isinstance(body, str):
            return cls(payload=body)
        return cls()


@dataclass(frozen=True)
class InnerResult:
    """Element 0 of the decoded envelope payload."""
    return_val: Any = None
    return_sql_error: Any = None
    return_data: Any = None

    @classmethod
    def from_row(cls, row: dict):
        return cls(
            return_val=row.get('ReturnVal'),
            return_sql_error=row.get('ReturnSqlError'),
            return_data=row.get('ReturnData'),
        )

    @property
    def succeeded(self) -> bool:
        return self.return_val == 1 and not isinstance(self.return_val, bool)


# ———————————————————————————————
# Helpers
# ———————————————————————————————
def normalize_event_id(raw) -> str | None:
    """Return the event ID as a non-empty string, or None if it is unusable."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return str(raw) if raw else None
    if isinstance(raw, str) and raw:
        return raw
    return None


def build_event_url(server_api: str, event_id: str) -> str:
    """Upstream lookup URL; server_api is used verbatim as the prefix."""
    return f"{server_api}{EVENT_ENDPOINT}?eventID={quote(event_id, safe=URI_COMPONENT_SAFE)}"


def create_genai_client(config: SummarizerConfig):
    """Vertex AI Gemini client bound to the configured project, region and credentials file."""
    # any google-auth file type: service_account, authorized_user, external_account
    credentials, _ = google.auth.load_credentials_from_file(
        config.credentials_path, scopes=[CLOUD_PLATFORM_SCOPE]
    )
    return genai.Client(
        http_options=HttpOptions(api_version="v1"),
        vertexai=True,
        project=config.project_id,
        location=config.location,
        credentials=credentials,
    )


def extract_summary_text(response) -> str | None:
    """First text part of the first candidate, if there is one."""
    candidates = getattr(response, 'candidates', None) or []
    if not candidates:
        return None
    content = getattr(candidates[0], 'content', None)
    parts = getattr(content, 'parts', None) or []
    if not parts:
        return None
    return getattr(parts[0], 'text', None)


def _is_truthy(value) -> bool:
    # JSON truthiness as the backend sees it: empty objects/arrays are truthy; null, "", 0 and false are not
    if value is None:
        return False
    return isinstance(value, (dict, list)) or bool(value)


# ———————————————————————————————
# Pipeline stages
# ———————————————————————————————
def fetch_event_envelope(config: SummarizerConfig, event_id: str) -> StageResult:
    """GET the event from the backend and decode the outer JSON body."""
    url = build_event_url(config.server_api, event_id)
    logging.info(f"Fetching event {event_id} from backend")
    response = requests.get(url)

    if not 200 <= response.status_code < 300:
        return StageResult.fail(
            FailureKind.UPSTREAM_FETCH_ERROR,
            f"Backend responded with HTTP {response.status_code}",
        )

    try:
        body = response.json()
    except ValueError as e:
        return StageResult.fail(FailureKind.UNHANDLED_ERROR, f"Backend response is not valid JSON: {e}", exc=e)
    return StageResult.success(body)


def unwrap_event_record(body) -> StageResult:
    """
    Peel the backend's double-encoded envelope:
    body -> BackendEnvelope -> InnerResult -> EventRecord.
    """
    envelope = BackendEnvelope.from_body(body)
    if _is_truthy(envelope.message):
        return StageResult.fail(FailureKind.BACKEND_ERROR, envelope.message)
    if envelope.payload is None:
        return StageResult.fail(
            FailureKind.UNHANDLED_ERROR,
            "Backend response is neither an error message nor an encoded payload",
        )

    try:
        rows = json.loads(envelope.payload)
    except ValueError as e:
        return StageResult.fail(FailureKind.UNHANDLED_ERROR, f"Backend payload is not valid JSON: {e}", exc=e)
    if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
        return StageResult.fail(FailureKind.UNHANDLED_ERROR, "Backend payload did not contain a result row")

    inner = InnerResult.from_row(rows[0])
    if not inner.succeeded:
        return StageResult.fail(FailureKind.BACKEND_RETURN_ERROR, inner.return_sql_error)

    if not isinstance(inner.return_data, str):
        return StageResult.fail(FailureKind.UNHANDLED_ERROR, "ReturnData is missing or not a JSON string")
    try:
        records = json.loads(inner.return_data)
    except ValueError as e:
        return StageResult.fail(FailureKind.UNHANDLED_ERROR, f"ReturnData is not valid JSON: {e}", exc=e)
    if not isinstance(records, list):
        return StageResult.fail(FailureKind.UNHANDLED_ERROR, "ReturnData is not a JSON array")

    record = records[0] if records else None
    if not _is_truthy(record):
        return StageResult.fail(FailureKind.NOT_FOUND)
    return StageResult.success(record)


def build_summary_prompt(event_record) -> str:
    record_json = json.dumps(event_record, indent=2, ensure_ascii=False)
    return SUMMARY_PROMPT_TEMPLATE.format(record_json=record_json)


def generate_summary_text(config: SummarizerConfig, prompt: str, client=None) -> StageResult:
    """Send the prompt to Gemini as a single user message and pull out the summary text."""
    if client is None:
        client = create_genai_client(config)

    logging.info(f"Generating summary with {GEMINI_MODEL_NAME} (endpoint {config.endpoint_id})")
    response = client.models.generate_content(
        model=GEMINI_MODEL_NAME,
        contents=[Content(role='user', parts=[Part(text=prompt)])],
        config=GenerateContentConfig(
            max_output_tokens=GEMINI_MAX_OUTPUT_TOKENS,
            temperature=GEMINI_TEMPERATURE,
            top_p=GEMINI_TOP_P,
        ),
    )

    summary = extract_summary_text(response)
    if not summary:
        return StageResult.fail(FailureKind.EMPTY_MODEL_RESPONSE, 'No summary text was generated')
    return StageResult.success(summary)


# ———————————————————————————————
# Orchestration
# ———————————————————————————————
def _failed(result: StageResult, event_id, include_stack: bool = False) -> SummaryOutcome:
    failure = result.failure
    logging.error(f"Summary for event {event_id} failed: {failure.kind.value} ({failure.details})")
    return SummaryOutcome(failure.status, failure.to_payload(include_stack))


def generate_event_summary(raw_event_id, config: SummarizerConfig, client=None) -> SummaryOutcome:
    """
    Run the whole request: validate, fetch, unwrap, prompt, generate.
    Returns at the first failing stage. Unexpected exceptions (network errors,
    model client errors) propagate to the caller.
    """
    event_id = normalize_event_id(raw_event_id)
    if event_id is None:
        return _failed(StageResult.fail(FailureKind.BAD_REQUEST), raw_event_id)

    missing = config.missing()
    if missing:
        failure = SummaryFailure(FailureKind.CONFIGURATION_ERROR)
        logging.error(f"Missing environment variables: {', '.join(missing)}")
        return SummaryOutcome(failure.status, failure.to_payload())

    fetched = fetch_event_envelope(config, event_id)
    if not fetched.ok:
        return _failed(fetched, event_id, config.is_development)

    unwrapped = unwrap_event_record(fetched.value)
    if not unwrapped.ok:
        return _failed(unwrapped, event_id, config.is_development)

    prompt = build_summary_prompt(unwrapped.value)
    generated = generate_summary_text(config, prompt, client=client)
    if not generated.ok:
        return _failed(generated, event_id, config.is_development)

    logging.info(f"Generated summary for event {event_id}")
    return SummaryOutcome(200, {'summary': generated.value})


def unhandled_outcome(exc: Exception, include_stack: bool = False) -> SummaryOutcome:
    """Response for an exception that escaped the pipeline."""
    payload = SummaryFailure(FailureKind.UNHANDLED_ERROR, str(exc), exc).to_payload(include_stack)
    return SummaryOutcome(500, payload)
