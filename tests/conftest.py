"""
Shared pytest fixtures for StudyAI backend tests.
"""

import io
from typing import Any, Dict, List, Optional

import docx
import fitz
import openpyxl
import pytest
from fastapi.testclient import TestClient

from api.config import get_settings
from api.llm_client import MissingAPIKeyError, SummaryResult, extract_reply
from api.server import (
    app,
    chat_conversations,
    detailed_summary_conversations,
    get_llm_client,
    get_summarizer_client,
    simple_summary_conversations,
)


SETTINGS_ENV_VARS = [
    "OPENAI_API_KEY",
    "AI_API_KEY",
    "OPENAI_BASE_URL",
    "LLM_TIMEOUT_SECONDS",
    "LLM_MAX_RETRIES",
    "HF_SPACE_URL",
    "SITE_PASSWORD",
    "SESSION_SECRET",
    "SESSION_MAX_AGE_SEC",
    "APP_ENV",
    "MAX_UPLOAD_BYTES",
    "MAX_EXTRACTED_CHARS",
    "ALLOWED_ORIGINS",
    "LOG_LEVEL",
]


class FakeLLMClient:
    """Stands in for LLMClient; records every request it receives."""

    def __init__(self, api_key: Optional[str] = "test-key"):
        self.api_key = api_key
        self.replies: List[str] = ["Test reply"]
        self.raw: Optional[Dict[str, Any]] = None
        self.error: Optional[Exception] = None
        self.calls: List[Dict[str, Any]] = []

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def create_completion(self, messages, model, max_tokens=None, temperature=None, raise_for_status=True):
        self.calls.append(
            {
                "messages": messages,
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "raise_for_status": raise_for_status,
            }
        )
        if not self.api_key:
            raise MissingAPIKeyError("API key not set")
        if self.error is not None:
            raise self.error
        if self.raw is not None:
            return self.raw
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return {"choices": [{"message": {"role": "assistant", "content": reply}}]}

    def chat(self, messages, model, max_tokens=None, temperature=None):
        return extract_reply(self.create_completion(messages, model, max_tokens, temperature))


class FakeSummarizerClient:
    def __init__(self):
        self.result = SummaryResult(status_code=200, ok=True, body='{"summary": "Short."}')
        self.error: Optional[Exception] = None
        self.texts: List[Optional[str]] = []

    def summarize(self, text):
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Start every test from default settings, whatever the host environment holds."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def set_env(monkeypatch):
    """
    Set environment variables and reload settings.

    Returns:
        callable: set_env(NAME=value, ...)
    """

    def _set(**values):
        for name, value in values.items():
            monkeypatch.setenv(name, str(value))
        get_settings.cache_clear()

    return _set


@pytest.fixture
def llm():
    """Fake LLM client installed in place of the real one."""
    fake = FakeLLMClient()
    app.dependency_overrides[get_llm_client] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_llm_client, None)


@pytest.fixture
def summarizer():
    fake = FakeSummarizerClient()
    app.dependency_overrides[get_summarizer_client] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_summarizer_client, None)


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client
    for store in (chat_conversations, simple_summary_conversations, detailed_summary_conversations):
        store.clear()


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """One-page PDF built with PyMuPDF."""
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Photosynthesis converts light energy.")
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def sample_docx_bytes() -> bytes:
    """DOCX with two paragraphs and a one-row table."""
    document = docx.Document()
    document.add_paragraph("Mitochondria are the powerhouse of the cell.")
    document.add_paragraph("Ribosomes build proteins.")
    table = document.add_table(rows=1, cols=2)
    table.cell(0, 0).text = "Term"
    table.cell(0, 1).text = "Definition"
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def sample_xlsx_bytes() -> bytes:
    """Workbook with one populated sheet."""
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = "Grades"
    sheet.append(["Name", "Score"])
    sheet.append(["Ada", 95])
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def sample_html() -> str:
    return """
    <html>
    <head><style>p { color: red; }</style><script>var x = 1;</script></head>
    <body>
    <h1>Cells</h1>
    <p>The cell is the unit of life.</p>
    </body>
    </html>
    """


@pytest.fixture(autouse=True)
def change_test_dir(request, monkeypatch):
    """
    Change to temp directory for tests that use tmp_path.
    Prevents tests from writing into the project directory.
    """
    if "tmp_path" in request.fixturenames:
        monkeypatch.chdir(request.getfixturevalue("tmp_path"))


# Markers for test organization
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual functions")
    config.addinivalue_line("markers", "integration: Integration tests for HTTP routes")
