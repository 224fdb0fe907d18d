#!/usr/bin/env python3
"""
FastAPI backend for StudyAI - chat, vision and summarization proxy.

Forwards user text, images and uploaded documents to a chat-completions
API (and a Hugging Face summarizer) and relays the reply.

Usage:
    python -m api.server
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

from fastapi import Depends, FastAPI, File, Form, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.auth import (
    AuthError,
    build_session_cookie,
    check_password,
    sign_token,
    token_from_cookie_header,
    verify_token,
)
from api.config import Settings, get_settings
from api.conversations import ConversationStore
from api.extract_text import ExtractionError, extract_text
from api.llm_client import (
    LLMClient,
    SummarizerClient,
    UpstreamError,
    extract_reply,
    image_message,
    text_message,
    to_data_url,
)
from api.utils.validation import (
    validate_conversation_id,
    validate_image_reference,
    validate_image_upload,
)

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


APP_NAME = "StudyAI API"
APP_VERSION = "0.1.0"

CHAT_MODEL = "gpt-4o-mini"
VISION_MODEL = "gpt-4o-mini"
MESSAGE_MODEL = "gpt-4o"
BASIC_MODEL = "gpt-3.5-turbo"

STUDY_ASSISTANT_PROMPT = "You are a helpful study assistant."
GENERAL_ASSISTANT_PROMPT = "You are a helpful AI assistant."
DEFAULT_VISION_PROMPT = "Analyze this image for study help"
DEFAULT_IMAGE_PROMPT = "Analyze this image"

SIMPLE_SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant that provides clear, concise summaries. "
    "Keep your responses short and easy to understand."
)
SIMPLE_SUMMARY_INSTRUCTION = "summarize this simply but make sure i understand and keep it short"
STATELESS_SUMMARY_INSTRUCTION = (
    "Summarize this text simply but make sure I understand and keep it short:"
)
DETAILED_SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant that provides detailed, comprehensive analyses while "
    "maintaining clarity. Include all important details but explain them in an "
    "understandable way. Structure your response with clear sections and bullet points "
    "where appropriate."
)
DETAILED_SUMMARY_INSTRUCTION = (
    "analyze this simply, make sure i understand but dont simplify too much, still be in "
    "the detail and make sure all the details are there so i understand"
)


# ===== Conversation stores =====
# One store per handler family so ids from one route never leak into another.

chat_conversations = ConversationStore("chat")
simple_summary_conversations = ConversationStore("simple_summary")
detailed_summary_conversations = ConversationStore("detailed_summary")


# ===== Models =====

class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    metadata: Optional[Any] = None


class PromptRequest(BaseModel):
    # Any type so that non-strings get a 400 from the handler, not a validation error
    prompt: Optional[Any] = None


class MessageRequest(BaseModel):
    message: Optional[str] = None
    image: Optional[str] = None


class SummaryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")


class LoginRequest(BaseModel):
    password: Optional[str] = None


# ===== Errors =====

class APIError(Exception):
    """Error rendered as {"error": ..., "details": ...} with the given status."""

    def __init__(self, status_code: int, error: str, details: Any = None):
        self.status_code = status_code
        self.error = error
        self.details = details
        super().__init__(error)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


# ===== App Setup =====

app = FastAPI(
    title=APP_NAME,
    description="Chat, vision and summarization proxy for study help",
    version=APP_VERSION,
)


# Registered before CORSMiddleware, which then wraps it and answers real preflights itself
@app.middleware("http")
async def answer_options(request: Request, call_next):
    if request.method == "OPTIONS":
        return Response(status_code=200)
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    error = "Method not allowed" if exc.status_code == 405 else exc.detail
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": error},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request body", "details": details})


# ===== Dependencies =====

def get_llm_client(settings: Settings = Depends(get_settings)) -> Iterator[LLMClient]:
    client = LLMClient.from_settings(settings)
    try:
        yield client
    finally:
        client.close()


def get_summarizer_client(settings: Settings = Depends(get_settings)) -> Iterator[SummarizerClient]:
    client = SummarizerClient.from_settings(settings)
    try:
        yield client
    finally:
        client.close()


def require_session(request: Request, settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    """Reject requests without a valid session cookie (see /api/login)."""
    token = token_from_cookie_header(request.headers.get("cookie"))
    if not token:
        raise APIError(401, "Not authenticated")

    try:
        return verify_token(token, settings.session_secret, settings.session_max_age_sec)
    except AuthError as e:
        raise APIError(401, str(e))


# ===== Helper Functions =====

def resolve_conversation_id(store: ConversationStore, conversation_id: Optional[str]) -> str:
    if conversation_id:
        validation = validate_conversation_id(conversation_id)
        if not validation:
            raise APIError(400, "Invalid conversationId", details=validation.errors)
    return store.resolve_id(conversation_id)


def read_upload(upload: UploadFile, max_bytes: int) -> bytes:
    """Read an uploaded file, refusing anything over max_bytes."""
    content = upload.file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise APIError(413, "File too large", details=f"Maximum upload size is {max_bytes} bytes")
    return content


def preview(text: str, length: int = 50) -> str:
    return text[:length] + ("..." if len(text) > length else "")


def run_summary(
    client: LLMClient,
    store: ConversationStore,
    conversation_id: str,
    system_prompt: str,
    user_prompt: str,
    max_tokens: int,
    temperature: float,
    default: str,
) -> str:
    """Send a summary turn with the conversation history and store the result."""
    user_turn = text_message("user", user_prompt)
    messages: List[Dict[str, Any]] = [text_message("system", system_prompt)]
    messages += store.history(conversation_id)
    messages.append(user_turn)

    summary = client.chat(messages, model=CHAT_MODEL, max_tokens=max_tokens, temperature=temperature)
    summary = summary or default

    store.append(conversation_id, user_turn, text_message("assistant", summary))
    return summary


# ===== Endpoints =====

@app.post("/api/chat")
def chat(request: Optional[ChatRequest] = None, client: LLMClient = Depends(get_llm_client)):
    """
    Chat with conversation memory.

    Body: {prompt, conversationId?, metadata?}
    Returns: {text, conversationId}
    """
    request = request or ChatRequest()
    if not request.prompt:
        raise APIError(400, "Missing prompt")
    if not client.has_api_key:
        raise APIError(500, "Missing API key")

    conversation_id = resolve_conversation_id(chat_conversations, request.conversation_id)
    logger.info(f"Chat request: conversation={conversation_id} prompt={preview(request.prompt)!r}")

    user_turn = text_message("user", request.prompt)
    messages = chat_conversations.history(conversation_id) + [user_turn]

    try:
        assistant_text = client.chat(messages, model=CHAT_MODEL)
    except Exception as e:
        logger.exception(f"Chat error: {e}")
        raise APIError(500, "Failed to generate chat response", details=str(e))

    chat_conversations.append(conversation_id, user_turn, text_message("assistant", assistant_text))
    return {"text": assistant_text, "conversationId": conversation_id}


@app.post("/api/vision")
def vision(
    image: Optional[UploadFile] = File(None),
    file: Optional[UploadFile] = File(None),
    prompt: Optional[str] = Form(None),
    conversation_id: Optional[str] = Form(None, alias="conversationId"),
    client: LLMClient = Depends(get_llm_client),
    settings: Settings = Depends(get_settings),
):
    """
    Analyze an uploaded image.

    Form: image (or file), prompt?, conversationId?
    Returns: {text, conversationId}
    """
    upload = image or file
    if upload is None:
        raise APIError(400, "Missing image")

    content = read_upload(upload, settings.max_upload_bytes)
    if not content:
        raise APIError(400, "Missing image")

    validation = validate_image_upload(upload.content_type, upload.filename)
    if not validation:
        raise APIError(400, "Invalid image", details=validation.errors)

    if not client.has_api_key:
        raise APIError(500, "Missing API key")

    conversation_id = resolve_conversation_id(chat_conversations, conversation_id)
    mime_type = upload.content_type if (upload.content_type or "").startswith("image/") else "image/png"
    logger.info(f"Vision request: conversation={conversation_id} bytes={len(content)} type={mime_type}")

    messages = [
        text_message("system", STUDY_ASSISTANT_PROMPT),
        image_message(prompt or DEFAULT_VISION_PROMPT, to_data_url(content, mime_type)),
    ]

    try:
        assistant_text = client.chat(messages, model=VISION_MODEL)
    except Exception as e:
        logger.exception(f"Vision error: {e}")
        raise APIError(500, "Failed to analyze image", details=str(e))

    return {"text": assistant_text, "conversationId": conversation_id}


@app.post("/api/message")
def message(request: Optional[MessageRequest] = None, client: LLMClient = Depends(get_llm_client)):
    """
    One-shot chat with an optional image URL.

    Body: {message?, image?}
    Returns: {reply}
    """
    request = request or MessageRequest()

    messages: List[Dict[str, Any]] = [text_message("system", GENERAL_ASSISTANT_PROMPT)]
    if request.image:
        validation = validate_image_reference(request.image)
        if not validation:
            raise APIError(400, "Invalid image", details=validation.errors)
        messages.append(image_message(request.message or DEFAULT_IMAGE_PROMPT, request.image))
    elif request.message:
        messages.append(text_message("user", request.message))
    else:
        raise APIError(400, "Message or image is required")

    try:
        data = client.create_completion(
            messages, model=MESSAGE_MODEL, max_tokens=1000, raise_for_status=False
        )
    except Exception as e:
        logger.exception(f"Message error: {e}")
        raise APIError(500, "Something went wrong")

    return {"reply": extract_reply(data) or "No reply"}


@app.post("/api/ai-request")
def ai_request(request: Optional[PromptRequest] = None, client: LLMClient = Depends(get_llm_client)):
    """
    Single prompt, single answer.

    Body: {prompt}
    Returns: {response}
    """
    request = request or PromptRequest()
    prompt = request.prompt
    if not prompt or not isinstance(prompt, str):
        raise APIError(400, "Valid prompt is required")

    if not client.has_api_key:
        logger.error("OPENAI_API_KEY environment variable is not set")
        raise APIError(500, "Server configuration error: API key not set")

    logger.info(f"Making request to AI service with prompt: {preview(prompt)}")

    try:
        data = client.create_completion(
            [text_message("user", prompt)], model=BASIC_MODEL, max_tokens=500
        )
    except UpstreamError as e:
        logger.error(f"AI service error: {e.status_code} {e}")
        if e.status_code:
            raise APIError(500, f"AI service error: {e.status_code}")
        raise APIError(500, f"Internal server error: {e}")
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        raise APIError(500, f"Internal server error: {e}")

    logger.info("Successfully received response from AI service")
    return {"response": extract_reply(data) or "No response from AI"}


@app.post("/api/simple-summary")
def simple_summary(request: Optional[SummaryRequest] = None, client: LLMClient = Depends(get_llm_client)):
    """
    Short summary with conversation memory.

    Body: {text, conversationId?}
    Returns: {summary, conversationId, type}
    """
    request = request or SummaryRequest()
    if not request.text:
        raise APIError(400, "Missing text to summarize")
    if not client.has_api_key:
        raise APIError(500, "Missing API key")

    conversation_id = resolve_conversation_id(simple_summary_conversations, request.conversation_id)
    logger.info(f"Simple summary: conversation={conversation_id} chars={len(request.text)}")

    try:
        summary = run_summary(
            client,
            simple_summary_conversations,
            conversation_id,
            system_prompt=SIMPLE_SUMMARY_SYSTEM_PROMPT,
            user_prompt=f"{SIMPLE_SUMMARY_INSTRUCTION}\n\n{request.text}",
            max_tokens=500,
            temperature=0.7,
            default="Unable to generate summary",
        )
    except Exception as e:
        logger.exception(f"Simple summary error: {e}")
        raise APIError(500, "Failed to generate simple summary", details=str(e))

    return {"summary": summary, "conversationId": conversation_id, "type": "simple_summary"}


@app.post("/api/simplesummary")
def stateless_summary(request: Optional[SummaryRequest] = None, client: LLMClient = Depends(get_llm_client)):
    """
    Short summary without conversation memory.

    Body: {text}
    Returns: {summary, type}
    """
    request = request or SummaryRequest()
    if not request.text:
        raise APIError(400, "Missing text to summarize")
    if not client.has_api_key:
        raise APIError(500, "Missing API key")

    messages = [
        text_message("system", SIMPLE_SUMMARY_SYSTEM_PROMPT),
        text_message("user", f"{STATELESS_SUMMARY_INSTRUCTION}\n\n{request.text}"),
    ]

    try:
        summary = client.chat(messages, model=CHAT_MODEL, max_tokens=500)
    except Exception as e:
        logger.exception(f"Simple summary error: {e}")
        raise APIError(500, "Failed to generate simple summary", details=str(e))

    return {"summary": summary or "Unable to generate summary", "type": "simple_summary"}


@app.post("/api/detailed-summary")
def detailed_summary(
    text: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    conversation_id: Optional[str] = Form(None, alias="conversationId"),
    client: LLMClient = Depends(get_llm_client),
    settings: Settings = Depends(get_settings),
):
    """
    Detailed analysis of typed text and/or an uploaded document.

    Form: text?, file?, conversationId?
    Returns: {summary, conversationId, type, hasFile}
    """
    if not client.has_api_key:
        raise APIError(500, "Missing API key")

    conversation_id = resolve_conversation_id(detailed_summary_conversations, conversation_id)
    text_to_analyze = text or ""
    has_file = False

    if file is not None:
        content = read_upload(file, settings.max_upload_bytes)
        if content or file.filename:
            has_file = True
            try:
                extracted = extract_text(
                    content,
                    filename=file.filename,
                    content_type=file.content_type,
                    max_chars=settings.max_extracted_chars,
                )
            except ExtractionError as e:
                logger.warning(f"Extraction failed for {file.filename}: {e}")
                raise APIError(400, str(e))

            logger.info(
                f"Extracted {extracted['metadata']['char_count']} chars from {file.filename} "
                f"({extracted['format']})"
            )
            if text_to_analyze:
                text_to_analyze = extracted["text"] + "\n\n" + text_to_analyze
            else:
                text_to_analyze = extracted["text"]

    if not text_to_analyze.strip():
        raise APIError(400, "No text provided to analyze (either in text field or file)")

    try:
        summary = run_summary(
            client,
            detailed_summary_conversations,
            conversation_id,
            system_prompt=DETAILED_SUMMARY_SYSTEM_PROMPT,
            user_prompt=f"{DETAILED_SUMMARY_INSTRUCTION}\n\n{text_to_analyze}",
            max_tokens=2000,
            temperature=0.5,
            default="Unable to generate detailed analysis",
        )
    except Exception as e:
        logger.exception(f"Detailed summary error: {e}")
        raise APIError(500, "Failed to generate detailed summary", details=str(e))

    return {
        "summary": summary,
        "conversationId": conversation_id,
        "type": "detailed_summary",
        "hasFile": has_file,
    }


@app.post("/api/summarize")
def summarize(
    request: Optional[SummaryRequest] = None,
    client: SummarizerClient = Depends(get_summarizer_client),
):
    """
    Relay text to the Hugging Face summarizer space.

    Body: {text}
    Returns: the summarizer's JSON, or {summary} if it answered with plain text
    """
    request = request or SummaryRequest()

    try:
        result = client.summarize(request.text)
    except Exception as e:
        logger.exception(f"Summarizer error: {e}")
        raise APIError(500, "Summarizer backend failed", details=str(e))

    parsed = result.parsed()
    if not result.ok:
        logger.error(f"Summarizer returned {result.status_code}: {result.body[:500]}")
        details = parsed if parsed is not None else result.body
        raise APIError(502, "HuggingFace space request failed", details=details)

    if parsed is None:
        parsed = {"summary": result.body}
    return JSONResponse(content=parsed)


@app.post("/api/extract")
def extract(file: Optional[UploadFile] = File(None), settings: Settings = Depends(get_settings)):
    """
    Extract text from an uploaded document.

    Accepts TXT, Markdown, PDF, DOCX, XLSX, CSV, HTML, JSON or XML.

    Returns:
        {success, filename, format, text, truncated, metadata}
    """
    if file is None:
        raise APIError(400, "Missing file")

    content = read_upload(file, settings.max_upload_bytes)
    if not content:
        raise APIError(400, "Uploaded file is empty")

    try:
        result = extract_text(
            content,
            filename=file.filename,
            content_type=file.content_type,
            max_chars=settings.max_extracted_chars,
        )
    except ExtractionError as e:
        raise APIError(400, str(e))
    except Exception as e:
        logger.exception(f"Failed to process document {file.filename}: {e}")
        raise APIError(500, "Failed to process document", details=str(e))

    if not result["text"].strip():
        raise APIError(400, "Could not extract text from document")

    logger.info(f"Extracted text length: {result['metadata']['char_count']} ({result['format']})")
    return {"success": True, **result}


@app.post("/api/login")
def login(
    response: Response,
    request: Optional[LoginRequest] = None,
    settings: Settings = Depends(get_settings),
):
    """Check the site password and set a signed session cookie."""
    request = request or LoginRequest()
    if not request.password:
        raise APIError(400, "Missing password")

    if not check_password(request.password, settings.site_password):
        logger.warning("Rejected login with invalid password")
        raise APIError(401, "Invalid password")

    token = sign_token(settings.session_secret)
    response.headers["Set-Cookie"] = build_session_cookie(
        token, settings.session_max_age_sec, secure=settings.is_production
    )
    return {"ok": True}


@app.post("/api/secure-chat")
def secure_chat(
    session: Dict[str, Any] = Depends(require_session),
    request: Optional[MessageRequest] = None,
    client: LLMClient = Depends(get_llm_client),
):
    """
    One-shot chat for logged-in users.

    Body: {message}
    Returns: {reply}
    """
    request = request or MessageRequest()
    if not request.message:
        raise APIError(400, "Missing message")

    try:
        data = client.create_completion(
            [text_message("user", request.message)],
            model=BASIC_MODEL,
            max_tokens=600,
            raise_for_status=False,
        )
    except Exception as e:
        logger.exception(f"Secure chat error: {e}")
        raise APIError(500, str(e))

    return {"reply": extract_reply(data, default="No reply", include_error=True)}


@app.get("/api")
def api_status():
    """Service status and endpoint listing."""
    return {
        "name": APP_NAME,
        "status": "online",
        "version": APP_VERSION,
        "endpoints": {
            "/api/chat": "POST - Chat with conversation memory",
            "/api/vision": "POST - Analyze an uploaded image",
            "/api/message": "POST - One-shot chat with optional image URL",
            "/api/ai-request": "POST - Single prompt completion",
            "/api/simple-summary": "POST - Short summary with conversation memory",
            "/api/simplesummary": "POST - Short summary without memory",
            "/api/detailed-summary": "POST - Detailed analysis of text and/or an uploaded document",
            "/api/summarize": "POST - Summarize via the Hugging Face space",
            "/api/extract": "POST - Extract text from an uploaded document",
            "/api/login": "POST - Log in with the site password",
            "/api/secure-chat": "POST - Chat for logged-in users",
        },
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "name": APP_NAME, "version": APP_VERSION}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
