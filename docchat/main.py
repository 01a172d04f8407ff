"""Main Quart application for docchat."""
import json
import logging
from typing import Optional, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from quart import Quart, Blueprint, current_app, request, jsonify

from docchat import config
from docchat.chat import ChatConfig
from docchat.errors import (
    ContentExtractionError,
    DocChatError,
    NotFoundError,
    ProviderError,
    RetrievalError,
    ValidationError,
)
from docchat.rag.retriever import RetrievalConfig, format_chunks_as_context
from docchat.services import Services, get_services


def configure_logging() -> None:
    """Configure structured JSON logging."""
    logging.basicConfig(format="%(message)s", level=config.LOG_LEVEL)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger()

api = Blueprint("api", __name__)

MIN_QUERY_LENGTH = 3


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------

class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SearchRequest(ApiModel):
    query: str
    document_id: Optional[str] = Field(None, alias="documentId")
    top_k: Optional[int] = Field(None, alias="topK")
    threshold: Optional[float] = None
    format: Literal["raw", "context"] = "raw"


class ChatRequest(ApiModel):
    message: str
    document_id: str = Field(alias="documentId")
    session_id: Optional[str] = Field(None, alias="sessionId")
    stream: bool = True
    user_id: Optional[str] = Field(None, alias="userId")
    title: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)


class CreateSessionRequest(ApiModel):
    document_id: str = Field(alias="documentId")
    title: Optional[str] = None
    user_id: Optional[str] = Field(None, alias="userId")


def services() -> Services:
    return current_app.extensions["docchat"]


async def parse_body(model: type) -> BaseModel:
    """Validate the JSON body against a pydantic model."""
    data = await request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return model.model_validate(data)


def parse_limit(default: int) -> int:
    raw = request.args.get("limit")
    if raw is None:
        return default
    try:
        limit = int(raw)
    except ValueError:
        raise ValidationError("limit must be an integer") from None
    if limit < 1:
        raise ValidationError("limit must be a positive integer")
    return limit


# ----------------------------------------------------------------------
# Documents
# ----------------------------------------------------------------------

@api.route("/api/documents", methods=["POST"])
async def upload_document():
    """Upload a PDF, then chunk, embed and index it.

    Expects multipart form data with a 'file' field (PDF, max 20MB) and an
    optional 'userId' field.
    """
    files = await request.files
    form = await request.form
    upload = files.get("file")

    if upload is None:
        raise ValidationError("No file was provided")
    if upload.content_type != "application/pdf":
        raise ValidationError("The file must be a PDF")

    data = upload.read()
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"The file exceeds the maximum size of {config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB"
        )

    result = await services().ingest.ingest_pdf(
        data, upload.filename or "document.pdf", user_id=form.get("userId")
    )
    return jsonify({"success": True, "data": result.to_dict()}), 201


@api.route("/api/documents", methods=["GET"])
async def list_documents():
    documents = await services().database.list_documents(request.args.get("userId"))
    return jsonify({"documents": documents})


@api.route("/api/documents/<document_id>", methods=["GET"])
async def get_document(document_id: str):
    document = await services().database.get_document(document_id)
    if document is None:
        raise NotFoundError("Document not found")
    return jsonify({"document": document})


@api.route("/api/documents/<document_id>", methods=["DELETE"])
async def delete_document(document_id: str):
    """Delete a document, its chunks and its stored file.

    Returns:
        204 No Content if successful
        404 Not Found if document doesn't exist
    """
    if not await services().ingest.delete_document(document_id):
        raise NotFoundError("Document not found")
    return "", 204


@api.route("/api/documents/<document_id>/sessions", methods=["GET"])
async def list_document_sessions(document_id: str):
    sessions = await services().memory.list_document_sessions(document_id)
    return jsonify({"sessions": sessions})


# ----------------------------------------------------------------------
# Search
# ----------------------------------------------------------------------

@api.route("/api/search", methods=["POST"])
async def search():
    """Semantic search over one document or all documents.

    Expects JSON body:
    {
        "query": "at least 3 characters",
        "documentId": "optional-document-id",
        "topK": 5,          // optional, max 20
        "threshold": 0.7,   // optional, clamped to [0, 1]
        "format": "raw"     // or "context"
    }
    """
    body = await parse_body(SearchRequest)

    query = body.query.strip()
    if len(query) < MIN_QUERY_LENGTH:
        raise ValidationError(f"query must be at least {MIN_QUERY_LENGTH} characters")

    retrieval_config = RetrievalConfig(
        top_k=config.RETRIEVAL_TOP_K if body.top_k is None else body.top_k,
        threshold=config.RETRIEVAL_THRESHOLD if body.threshold is None else body.threshold,
    ).clamped()

    results = await services().retriever.search(query, body.document_id, retrieval_config)

    if body.format == "context":
        return jsonify({
            "success": True,
            "data": {
                "query": query,
                "context": format_chunks_as_context(results),
                "chunksFound": len(results),
            },
        })

    return jsonify({
        "success": True,
        "data": {
            "query": query,
            "results": [
                {
                    "id": chunk.id,
                    "content": chunk.content,
                    "similarity": chunk.similarity,
                    "similarityPercent": chunk.similarity_percent,
                }
                for chunk in results
            ],
            "totalResults": len(results),
            "config": {
                "topK": retrieval_config.top_k,
                "threshold": retrieval_config.threshold,
                "documentId": body.document_id,
            },
        },
    })


# ----------------------------------------------------------------------
# Chat
# ----------------------------------------------------------------------

@api.route("/api/chat", methods=["POST"])
async def chat():
    """Answer a message about a document.

    Expects JSON body:
    {
        "message": "user message text",
        "documentId": "document-id",
        "sessionId": "optional-session-id",  // creates new if not provided
        "stream": true                        // optional, defaults to true
    }

    Streaming responses start with a {"sessionId": "..."} frame followed by
    a blank line, then raw text fragments. Blocking responses return
    {"response", "sessionId", "sources"}.
    """
    body = await parse_body(ChatRequest)
    if len(body.message) > config.MAX_MESSAGE_CHARS:
        raise ValidationError(
            f"Message too long (max {config.MAX_MESSAGE_CHARS} characters)"
        )

    chat_config = ChatConfig(
        user_id=body.user_id, title=body.title, temperature=body.temperature
    )
    orchestrator = services().orchestrator

    if not body.stream:
        result = await orchestrator.process_chat(
            body.message, body.document_id, body.session_id, chat_config
        )
        return jsonify(result.to_dict())

    resolved = {"session_id": body.session_id}

    def on_session_created(session_id: str) -> None:
        resolved["session_id"] = session_id

    stream = orchestrator.process_chat_stream(
        body.message,
        body.document_id,
        body.session_id,
        chat_config,
        on_session_created=on_session_created,
    )

    # Run up to the first fragment here so that validation and retrieval
    # failures still produce a proper error status
    try:
        first: Optional[str] = await stream.__anext__()
    except StopAsyncIteration:
        first = None

    async def frames():
        try:
            yield json.dumps({"sessionId": resolved["session_id"]}) + "\n\n"
            if first is None:
                return
            yield first
            async for fragment in stream:
                yield fragment
        except DocChatError as e:
            # Headers are already sent; end the body early
            logger.error(
                "chat_stream_failed",
                session_id=resolved["session_id"],
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            await stream.aclose()

    return frames(), 200, {
        "Content-Type": "text/plain; charset=utf-8",
        "Cache-Control": "no-cache",
    }


@api.route("/api/chat/sessions", methods=["POST"])
async def create_session():
    """Create a chat session bound to a document.

    Returns JSON:
    {
        "sessionId": "uuid",
        "documentId": "document-id"
    }
    """
    body = await parse_body(CreateSessionRequest)

    if await services().database.get_document(body.document_id) is None:
        raise NotFoundError("Document not found")

    session_id = await services().memory.create_session(
        document_id=body.document_id, user_id=body.user_id, title=body.title
    )
    return jsonify({"sessionId": session_id, "documentId": body.document_id}), 201


@api.route("/api/chat/sessions", methods=["GET"])
async def list_sessions():
    sessions = await services().memory.list_sessions(request.args.get("userId"))
    return jsonify({"sessions": sessions})


@api.route("/api/chat/sessions/<session_id>", methods=["GET"])
async def get_session(session_id: str):
    """Get a session together with its document."""
    session = await services().memory.get_session(session_id)
    if session is None:
        raise NotFoundError("Session not found")

    document = None
    if session["document_id"]:
        document = await services().database.get_document(session["document_id"])

    return jsonify({"session": session, "document": document})


@api.route("/api/chat/sessions/<session_id>", methods=["DELETE"])
async def delete_session(session_id: str):
    """Delete a session and all its messages.

    With ?deleteDocument=true the session's document (with its chunks and
    stored file) is deleted as well.

    Returns:
        204 No Content if successful
        404 Not Found if session doesn't exist
    """
    session = await services().memory.get_session(session_id)
    if session is None:
        raise NotFoundError("Session not found")

    await services().memory.delete_session(session_id)

    if request.args.get("deleteDocument") == "true" and session["document_id"]:
        await services().ingest.delete_document(session["document_id"])

    return "", 204


@api.route("/api/chat/history/<session_id>", methods=["GET"])
async def get_history(session_id: str):
    """Get a session's messages, oldest first.

    Returns JSON:
    {
        "messages": [
            {"id": "...", "role": "user", "content": "...", "created_at": "..."},
            ...
        ],
        "sessionId": "session-id"
    }
    """
    limit = parse_limit(config.HISTORY_LIMIT)
    messages = await services().memory.get_history(session_id, limit)
    return jsonify({"messages": messages, "sessionId": session_id})


# ----------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------

@api.route("/health/ready")
async def health_ready():
    """Readiness check: whether the app can serve requests.

    Checks:
    - The provider is reachable
    - The chat model is available
    """
    provider = services().provider
    checks = {
        "status": "healthy",
        "provider": provider.name,
        "reachable": False,
        "models": False,
    }

    try:
        models = await provider.list_models()
        checks["reachable"] = True

        if config.CHAT_MODEL in models:
            checks["models"] = True
        else:
            checks["status"] = "unhealthy"
            checks["error"] = f"Missing chat model: {config.CHAT_MODEL}"

        status_code = 200 if checks["status"] == "healthy" else 503
        return jsonify(checks), status_code

    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        checks["status"] = "unhealthy"
        checks["error"] = str(e)
        return jsonify(checks), 503


@api.route("/health/live")
async def health_live():
    """Liveness check: whether the app is running."""
    return jsonify({"status": "alive"}), 200


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------

async def handle_docchat_error(error: DocChatError):
    """Map application errors to status codes.

    Validation problems carry their own message; provider and store
    failures get a generic one.
    """
    if isinstance(error, ValidationError):
        return jsonify({"error": str(error)}), 400
    if isinstance(error, NotFoundError):
        return jsonify({"error": str(error)}), 404
    if isinstance(error, ContentExtractionError):
        return jsonify({"error": str(error)}), 422

    logger.error(
        "request_failed",
        path=request.path,
        error=str(error),
        error_type=type(error).__name__,
    )
    if isinstance(error, (RetrievalError, ProviderError)):
        return jsonify({
            "error": "The AI provider is unavailable. Please try again."
        }), 502
    return jsonify({
        "error": "An error occurred processing your request. Please try again."
    }), 500


async def handle_request_validation_error(error: PydanticValidationError):
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "body"
    return jsonify({"error": f"{field}: {first['msg']}"}), 400


async def not_found(error):
    """Handle 404 errors."""
    return jsonify({"error": "Not found"}), 404


async def internal_error(error):
    """Handle 500 errors."""
    logger.error("internal_server_error", error=str(error))
    return jsonify({"error": "Internal server error"}), 500


def create_app(app_services: Optional[Services] = None) -> Quart:
    """Create the Quart application.

    Args:
        app_services: Pre-built services (built on startup if not provided)
    """
    app = Quart(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES + 1024 * 1024
    app.register_blueprint(api)

    app.register_error_handler(DocChatError, handle_docchat_error)
    app.register_error_handler(PydanticValidationError, handle_request_validation_error)
    app.register_error_handler(404, not_found)
    app.register_error_handler(500, internal_error)

    if app_services is not None:
        app.extensions["docchat"] = app_services

    @app.before_serving
    async def startup():
        if "docchat" not in app.extensions:
            app.extensions["docchat"] = await get_services()
        logger.info(
            "app_started",
            provider=app.extensions["docchat"].provider.name,
            chat_model=config.CHAT_MODEL,
        )

    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    # For development - use hypercorn in production
    app.run(host="0.0.0.0", port=5000, debug=True)
