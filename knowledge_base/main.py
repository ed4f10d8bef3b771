"""Main Quart application for the knowledge base assistant."""
import logging
from typing import Optional

from pydantic import BaseModel, Field, ValidationError
from quart import Quart, request, jsonify
import structlog

from knowledge_base import config, db
from knowledge_base.errors import (
    ConfigurationError,
    KnowledgeBaseError,
    NotFoundError,
    ProviderError,
    UnsupportedInputError,
)
from knowledge_base.services import build_services


def configure_logging() -> None:
    """Structured JSON logs on top of stdlib logging at LOG_LEVEL."""
    logging.basicConfig(level=config.LOG_LEVEL, format="%(message)s")
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


configure_logging()

logger = structlog.get_logger()

app = Quart(__name__)
app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES

services = build_services()


class AskRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=4000)
    conversation_id: Optional[str] = None


class CreateConversationRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=200)


@app.before_serving
async def startup():
    await services.start()


@app.route("/api/documents/upload", methods=["POST"])
async def upload_document():
    """Upload and ingest a PDF, DOCX or TXT file (multipart field 'file').

    Returns JSON document record:
    {"id": "...", "filename": "...", "file_type": "...", "chunk_count": 3, ...}
    """
    files = await request.files
    upload = files.get("file")

    if upload is None:
        raise UnsupportedInputError("No file provided")

    data = upload.read()
    document = await services.ingest.ingest_document(
        upload.filename or "upload",
        upload.content_type or "",
        data,
    )
    return jsonify(document), 201


@app.route("/api/documents", methods=["GET"])
async def list_documents():
    return jsonify({"documents": db.list_documents()})


@app.route("/api/documents/<document_id>", methods=["GET"])
async def get_document(document_id: str):
    document = db.get_document(document_id)
    if document is None:
        raise NotFoundError(f"Document {document_id} not found")
    return jsonify(document)


@app.route("/api/documents/<document_id>", methods=["DELETE"])
async def delete_document(document_id: str):
    await services.ingest.delete_document(document_id)
    return "", 204


@app.route("/api/chat/ask", methods=["POST"])
async def ask():
    """Answer a question from the ingested documents.

    Expects JSON body:
    {
        "question": "user question",
        "conversation_id": "optional-conversation-id"  // creates new if not provided
    }

    Returns JSON:
    {
        "answer": "assistant answer",
        "conversation_id": "conversation-id",
        "sources": [{"document_id": "...", "text": "preview...", "similarity": 0.82}]
    }
    """
    data = await request.get_json(silent=True) or {}
    ask_request = AskRequest.model_validate(data)

    result = await services.chat.ask(ask_request.question, ask_request.conversation_id)
    return jsonify(result.to_dict())


@app.route("/api/conversations", methods=["POST"])
async def create_conversation():
    data = await request.get_json(silent=True) or {}
    body = CreateConversationRequest.model_validate(data)

    conversation = services.conversations.create_conversation(body.title)
    return jsonify(conversation), 201


@app.route("/api/conversations", methods=["GET"])
async def list_conversations():
    return jsonify({"conversations": services.conversations.list_conversations()})


@app.route("/api/conversations/<conversation_id>/messages", methods=["GET"])
async def get_conversation_messages(conversation_id: str):
    messages = services.conversations.get_messages(conversation_id)
    return jsonify({"messages": messages})


@app.route("/api/conversations/<conversation_id>", methods=["DELETE"])
async def delete_conversation(conversation_id: str):
    services.conversations.delete_conversation(conversation_id)
    return "", 204


@app.route("/health/ready")
async def health_ready():
    """Readiness probe - credentials present and vector index loaded."""
    checks = {
        "status": "healthy",
        "embedding_key": bool(config.VOYAGE_API_KEY),
        "generation_key": bool(config.ANTHROPIC_API_KEY),
        "vector_store": services.vector_store.get_stats(),
    }

    if not (checks["embedding_key"] and checks["generation_key"]):
        checks["status"] = "unhealthy"
        checks["error"] = "Provider API key not configured"
    elif not checks["vector_store"]["initialized"]:
        checks["status"] = "unhealthy"
        checks["error"] = "Vector index not loaded"

    status_code = 200 if checks["status"] == "healthy" else 503
    return jsonify(checks), status_code


@app.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@app.errorhandler(ValidationError)
async def validation_error(error: ValidationError):
    details = error.errors(include_url=False, include_context=False)
    return jsonify({"error": "Invalid request", "details": details}), 400


@app.errorhandler(KnowledgeBaseError)
async def knowledge_base_error(error: KnowledgeBaseError):
    """Map the error taxonomy onto HTTP statuses."""
    if isinstance(error, UnsupportedInputError):
        status = 400
    elif isinstance(error, NotFoundError):
        status = 404
    elif isinstance(error, ProviderError):
        status = 502
    else:
        status = 500

    log = logger.warning if status < 500 else logger.error
    log("request_failed", error=str(error), error_type=type(error).__name__, status=status)

    if isinstance(error, ConfigurationError) or status < 500:
        message = str(error)
    else:
        message = "An error occurred processing your request. Please try again."

    return jsonify({"error": message}), status


@app.errorhandler(404)
async def not_found(error):
    """Handle 404 errors."""
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(500)
async def internal_error(error):
    """Handle 500 errors."""
    logger.error("internal_server_error", error=str(error))
    return jsonify({"error": "Internal server error"}), 500


if __name__ == "__main__":
    # For development - use `hypercorn knowledge_base.main:app` in production
    app.run(host="0.0.0.0", port=5000, debug=True)
