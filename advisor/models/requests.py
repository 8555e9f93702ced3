# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Shape of data coming INTO the API. FastAPI validates request bodies
# against these models (422 on failure) and publishes them in /docs.
# =============================================================================

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """
    Request body for POST /chat and POST /chat/stream.

    Example:
        {
            "message": "Should I buy more AAPL?",
            "session_id": "demo-session",
            "enable_reasoning": false,
            "document_count": 3
        }
    """

    message: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="The user's question or instruction",
        examples=["What is AAPL trading at?"],
    )

    # Sessions are created with default profile values on first use
    session_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Conversation session identifier",
        examples=["demo-session"],
    )

    # Routes both model calls to LLM_REASONING_MODEL when one is configured
    enable_reasoning: bool = Field(
        default=False,
        description="Use the reasoning model for this turn",
    )

    document_count: int | None = Field(
        default=None,
        ge=1,
        le=20,
        description="Knowledge-base documents to retrieve (defaults to RETRIEVAL_TOP_K)",
        examples=[3],
    )
