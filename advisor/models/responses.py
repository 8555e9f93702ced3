# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Shape of data coming OUT of the API. Domain dataclasses are mapped onto
# these so document embeddings and internal fields never reach the wire.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from advisor.models.domain import ScoredDocument, Trade


class HealthResponse(BaseModel):
    """Response for GET /health; confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class TradeResponse(BaseModel):
    """A trade recorded in the session ledger during the turn."""

    symbol: str
    action: str = Field(description="BUY, SELL or HOLD")
    quantity: int
    price: float | None = Field(
        default=None,
        description="Unset for recommendations; filled only by executed buy/sell tools",
    )
    executed_at: datetime
    reasoning: str = ""

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_trade(cls, trade: Trade) -> "TradeResponse":
        return cls.model_validate(trade)


class SourceDocument(BaseModel):
    """A knowledge-base document retrieved as context for the answer."""

    id: str
    title: str
    source: str
    category: str
    score: float = Field(description="Cosine similarity to the query (-1 to 1)")

    @classmethod
    def from_scored(cls, scored: ScoredDocument) -> "SourceDocument":
        doc = scored.document
        return cls(
            id=doc.id,
            title=doc.title,
            source=doc.source,
            category=doc.category,
            score=round(scored.score, 4),
        )


class ChatResponse(BaseModel):
    """
    Response for POST /chat.

    `executed_trades` lists the trades logged from the answer's advice
    block; `sources` lists the documents that grounded it.
    """

    answer: str = Field(description="The assistant's answer")
    executed_trades: list[TradeResponse] = Field(default_factory=list)
    sources: list[SourceDocument] = Field(default_factory=list)
    session_id: str
    timestamp: datetime
