"""Pydantic schemas for API request/response."""

import re

from pydantic import BaseModel, Field, field_validator


class ItemUpsertRequest(BaseModel):
    """Request body for PUT /items/{item_id}."""

    title: str = ""
    body: str = ""
    type: str = "post"
    status: str = "publish"
    url: str = ""

    @field_validator("title", "type", "status", "url", mode="before")
    @classmethod
    def normalize_text_fields(cls, value: object) -> str:
        return str(value or "").strip()

    @field_validator("body", mode="before")
    @classmethod
    def normalize_body(cls, value: object) -> str:
        return str(value or "")


class MetricsResponse(BaseModel):
    word_count: int
    h2_count: int
    h3_count: int
    internal_links: int
    external_links: int
    question_marks: int
    has_faq_keyword: bool
    avg_sentence_length: float
    has_ai_summary: bool
    has_ai_qa: bool


class HistoryPoint(BaseModel):
    date: str
    score: int


class Signal(BaseModel):
    status: str
    text: str


class ScanItemResponse(BaseModel):
    """Response for a single-item scan."""

    item_id: int
    score: int
    metrics: MetricsResponse


class VisibilityResponse(BaseModel):
    """Everything the visibility panel shows for one item."""

    item_id: int
    score: int | None
    metrics: MetricsResponse | None
    signals: list[Signal]
    delta_since_last: int | None
    delta_since_week: int | None
    history: list[HistoryPoint]
    missing_topics: dict | None = None
    schema_recommendations: dict | None = None
    internal_link_suggestions: list[dict] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)


class ScanStartRequest(BaseModel):
    """Request body for POST /scan/start."""

    item_types: list[str] = Field(default_factory=list)

    @field_validator("item_types", mode="before")
    @classmethod
    def normalize_list_fields(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            raw_items = re.split(r"[\n,]", value)
        elif isinstance(value, list):
            raw_items = value
        else:
            return []
        cleaned: list[str] = []
        for item in raw_items:
            text = str(item or "").strip()
            if text and text not in cleaned:
                cleaned.append(text)
        return cleaned


class ScanStateResponse(BaseModel):
    status: str
    total: int
    progress: int
    last_run: int
    completed_notice: bool = False


class TopicSectionRequest(BaseModel):
    topic: str

    @field_validator("topic")
    @classmethod
    def validate_topic(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Topic is required")
        return normalized


class GeneratedTextResponse(BaseModel):
    item_id: int
    text: str


class SnapshotResponse(BaseModel):
    snapshot_date: str
    avg_score: float | None
    scanned_count: int
