"""AI Visibility API – FastAPI app wiring the analyzer, batch scanner and enrichments."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from ai_service import AITextService
from analyzer import ItemAnalyzer
from batch_scan import BatchScanScheduler
from database import ContentStore, init_db
from enrichment_gate import EnrichmentGate
from enrichments import Enrichments, register_enrichments
from errors import ExternalServiceError, NotFound
from history import HistoryStore, compute_delta
from internal_links import SUGGESTIONS_META_KEY, InternalLinkSuggester
from schema_recommendations import RECOMMENDATIONS_META_KEY, SchemaRecommender
from schemas import (
    GeneratedTextResponse,
    ItemUpsertRequest,
    ScanItemResponse,
    ScanStartRequest,
    ScanStateResponse,
    SnapshotResponse,
    TopicSectionRequest,
    VisibilityResponse,
)
from scoring import build_signals
from snapshots import APP_VERSION, SnapshotRecorder, WeeklyReporter
from task_scheduler import TaskScheduler, ThreadTimerScheduler
from transients import SqliteTransientStore

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_KINDS = ("summary", "qa", "topic_section", "entities", "missing_topics")


@dataclass
class Services:
    store: ContentStore
    analyzer: ItemAnalyzer
    batch: BatchScanScheduler
    enrichments: Enrichments
    history: HistoryStore
    recorder: SnapshotRecorder
    reporter: WeeklyReporter
    scheduler: TaskScheduler


def build_services(
    db_path=None,
    ai: AITextService | None = None,
    scheduler: TaskScheduler | None = None,
) -> Services:
    """Create one owned instance of every component, sharing a database."""
    init_db(db_path)
    store = ContentStore(db_path)
    transients = SqliteTransientStore(db_path)
    scheduler = scheduler or ThreadTimerScheduler()
    ai = ai or AITextService(cache=transients)

    gate = EnrichmentGate(transients)
    history = HistoryStore(store)
    analyzer = ItemAnalyzer(store, history, gate=gate)
    enrichments = Enrichments(store, ai, gate=gate)
    register_enrichments(
        analyzer,
        enrichments,
        SchemaRecommender(store, gate).on_analyzed,
        InternalLinkSuggester(store, gate).on_analyzed,
    )

    batch = BatchScanScheduler(store, analyzer, transients, scheduler)
    recorder = SnapshotRecorder(store)
    reporter = WeeklyReporter(store, recorder, transients, scheduler)
    return Services(
        store=store,
        analyzer=analyzer,
        batch=batch,
        enrichments=enrichments,
        history=history,
        recorder=recorder,
        reporter=reporter,
        scheduler=scheduler,
    )


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(
        title="AI Visibility API",
        description="AI visibility scoring, batch scanning and enrichments",
        version=APP_VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    svc = services or build_services()

    @app.on_event("startup")
    def startup() -> None:
        svc.reporter.ensure_scheduled()
        logger.info("AI Visibility API started, weekly report armed")

    @app.on_event("shutdown")
    def shutdown() -> None:
        svc.scheduler.shutdown()

    def _state_response(notice: bool = False) -> ScanStateResponse:
        return ScanStateResponse(**svc.batch.get_state().as_dict(), completed_notice=notice)

    @app.put("/items/{item_id}", response_model=VisibilityResponse)
    def upsert_item(item_id: int, body: ItemUpsertRequest) -> VisibilityResponse:
        """Save an item and run the save-time analysis."""
        if item_id <= 0:
            raise HTTPException(status_code=400, detail="Item id must be positive.")
        item = {"id": item_id, **body.model_dump()}
        svc.store.upsert_item(item)
        svc.analyzer.analyze_on_save(item)
        return get_visibility(item_id)

    @app.get("/items/{item_id}/visibility", response_model=VisibilityResponse)
    def get_visibility(item_id: int) -> VisibilityResponse:
        """Return stored score, metrics, checklist, deltas and enrichment results."""
        if svc.store.get_item(item_id) is None:
            raise HTTPException(status_code=404, detail="Item not found")

        metrics = svc.analyzer.stored_metrics(item_id)
        entities = svc.store.get_item_entities(item_id)
        history = svc.history.entries(item_id)
        since_last, since_week = compute_delta(history)

        errors: dict[str, str] = {}
        for kind in ERROR_KINDS:
            message = svc.store.get_meta(item_id, f"{kind}_error")
            if message:
                errors[kind] = str(message)

        return VisibilityResponse(
            item_id=item_id,
            score=svc.analyzer.current_score(item_id),
            metrics=metrics.to_dict() if metrics else None,
            signals=build_signals(metrics, entities or None) if metrics else [],
            delta_since_last=since_last,
            delta_since_week=since_week,
            history=history,
            missing_topics=svc.store.get_meta(item_id, "missing_topics"),
            schema_recommendations=svc.store.get_meta(item_id, RECOMMENDATIONS_META_KEY),
            internal_link_suggestions=svc.store.get_meta(item_id, SUGGESTIONS_META_KEY, []) or [],
            errors=errors,
        )

    @app.post("/items/{item_id}/scan", response_model=ScanItemResponse)
    def scan_item(item_id: int) -> ScanItemResponse:
        """Manual scan: analysis plus the gated AI enrichments."""
        try:
            metrics = svc.analyzer.scan_manually(item_id)
        except NotFound:
            raise HTTPException(status_code=404, detail="Item not found")
        return ScanItemResponse(
            item_id=item_id,
            score=svc.analyzer.current_score(item_id) or 0,
            metrics=metrics.to_dict(),
        )

    def _generate(item_id: int, action) -> GeneratedTextResponse:
        try:
            text = action()
        except NotFound:
            raise HTTPException(status_code=404, detail="Item not found")
        except ExternalServiceError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return GeneratedTextResponse(item_id=item_id, text=text)

    @app.post("/items/{item_id}/summary", response_model=GeneratedTextResponse)
    def generate_summary(item_id: int) -> GeneratedTextResponse:
        return _generate(item_id, lambda: svc.enrichments.generate_summary(item_id))

    @app.post("/items/{item_id}/qa", response_model=GeneratedTextResponse)
    def generate_qa(item_id: int) -> GeneratedTextResponse:
        return _generate(item_id, lambda: svc.enrichments.generate_qa(item_id))

    @app.post("/items/{item_id}/topics/section", response_model=GeneratedTextResponse)
    def generate_topic_section(item_id: int, body: TopicSectionRequest) -> GeneratedTextResponse:
        return _generate(item_id, lambda: svc.enrichments.generate_topic_section(item_id, body.topic))

    @app.post("/scan/start", response_model=ScanStateResponse)
    def start_scan(body: ScanStartRequest) -> ScanStateResponse:
        svc.batch.start(body.item_types or None)
        return _state_response()

    @app.post("/scan/tick", response_model=ScanStateResponse)
    def tick_scan() -> ScanStateResponse:
        """Host cron hook: run one batch tick now."""
        svc.batch.tick()
        return _state_response()

    @app.post("/scan/cancel", response_model=ScanStateResponse)
    def cancel_scan() -> ScanStateResponse:
        svc.batch.cancel()
        return _state_response()

    @app.get("/scan/state", response_model=ScanStateResponse)
    def scan_state() -> ScanStateResponse:
        return _state_response(notice=svc.batch.pop_completion_notice())

    @app.post("/snapshots", response_model=SnapshotResponse)
    def record_snapshot() -> SnapshotResponse:
        return SnapshotResponse(**svc.recorder.record())

    @app.get("/snapshots", response_model=list[SnapshotResponse])
    def list_snapshots(limit: int = 12) -> list[SnapshotResponse]:
        return [SnapshotResponse(**row) for row in svc.recorder.recent(limit)]

    @app.post("/reports/weekly", response_model=SnapshotResponse | None)
    def run_weekly_report() -> SnapshotResponse | None:
        snapshot = svc.reporter.run()
        return SnapshotResponse(**snapshot) if snapshot else None

    @app.get("/health")
    def health() -> dict:
        """Health check for deployment."""
        return {"status": "ok"}

    return app


app = create_app()
