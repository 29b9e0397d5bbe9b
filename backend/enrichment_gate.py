"""One-shot "manual scan" flags for the AI enrichments.

A manual scan arms a short-lived flag per (item, enrichment kind). The
post-analysis subscribers consume their flag, so each enrichment runs at
most once per arming and never on automatic (save / batch) analyses.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from models import TRIGGER_MANUAL
from transients import TransientStore

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logger = logging.getLogger(__name__)

ENTITIES = "entities"
MISSING_TOPICS = "missing_topics"
SCHEMA = "schema"
INTERNAL_LINKS = "internal_links"
ENRICHMENT_KINDS = (ENTITIES, MISSING_TOPICS, SCHEMA, INTERNAL_LINKS)

MANUAL_FLAG_TTL = int(os.getenv("MANUAL_FLAG_TTL", "60"))


class EnrichmentGate:
    def __init__(self, transients: TransientStore, ttl_seconds: int = MANUAL_FLAG_TTL):
        self.transients = transients
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def flag_key(item_id: int, kind: str) -> str:
        return f"force_{kind}_{int(item_id)}"

    def arm(self, item_id: int, kind: str, ttl_seconds: int | None = None) -> None:
        if kind not in ENRICHMENT_KINDS:
            raise ValueError(f"Unknown enrichment kind: {kind}")
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self.transients.set(self.flag_key(item_id, kind), 1, ttl)

    def arm_all(self, item_id: int) -> None:
        for kind in ENRICHMENT_KINDS:
            self.arm(item_id, kind)

    def is_armed(self, item_id: int, kind: str) -> bool:
        return bool(self.transients.get(self.flag_key(item_id, kind)))

    def consume(self, item_id: int, kind: str) -> bool:
        """Delete the flag; True if it was armed."""
        return bool(self.transients.pop(self.flag_key(item_id, kind)))

    def allows(self, item_id: int, kind: str, trigger: str) -> bool:
        """Whether `kind` may run for this analysis. Consumes the flag on manual triggers."""
        if trigger != TRIGGER_MANUAL:
            return False
        allowed = self.consume(item_id, kind)
        if not allowed:
            logger.debug("Enrichment %s skipped for item %s: no manual flag", kind, item_id)
        return allowed
