"""Wires the stores, discovery and delivery services around one database."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from pr_reviewer.comment_store import CommentStore
from pr_reviewer.config import AppConfig
from pr_reviewer.consolidation import ConsolidationPipeline
from pr_reviewer.db import AppConfigStore, Database
from pr_reviewer.delivery import DeliveryOrchestrator
from pr_reviewer.registry import ClientRegistry
from pr_reviewer.targets import TargetResolver
from pr_reviewer.tmux import AgentDetector, PsProcessInspector, TmuxClient

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: AppConfig
    db: Database
    store: CommentStore
    config_store: AppConfigStore
    registry: ClientRegistry
    tmux: TmuxClient
    detector: AgentDetector
    resolver: TargetResolver
    pipeline: ConsolidationPipeline
    delivery: DeliveryOrchestrator

    def close(self) -> None:
        self.db.close()


def build_runtime(config: AppConfig, db: Database | None = None) -> Runtime:
    """Build every service for *config*. Pass *db* to share an open connection."""
    if db is None:
        db = Database(config.database_file)
        logger.info("Using database %s", config.database_file)

    store = CommentStore(db)
    config_store = AppConfigStore(db)
    registry = ClientRegistry(db, freshness=timedelta(seconds=config.client_freshness_seconds))
    tmux = TmuxClient(timeout_seconds=config.tmux_timeout_seconds)
    detector = AgentDetector(tmux, PsProcessInspector(timeout_seconds=config.tmux_timeout_seconds))

    return Runtime(
        config=config,
        db=db,
        store=store,
        config_store=config_store,
        registry=registry,
        tmux=tmux,
        detector=detector,
        resolver=TargetResolver(registry),
        pipeline=ConsolidationPipeline(config_store),
        delivery=DeliveryOrchestrator(store, tmux),
    )
