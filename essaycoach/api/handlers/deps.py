from __future__ import annotations

from dataclasses import dataclass

from essaycoach.domain.contracts import EssayRepository, ProgressStore, StrategyProvider
from essaycoach.domain.use_cases.orchestrate_feedback import FeedbackOrchestrator
from essaycoach.services.general_settings import GeneralSettingsService


@dataclass(frozen=True)
class ApiDeps:
    repository: EssayRepository
    progress: ProgressStore
    orchestrator: FeedbackOrchestrator
    general_settings: GeneralSettingsService
    strategy_for: StrategyProvider
    vendor_key: str
