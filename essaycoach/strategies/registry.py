from __future__ import annotations

from dataclasses import dataclass

from essaycoach.domain.contracts import PromptLogSink, VendorClient
from essaycoach.domain.errors import DomainValidationError
from essaycoach.domain.models import EssayMetadata, ExamType
from essaycoach.domain.prompts import PromptCatalog
from essaycoach.strategies.base import BaseFeedbackStrategy, StrategyConfig
from essaycoach.strategies.vendors import DoubaoFeedbackStrategy, KimiFeedbackStrategy, TongyiFeedbackStrategy

StrategyFactory = type[BaseFeedbackStrategy]


@dataclass(frozen=True)
class StrategyRegistration:
    key: str
    factory: StrategyFactory
    supported_exams: frozenset[ExamType]


STRATEGY_REGISTRY: dict[str, StrategyRegistration] = {}


def register_strategy(
    key: str,
    factory: StrategyFactory,
    *,
    supported_exams: tuple[ExamType, ...] = (ExamType.IELTS,),
) -> StrategyRegistration:
    normalized = key.strip().lower()
    if not normalized:
        raise DomainValidationError("strategy key must be non-empty")
    previous = STRATEGY_REGISTRY.get(normalized)
    exams = frozenset(supported_exams)
    if previous is not None and previous.factory is factory:
        exams = exams | previous.supported_exams
    registration = StrategyRegistration(key=normalized, factory=factory, supported_exams=exams)
    STRATEGY_REGISTRY[normalized] = registration
    return registration


def get_registration(key: str) -> StrategyRegistration:
    registration = STRATEGY_REGISTRY.get(key.strip().lower())
    if registration is None:
        supported = ", ".join(sorted(STRATEGY_REGISTRY))
        raise DomainValidationError(f"unsupported vendor strategy: {key}. Supported: {supported}")
    return registration


def build_feedback_strategy(
    key: str,
    *,
    client: VendorClient,
    catalog: PromptCatalog,
    config: StrategyConfig,
    metadata: EssayMetadata,
    log_sink: PromptLogSink | None = None,
) -> BaseFeedbackStrategy:
    registration = get_registration(key)
    if metadata.exam_type not in registration.supported_exams:
        raise DomainValidationError(
            f"vendor strategy {registration.key} does not support exam type {metadata.exam_type.value}"
        )
    return registration.factory(
        client=client,
        catalog=catalog,
        config=config,
        metadata=metadata,
        log_sink=log_sink,
    )


def resolve_base_url(key: str, config: StrategyConfig) -> str:
    return config.base_url or get_registration(key).factory.default_base_url


def supported_strategies() -> list[str]:
    return sorted(STRATEGY_REGISTRY)


def supported_strategies_for_exam(exam_type: ExamType) -> list[str]:
    return sorted(key for key, registration in STRATEGY_REGISTRY.items() if exam_type in registration.supported_exams)


register_strategy("doubao", DoubaoFeedbackStrategy, supported_exams=(ExamType.IELTS, ExamType.TOEFL, ExamType.GRE))
register_strategy("kimi", KimiFeedbackStrategy, supported_exams=(ExamType.IELTS, ExamType.TOEFL, ExamType.GRE))
register_strategy("tongyi", TongyiFeedbackStrategy, supported_exams=(ExamType.IELTS,))
