from __future__ import annotations

from essaycoach.api.handlers.deps import ApiDeps
from essaycoach.api.schemas import ListVendorsResponse, MaxConcurrentTasksResponse, VendorInfo
from essaycoach.strategies.registry import STRATEGY_REGISTRY

COMPONENT_ID = "api.settings"


async def get_max_concurrent_tasks_handler(*, api_deps: ApiDeps) -> MaxConcurrentTasksResponse:
    value = await api_deps.general_settings.get_max_concurrent_tasks()
    return MaxConcurrentTasksResponse(max_concurrent_tasks=value)


async def update_max_concurrent_tasks_handler(*, value: int, api_deps: ApiDeps) -> MaxConcurrentTasksResponse:
    stored = await api_deps.general_settings.set_max_concurrent_tasks(value)
    return MaxConcurrentTasksResponse(max_concurrent_tasks=stored)


async def list_vendors_handler(*, api_deps: ApiDeps) -> ListVendorsResponse:
    items = [
        VendorInfo(
            key=key,
            supported_exams=sorted(exam.value for exam in registration.supported_exams),
            active=key == api_deps.vendor_key,
        )
        for key, registration in sorted(STRATEGY_REGISTRY.items())
    ]
    return ListVendorsResponse(items=items, active=api_deps.vendor_key)
