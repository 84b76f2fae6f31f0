from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
import re

import yaml

from essaycoach.domain.models import ExamType, TaskType

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parents[1] / "prompts" / "catalog.v1.yaml"
PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_.-]+)\s*\}\}")

ESSAY_TASK_TYPES = ("ielts_task1", "ielts_task2", "toefl", "gre", "general")
FALLBACK_TASK_TYPE = "general"


@dataclass(frozen=True)
class PromptTemplate:
    system: str
    user_template: str
    max_tokens: int | None = None


@dataclass(frozen=True)
class PromptCatalog:
    catalog_version: str
    templates: dict[tuple[TaskType, str], PromptTemplate]

    def get(self, kind: TaskType, essay_task_type: str) -> PromptTemplate:
        template = self.templates.get((kind, essay_task_type))
        if template is None:
            template = self.templates.get((kind, FALLBACK_TASK_TYPE))
        if template is None:
            raise KeyError(f"no prompt template for {kind.value}/{essay_task_type}")
        return template


def load_prompt_catalog(*, file_path: str | Path = DEFAULT_CATALOG_PATH) -> PromptCatalog:
    data = yaml.safe_load(Path(file_path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("prompt catalog must be a YAML object")
    return parse_prompt_catalog(data)


def parse_prompt_catalog(data: dict[str, object]) -> PromptCatalog:
    catalog_version = _required_str(data, "catalog_version")
    prompts_raw = _required_obj(data, "prompts")

    templates: dict[tuple[TaskType, str], PromptTemplate] = {}
    for kind_key, by_task_type in prompts_raw.items():
        try:
            kind = TaskType(str(kind_key))
        except ValueError as exc:
            raise ValueError(f"prompts.{kind_key}: unknown prompt kind") from exc
        if not isinstance(by_task_type, dict):
            raise ValueError(f"prompts.{kind_key} must be an object")
        for task_type, template_raw in by_task_type.items():
            if task_type not in ESSAY_TASK_TYPES:
                raise ValueError(f"prompts.{kind_key}.{task_type}: unknown essay task type")
            if not isinstance(template_raw, dict):
                raise ValueError(f"prompts.{kind_key}.{task_type} must be an object")
            templates[(kind, task_type)] = PromptTemplate(
                system=_required_str(template_raw, "system"),
                user_template=_required_str(template_raw, "user_template"),
                max_tokens=_optional_int(template_raw, "max_tokens"),
            )

    for kind in TaskType:
        if (kind, FALLBACK_TASK_TYPE) not in templates:
            raise ValueError(f"prompts.{kind.value}.{FALLBACK_TASK_TYPE} is required")

    return PromptCatalog(catalog_version=catalog_version, templates=templates)


def resolve_essay_task_type(exam_type: ExamType | str, essay_category: str | None) -> str:
    exam = str(exam_type).lower()
    category = (essay_category or "").lower().replace(" ", "")
    if exam == ExamType.IELTS:
        if category in ("task1", "1", "ielts_task1", "academic_task1"):
            return "ielts_task1"
        return "ielts_task2"
    if exam == ExamType.TOEFL:
        return "toefl"
    if exam == ExamType.GRE:
        return "gre"
    return FALLBACK_TASK_TYPE


def render_prompt(*, template: str, inputs: dict[str, object]) -> str:
    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        value = _lookup_dot_path(inputs, key)
        if value is None:
            raise ValueError(f"missing placeholder value: {key}")
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, ensure_ascii=False)
        return str(value)

    return PLACEHOLDER_RE.sub(_replace, template)


def _lookup_dot_path(data: dict[str, object], path: str) -> object | None:
    current: object = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _required_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string")
    return value


def _optional_int(data: dict[str, object], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{key} must be an integer")
    return value


def _required_obj(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be an object")
    return value
