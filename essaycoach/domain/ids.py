from __future__ import annotations

import importlib

ulid_module = importlib.import_module("ulid")


def new_project_id() -> str:
    return f"prj_{ulid_module.new().str}"


def new_feedback_id() -> str:
    return f"fbk_{ulid_module.new().str}"


def new_example_essay_id() -> str:
    return f"exm_{ulid_module.new().str}"


def new_request_id() -> str:
    return f"req_{ulid_module.new().str}"


def new_run_id() -> str:
    return ulid_module.new().str
