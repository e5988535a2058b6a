"""Weights & Biases telemetry helpers."""

from __future__ import annotations

import json
import threading
from functools import lru_cache
from typing import Any, Dict

import wandb

from translation_rag.config import settings

_EVENT_INDEX = 0
_EVENT_LOCK = threading.Lock()


@lru_cache(maxsize=1)
def _get_run():
    if not settings.is_wandb_configured:
        return None
    run = wandb.init(
        project=settings.wandb_project,
        entity=settings.wandb_entity,
        name=settings.wandb_run_name,
        reinit=True,
        config={
            "embedding_model": settings.embedding_model,
            "default_alpha": settings.default_alpha,
            "max_results": settings.max_results,
        },
    )
    return run


def log_event(step: str, payload: Dict[str, Any] | None = None) -> None:
    run = _get_run()
    if run is None:
        return
    payload = payload or {}
    numeric_payload = {
        f"{step}/{key}": value
        for key, value in payload.items()
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    }
    text_payload = {
        f"{step}/text": json.dumps(payload, ensure_ascii=False, default=str)
    } if payload else {}

    global _EVENT_INDEX
    with _EVENT_LOCK:
        _EVENT_INDEX += 1
        wandb.log({**numeric_payload, **text_payload}, step=_EVENT_INDEX)
