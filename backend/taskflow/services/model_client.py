"""Thin wrapper around the OpenAI chat completions API."""
from __future__ import annotations

import logging
from typing import Optional

import openai

from taskflow.services.errors import ModelUnavailableError
from taskflow.services.plan_normalizer import PlannerConfig

logger = logging.getLogger(__name__)


def generate_text(prompt: str, config: Optional[PlannerConfig] = None) -> str:
    """Send one user prompt and return the raw assistant text.

    Raises ``ModelUnavailableError`` when no API key is configured; any
    transport or API error from the SDK propagates unchanged.
    """
    cfg = config or PlannerConfig.from_settings()
    if not cfg.api_key:
        raise ModelUnavailableError("OPENAI_API_KEY missing; generative model is unavailable.")

    client = openai.OpenAI(api_key=cfg.api_key, timeout=cfg.timeout_seconds, max_retries=0)
    completion = client.chat.completions.create(
        model=cfg.model,
        max_tokens=cfg.max_tokens,
        messages=[{"role": "user", "content": prompt}],
    )
    content = completion.choices[0].message.content if completion.choices else None
    logger.debug("Model returned %s characters", len(content or ""))
    return content or ""
