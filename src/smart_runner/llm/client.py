# src/smart_runner/llm/client.py

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterable
from typing import Any

import httpx
import openai
from openai import OpenAI

from ..config import Settings, get_settings
from ..core.ports import ChatMessage
from ..errors import LLMNotConfiguredError

logger = logging.getLogger(__name__)

_BAD_MODELS: dict[str, float] = {}  # model -> retry_at (monotonic)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    s = raw.strip()
    if not s:
        return default
    try:
        return float(s)
    except ValueError:
        return default


def _timeouts_from_env() -> dict[str, float]:
    """
    Timeouts for the commit-message round trip.

    - connect timeout: 5s
    - read timeout: 60s (no data from server)
    - first token timeout: 30s (no content tokens)
    """
    first_token = _env_float("SMART_RUNNER_LLM_FIRST_TOKEN_TIMEOUT_SECONDS", 30.0)
    read_timeout = _env_float("SMART_RUNNER_LLM_READ_TIMEOUT_SECONDS", 60.0)
    connect_timeout = _env_float("SMART_RUNNER_LLM_CONNECT_TIMEOUT_SECONDS", 5.0)

    read_timeout = max(read_timeout, first_token)

    return {
        "first_token": first_token,
        "read": read_timeout,
        "connect": connect_timeout,
    }


def _is_auth_error(exc: Exception) -> bool:
    return isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError))


def _is_rate_limit_error(exc: Exception) -> bool:
    return isinstance(exc, openai.RateLimitError)


def _is_connection_error(exc: Exception) -> bool:
    return isinstance(exc, (openai.APIConnectionError, httpx.TimeoutException))


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


def _make_timeout_obj(connect_s: float, read_s: float) -> httpx.Timeout:
    return httpx.Timeout(
        connect=connect_s,
        read=read_s,
        write=10.0,
        pool=connect_s,
    )


def friendly_llm_error_message(err: Exception) -> str:
    if isinstance(err, LLMNotConfiguredError):
        return f"LLM is not configured: {err}"
    return str(err).strip() or "LLM error."


def _close_stream(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if callable(close):
        try:
            close()
        except httpx.HTTPError:
            logger.debug("LLM: closing stream failed", exc_info=True)


class OpenAILLMClient:
    """
    OpenAI-compatible streaming client (OpenRouter by default).

    Tries the configured models in order and falls through on 404, rate
    limits, network errors and first-token timeouts. Auth errors fail fast.
    Blocking: call it off the event loop (asyncio.to_thread).
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()

        if not settings.llm_api_key or not str(settings.llm_api_key).strip():
            raise LLMNotConfiguredError("API key is not set (SMART_RUNNER_LLM_API_KEY)")
        if not settings.llm_base_url.strip():
            raise LLMNotConfiguredError("base URL is not set (SMART_RUNNER_LLM_BASE_URL)")
        if not settings.llm_models:
            raise LLMNotConfiguredError("model list is empty (SMART_RUNNER_LLM_MODELS)")

        self._models = [m.strip() for m in settings.llm_models if m and m.strip()]
        self._headers = dict(settings.llm_extra_headers)
        self._timeouts = _timeouts_from_env()
        self._client = OpenAI(
            base_url=settings.llm_base_url,
            api_key=str(settings.llm_api_key),
            timeout=_make_timeout_obj(self._timeouts["connect"], self._timeouts["read"]),
            # No automatic retries: falling back to the next model is faster.
            max_retries=0,
        )

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        first_token_timeout = float(self._timeouts["first_token"])
        last_error: Exception | None = None
        now = time.monotonic()

        for model in self._models:
            retry_at = _BAD_MODELS.get(model)
            if retry_at is not None and retry_at > now:
                continue

            logger.info("LLM: trying model=%s (first_token_timeout=%.1fs)", model, first_token_timeout)
            t0 = time.monotonic()
            deadline = t0 + first_token_timeout

            stream = None
            used_any = False

            try:
                stream = self._client.chat.completions.create(
                    model=model,
                    stream=True,
                    extra_headers=self._headers or None,
                    messages=[{"role": "system", "content": system_prompt}, *messages],
                )

                for chunk in stream:
                    if not used_any and time.monotonic() > deadline:
                        last_error = TimeoutError(f"First token timeout on model: {model}")
                        logger.info("LLM: first token timeout on model=%s -> trying next", model)
                        break

                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta
                    content = delta.content if delta is not None else None

                    if content:
                        if not used_any:
                            logger.info("LLM: first token from model=%s (%.2fs)", model, time.monotonic() - t0)
                        used_any = True
                        yield content

                if used_any:
                    logger.debug("LLM: completed with model=%s", model)
                    return

                if last_error is None:
                    last_error = RuntimeError(f"Model returned no content: {model}")

            except openai.OpenAIError as e:
                last_error = e

                if _is_auth_error(e):
                    raise RuntimeError("LLM authentication failed. Check SMART_RUNNER_LLM_API_KEY.") from e

                if _is_not_found_error(e):
                    _BAD_MODELS[model] = time.monotonic() + 3600.0
                    logger.info("LLM: model not available (404): %s", model)
                    continue

                if _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                    continue

                if _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                    continue

                logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

            finally:
                if stream is not None:
                    _close_stream(stream)

        if last_error is not None:
            if _is_rate_limit_error(last_error):
                raise RuntimeError("LLM is rate-limited. Try again later.") from last_error
            if _is_connection_error(last_error):
                raise RuntimeError("LLM network/timeout error. Try again later or change models.") from last_error
            raise RuntimeError("All LLM models failed.") from last_error

        raise RuntimeError("All LLM models failed.")
