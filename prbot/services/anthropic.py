import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from prbot.core.config import (
    ANTHROPIC_API_URL,
    ANTHROPIC_MAX_TOKENS,
    ANTHROPIC_MODEL,
    ANTHROPIC_TIMEOUT_SEC,
    ANTHROPIC_VERSION,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(ANTHROPIC_TIMEOUT_SEC, connect=10.0)


class TextApiError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


def build_headers(api_key: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_VERSION,
    }


async def request_json(
    client: httpx.AsyncClient,
    url: str,
    headers: Dict[str, str],
    json_body: Dict[str, Any],
    retries: int = 2,
) -> Any:
    attempt = 0
    while True:
        response = await client.post(url, headers=headers, json=json_body)
        if response.status_code == 429 and attempt < retries:
            retry_after = response.headers.get("Retry-After")
            delay = 1.0
            if retry_after and retry_after.isdigit():
                delay = max(1.0, float(retry_after))
            await asyncio.sleep(delay)
            attempt += 1
            continue
        if response.status_code >= 500 and attempt < retries:
            await asyncio.sleep(0.5 * (attempt + 1))
            attempt += 1
            continue
        if response.status_code >= 400:
            detail = response.text.strip() or response.reason_phrase
            raise TextApiError(
                f"Anthropic API error {response.status_code}: {detail}",
                status_code=response.status_code,
            )
        return response.json()


def extract_text(payload: Dict[str, Any]) -> str:
    for block in payload.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            return str(block.get("text") or "").strip()
    raise TextApiError("Anthropic API response has no text content")


async def generate_text(
    prompt: str,
    api_key: str,
    model: str = ANTHROPIC_MODEL,
    max_tokens: int = ANTHROPIC_MAX_TOKENS,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    body = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": prompt}],
    }
    logger.info(f"calling Anthropic API ({model})")
    if client is not None:
        payload = await request_json(client, ANTHROPIC_API_URL, build_headers(api_key), body)
    else:
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as owned:
            payload = await request_json(owned, ANTHROPIC_API_URL, build_headers(api_key), body)
    logger.info("received response from Anthropic API")
    return extract_text(payload)
