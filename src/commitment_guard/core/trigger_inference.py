"""
Trigger inference from plain-language commitments.

The language model is an external collaborator: given commitment text it
returns a list of trigger specs. Its output is untrusted and goes through
sanitize_triggers() like any other input. Results are memoized in a cache the
caller owns, so tests and multiple episodes in one process stay isolated.
"""
from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from commitment_guard.errors import TriggerInferenceError

from .triggers import Trigger, sanitize_triggers

logger = logging.getLogger(__name__)

INFERENCE_SYSTEM_PROMPT = (
    "Extract price-trigger specifications from a plain-language commitment. "
    'Return strict JSON with shape {"triggers":[...]}. Each trigger must include: '
    "id, label, baseToken, quoteToken, comparator (gte|lte), threshold (number), "
    "priority (number), and optional pool (address). If pool is omitted, "
    "high-liquidity routing will be used. Use only information present in the "
    "commitment text and do not invent token addresses."
)


@dataclass
class TriggerInferenceCache:
    """Memo of inferred triggers keyed by commitment text digest."""

    entries: dict[str, list[Trigger]] = field(default_factory=dict)

    @staticmethod
    def key_for(commitment_text: str) -> str:
        return hashlib.sha256(commitment_text.encode()).hexdigest()

    def get(self, commitment_text: str) -> Optional[list[Trigger]]:
        return self.entries.get(self.key_for(commitment_text))

    def put(self, commitment_text: str, triggers: list[Trigger]) -> None:
        self.entries[self.key_for(commitment_text)] = list(triggers)

    def clear(self) -> None:
        self.entries.clear()


def extract_first_text(response_json: Any) -> str:
    """Pull the first text chunk out of a Responses API payload."""
    outputs = response_json.get("output") if isinstance(response_json, dict) else None
    if not isinstance(outputs, list):
        return ""

    for item in outputs:
        content = item.get("content") if isinstance(item, dict) else None
        if not content:
            continue
        for chunk in content:
            if not isinstance(chunk, dict):
                continue
            text = chunk.get("text")
            if isinstance(text, str) and text:
                return text
            if isinstance(text, dict) and text.get("value"):
                return text["value"]
            output_text = chunk.get("output_text")
            if isinstance(output_text, dict):
                return output_text.get("text") or ""
    return ""


class TriggerInferenceClient:
    """
    Client for the trigger inference collaborator (OpenAI Responses API).

    Usage:
        client = TriggerInferenceClient(api_key, model="gpt-4.1-mini")
        triggers = await client.infer(commitment_text)
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4.1-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        cache: Optional[TriggerInferenceCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._cache = cache if cache is not None else TriggerInferenceCache()
        self._http_client = http_client

    @property
    def cache(self) -> TriggerInferenceCache:
        return self._cache

    def _payload(self, commitment_text: str) -> dict:
        return {
            "model": self._model,
            "input": [
                {"role": "system", "content": INFERENCE_SYSTEM_PROMPT},
                {"role": "user", "content": commitment_text},
            ],
            "text": {"format": {"type": "json_object"}},
        }

    async def _post(self, payload: dict) -> Any:
        url = f"{self._base_url}/responses"
        headers = {"Authorization": f"Bearer {self._api_key}"}

        if self._http_client is not None:
            resp = await self._http_client.post(url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=payload, headers=headers)

        if resp.status_code >= 400:
            raise TriggerInferenceError(
                f"Inference API error: {resp.status_code} {resp.text}"
            )
        return resp.json()

    async def infer(self, commitment_text: str) -> list[Trigger]:
        """
        Infer and sanitize triggers for a commitment.

        Raises:
            TriggerInferenceError: On transport, HTTP or JSON failure
        """
        if not commitment_text:
            return []

        cached = self._cache.get(commitment_text)
        if cached is not None:
            return list(cached)

        try:
            response_json = await self._post(self._payload(commitment_text))
        except httpx.HTTPError as e:
            raise TriggerInferenceError(f"Inference request failed: {e}") from e
        except ValueError as e:
            raise TriggerInferenceError(f"Inference response is not JSON: {e}") from e

        raw = extract_first_text(response_json)
        if not raw:
            logger.warning("Trigger inference returned no text; no triggers inferred")
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise TriggerInferenceError(f"Failed to parse inferred trigger JSON: {raw}") from e

        raw_triggers = parsed.get("triggers") if isinstance(parsed, dict) else None
        if not isinstance(raw_triggers, list):
            raw_triggers = []

        triggers = sanitize_triggers(raw_triggers, default_priority=None)
        self._cache.put(commitment_text, triggers)
        logger.info(f"Inferred {len(triggers)} price trigger(s) from commitment")
        return triggers
