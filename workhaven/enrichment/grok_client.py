"""
Grok Enrichment Client
Estimates WiFi, noise, outlets and a short tip for discovered spots using the
xAI chat completions API.

A batch of up to ten candidates is sent as one prompt; the model answers with a
JSON array that is matched back to the candidates by name. Any failure for a
batch degrades every candidate in it to the default enrichment.
"""
import asyncio
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from workhaven.config import settings
from workhaven.models.spots import (
    DEFAULT_NOISE_RATING,
    DEFAULT_TIP,
    DEFAULT_WIFI_RATING,
    NOISE_LEVELS,
    Candidate,
    EnrichmentResult,
)

logger = logging.getLogger(__name__)

BATCH_SIZE = 10
MAX_CONCURRENT_BATCHES = 2
MAX_TOKENS = 500
TEMPERATURE = 0.3

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")

ProgressCallback = Callable[[str], None]


class EnrichmentError(Exception):
    """Base class for enrichment failures."""


class ApiError(EnrichmentError):
    """The API answered with a non-200 status."""

    def __init__(self, status: int, body: str):
        super().__init__(f"API error {status}: {body}")
        self.status = status
        self.body = body


class NetworkError(EnrichmentError):
    """The request never produced a response."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Network error: {cause}")
        self.cause = cause


class DecodingError(EnrichmentError):
    """The response (or its inner content) was not the expected JSON."""

    def __init__(self, cause: Any):
        super().__init__(f"Decoding error: {cause}")
        self.cause = cause


class EncodingError(EnrichmentError):
    """The request body could not be serialized."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Encoding error: {cause}")
        self.cause = cause


def build_prompt(candidates: Sequence[Candidate]) -> str:
    descriptions = ", ".join(candidate.description for candidate in candidates)
    return (
        f"For these locations: {descriptions}, estimate WiFi rating (1-5 stars), "
        "noise level (Low/Medium/High), plugs (Yes/No), and a short tip for each.\n\n"
        "IMPORTANT: Respond ONLY with a valid JSON array in this exact format:\n"
        '[{"name": "Exact Location Name", "wifi": 4, "noise": "Medium", "plugs": true, '
        '"tip": "Great coffee and atmosphere"}]\n\n'
        "Ensure each location name matches exactly with the input. "
        'Use only "Low", "Medium", or "High" for noise levels.'
    )


def parse_entries(content: str) -> List[Dict[str, Any]]:
    """Parse the model's answer into a list of entry dicts."""
    text = _FENCE_RE.sub("", (content or "").strip())
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise DecodingError(exc) from exc
    if not isinstance(data, list):
        raise DecodingError(f"expected a JSON array, got {type(data).__name__}")
    return [entry for entry in data if isinstance(entry, dict)]


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("yes", "true", "y", "1")
    return bool(value)


def _coerce_entry(entry: Dict[str, Any]) -> EnrichmentResult:
    try:
        wifi = int(entry.get("wifi", DEFAULT_WIFI_RATING))
    except (TypeError, ValueError, OverflowError):
        wifi = DEFAULT_WIFI_RATING
    noise = str(entry.get("noise") or "").strip() or DEFAULT_NOISE_RATING
    # Canonical casing for the known levels, anything else is kept verbatim
    noise = next((level for level in NOISE_LEVELS if level.lower() == noise.lower()), noise)
    tip = str(entry.get("tip") or "").strip() or DEFAULT_TIP
    return EnrichmentResult(wifi=wifi, noise=noise, plugs=_coerce_bool(entry.get("plugs")), tip=tip)


def _find_entry(name: str, entries: Sequence[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    wanted = name.strip().lower()
    if not wanted:
        return None

    for entry in entries:
        if str(entry.get("name") or "").strip().lower() == wanted:
            return entry

    # The model often echoes "<name> at <address>" back instead of the bare name
    for entry in entries:
        returned = str(entry.get("name") or "").strip().lower()
        if not returned:
            continue
        head = returned.split(" at ")[0].strip()
        if wanted in returned or (head and head in wanted):
            return entry
    return None


def match_results(
    candidates: Sequence[Candidate], entries: Sequence[Dict[str, Any]]
) -> List[EnrichmentResult]:
    """Pair every candidate with its entry, defaulting the unmatched ones."""
    results: List[EnrichmentResult] = []
    for candidate in candidates:
        entry = _find_entry(candidate.name, entries)
        if entry is None:
            logger.warning(f"No enrichment found for {candidate.name}, using defaults")
            results.append(EnrichmentResult.default())
            continue
        results.append(_coerce_entry(entry))
    return results


class GrokEnrichmentClient:
    """Client for the xAI chat completions endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.grok_api_key
        self.api_url = api_url or settings.grok_api_url
        self.model = model or settings.grok_model
        self.timeout = timeout if timeout is not None else settings.grok_timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def _build_payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
        }

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            body = json.dumps(payload).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncodingError(exc) from exc

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.api_url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            raise NetworkError(exc) from exc

        if response.status_code != 200:
            raise ApiError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as exc:
            raise DecodingError(exc) from exc
        if not isinstance(data, dict):
            raise DecodingError("response body is not a JSON object")
        return data

    @staticmethod
    def _extract_content(data: Dict[str, Any]) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise DecodingError(exc) from exc
        if not isinstance(content, str):
            raise DecodingError("message content is not a string")
        return content

    async def enrich(self, batch: Sequence[Candidate]) -> List[EnrichmentResult]:
        """
        Enrich one batch with a single API call.

        Args:
            batch: Up to ``BATCH_SIZE`` candidates

        Returns:
            One result per candidate, in input order

        Raises:
            ApiError, NetworkError, DecodingError, EncodingError
        """
        if not batch:
            return []
        if len(batch) > BATCH_SIZE:
            raise ValueError(f"batch holds {len(batch)} candidates, max is {BATCH_SIZE}")

        data = await self._post(self._build_payload(build_prompt(batch)))
        content = self._extract_content(data)
        logger.debug(f"Grok API response: {content}")

        entries = parse_entries(content)
        logger.info(f"Parsed {len(entries)} enriched spots for a batch of {len(batch)}")
        return match_results(batch, entries)

    async def enrich_all(
        self,
        candidates: Sequence[Candidate],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[EnrichmentResult]:
        """
        Enrich any number of candidates in batches, at most two in flight.

        Failed batches fall back to defaults and are not retried. Results are
        returned in input order once every batch has finished.
        """
        if not candidates:
            return []
        if not self.is_configured:
            logger.warning("GROK_API_KEY not configured, using default enrichment")
            return [EnrichmentResult.default() for _ in candidates]

        batches = [
            list(candidates[start:start + BATCH_SIZE])
            for start in range(0, len(candidates), BATCH_SIZE)
        ]
        semaphore = asyncio.Semaphore(MAX_CONCURRENT_BATCHES)

        async def run_batch(index: int, batch: List[Candidate]) -> List[EnrichmentResult]:
            async with semaphore:
                if on_progress:
                    on_progress(f"Enriching batch {index + 1}/{len(batches)}...")
                try:
                    return await self.enrich(batch)
                except EnrichmentError as exc:
                    logger.error(f"Failed to enrich batch {index + 1}: {exc}")
                    return [EnrichmentResult.default() for _ in batch]
                except Exception as exc:
                    logger.exception(f"Unexpected error enriching batch {index + 1}: {exc}")
                    return [EnrichmentResult.default() for _ in batch]

        batch_results = await asyncio.gather(
            *(run_batch(index, batch) for index, batch in enumerate(batches))
        )
        return [result for results in batch_results for result in results]
