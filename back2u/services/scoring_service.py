"""
Back2U — Match Scorer: semantic comparison of a source item against candidates

Two interchangeable implementations of the ``MatchScorer`` protocol:

- ``OracleMatchScorer`` delegates comparison to a chat-completions language
  model behind the AI gateway.  The model is forced to answer through the
  ``report_matches`` tool so the response can be parsed as structured data.
- ``HeuristicMatchScorer`` is a deterministic weighted sum of token overlap,
  location overlap and date proximity, for environments without a model
  provider.

Both return a list of ``{"item_id", "score", "reason"}`` dicts.  Neither
retries nor caches: every call re-scores from scratch.

Oracle output is interpreted leniently.  A response without a tool call,
or with arguments that cannot be parsed, is treated as zero matches.
Transport failures and non-2xx statuses are raised as
``ScoringUnavailableError`` (``RateLimitedError`` for HTTP 429).
"""

from __future__ import annotations

import json
import math
import re
from datetime import date
from typing import Any, Protocol, Sequence

import httpx
import structlog
from json_repair import repair_json

from back2u.config import get_settings
from back2u.services.errors import RateLimitedError, ScoringUnavailableError

logger = structlog.get_logger("back2u.scoring_service")

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

SYSTEM_PROMPT = (
    "You are an expert at matching lost and found items. "
    "Be thorough but only suggest strong matches."
)

REPORT_MATCHES_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": "report_matches",
        "description": "Report the matching items found",
        "parameters": {
            "type": "object",
            "properties": {
                "matches": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "item_id": {
                                "type": "string",
                                "description": "The ID of the matching item",
                            },
                            "score": {
                                "type": "number",
                                "description": "Match score from 0.0 to 1.0",
                            },
                            "reason": {
                                "type": "string",
                                "description": "Brief explanation of why this is a match",
                            },
                        },
                        "required": ["item_id", "score", "reason"],
                    },
                },
            },
            "required": ["matches"],
        },
    },
}

REPORT_MATCHES_TOOL_CHOICE: dict[str, Any] = {
    "type": "function",
    "function": {"name": "report_matches"},
}

_TOKEN_RE = re.compile(r"[a-z0-9]+")

# Filler words that carry no signal when comparing item descriptions
_STOPWORDS = {
    "a", "an", "the", "and", "or", "of", "in", "on", "at", "to", "with",
    "for", "near", "by", "is", "it", "my", "was", "i", "this", "that",
    "from", "has", "have", "some", "very",
}


def _value(obj: Any, name: str) -> Any:
    """Read ``name`` from an ORM object or a plain mapping."""
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _category(obj: Any) -> str:
    category = _value(obj, "category")
    return getattr(category, "value", category) or ""


class MatchScorer(Protocol):
    """Scores candidate items against a source item."""

    async def score(self, source: Any, candidates: Sequence[Any]) -> list[dict]:
        ...


# ══════════════════════════════════════════════════════════════════════════════
# Oracle scorer
# ══════════════════════════════════════════════════════════════════════════════


class OracleMatchScorer:
    """Scores candidates by asking the language model behind the AI gateway.

    An ``httpx.AsyncClient`` may be injected (the application shares one
    per process); otherwise a short-lived client is opened per call.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        settings = get_settings()
        self._http_client = http_client
        self._url: str = settings.AI_GATEWAY_URL
        self._api_key: str = settings.AI_GATEWAY_API_KEY
        self._model: str = settings.AI_MODEL
        self._timeout: float = settings.AI_REQUEST_TIMEOUT_SECONDS

        logger.info(
            "oracle_scorer_initialised",
            model=self._model,
            url=self._url,
            shared_client=http_client is not None,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def score(self, source: Any, candidates: Sequence[Any]) -> list[dict]:
        """Score ``candidates`` against ``source`` with one oracle request.

        Returns
        -------
        list[dict]
            ``{"item_id", "score", "reason"}`` entries restricted to the
            supplied candidate ids.  Empty when the oracle answered without
            usable structured output.

        Raises
        ------
        RateLimitedError
            The gateway answered HTTP 429.
        ScoringUnavailableError
            The gateway was unreachable or answered any other non-2xx.
        """
        if not candidates:
            return []

        log = logger.bind(
            source_item_id=str(_value(source, "id")),
            candidate_count=len(candidates),
        )

        body = self.build_request_body(source, candidates)
        payload = await self._post(body, log)

        candidate_ids = {str(_value(c, "id")) for c in candidates}
        matches = self.parse_response(payload, candidate_ids)

        log.info("oracle_scoring_complete", returned=len(matches))
        return matches

    # ── Request construction ──────────────────────────────────────────────

    def build_prompt(self, source: Any, candidates: Sequence[Any]) -> str:
        """Build the comparison prompt embedding the source item and the
        enumerated candidate list."""
        source_category = _category(source)
        opposite_category = _category(candidates[0]) if candidates else ""

        candidate_blocks = []
        for idx, item in enumerate(candidates, start=1):
            candidate_blocks.append(
                f"{idx}. ID: {_value(item, 'id')}\n"
                f"   Title: {_value(item, 'title')}\n"
                f"   Description: {_value(item, 'description')}\n"
                f"   Location: {_value(item, 'location')}\n"
                f"   Date: {_value(item, 'item_date')}\n"
            )

        return (
            "You are analyzing lost and found items to find potential matches.\n"
            "\n"
            f"Source item ({source_category}):\n"
            f"- Title: {_value(source, 'title')}\n"
            f"- Description: {_value(source, 'description')}\n"
            f"- Location: {_value(source, 'location')}\n"
            f"- Date: {_value(source, 'item_date')}\n"
            "\n"
            f"Potential matching items ({opposite_category}):\n"
            f"{chr(10).join(candidate_blocks)}\n"
            "Analyze each potential match and return matches with a score "
            "from 0.0 to 1.0 based on:\n"
            "- Title and description similarity (same type of item)\n"
            "- Location proximity (same or nearby location)\n"
            "- Date proximity (within reasonable timeframe)\n"
            "- Category matching (e.g., a lost wallet matching a found wallet)\n"
            "\n"
            "Only return items with score >= 0.5. Return fewer, higher quality "
            "matches rather than many low-quality ones."
        )

    def build_request_body(self, source: Any, candidates: Sequence[Any]) -> dict:
        return {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": self.build_prompt(source, candidates)},
            ],
            "tools": [REPORT_MATCHES_TOOL],
            "tool_choice": REPORT_MATCHES_TOOL_CHOICE,
        }

    # ── Transport ─────────────────────────────────────────────────────────

    async def _post(self, body: dict, log: Any) -> dict:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    self._url, json=body, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            log.error("oracle_unreachable", error=str(exc))
            raise ScoringUnavailableError(f"AI gateway unreachable: {exc}") from exc

        if response.status_code == 429:
            log.warning("oracle_rate_limited")
            raise RateLimitedError()

        if not response.is_success:
            log.error(
                "oracle_error_status",
                status=response.status_code,
                body_preview=response.text[:200],
            )
            raise ScoringUnavailableError(f"AI API error: {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            log.warning("oracle_body_not_json", body_preview=response.text[:200])
            return {}

        return payload if isinstance(payload, dict) else {}

    # ── Response parsing ──────────────────────────────────────────────────

    def parse_response(self, payload: dict, candidate_ids: set[str]) -> list[dict]:
        """Extract scored candidates from a chat-completions payload.

        Missing or malformed tool calls yield an empty list.  Entries for
        ids outside ``candidate_ids`` and entries without a numeric score
        are dropped, as are NaN and infinite scores; finite scores are
        clamped to [0.0, 1.0].
        """
        arguments = self._extract_tool_arguments(payload)
        if arguments is None:
            logger.info("oracle_no_tool_call")
            return []

        parsed = self._parse_arguments(arguments)
        if parsed is None:
            logger.warning(
                "oracle_malformed_output",
                arguments_preview=str(arguments)[:200],
            )
            return []

        raw_matches = parsed.get("matches")
        if not isinstance(raw_matches, list):
            logger.warning("oracle_matches_missing")
            return []

        matches: list[dict] = []
        dropped = 0
        for entry in raw_matches:
            if not isinstance(entry, dict):
                dropped += 1
                continue

            item_id = str(entry.get("item_id", ""))
            score = entry.get("score")
            if item_id not in candidate_ids:
                dropped += 1
                continue
            if isinstance(score, bool) or not isinstance(score, (int, float)):
                dropped += 1
                continue
            # json.loads accepts NaN and Infinity
            if isinstance(score, float) and not math.isfinite(score):
                dropped += 1
                continue

            reason = entry.get("reason")
            matches.append({
                "item_id": item_id,
                "score": float(min(1.0, max(0.0, score))),
                "reason": reason if isinstance(reason, str) else "",
            })

        if dropped:
            logger.warning("oracle_entries_dropped", dropped=dropped)

        return matches

    @staticmethod
    def _extract_tool_arguments(payload: dict) -> Any:
        try:
            tool_call = payload["choices"][0]["message"]["tool_calls"][0]
            return tool_call["function"]["arguments"]
        except (KeyError, IndexError, TypeError):
            return None

    @staticmethod
    def _parse_arguments(arguments: Any) -> dict | None:
        """Parse tool-call arguments into a dict, or ``None`` if impossible.

        Strategy 1 is a direct ``json.loads``; strategy 2 runs the text
        through ``json_repair`` to recover truncated or sloppy JSON.
        """
        if isinstance(arguments, dict):
            return arguments
        if not isinstance(arguments, str) or not arguments.strip():
            return None

        try:
            result = json.loads(arguments)
            if isinstance(result, dict):
                return result
        except (json.JSONDecodeError, TypeError):
            pass

        try:
            result = json.loads(repair_json(arguments))
        except (json.JSONDecodeError, TypeError, ValueError):
            return None

        if isinstance(result, dict):
            logger.info("tool_arguments_parsed_via_json_repair")
            return result
        return None


# ══════════════════════════════════════════════════════════════════════════════
# Heuristic scorer
# ══════════════════════════════════════════════════════════════════════════════


class HeuristicMatchScorer:
    """Deterministic scorer: token overlap, location overlap, date proximity.

    score = 0.6 * jaccard(title + description)
          + 0.25 * jaccard(location)
          + 0.15 * max(0, 1 - |date_a - date_b| / window_days)
    """

    TEXT_WEIGHT = 0.6
    LOCATION_WEIGHT = 0.25
    DATE_WEIGHT = 0.15

    def __init__(self, date_window_days: int | None = None) -> None:
        if date_window_days is None:
            date_window_days = get_settings().HEURISTIC_DATE_WINDOW_DAYS
        self.date_window_days = max(1, date_window_days)

    async def score(self, source: Any, candidates: Sequence[Any]) -> list[dict]:
        source_text = self._tokens(
            f"{_value(source, 'title')} {_value(source, 'description')}"
        )
        source_location = self._tokens(_value(source, "location"))
        source_date = _value(source, "item_date")

        results: list[dict] = []
        for item in candidates:
            text_sim = self._jaccard(
                source_text,
                self._tokens(f"{_value(item, 'title')} {_value(item, 'description')}"),
            )
            location_sim = self._jaccard(
                source_location, self._tokens(_value(item, "location"))
            )
            date_sim = self._date_proximity(source_date, _value(item, "item_date"))

            score = (
                self.TEXT_WEIGHT * text_sim
                + self.LOCATION_WEIGHT * location_sim
                + self.DATE_WEIGHT * date_sim
            )
            results.append({
                "item_id": str(_value(item, "id")),
                "score": round(score, 4),
                "reason": (
                    f"description overlap {text_sim:.2f}, "
                    f"location overlap {location_sim:.2f}, "
                    f"date proximity {date_sim:.2f}"
                ),
            })

        logger.info("heuristic_scoring_complete", candidate_count=len(results))
        return results

    @staticmethod
    def _tokens(text: Any) -> set[str]:
        if not text:
            return set()
        return {
            tok for tok in _TOKEN_RE.findall(str(text).lower())
            if tok not in _STOPWORDS
        }

    @staticmethod
    def _jaccard(a: set[str], b: set[str]) -> float:
        if not a or not b:
            return 0.0
        return len(a & b) / len(a | b)

    def _date_proximity(self, a: Any, b: Any) -> float:
        if not isinstance(a, date) or not isinstance(b, date):
            return 0.0
        delta_days = abs((a - b).days)
        return max(0.0, 1.0 - delta_days / self.date_window_days)


def build_scorer(http_client: httpx.AsyncClient | None = None) -> MatchScorer:
    """Return the scorer selected by ``MATCH_SCORER``."""
    if get_settings().MATCH_SCORER == "heuristic":
        return HeuristicMatchScorer()
    return OracleMatchScorer(http_client=http_client)
