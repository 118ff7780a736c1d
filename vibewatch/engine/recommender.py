"""AI recommender adapter.

Asks the LLM for TMDB ids as JSON and treats every answer as untrusted:
payloads are shape-checked and every id is resolved against the catalog
before it can reach a round or a completed session.
"""

import logging
from typing import Any, Protocol

from vibewatch.config import Settings, get_settings
from vibewatch.lib.catalog import MovieCatalog
from vibewatch.lib.exceptions import LLMResponseParseError, RecommenderPayloadError
from vibewatch.lib.llm import LLMClient
from vibewatch.lib.models import (
    FinalResolution,
    Recommendation,
    RoundHistory,
    VoteValue,
)

logger = logging.getLogger(__name__)


class Recommender(Protocol):
    """Operations the round advancement controller consumes."""

    async def next_round_candidates(
        self,
        vibe_text: str,
        history: list[RoundHistory],
        exclude_ids: list[int],
        watchlist_ids: list[int],
    ) -> list[int]: ...

    async def solo_pick(
        self,
        vibe_text: str,
        history: list[RoundHistory],
        exclude_ids: list[int],
        watchlist_ids: list[int],
    ) -> Recommendation: ...

    async def final_resolution(
        self,
        vibe_text: str,
        history: list[RoundHistory],
        watchlist_ids: list[int],
    ) -> FinalResolution: ...


# =============================================================================
# Payload Parsing
# =============================================================================


def _movie_id(value: Any) -> int:
    if isinstance(value, bool):
        raise RecommenderPayloadError(f"Not a movie id: {value!r}")
    if isinstance(value, int) and value > 0:
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise RecommenderPayloadError(f"Not a movie id: {value!r}")


def parse_recommendation(item: Any) -> Recommendation:
    """Parse ``{"tmdb_id", "title", "reason"}``."""
    if not isinstance(item, dict):
        raise RecommenderPayloadError("Recommendation must be an object")
    return Recommendation(
        movie_id=_movie_id(item.get("tmdb_id")),
        title=str(item.get("title") or ""),
        reason=str(item.get("reason") or ""),
    )


def parse_candidate_ids(
    data: dict[str, Any], exclude_ids: list[int], count: int
) -> list[int]:
    """
    Parse a next-round payload into exactly ``count`` fresh movie ids.

    Raises:
        RecommenderPayloadError: On any shape, duplicate or reshown-id problem
    """
    movies = data.get("movies")
    if not isinstance(movies, list):
        raise RecommenderPayloadError("Payload has no 'movies' list")

    ids = [parse_recommendation(m).movie_id for m in movies]
    if len(ids) != count:
        raise RecommenderPayloadError(f"Expected {count} movies, got {len(ids)}")
    if len(set(ids)) != len(ids):
        raise RecommenderPayloadError("Duplicate movies in payload")

    reshown = [m for m in ids if m in set(exclude_ids)]
    if reshown:
        raise RecommenderPayloadError(f"Movies already shown: {reshown}")
    return ids


def parse_final_resolution(data: dict[str, Any]) -> FinalResolution:
    """Parse a forced-resolution payload, dropping repeated alternates."""
    top_pick = parse_recommendation(data.get("topPick"))

    alternates: list[Recommendation] = []
    raw_alternates = data.get("alternates") or []
    if not isinstance(raw_alternates, list):
        raise RecommenderPayloadError("'alternates' must be a list")
    for item in raw_alternates:
        alternate = parse_recommendation(item)
        seen = {top_pick.movie_id} | {a.movie_id for a in alternates}
        if alternate.movie_id not in seen:
            alternates.append(alternate)

    return FinalResolution(
        top_pick=top_pick,
        alternates=alternates,
        explanation=str(data.get("explanation") or ""),
    )


# =============================================================================
# Prompts
# =============================================================================


def format_history(history: list[RoundHistory]) -> str:
    lines = []
    for r in history:
        yes = [v.movie_id for v in r.votes if v.value == VoteValue.YES]
        no = [
            f"{v.movie_id} ({v.reason})" if v.reason else str(v.movie_id)
            for v in r.votes
            if v.value == VoteValue.NO
        ]
        lines.append(
            f"Round {r.round_number}: shown {r.movie_ids}; "
            f"yes on {yes or 'none'}; no on {', '.join(no) or 'none'}"
        )
    return "\n".join(lines) or "No rounds yet"


ROUND_SYSTEM = (
    "You are a movie recommendation assistant for a group choosing what to watch. "
    "Return only valid JSON with real TMDB movie ids."
)

FINAL_SYSTEM = (
    "You are a fair movie recommendation assistant. Recommend movies that "
    "minimize objections while respecting group preferences. Return only valid "
    "JSON with tmdb_id, title, reason, and explanation fields."
)


# =============================================================================
# LLM Recommender
# =============================================================================


class LLMRecommender:
    """Recommender backed by an LLM and validated against the movie catalog."""

    def __init__(
        self,
        llm_client: LLMClient,
        catalog: MovieCatalog,
        settings: Settings | None = None,
    ):
        self.llm_client = llm_client
        self.catalog = catalog
        self.settings = settings or get_settings()

    async def _request(self, system: str, prompt: str, temperature: float) -> dict[str, Any]:
        return await self.llm_client.complete_json(
            model=self.settings.recommender_model,
            system=system,
            prompt=prompt,
            temperature=temperature,
        )

    async def _check_resolvable(self, movie_ids: list[int]) -> None:
        for movie_id in movie_ids:
            if await self.catalog.resolve(movie_id) is None:
                raise RecommenderPayloadError(f"Unknown movie id: {movie_id}")

    async def _attempt(self, operation: str, run: Any) -> Any:
        """Run ``run`` until it yields a valid payload or attempts run out."""
        attempts = max(1, self.settings.recommender_attempts)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await run()
            except (RecommenderPayloadError, LLMResponseParseError) as e:
                last_error = e
                logger.warning(
                    f"Rejected {operation} payload (attempt {attempt}/{attempts}): {e.message}"
                )

        raise RecommenderPayloadError(
            f"Recommender returned no usable {operation} after {attempts} attempts: "
            f"{last_error}",
            raw_response=getattr(last_error, "raw_response", None),
        )

    async def next_round_candidates(
        self,
        vibe_text: str,
        history: list[RoundHistory],
        exclude_ids: list[int],
        watchlist_ids: list[int],
    ) -> list[int]:
        count = self.settings.candidates_per_round
        prompt = f"""A group is choosing a movie together.

Vibe: "{vibe_text}"

Voting so far:
{format_history(history)}

Movies already shown (never repeat these): {exclude_ids}
Group watch-list (optional pool): {watchlist_ids or 'empty'}

Suggest exactly {count} different movies that fit the vibe and avoid what the
group rejected.

Return ONLY a JSON object:
{{"movies": [{{"tmdb_id": 123, "title": "Movie Title", "reason": "..."}}]}}"""

        async def run() -> list[int]:
            data = await self._request(ROUND_SYSTEM, prompt, temperature=0.7)
            ids = parse_candidate_ids(data, exclude_ids, count)
            await self._check_resolvable(ids)
            return ids

        return await self._attempt("round candidates", run)

    async def solo_pick(
        self,
        vibe_text: str,
        history: list[RoundHistory],
        exclude_ids: list[int],
        watchlist_ids: list[int],
    ) -> Recommendation:
        prompt = f"""Someone is choosing a movie to watch alone.

Vibe: "{vibe_text}"

How they voted:
{format_history(history)}

Pick ONE movie they have not been shown yet that matches what they liked.
Do not pick any of: {exclude_ids}
Their watch-list (optional pool): {watchlist_ids or 'empty'}

Return ONLY a JSON object:
{{"pick": {{"tmdb_id": 123, "title": "Movie Title", "reason": "..."}}}}"""

        async def run() -> Recommendation:
            data = await self._request(ROUND_SYSTEM, prompt, temperature=0.5)
            pick = parse_recommendation(data.get("pick"))
            if pick.movie_id in exclude_ids:
                raise RecommenderPayloadError(f"Movie already shown: {pick.movie_id}")
            await self._check_resolvable([pick.movie_id])
            return pick

        return await self._attempt("solo pick", run)

    async def final_resolution(
        self,
        vibe_text: str,
        history: list[RoundHistory],
        watchlist_ids: list[int],
    ) -> FinalResolution:
        alternates_count = self.settings.alternates_count
        prompt = f"""You are helping a group of friends choose a movie. They've gone through {len(history)} voting rounds without consensus.

Initial vibe: "{vibe_text}"

Voting history:
{format_history(history)}

Available watchlist movies: {watchlist_ids or 'none'}

Recommend 1 top pick and {alternates_count} alternates. Movies from the
watchlist are preferred, but others are fine if they fit better.

Return ONLY a JSON object:
{{
  "topPick": {{"tmdb_id": 123, "title": "Movie Title", "reason": "..."}},
  "alternates": [{{"tmdb_id": 456, "title": "Movie 2", "reason": "..."}}],
  "explanation": "Why these picks are fair to the group"
}}"""

        async def run() -> FinalResolution:
            data = await self._request(FINAL_SYSTEM, prompt, temperature=0.7)
            resolution = parse_final_resolution(data)
            await self._check_resolvable([resolution.top_pick.movie_id])

            valid = []
            for alternate in resolution.alternates:
                if await self.catalog.resolve(alternate.movie_id) is not None:
                    valid.append(alternate)
                else:
                    logger.warning(f"Dropping unknown alternate {alternate.movie_id}")
            resolution.alternates = valid[:alternates_count]
            return resolution

        return await self._attempt("final resolution", run)
