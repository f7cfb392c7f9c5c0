"""Discussion orchestration: sequential persona turns, synthesis, voting, final report."""

import asyncio
import copy
import logging
import time
from collections.abc import Awaitable, Callable

from config.config_loader import PromptsConfig, VoteKeywords
from src.announce import Announce, emit
from src.cancellation import DiscussionCancelled
from src.errors import ConfigurationError
from src.models import (
    Ballot,
    ConversationSettings,
    DiscussionResult,
    DiscussionState,
    IterationRecord,
    Turn,
)
from src.personas import SYNTHESIZER_ID, PersonaRegistry, validate_overrides
from src.prompts import (
    append_turn,
    build_final_prompt,
    build_summary_prompt,
    build_turn_prompt,
    build_vote_prompt,
    is_accept_vote,
    is_accepted,
    tally_votes,
    vote_keywords_for,
)
from src.providers.base import ProviderError
from src.requester import RequestFailedError, ResilientRequester

logger = logging.getLogger(__name__)

_TOPIC_PREVIEW_LEN = 50


def _preview(topic: str) -> str:
    return topic if len(topic) <= _TOPIC_PREVIEW_LEN else topic[:_TOPIC_PREVIEW_LEN] + "..."


class DiscussionOrchestrator:
    """Runs one discussion at a time for a single conversation.

    Idle -> Iterating -> Voting -> (Iterating | Finalizing) -> Idle. A stop
    request is honoured at the next checkpoint; the partial iteration is
    discarded.
    """

    def __init__(
        self,
        requester: ResilientRequester,
        registry: PersonaRegistry,
        announce: Announce,
        prompts: PromptsConfig | None = None,
        vote_keywords: dict[str, VoteKeywords] | None = None,
        turn_delay_sec: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._requester = requester
        self._registry = registry
        self._announce = announce
        self._prompts = prompts or PromptsConfig()
        self._vote_keywords = vote_keywords or {}
        self._turn_delay_sec = turn_delay_sec
        self._sleep = sleep
        self._state: DiscussionState | None = None
        self._busy = False

    @property
    def state(self) -> DiscussionState | None:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is not None and self._state.is_running

    @property
    def is_busy(self) -> bool:
        """True until the current run has returned, including after stop() was requested."""
        return self._busy

    def stop(self) -> bool:
        """Request a cooperative stop. Returns False when nothing is running."""
        if not self.is_running:
            return False
        self._state.is_running = False
        self._state.token.cancel()
        logger.info("Stop requested for discussion '%s'", _preview(self._state.topic))
        return True

    def validate(self, settings: ConversationSettings) -> None:
        """Reject settings that cannot support a run, before any remote call."""
        if settings.iteration_count < 1:
            raise ConfigurationError(f"Iteration count must be at least 1, got {settings.iteration_count}")
        validate_overrides(settings.temperature, settings.max_tokens)
        self._requester.resolve_model(settings.model)
        for persona_id in settings.enabled_persona_order:
            if persona_id == SYNTHESIZER_ID:
                raise ConfigurationError("The synthesizer cannot take part in the discussion")
            self._registry.resolve(persona_id, settings)
        self._registry.resolve(SYNTHESIZER_ID, settings)

    async def start_collaboration(
        self,
        topic: str,
        settings: ConversationSettings,
        attached_context: str | None = None,
    ) -> DiscussionResult | None:
        """Run a full discussion on topic.

        Returns None when the run is rejected before it starts (already running or
        still stopping, no personas, invalid settings); otherwise a DiscussionResult
        whose status is completed, no_consensus, stopped or failed.
        """
        if self.is_running:
            await emit(self._announce, "A discussion is already running. Stop or reset it before starting a new one.")
            return None
        if self._busy:
            await emit(self._announce, "The previous discussion is still stopping. Try again in a moment.")
            return None

        topic = topic.strip()
        if not topic:
            await emit(self._announce, "Please provide a topic to discuss.")
            return None

        if not settings.enabled_persona_order:
            await emit(self._announce, "Enable at least one persona before starting a discussion.")
            return None

        # Later edits to the caller's settings do not affect a run in progress.
        snapshot = copy.deepcopy(settings)
        try:
            self.validate(snapshot)
        except ConfigurationError as exc:
            await emit(self._announce, f"Cannot start the discussion: {exc}")
            return None

        state = DiscussionState(topic=topic)
        self._state = state
        self._busy = True
        start = time.monotonic()
        result = DiscussionResult(
            topic=topic,
            status="failed",
            language=snapshot.language,
            model=snapshot.model,
        )

        logger.info(
            "Starting discussion '%s': %d iterations, personas=%s",
            _preview(topic), snapshot.iteration_count, snapshot.enabled_persona_order,
        )
        try:
            await emit(self._announce, f'Starting a discussion on: "{_preview(topic)}"')
            await self._run_discussion_loop(state, snapshot, attached_context)
            report = await self._finalize(state, snapshot)
            result.final_report = report
            result.status = "completed" if report is not None else "no_consensus"
        except DiscussionCancelled:
            result.status = "stopped"
            logger.info("Discussion '%s' stopped at iteration %d", _preview(topic), state.iteration_index)
            await emit(self._announce, "Discussion stopped. The unfinished iteration was discarded.")
        except (RequestFailedError, ProviderError, ConfigurationError) as exc:
            result.status = "failed"
            result.error = str(exc)
            logger.error("Discussion '%s' aborted: %s", _preview(topic), exc)
            await emit(self._announce, f"An error occurred: {exc}")
        finally:
            state.is_running = False
            state.current_iteration_transcript = ""
            self._busy = False

        result.iterations = list(state.iterations)
        result.accepted_summaries = list(state.accepted_summaries)
        result.total_duration_sec = time.monotonic() - start
        return result

    def _checkpoint(self, state: DiscussionState) -> None:
        if not state.is_running:
            state.token.cancel()
        state.token.raise_if_cancelled()

    async def _pace(self, position: int) -> None:
        if position > 0 and self._turn_delay_sec > 0:
            await self._sleep(self._turn_delay_sec)

    async def _run_discussion_loop(
        self,
        state: DiscussionState,
        settings: ConversationSettings,
        attached_context: str | None,
    ) -> None:
        for number in range(1, settings.iteration_count + 1):
            self._checkpoint(state)
            record = await self._run_iteration(
                state, settings, number, attached_context if number == 1 else None
            )
            state.iterations.append(record)
            logger.info(
                "Iteration %d complete: %d turns, votes %d/%d, accepted=%s",
                number, len(record.turns), record.votes_for, record.votes_against, record.accepted,
            )

    async def _run_iteration(
        self,
        state: DiscussionState,
        settings: ConversationSettings,
        number: int,
        attached_context: str | None,
    ) -> IterationRecord:
        state.iteration_index = number
        state.current_iteration_transcript = ""
        record = IterationRecord(number=number)

        await emit(self._announce, f"--- Iteration {number} of {settings.iteration_count} ---")

        for position, persona_id in enumerate(settings.enabled_persona_order):
            await self._pace(position)
            self._checkpoint(state)
            persona = self._registry.resolve(persona_id, settings)
            await emit(self._announce, f"{persona.name} is thinking...")

            prompt = build_turn_prompt(
                self._prompts,
                topic=state.topic,
                persona_name=persona.name,
                accepted_summaries=state.accepted_summaries,
                iteration_transcript=state.current_iteration_transcript,
                attached_context=attached_context,
            )
            response = await self._requester.complete(
                persona_id, prompt, settings, self._announce, state.token
            )
            self._checkpoint(state)

            await emit(self._announce, f"{persona.name}:\n{response}")
            record.turns.append(Turn(persona_id=persona_id, persona_name=persona.name, content=response))
            state.current_iteration_transcript = append_turn(
                state.current_iteration_transcript, persona.name, response
            )

        record.summary = await self._summarize(state, settings, number)
        record.ballots = await self._vote(state, settings, record.summary)
        record.votes_for, record.votes_against = tally_votes(record.ballots)
        record.accepted = is_accepted(record.votes_for, record.votes_against)

        await emit(
            self._announce,
            f"Votes: {record.votes_for} for, {record.votes_against} against.",
        )
        if record.accepted:
            state.accepted_summaries.append(record.summary)
            await emit(self._announce, f"Summary of iteration {number} accepted.")
        else:
            await emit(self._announce, f"Summary of iteration {number} rejected; it will not be carried forward.")

        state.current_iteration_transcript = ""
        return record

    async def _summarize(self, state: DiscussionState, settings: ConversationSettings, number: int) -> str:
        self._checkpoint(state)
        synthesizer = self._registry.resolve(SYNTHESIZER_ID, settings)
        await emit(self._announce, f"{synthesizer.name} is analysing the iteration...")
        summary = await self._requester.complete(
            SYNTHESIZER_ID,
            build_summary_prompt(self._prompts, state.topic, state.current_iteration_transcript),
            settings,
            self._announce,
            state.token,
        )
        self._checkpoint(state)
        await emit(self._announce, f"Summary of iteration {number}:\n{summary}")
        return summary

    async def _vote(self, state: DiscussionState, settings: ConversationSettings, summary: str) -> list[Ballot]:
        """Ask every enabled persona, in order, to accept or reject summary."""
        keywords = vote_keywords_for(settings.language, self._vote_keywords)
        ballots: list[Ballot] = []
        for position, persona_id in enumerate(settings.enabled_persona_order):
            await self._pace(position)
            self._checkpoint(state)
            persona = self._registry.resolve(persona_id, settings)
            response = await self._requester.complete(
                persona_id,
                build_vote_prompt(self._prompts, state.topic, summary, persona.name, keywords),
                settings,
                self._announce,
                state.token,
            )
            self._checkpoint(state)

            accepted = is_accept_vote(response, keywords)
            ballots.append(Ballot(persona_id=persona_id, persona_name=persona.name, accepted=accepted, content=response))
            verdict = keywords.accept if accepted else keywords.reject
            await emit(self._announce, f"{persona.name} votes {verdict.upper()}: {response}")
        return ballots

    async def _finalize(self, state: DiscussionState, settings: ConversationSettings) -> str | None:
        self._checkpoint(state)
        await emit(self._announce, "All iterations complete. Preparing the final report...")
        if not state.accepted_summaries:
            await emit(self._announce, "No summary was accepted during the discussion; there is no final report.")
            return None

        report = await self._requester.complete(
            SYNTHESIZER_ID,
            build_final_prompt(self._prompts, state.topic, state.accepted_summaries),
            settings,
            self._announce,
            state.token,
        )
        self._checkpoint(state)
        await emit(self._announce, f"Final result of the collaboration:\n\n{report}")
        return report
