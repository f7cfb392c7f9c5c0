"""Prompt construction for turns, iteration summaries, votes and the final report."""

import logging

from config.config_loader import ENGLISH_KEYWORDS, PromptsConfig, VoteKeywords
from src.models import Ballot

logger = logging.getLogger(__name__)

_BALLOT_LEAD_CHARS = " \t\r\n*_\"'`«»„“”>#-:."


def with_language_directive(system_prompt: str, language: str, prompts: PromptsConfig) -> str:
    """Append the hard answer-language requirement to a system prompt."""
    return f"{system_prompt.rstrip()}\n\n{prompts.language_directive.format(language=language).strip()}"


def format_summaries(summaries: list[str]) -> str:
    return "\n\n".join(f"Summary {i}: {summary}" for i, summary in enumerate(summaries, start=1))


def append_turn(transcript: str, persona_name: str, content: str) -> str:
    """Add one labelled turn to an iteration transcript."""
    entry = f"**{persona_name}'s input:**\n{content}"
    return f"{transcript}\n\n{entry}" if transcript else entry


def build_turn_prompt(
    prompts: PromptsConfig,
    topic: str,
    persona_name: str,
    accepted_summaries: list[str],
    iteration_transcript: str,
    attached_context: str | None = None,
) -> str:
    """Topic + attached context + accepted summaries + this iteration's turns so far."""
    sections: list[str] = []
    if attached_context:
        sections.append(f"Attached context:\n{attached_context.strip()}")
    if accepted_summaries:
        sections.append(f"Accepted summaries from previous iterations:\n\n{format_summaries(accepted_summaries)}")
    if iteration_transcript:
        sections.append(f"Discussion so far in this iteration:\n\n{iteration_transcript}")
    context = "".join(f"{section}\n\n" for section in sections)
    return prompts.turn.format(topic=topic, context=context, persona_name=persona_name)


def build_summary_prompt(prompts: PromptsConfig, topic: str, iteration_transcript: str) -> str:
    return prompts.iteration_summary.format(topic=topic, transcript=iteration_transcript)


def build_vote_prompt(
    prompts: PromptsConfig,
    topic: str,
    summary: str,
    persona_name: str,
    keywords: VoteKeywords,
) -> str:
    return prompts.vote.format(
        topic=topic,
        summary=summary,
        persona_name=persona_name,
        accept=keywords.accept,
        reject=keywords.reject,
    )


def build_final_prompt(prompts: PromptsConfig, topic: str, accepted_summaries: list[str]) -> str:
    return prompts.final_report.format(topic=topic, summaries="\n\n".join(accepted_summaries))


def vote_keywords_for(language: str, table: dict[str, VoteKeywords]) -> VoteKeywords:
    """Look up localized accept/reject words; English when the language is unknown."""
    if language in table:
        return table[language]
    folded = {name.casefold(): words for name, words in table.items()}
    keywords = folded.get(language.casefold())
    if keywords is None:
        logger.debug("No vote keywords for %s, using English", language)
        return table.get("English", ENGLISH_KEYWORDS)
    return keywords


def is_accept_vote(response: str, keywords: VoteKeywords) -> bool:
    """A ballot counts for the summary when it starts with the accept keyword."""
    cleaned = response.lstrip(_BALLOT_LEAD_CHARS).casefold()
    return cleaned.startswith(keywords.accept.casefold())


def tally_votes(ballots: list[Ballot]) -> tuple[int, int]:
    """Return (votes_for, votes_against)."""
    votes_for = sum(1 for b in ballots if b.accepted)
    return votes_for, len(ballots) - votes_for


def is_accepted(votes_for: int, votes_against: int) -> bool:
    """A strict majority is required; a tie rejects."""
    return votes_for > votes_against
