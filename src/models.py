"""Pure dataclasses for the discussion pipeline. No logic beyond defaults."""

from dataclasses import dataclass, field

from src.cancellation import CancellationToken


@dataclass
class Persona:
    id: str
    name: str
    system_prompt: str
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass
class ConversationSettings:
    model: str
    temperature: float = 0.7
    max_tokens: int = 1024
    language: str = "English"
    iteration_count: int = 2
    enabled_persona_order: list[str] = field(default_factory=list)
    custom_personas: dict[str, Persona] = field(default_factory=dict)
    system_prompt_overrides: dict[str, str] = field(default_factory=dict)


@dataclass
class CompletionRequest:
    model: str
    system_prompt: str
    user_prompt: str
    temperature: float
    max_tokens: int


@dataclass
class CompletionResponse:
    content: str
    model: str
    latency_sec: float
    token_count: int | None


@dataclass
class Turn:
    persona_id: str
    persona_name: str
    content: str


@dataclass
class Ballot:
    persona_id: str
    persona_name: str
    accepted: bool
    content: str


@dataclass
class IterationRecord:
    number: int
    turns: list[Turn] = field(default_factory=list)
    summary: str = ""
    ballots: list[Ballot] = field(default_factory=list)
    votes_for: int = 0
    votes_against: int = 0
    accepted: bool = False


@dataclass
class DiscussionState:
    topic: str
    iteration_index: int = 0
    accepted_summaries: list[str] = field(default_factory=list)
    is_running: bool = True
    current_iteration_transcript: str = ""
    iterations: list[IterationRecord] = field(default_factory=list)
    token: CancellationToken = field(default_factory=CancellationToken)


@dataclass
class DiscussionResult:
    topic: str
    status: str                  # "completed", "no_consensus", "stopped", "failed"
    iterations: list[IterationRecord] = field(default_factory=list)
    accepted_summaries: list[str] = field(default_factory=list)
    final_report: str | None = None
    error: str | None = None
    total_duration_sec: float = 0.0
    language: str = "English"
    model: str = ""
