"""Tests for src/session.py."""

import pytest

from src.errors import ConfigurationError, PersonaNotFoundError
from src.session import ConversationSession, SessionStore, default_settings, session_factory
from tests.conftest import FakeClient


@pytest.fixture
def make_session(make_requester, registry, sample_app_config, announcements):
    def build(client=None, caller_id="chat-1"):
        return ConversationSession(
            caller_id,
            make_requester(client or FakeClient()),
            registry,
            sample_app_config,
            announcements.append,
        )

    return build


@pytest.fixture
def session(make_session):
    return make_session()


def test_default_settings_from_config(sample_defaults_config):
    settings = default_settings(sample_defaults_config)
    assert settings.model == "test-model"
    assert settings.iteration_count == 2
    assert settings.enabled_persona_order == ["analytical", "creative"]
    assert settings.enabled_persona_order is not sample_defaults_config.personas


def test_set_model_validates(session):
    session.set_model("other-model")
    assert session.settings.model == "other-model"
    with pytest.raises(ConfigurationError, match="Unknown model"):
        session.set_model("nope")
    assert session.settings.model == "other-model"


def test_set_temperature_and_tokens_validate(session):
    session.set_temperature(1.2)
    session.set_max_tokens(300)
    assert (session.settings.temperature, session.settings.max_tokens) == (1.2, 300)
    with pytest.raises(ConfigurationError):
        session.set_temperature(2.5)
    with pytest.raises(ConfigurationError):
        session.set_max_tokens(0)


def test_set_iteration_count_bounds(session):
    session.set_iteration_count(5)
    assert session.settings.iteration_count == 5
    with pytest.raises(ConfigurationError):
        session.set_iteration_count(0)
    with pytest.raises(ConfigurationError):
        session.set_iteration_count(6)


def test_set_language(session):
    session.set_language("  German ")
    assert session.settings.language == "German"
    with pytest.raises(ConfigurationError):
        session.set_language(" ")


def test_enable_persona_allows_duplicates(session):
    session.enable_persona("analytical")
    assert session.settings.enabled_persona_order == ["analytical", "creative", "analytical"]


def test_enable_persona_rejects_synthesizer_and_unknown(session):
    with pytest.raises(ConfigurationError, match="synthesizer"):
        session.enable_persona("synthesizer")
    with pytest.raises(PersonaNotFoundError):
        session.enable_persona("ghost")


def test_remove_move_duplicate(session):
    session.enable_persona("ethics")
    session.move_persona(2, -1)
    assert session.settings.enabled_persona_order == ["analytical", "ethics", "creative"]
    session.duplicate_persona(0)
    assert session.settings.enabled_persona_order == ["analytical", "analytical", "ethics", "creative"]
    assert session.remove_persona(2) == "ethics"
    assert session.settings.enabled_persona_order == ["analytical", "analytical", "creative"]


def test_move_out_of_range(session):
    with pytest.raises(ConfigurationError):
        session.move_persona(0, -1)
    with pytest.raises(ConfigurationError):
        session.remove_persona(7)


def test_system_prompt_override(session, registry):
    session.set_system_prompt_override("analytical", "  Be brief.  ")
    assert registry.resolve("analytical", session.settings).system_prompt == "Be brief."
    session.clear_system_prompt_override("analytical")
    assert registry.resolve("analytical", session.settings).system_prompt.startswith("You are a pragmatic")


def test_custom_persona_capture_end_to_end(session, registry):
    capture = session.begin_persona_capture()
    capture.feed("Economist")
    capture.feed("You reason about incentives and costs.")
    capture.feed("0.4 300")
    persona = session.add_custom_persona(capture)

    assert session.settings.enabled_persona_order[-1] == persona.id
    resolved = registry.resolve(persona.id, session.settings)
    assert (resolved.name, resolved.temperature, resolved.max_tokens) == ("Economist", 0.4, 300)

    session.delete_custom_persona(persona.id)
    assert persona.id not in session.settings.enabled_persona_order
    assert persona.id not in session.settings.custom_personas


def test_begin_capture_at_limit(session):
    for i in range(3):
        capture = session.begin_persona_capture()
        capture.feed(f"P{i}")
        capture.feed("prompt")
        capture.feed("skip")
        session.add_custom_persona(capture, enable=False)
    with pytest.raises(ConfigurationError, match="At most 3"):
        session.begin_persona_capture()


async def test_session_runs_and_keeps_last_result(make_session):
    session = make_session(FakeClient())
    result = await session.start_collaboration("Remote work")
    assert result.status == "completed"
    assert session.last_result is result
    assert not session.is_running


async def test_sessions_are_independent(make_session):
    first = make_session(caller_id="a")
    second = make_session(caller_id="b")
    first.set_language("German")
    first.enable_persona("ethics")
    assert second.settings.language == "English"
    assert second.settings.enabled_persona_order == ["analytical", "creative"]


def test_store_creates_lazily_and_resets(make_requester, registry, sample_app_config):
    created = []
    factory = session_factory(sample_app_config, make_requester(FakeClient()), registry, lambda caller: created.append)
    store = SessionStore(factory)

    assert "chat-1" not in store
    session = store.get("chat-1")
    assert store.get("chat-1") is session
    assert store.peek("chat-2") is None
    assert len(store) == 1

    assert store.reset("chat-1")
    assert "chat-1" not in store
    assert not store.reset("chat-1")
    assert store.get("chat-1") is not session
