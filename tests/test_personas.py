"""Tests for src/personas.py."""

import pytest

from src.errors import ConfigurationError, PersonaNotFoundError
from src.models import Persona
from src.personas import (
    BUILTIN_PERSONAS,
    SYNTHESIZER_ID,
    BuiltInRef,
    CustomRef,
    PersonaCapture,
    parse_overrides,
)


def test_builtin_catalog_ids():
    assert set(BUILTIN_PERSONAS) == {
        "analytical", "creative", "implementation", "data_science", "ethics",
        "ux", "systems", "contrarian", SYNTHESIZER_ID,
    }


def test_resolve_builtin_uses_settings_defaults(registry, sample_settings):
    persona = registry.resolve("analytical", sample_settings)
    assert persona.name == "Analyst"
    assert persona.temperature == sample_settings.temperature
    assert persona.max_tokens == sample_settings.max_tokens


def test_resolve_builtin_own_temperature(registry, sample_settings):
    assert registry.resolve(SYNTHESIZER_ID, sample_settings).temperature == 0.5


def test_resolve_is_idempotent(registry, sample_settings):
    assert registry.resolve("creative", sample_settings) == registry.resolve("creative", sample_settings)


def test_system_prompt_override_wins(registry, sample_settings):
    sample_settings.system_prompt_overrides["analytical"] = "Only use numbers."
    assert registry.resolve("analytical", sample_settings).system_prompt == "Only use numbers."


def test_custom_shadows_builtin(registry, sample_settings):
    sample_settings.custom_personas["creative"] = Persona(id="creative", name="Muse", system_prompt="Dream.")
    assert registry.lookup("creative", sample_settings) == CustomRef("creative")
    assert registry.resolve("creative", sample_settings).name == "Muse"


def test_lookup_builtin_ref(registry, sample_settings):
    assert registry.lookup("ethics", sample_settings) == BuiltInRef("ethics")


def test_resolve_unknown_raises(registry, sample_settings):
    with pytest.raises(PersonaNotFoundError, match="ghost"):
        registry.resolve("ghost", sample_settings)


def test_capture_round_trip(registry, sample_settings):
    """A persona captured in three steps resolves to exactly what was supplied."""
    capture = PersonaCapture()
    capture.feed("Historian")
    capture.feed("You compare every idea with historical precedents.")
    capture.feed("temperature=0.9 max_tokens=800")
    assert capture.done

    persona = registry.add_custom(sample_settings, capture.build())
    sample_settings.enabled_persona_order.append(persona.id)

    resolved = registry.resolve(persona.id, sample_settings)
    assert persona.id.startswith("custom_")
    assert resolved.name == "Historian"
    assert resolved.system_prompt == "You compare every idea with historical precedents."
    assert resolved.temperature == 0.9
    assert resolved.max_tokens == 800


def test_capture_overrides_can_be_skipped(registry, sample_settings):
    capture = PersonaCapture()
    capture.feed("Skeptic")
    capture.feed("Doubt everything.")
    capture.feed("skip")
    persona = registry.add_custom(sample_settings, capture.build())
    resolved = registry.resolve(persona.id, sample_settings)
    assert resolved.temperature == sample_settings.temperature
    assert resolved.max_tokens == sample_settings.max_tokens


def test_capture_build_incomplete_raises():
    capture = PersonaCapture()
    capture.set_name("Half")
    with pytest.raises(ConfigurationError, match="incomplete"):
        capture.build()


def test_capture_rejects_empty_name():
    with pytest.raises(ConfigurationError):
        PersonaCapture().feed("   ")


def test_capture_rejects_out_of_range_temperature():
    capture = PersonaCapture()
    capture.feed("Hot")
    capture.feed("Be wild.")
    with pytest.raises(ConfigurationError, match="Temperature"):
        capture.feed("3.5")


def test_add_custom_enforces_limit(registry, sample_settings):
    for i in range(registry.max_custom):
        registry.add_custom(sample_settings, Persona(id=f"custom_{i}", name=f"P{i}", system_prompt="x"))
    with pytest.raises(ConfigurationError, match="At most 3"):
        registry.add_custom(sample_settings, Persona(id="custom_x", name="Px", system_prompt="x"))


def test_remove_custom_drops_order_entries(registry, sample_settings):
    registry.add_custom(sample_settings, Persona(id="custom_1", name="P", system_prompt="x"))
    sample_settings.enabled_persona_order += ["custom_1", "analytical", "custom_1"]
    registry.remove_custom(sample_settings, "custom_1")
    assert "custom_1" not in sample_settings.enabled_persona_order
    assert sample_settings.enabled_persona_order == ["analytical", "creative", "analytical"]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("skip", (None, None)),
        ("", (None, None)),
        ("0.9", (0.9, None)),
        ("0.9 800", (0.9, 800)),
        ("1.1, 300", (1.1, 300)),
        ("max_tokens=250", (None, 250)),
        ("temp: 0.3 tokens: 90", (0.3, 90)),
    ],
)
def test_parse_overrides(text, expected):
    assert parse_overrides(text) == expected


def test_parse_overrides_garbage():
    with pytest.raises(ConfigurationError):
        parse_overrides("very hot please")
