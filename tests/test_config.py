"""Tests for the YAML config loader."""

import dataclasses

import pytest

from ccpet.config import PetConfig, load_config
from ccpet.status import FALLBACK_DISPLAY, StatusLine


def test_missing_file_uses_defaults(tmp_path):
    config = load_config(tmp_path / "nope.yaml")
    assert config == PetConfig()
    assert config.tokens_per_energy == 1_000_000
    assert config.decay_rate_per_minute == pytest.approx(0.0231)


def test_root_lookup(tmp_path):
    (tmp_path / "config.yaml").write_text("tokens_per_energy: 500\n")
    assert load_config(root=tmp_path).tokens_per_energy == 500


def test_overrides_and_unknown_keys(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "decay_rate_per_minute: 0.5\n"
        "context_window_tokens: 1000\n"
        "colors:\n  energyBar: '#00FF00'\n"
    )
    config = load_config(path)
    assert config.decay_rate_per_minute == 0.5
    assert config.context_window_tokens == 1000
    assert config.happy_threshold == 80


def test_partial_expressions_merge_with_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("expressions:\n  HAPPY: '(^o^)'\n")
    config = load_config(path)
    assert config.expression_for("HAPPY") == "(^o^)"
    assert config.expression_for("DEAD") == "(x_x)"


def test_legacy_pet_section(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("pet:\n  decayRate: 0.1\n  animationEnabled: true\n")
    assert load_config(path).decay_rate_per_minute == 0.1


def test_malformed_yaml_falls_back(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("decay_rate_per_minute: [unclosed\n")
    assert load_config(path) == PetConfig()


def test_non_mapping_falls_back(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")
    assert load_config(path) == PetConfig()


def test_config_is_immutable():
    config = PetConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.decay_rate_per_minute = 1.0


def test_usable_context_tokens():
    assert PetConfig(context_window_tokens=200_000, usable_context_ratio=0.8).usable_context_tokens == 160_000


@pytest.mark.parametrize(
    "line, key",
    [
        ("tokens_per_energy: 0", "tokens_per_energy"),
        ("tokens_per_energy: 2.5", "tokens_per_energy"),
        ("decay_rate_per_minute: fast", "decay_rate_per_minute"),
        ("decay_rate_per_minute: -1", "decay_rate_per_minute"),
        ("min_decay_interval_minutes: .nan", "min_decay_interval_minutes"),
        ("context_window_tokens: 0", "context_window_tokens"),
        ("usable_context_ratio: 1.5", "usable_context_ratio"),
        ("energy_bar_length: true", "energy_bar_length"),
        ("initial_energy: 0", "initial_energy"),
        ("default_animal: 3", "default_animal"),
    ],
)
def test_bad_value_keeps_default_for_that_field(tmp_path, caplog, line, key):
    path = tmp_path / "config.yaml"
    path.write_text(f"{line}\nhappy_threshold: 85\n")
    config = load_config(path)
    assert getattr(config, key) == getattr(PetConfig(), key)
    assert config.happy_threshold == 85
    assert key in caplog.text


def test_bad_expressions_keep_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("expressions: happy\n")
    assert load_config(path).expressions == PetConfig().expressions


def test_unordered_thresholds_fall_back_together(tmp_path, caplog):
    path = tmp_path / "config.yaml"
    path.write_text("happy_threshold: 30\nhungry_threshold: 50\ntokens_per_energy: 10\n")
    config = load_config(path)
    assert (config.happy_threshold, config.hungry_threshold, config.sick_threshold) == (80, 40, 10)
    assert config.tokens_per_energy == 10
    assert "threshold" in caplog.text


def test_initial_energy_below_happy_threshold_is_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("initial_energy: 50\n")
    config = load_config(path)
    assert config.initial_energy == 100
    assert config.expression_for("HAPPY") == "(^_^)"


def test_zero_tokens_per_energy_does_not_break_status_line(tmp_path):
    (tmp_path / "config.yaml").write_text("tokens_per_energy: 0\n")
    transcript = tmp_path / "t.jsonl"
    transcript.write_text(
        '{"sessionId": "s1", "uuid": "u1", "usage": {"input_tokens": 5}}\n'
    )
    line = StatusLine(tmp_path, load_config(root=tmp_path))
    assert line.process({"transcript_path": str(transcript)}) != FALLBACK_DISPLAY
