"""Configuration file handling and ROM path resolution."""

import json
from pathlib import Path

import pytest

from chip8_config import DEFAULT_ROM, ConfigError, EmulatorConfig, resolve_rom_path


def test_defaults():
    config = EmulatorConfig()
    assert config.memory_size == 4096
    assert config.program_start == 0x200
    assert config.program_capacity == 3584
    assert config.cycles_per_frame == 8
    assert not config.increment_i_on_load_store


def test_cycles_per_frame_is_at_least_one():
    assert EmulatorConfig(cpu_frequency=10, frame_rate=60).cycles_per_frame == 1


def test_save_and_load(tmp_path):
    path = tmp_path / "chip8.json"
    EmulatorConfig(rom_path="games/pong.ch8", cpu_frequency=700).save(str(path))
    config = EmulatorConfig.load(str(path))
    assert config.rom_path == "games/pong.ch8"
    assert config.cpu_frequency == 700


def test_unknown_keys_are_ignored(tmp_path):
    path = tmp_path / "chip8.json"
    path.write_text(json.dumps({"scale": 4, "palette": "green"}))
    assert EmulatorConfig.load(str(path)).scale == 4


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        EmulatorConfig.load(str(tmp_path / "nope.json"))


def test_malformed_file(tmp_path):
    path = tmp_path / "chip8.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError):
        EmulatorConfig.load(str(path))


def test_non_object_file(tmp_path):
    path = tmp_path / "chip8.json"
    path.write_text("[1, 2]")
    with pytest.raises(ConfigError):
        EmulatorConfig.load(str(path))


class TestResolveRomPath:
    def test_override_wins(self):
        config = EmulatorConfig(rom_path="a.ch8")
        assert resolve_rom_path(config, "b.ch8") == Path("b.ch8")

    def test_config_value(self):
        assert resolve_rom_path(EmulatorConfig(rom_path="a.ch8")) == Path("a.ch8")

    def test_default(self):
        assert resolve_rom_path(EmulatorConfig()) == Path(DEFAULT_ROM)
