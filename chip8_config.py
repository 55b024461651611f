"""
Configuration for the CHIP-8 interpreter.

Settings live in a small JSON file; the ROM to run can come from that file or
be overridden on the command line.
"""

import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_ROM = "roms/test_opcode.ch8"


class ConfigError(Exception):
    """Raised when a configuration file cannot be read or parsed"""


@dataclass
class EmulatorConfig:
    """Emulator configuration settings"""
    # ROM to run when none is given on the command line
    rom_path: Optional[str] = None

    # Memory
    memory_size: int = 4096
    program_start: int = 0x200

    # Timing
    cpu_frequency: int = 500      # Instructions per second
    frame_rate: int = 60          # Driving loop frames per second
    timer_period_ms: int = 16     # ~60Hz delay/sound decrement

    # Quirks
    increment_i_on_load_store: bool = False  # FX55/FX65 advance I by X+1

    # Host
    scale: int = 10
    tone_hz: int = 392            # G4

    @property
    def cycles_per_frame(self) -> int:
        return max(1, self.cpu_frequency // self.frame_rate)

    @property
    def program_capacity(self) -> int:
        return self.memory_size - self.program_start

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'EmulatorConfig':
        known = {f.name for f in fields(cls)}
        for key in data:
            if key not in known:
                logger.warning("Ignoring unknown config key %r", key)
        return cls(**{k: v for k, v in data.items() if k in known})

    def save(self, path: str) -> None:
        """Save configuration to JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> 'EmulatorConfig':
        """Load configuration from JSON file."""
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Failed to read config {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must contain a JSON object")

        config = cls.from_dict(data)
        logger.debug("Loaded config from %s", path)
        return config


def resolve_rom_path(config: EmulatorConfig, override: Optional[str] = None) -> Path:
    """Pick the ROM to run: the override, then the config value, then the default."""
    if override:
        return Path(override)
    if config.rom_path:
        return Path(config.rom_path)
    return Path(DEFAULT_ROM)
