"""
Chifir Emulator — Machine Configuration

The instruction set has no way to describe the display, so the frame
buffer window and the run limits live here instead.

Named profiles:
  tablet    0x100000, 512 x 684   the reference machine
  mini      0x10000,  16 x 16     small demos, quick to render
  headless  0x10000,  8 x 6       tests and batch runs, no output bound

A JSON config file holds overrides on top of a profile:

    {"profile": "mini", "display_border": true, "max_steps": 100000}
"""

import json
import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

log = logging.getLogger(__name__)

_BOOL_FIELDS = ('display_border', 'trace')


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('true', 'false'):
        return value.strip().lower() == 'true'
    raise ValueError(f"{key} must be true or false, got {value!r}")


@dataclass(frozen=True)
class MachineConfig:
    display_address: int = 0x100000
    display_width: int = 512
    display_height: int = 684
    display_border: bool = False
    max_steps: Optional[int] = None     # None = unbounded
    trace: bool = False

    def __post_init__(self):
        if not 0 <= self.display_address <= 0xFFFFFFFF:
            raise ValueError(f"display_address out of range: {self.display_address:#x}")
        if self.display_width <= 0 or self.display_height <= 0:
            raise ValueError(
                f"display size must be positive, got {self.display_width}x{self.display_height}")
        if self.display_address + self.display_words > 1 << 32:
            raise ValueError(
                f"display window {self.display_address:#x}+{self.display_words:#x} "
                f"runs past the top of memory")
        if self.max_steps is not None and self.max_steps < 0:
            raise ValueError(f"max_steps must be >= 0, got {self.max_steps}")

    @property
    def display_words(self) -> int:
        return self.display_width * self.display_height

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  base: Optional['MachineConfig'] = None) -> 'MachineConfig':
        """Build a config from a dict of overrides.

        A "profile" key selects the starting profile; otherwise `base`
        (or the defaults) is used. Integer fields also accept strings in
        any base Python understands ("0x100000"); boolean fields accept
        "true"/"false" in any case. Unknown keys and other values for a
        boolean field raise ValueError.
        """
        data = dict(data)
        profile = data.pop('profile', None)
        if profile is not None:
            base = get_profile(profile)
        base = base or cls()

        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

        overrides = {}
        for key, value in data.items():
            if key in _BOOL_FIELDS:
                value = _parse_bool(key, value)
            elif isinstance(value, str):
                value = int(value, 0)
            overrides[key] = value
        return replace(base, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


PROFILES: Dict[str, MachineConfig] = {
    'tablet': MachineConfig(),
    'mini': MachineConfig(display_address=0x10000, display_width=16, display_height=16),
    'headless': MachineConfig(display_address=0x10000, display_width=8, display_height=6),
}

DEFAULT_PROFILE = 'tablet'


def get_profile(name: str) -> MachineConfig:
    try:
        return PROFILES[name]
    except KeyError:
        raise KeyError(
            f"Unknown profile '{name}' (valid: {', '.join(sorted(PROFILES))})") from None


def load_config(path: Union[str, Path],
                profile: Optional[str] = None) -> MachineConfig:
    """Read a JSON config file. `profile` is used when the file names none."""
    path = Path(path)
    with path.open('r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: config must be a JSON object")
    base = get_profile(profile) if profile else None
    config = MachineConfig.from_dict(data, base=base)
    log.debug("config %s -> %s", path, config)
    return config
