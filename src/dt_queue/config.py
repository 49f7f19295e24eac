"""Runtime configuration for the queue engine and automation bridge."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dt_queue.queue.bridge.cli_bridge import DEFAULT_COMMAND_TEMPLATE
from dt_queue.queue.repair import DEFAULT_REPAIR_ENGINE
from dt_queue.queue.store import DEFAULT_LOCK_RETRIES, DEFAULT_LOCK_RETRY_DELAY_SECONDS

DEFAULT_CONFIG_DIR = Path("~/.config/dt")


@dataclass(slots=True)
class QueueSettings:
    """Queue document location and lock polling."""

    queue_path: Path
    lock_retries: int = DEFAULT_LOCK_RETRIES
    lock_retry_delay_seconds: float = DEFAULT_LOCK_RETRY_DELAY_SECONDS


@dataclass(slots=True)
class BridgeSettings:
    """Automation-bridge subprocess settings."""

    scripts_dir: Path
    command_template: str = DEFAULT_COMMAND_TEMPLATE
    timeout_seconds: float = 120.0


@dataclass(slots=True)
class RepairSettings:
    engine: str = DEFAULT_REPAIR_ENGINE
    state_file: Path | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    config_dir: Path
    queue: QueueSettings
    bridge: BridgeSettings
    repair: RepairSettings = field(default_factory=RepairSettings)

    @classmethod
    def from_env(cls, config_dir: Path | None = None) -> Settings:
        """Load settings from environment; everything lives under the config dir by default."""

        base = config_dir or Path(os.getenv("DT_CONFIG_DIR", str(DEFAULT_CONFIG_DIR)))
        base = base.expanduser()
        scripts_dir = os.getenv("DT_BRIDGE_SCRIPTS_DIR")
        state_file = os.getenv("DT_STATE_FILE")
        return cls(
            config_dir=base,
            queue=QueueSettings(
                queue_path=base / "queue.json",
                lock_retries=_env_int("DT_QUEUE_LOCK_RETRIES", DEFAULT_LOCK_RETRIES),
                lock_retry_delay_seconds=_env_float(
                    "DT_QUEUE_LOCK_RETRY_DELAY_SECONDS",
                    DEFAULT_LOCK_RETRY_DELAY_SECONDS,
                ),
            ),
            bridge=BridgeSettings(
                scripts_dir=Path(scripts_dir).expanduser() if scripts_dir else base / "jxa",
                command_template=os.getenv("DT_BRIDGE_COMMAND_TEMPLATE", DEFAULT_COMMAND_TEMPLATE),
                timeout_seconds=_env_float("DT_BRIDGE_TIMEOUT_SECONDS", 120.0),
            ),
            repair=RepairSettings(
                engine=os.getenv("DT_REPAIR_ENGINE", DEFAULT_REPAIR_ENGINE),
                state_file=Path(state_file).expanduser() if state_file else base / "state.json",
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot work with."""

        if self.queue.lock_retries <= 0:
            raise ValueError("DT_QUEUE_LOCK_RETRIES must be > 0.")
        if self.queue.lock_retry_delay_seconds < 0:
            raise ValueError("DT_QUEUE_LOCK_RETRY_DELAY_SECONDS must be >= 0.")
        if self.bridge.timeout_seconds <= 0:
            raise ValueError("DT_BRIDGE_TIMEOUT_SECONDS must be > 0.")
        missing = [
            placeholder
            for placeholder in ("{script}", "{args}")
            if placeholder not in self.bridge.command_template
        ]
        if missing:
            raise ValueError(
                "DT_BRIDGE_COMMAND_TEMPLATE must contain "
                f"{' and '.join(missing)}: {self.bridge.command_template!r}",
            )
        if not self.repair.engine.strip():
            raise ValueError("DT_REPAIR_ENGINE must not be empty.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error
