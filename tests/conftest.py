import sys
from pathlib import Path

import pytest

# Ensure 'src' is on sys.path for test imports without installing the package
ROOT = Path(__file__).resolve().parents[1]
src = ROOT / "src"
if str(src) not in sys.path:
    sys.path.insert(0, str(src))

from savevault.config import SaveVaultConfig  # noqa: E402
from savevault.persistence.models import GameState, SavePayload  # noqa: E402
from savevault.service import SaveService  # noqa: E402

# Keeps every sleep and backoff at zero so tests run instantly
FAST_OVERRIDES = {
    "recovery": {"strategy_delay": 0, "retry_base_delay": 0, "retry_attempts": 1},
    "migration": {"backoff_base": 0},
    "loading": {"cleanup_pause": 0, "monitor_interval": 0.01},
}


@pytest.fixture()
def fast_config() -> SaveVaultConfig:
    return SaveVaultConfig.load(overrides=FAST_OVERRIDES)


@pytest.fixture()
def service(tmp_path: Path, fast_config: SaveVaultConfig) -> SaveService:
    return SaveService(config=fast_config, data_root=tmp_path, memory_probe=lambda: 0)


def make_payload(name: str = "alice", version: str = "1.4.0", credits: float = 1000.0) -> SavePayload:
    payload = SavePayload.create_default(name, version)
    payload.game_state = GameState(current_credits=credits, total_earnings=credits, total_expenses=0.0)
    return payload


@pytest.fixture()
def payload() -> SavePayload:
    return make_payload()


@pytest.fixture()
def payload_factory():
    return make_payload
