import io
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from order_audit.common.json_logger import JsonLogger  # noqa: E402
from order_audit.config import Config  # noqa: E402


class CapturedLogger:
    def __init__(self) -> None:
        self.stream = io.StringIO()
        self.logger = JsonLogger(run_id="test-run", stream=self.stream, log_file_path=None)

    def events(self) -> List[Dict[str, Any]]:
        return [json.loads(line) for line in self.stream.getvalue().splitlines() if line.strip()]

    def messages(self) -> List[str]:
        return [event.get("message") for event in self.events()]


@pytest.fixture
def captured() -> CapturedLogger:
    return CapturedLogger()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        exports_dir=str(tmp_path / "exports"),
        console_base_url="https://console.example.com/orders",
        order_delay_seconds=0.0,
        order_timeout_seconds=5.0,
        max_months=6,
        max_empty_months=2,
    )
