"""Test environment: .env.test is applied before any application module reads settings."""
from __future__ import annotations

import os
from pathlib import Path

ENV_FILE = Path(__file__).resolve().parent / ".env.test"


def _read_env(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    pairs = (
        line.split("=", 1)
        for line in path.read_text().splitlines()
        if "=" in line and not line.lstrip().startswith("#")
    )
    return {key.strip(): value.strip() for key, value in pairs}


for _key, _value in _read_env(ENV_FILE).items():
    os.environ.setdefault(_key, _value)

os.environ.setdefault("JWT_SECRET", "test-secret-key-with-at-least-32-bytes!!")
