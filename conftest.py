"""Root conftest: pins CHAT settings from .env.test before chat_sync.config loads.

Environment variables win over the developer's .env file, so values listed in
.env.test are what every Settings() in the suite starts from.
"""
from __future__ import annotations

import os
from pathlib import Path

_env_test = Path(__file__).resolve().parent / ".env.test"
if _env_test.exists():
    for raw in _env_test.read_text().splitlines():
        entry = raw.strip()
        if entry and not entry.startswith("#"):
            name, _, value = entry.partition("=")
            os.environ[name.strip()] = value.strip()
