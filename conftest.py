"""Root conftest: loads .env.test before task_chat.config is imported."""
from __future__ import annotations

import os
from pathlib import Path


def _load_env_file(path: Path) -> None:
    # Real environment variables win over the file.
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition("=")
        os.environ.setdefault(key.strip(), value.strip())


_env_test = Path(__file__).resolve().parent / ".env.test"
if _env_test.exists():
    _load_env_file(_env_test)
