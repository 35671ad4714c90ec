"""Every entry point imports cleanly in a fresh interpreter."""

import os
import subprocess
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]


@pytest.mark.parametrize(
    "module",
    [
        "src.models",
        "src.models.ledger",
        "src.utils.phone",
        "src.core.config",
        "src.providers.mpesa",
        "src.tasks.payments",
        "src.main",
    ],
)
def test_module_imports_first(module):
    result = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        cwd=PROJECT_ROOT,
        env=dict(os.environ),
        capture_output=True,
        text=True,
        timeout=60,
    )
    assert result.returncode == 0, result.stderr
