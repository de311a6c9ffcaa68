"""Test the development environment setup."""
import sys
from pathlib import Path

import pytest  # type: ignore[import-not-found]


def test_python_version() -> None:
    """Ensure we're running Python 3.12+."""
    assert sys.version_info >= (3, 12), "Python version should be 3.12 or higher"


def test_project_structure() -> None:
    """Verify basic project structure."""
    project_root = Path(__file__).parent.parent
    assert (project_root / "src" / "mcp_hub").is_dir()
    assert (project_root / "pyproject.toml").is_file()
    assert (project_root / "tests" / "fixtures" / "echo_mcp_server.py").is_file()


def test_development_tools() -> None:
    """Verify development tools are installed."""
    pytest.importorskip("pytest_asyncio")
    import aiohttp  # noqa: F401
    import click  # noqa: F401
    import pydantic_settings  # noqa: F401
    import structlog  # noqa: F401
