import tomllib
from pathlib import Path

import vocabtrainer

PYPROJECT = Path(__file__).resolve().parents[1] / "pyproject.toml"


def _project() -> dict:
    return tomllib.loads(PYPROJECT.read_text(encoding="utf-8"))["project"]


def test_package_version_matches_pyproject() -> None:
    assert vocabtrainer.__version__ == _project()["version"]


def test_console_script_points_at_main_entry() -> None:
    assert _project()["scripts"]["vocabtrainer"] == "vocabtrainer.main:main_entry"
