"""Shared fixtures for the flakebot tests."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest


@pytest.fixture
def fake_openai() -> MagicMock:
    """A stand-in for ``openai.OpenAI`` whose responses are set per test."""
    return MagicMock()


@pytest.fixture
def rust_repo(tmp_path):
    """A minimal cloned candidate repository."""
    repo = tmp_path / "work_dir" / "hello_world_tool"
    (repo / "src").mkdir(parents=True)
    (repo / "src" / "main.rs").write_text('fn main() {\n    println!("hello");\n}\n', encoding="utf-8")
    (repo / "Cargo.toml").write_text('[package]\nname = "hello_world_tool"\n', encoding="utf-8")
    (repo / "README.md").write_text("# hello\n", encoding="utf-8")
    return repo
