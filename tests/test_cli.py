"""Tests for the typer CLI."""

from __future__ import annotations

import json
import re

import pytest
from typer.testing import CliRunner

from cv_tailor.cli import app
from cv_tailor.utils.crypto import ENCRYPTION_KEY_ENV

runner = CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch, sample_document_data):
    """Run the CLI against a throwaway database."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("AI_SERVICE", raising=False)
    monkeypatch.delenv(ENCRYPTION_KEY_ENV, raising=False)
    (tmp_path / "config.yaml").write_text(f"store:\n  db_path: {tmp_path / 'cv.db'}\n")
    (tmp_path / "cv.json").write_text(json.dumps(sample_document_data))
    return tmp_path


def _import(workspace) -> str:
    result = runner.invoke(app, ["import-doc", str(workspace / "cv.json"), "--user", "user-1"])
    assert result.exit_code == 0, result.output
    return re.search(r"[0-9a-f]{32}", result.output).group(0)


class TestDocuments:
    def test_import_and_show(self, workspace):
        ref = _import(workspace)
        result = runner.invoke(app, ["show-doc", ref])
        assert result.exit_code == 0
        assert "Acme Ltd" in result.output

    def test_show_missing(self, workspace):
        result = runner.invoke(app, ["show-doc", "missing"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_import_invalid(self, workspace):
        (workspace / "bad.json").write_text('{"skills": [{"category": "no name"}]}')
        result = runner.invoke(app, ["import-doc", str(workspace / "bad.json"), "--user", "user-1"])
        assert result.exit_code == 1
        assert "Invalid CV document" in result.output


class TestProviderSettings:
    def test_generate_key(self):
        result = runner.invoke(app, ["generate-key"])
        assert result.exit_code == 0
        assert f"{ENCRYPTION_KEY_ENV}=" in result.output

    def test_unknown_provider(self, workspace):
        result = runner.invoke(app, ["set-provider", "cohere", "--user", "user-1"])
        assert result.exit_code == 1
        assert "Unknown AI service" in result.output

    def test_api_key_needs_encryption_secret(self, workspace):
        result = runner.invoke(app, ["set-provider", "openai", "--user", "user-1", "--api-key", "sk"])
        assert result.exit_code == 1
        assert "generate-key" in result.output

    def test_api_key_with_secret(self, workspace, monkeypatch):
        monkeypatch.setenv(ENCRYPTION_KEY_ENV, "test-secret")
        result = runner.invoke(app, ["set-provider", "openai", "--user", "user-1", "--api-key", "sk"])
        assert result.exit_code == 0
        assert "now uses openai" in result.output


class TestRewrite:
    def test_missing_credentials_fail(self, workspace, monkeypatch):
        monkeypatch.delenv("GROK_API_KEY", raising=False)
        ref = _import(workspace)
        runner.invoke(app, ["set-provider", "grok", "--user", "user-1"])
        result = runner.invoke(app, ["rewrite", ref, "--user", "user-1"])
        assert result.exit_code == 1
        assert "ConfigurationError" in result.output

    def test_on_device_round_trip(self, workspace):
        ref = _import(workspace)
        assert runner.invoke(app, ["set-provider", "local-device", "--user", "user-1"]).exit_code == 0

        prompt_file = workspace / "prompt.txt"
        result = runner.invoke(
            app, ["rewrite", ref, "--user", "user-1", "--prompt-out", str(prompt_file)]
        )
        assert result.exit_code == 0, result.output
        assert "[id: work-1]" in prompt_file.read_text()

        (workspace / "answer.json").write_text(json.dumps({
            "work_experience": [{"id": "work-1", "description": "Runs payments end to end."}]
        }))
        result = runner.invoke(
            app, ["complete", ref, "--user", "user-1", "--result", str(workspace / "answer.json")]
        )
        assert result.exit_code == 0, result.output
        assert "Document updated" in result.output

        shown = runner.invoke(app, ["show-doc", ref])
        assert "Runs payments end to end." in shown.output

    def test_unknown_section(self, workspace):
        ref = _import(workspace)
        result = runner.invoke(app, ["rewrite", ref, "--user", "user-1", "--section", "hobbies"])
        assert result.exit_code == 1
        assert "Unknown section" in result.output
