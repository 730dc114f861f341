"""Tests for the content-pipeline CLI."""

import json

import httpx
import pytest
from click.testing import CliRunner

from content_pipeline.cli import cli
from content_pipeline.core.fetch import SecureImageFetcher
from tests.fakes import PNG_BYTES, public_resolver


@pytest.fixture
def runner():
    return CliRunner()


def parse(result):
    return json.loads(result.stdout)


@pytest.fixture
def mock_fetcher(monkeypatch):
    """Route the CLI's fetcher through a MockTransport serving a PNG."""
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, content=PNG_BYTES)

    def from_config(cls, config, **overrides):
        return SecureImageFetcher(
            transport=httpx.MockTransport(handler),
            resolver=public_resolver,
            require_https=config.require_https,
            trusted_http_hosts=overrides.get("trusted_http_hosts", config.trusted_http_hosts),
        )

    monkeypatch.setattr(SecureImageFetcher, "from_config", classmethod(from_config))
    return requests


class TestShowConfig:
    def test_prints_effective_config(self, runner, tmp_path):
        path = tmp_path / "pipeline.toml"
        path.write_text("[recovery]\nmax_fixer_iterations = 7\n")
        result = runner.invoke(cli, ["--config", str(path), "show-config"], obj={})
        assert result.exit_code == 0, result.output
        payload = parse(result)
        assert payload["success"] is True
        assert payload["data"]["recovery"]["max_fixer_iterations"] == 7

    def test_invalid_config_reported(self, runner, tmp_path):
        path = tmp_path / "pipeline.toml"
        path.write_text("[retry]\nmax_retries = -1\n")
        result = runner.invoke(cli, ["--config", str(path), "show-config"], obj={})
        assert result.exit_code == 1
        assert parse(result)["error"]["error_code"] == "INVALID_CONFIG"


class TestCheckUrl:
    def test_blocked_url(self, runner):
        result = runner.invoke(cli, ["check-url", "https://169.254.169.254/latest/"], obj={})
        assert result.exit_code == 1
        error = parse(result)["error"]
        assert error["error_code"] == "SSRF_BLOCKED"
        assert error["error_type"] == "security"

    def test_allowed_url_without_dns(self, runner):
        result = runner.invoke(cli, ["check-url", "--no-dns", "https://cdn.example.com/a.png"], obj={})
        assert result.exit_code == 0, result.output
        assert parse(result)["data"]["allowed"] is True

    def test_numeric_loopback_blocked_without_dns(self, runner):
        result = runner.invoke(cli, ["check-url", "--no-dns", "https://0x7f000001/a.png"], obj={})
        assert result.exit_code == 1
        assert parse(result)["error"]["error_code"] == "SSRF_BLOCKED"


class TestFetchImage:
    def test_blocked_before_network(self, runner, mock_fetcher):
        result = runner.invoke(cli, ["fetch-image", "https://localhost/a.png"], obj={})
        assert result.exit_code == 1
        assert parse(result)["error"]["error_code"] == "SSRF_BLOCKED"
        assert mock_fetcher == []

    def test_downloads_to_file(self, runner, mock_fetcher, tmp_path):
        output = tmp_path / "hero"
        result = runner.invoke(
            cli,
            ["fetch-image", "--no-head", "-o", str(output), "https://img.example.com/hero"],
            obj={},
        )
        assert result.exit_code == 0, result.output
        data = parse(result)["data"]
        assert data["media_type"] == "image/png"
        assert data["path"].endswith("hero.png")
        assert (tmp_path / "hero.png").read_bytes() == PNG_BYTES
        assert [r.method for r in mock_fetcher] == ["GET"]

    def test_http_host_allowed_by_flag(self, runner, mock_fetcher):
        result = runner.invoke(
            cli,
            ["fetch-image", "--no-head", "--allow-http-host", "legacy.example.com", "http://legacy.example.com/a"],
            obj={},
        )
        assert result.exit_code == 0, result.output
        assert parse(result)["data"]["size"] == len(PNG_BYTES)
