"""test suite for the command line interface."""
import json
import pytest
import sys
from pathlib import Path
from unittest.mock import Mock

import httpx

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from typer.testing import CliRunner

from quarry.cli.main import app, build_client, registry_source
from quarry.config import CACHE_DIR_KEY, OFFLINE_KEY, REGISTRY_KEY, TOKEN_KEY, Config
from quarry.domain.models import SourceId
from quarry.registry import HttpRegistryClient, LocalRegistryClient
from quarry.registry.cache import cache_dir_for
from quarry.ui.progress import ProgressManager
from quarry.utils.hash import checksum_bytes

from conftest import BAR_ARCHIVE

runner = CliRunner()


@pytest.fixture
def env(temp_dir, monkeypatch):
    for key in (REGISTRY_KEY, OFFLINE_KEY, TOKEN_KEY):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv(CACHE_DIR_KEY, str(temp_dir / "cli-cache"))
    return temp_dir


class TestBuildClient:
    def test_http_registry(self, temp_dir):
        client = build_client(
            Config(cache_dir=temp_dir, registry_url="https://registry.test/index"),
            ProgressManager(quiet=True),
        )
        assert isinstance(client.client, HttpRegistryClient)

    def test_local_registry(self, temp_dir):
        client = build_client(
            Config(cache_dir=temp_dir, registry_url=f"file://{temp_dir}/registry"),
            ProgressManager(quiet=True),
        )
        assert isinstance(client.client, LocalRegistryClient)
        assert client.client.root == temp_dir / "registry"

    def test_registry_source_matches_built_client(self, temp_dir):
        for url in ("https://registry.test/index", f"file://{temp_dir}/registry", str(temp_dir / "registry")):
            config = Config(cache_dir=temp_dir, registry_url=url)
            client = build_client(config, ProgressManager(quiet=True))
            assert registry_source(config) == client.source_id


class TestCommands:
    def test_info(self, env, local_registry):
        result = runner.invoke(app, ["--registry", str(local_registry.root), "info", "foo"])
        assert result.exit_code == 0, result.output
        assert "foo" in result.output
        assert "2.0.0" in result.output

    def test_info_missing_package(self, env, local_registry):
        result = runner.invoke(app, ["--registry", str(local_registry.root), "info", "missing"])
        assert result.exit_code == 1
        assert "does not exist" in result.output

    def test_fetch(self, env, local_registry):
        result = runner.invoke(app, ["--registry", str(local_registry.root), "fetch", "bar", "0.1.0"])
        assert result.exit_code == 0, result.output
        assert "Fetched bar v0.1.0" in result.output
        assert checksum_bytes(BAR_ARCHIVE)[:20] in result.output

    def test_offline_fetch_uses_cache(self, env, local_registry):
        args = ["--registry", str(local_registry.root)]
        assert runner.invoke(app, args + ["fetch", "bar", "0.1.0"]).exit_code == 0
        result = runner.invoke(app, args + ["--offline", "fetch", "bar", "0.1.0"])
        assert result.exit_code == 0, result.output

    def test_publish(self, env, local_registry, temp_dir):
        tarball = temp_dir / "baz-0.1.0.tar.zst"
        tarball.write_bytes(b"baz")
        manifest = temp_dir / "quarry.json"
        manifest.write_text(json.dumps({"name": "baz", "version": "0.1.0"}))

        result = runner.invoke(app, [
            "--registry", str(local_registry.root),
            "publish", str(tarball), "--manifest", str(manifest),
        ])
        assert result.exit_code == 0, result.output
        assert local_registry.index_path("baz").exists()

    def test_publish_bad_manifest(self, env, local_registry, temp_dir):
        manifest = temp_dir / "quarry.json"
        manifest.write_text(json.dumps({"version": "0.1.0"}))
        result = runner.invoke(app, [
            "--registry", str(local_registry.root),
            "publish", str(temp_dir / "x.tar.zst"), "--manifest", str(manifest),
        ])
        assert result.exit_code == 1
        assert "Error reading manifest" in result.output

    def test_cache_clear(self, env, local_registry):
        args = ["--registry", str(local_registry.root)]
        assert runner.invoke(app, args + ["fetch", "bar", "0.1.0"]).exit_code == 0
        assert (env / "cli-cache" / "registry").exists()

        result = runner.invoke(app, args + ["cache", "clear"])
        assert result.exit_code == 0, result.output
        assert "Cache cleared" in result.output
        assert list((env / "cli-cache" / "registry").iterdir()) == []

    def test_cache_clear_opens_no_connection(self, env, monkeypatch):
        url = "https://registry.test/index"
        cache_dir = cache_dir_for(Config(cache_dir=env / "cli-cache"), SourceId.for_registry(url))
        cache_dir.mkdir(parents=True)
        (cache_dir / "entry.json").write_text("{}")
        monkeypatch.setattr(
            "quarry.cli.main.HttpRegistryClient", Mock(side_effect=AssertionError("no client expected"))
        )

        result = runner.invoke(app, ["--registry", url, "cache", "clear"])
        assert result.exit_code == 0, result.output
        assert not cache_dir.exists()


class TestErrorReporting:
    def test_publish_server_error_exits_cleanly(self, env, temp_dir, monkeypatch):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/config.json"):
                return httpx.Response(200, json={
                    "index": "index/{package}.json",
                    "dl": "dl/{package}-{version}.tar.zst",
                    "upload": "upload",
                })
            return httpx.Response(500)

        class MockedHttpRegistryClient(HttpRegistryClient):
            def __init__(self, url, config, progress_manager=None):
                http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
                super().__init__(url, config, client=http, progress_manager=progress_manager)

        monkeypatch.setattr("quarry.cli.main.HttpRegistryClient", MockedHttpRegistryClient)
        monkeypatch.setenv(TOKEN_KEY, "secret")
        tarball = temp_dir / "baz-0.1.0.tar.zst"
        tarball.write_bytes(b"baz")
        manifest = temp_dir / "quarry.json"
        manifest.write_text(json.dumps({"name": "baz", "version": "0.1.0"}))

        result = runner.invoke(app, [
            "--registry", "https://registry.test/index",
            "publish", str(tarball), "--manifest", str(manifest),
        ])
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Error" in result.output
        assert "500" in result.output

    def test_offline_publish_fails_before_network(self, env, temp_dir, monkeypatch):
        requests = []

        class MockedHttpRegistryClient(HttpRegistryClient):
            def __init__(self, url, config, progress_manager=None):
                http = httpx.AsyncClient(
                    transport=httpx.MockTransport(lambda r: requests.append(r) or httpx.Response(500))
                )
                super().__init__(url, config, client=http, progress_manager=progress_manager)

        monkeypatch.setattr("quarry.cli.main.HttpRegistryClient", MockedHttpRegistryClient)
        tarball = temp_dir / "baz-0.1.0.tar.zst"
        tarball.write_bytes(b"baz")
        manifest = temp_dir / "quarry.json"
        manifest.write_text(json.dumps({"name": "baz", "version": "0.1.0"}))

        result = runner.invoke(app, [
            "--registry", "https://registry.test/index", "--offline",
            "publish", str(tarball), "--manifest", str(manifest),
        ])
        assert result.exit_code == 1
        assert "offline" in result.output
        assert requests == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
