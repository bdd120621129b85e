"""Tests for ledger backends: GitHub contents API and local files."""

import base64
import threading

import httpx
import pytest
from unittest.mock import AsyncMock

from orderrelay.backends.github import GitHubContentsBackend
from orderrelay.backends.local import LocalFileBackend, content_revision
from orderrelay.ledger_backend import (
    LedgerBackend,
    LedgerBackendError,
    LedgerConflictError,
    StoredDocument,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

REPO = "acme/relay-state"
KEY = "data/processed.json"


def _github(branch: str | None = None) -> GitHubContentsBackend:
    return GitHubContentsBackend(token="gh-token", repo=REPO, branch=branch)


def _response(status_code: int = 200, json_data: dict | None = None, text: str | None = None) -> httpx.Response:
    """Build a fake httpx.Response."""
    kwargs = {"text": text} if text is not None else {"json": json_data or {}}
    return httpx.Response(
        status_code=status_code,
        request=httpx.Request("GET", "https://api.github.com/test"),
        **kwargs,
    )


def _b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


# ---------------------------------------------------------------------------
# Protocol conformance
# ---------------------------------------------------------------------------


class TestProtocol:
    def test_backends_satisfy_protocol(self, tmp_path) -> None:
        assert isinstance(_github(), LedgerBackend)
        assert isinstance(LocalFileBackend(tmp_path), LedgerBackend)


# ---------------------------------------------------------------------------
# GitHubContentsBackend
# ---------------------------------------------------------------------------


class TestGitHubInit:
    def test_headers(self) -> None:
        backend = _github()
        assert backend._client.headers["authorization"] == "token gh-token"
        assert backend._client.headers["accept"] == "application/vnd.github.v3+json"
        assert str(backend._client.base_url).rstrip("/") == "https://api.github.com"


class TestGitHubRead:
    @pytest.mark.asyncio
    async def test_decodes_content_and_sha(self) -> None:
        backend = _github()
        backend._client.get = AsyncMock(
            return_value=_response(200, {"content": _b64('["o1"]'), "sha": "abc123"})
        )
        doc = await backend.read(KEY)
        assert doc == StoredDocument(content='["o1"]', revision="abc123")
        backend._client.get.assert_called_once_with(
            f"/repos/{REPO}/contents/data/processed.json", params=None,
        )

    @pytest.mark.asyncio
    async def test_branch_passed_as_ref(self) -> None:
        backend = _github(branch="state")
        backend._client.get = AsyncMock(return_value=_response(404))
        await backend.read(KEY)
        assert backend._client.get.call_args[1]["params"] == {"ref": "state"}

    @pytest.mark.asyncio
    async def test_404_is_none(self) -> None:
        backend = _github()
        backend._client.get = AsyncMock(return_value=_response(404, {"message": "Not Found"}))
        assert await backend.read(KEY) is None

    @pytest.mark.asyncio
    async def test_server_error_raises(self) -> None:
        backend = _github()
        backend._client.get = AsyncMock(return_value=_response(500, text="boom"))
        with pytest.raises(LedgerBackendError, match="500"):
            await backend.read(KEY)

    @pytest.mark.asyncio
    async def test_transport_error_raises(self) -> None:
        backend = _github()
        backend._client.get = AsyncMock(side_effect=httpx.ConnectError("dns"))
        with pytest.raises(LedgerBackendError):
            await backend.read(KEY)


class TestGitHubWrite:
    @pytest.mark.asyncio
    async def test_put_body(self) -> None:
        backend = _github()
        backend._client.put = AsyncMock(
            return_value=_response(200, {"content": {"sha": "new-sha"}})
        )
        new_sha = await backend.write(KEY, '{"v": 2}', revision="old-sha")

        assert new_sha == "new-sha"
        url = backend._client.put.call_args[0][0]
        body = backend._client.put.call_args[1]["json"]
        assert url == f"/repos/{REPO}/contents/data/processed.json"
        assert base64.b64decode(body["content"]).decode() == '{"v": 2}'
        assert body["sha"] == "old-sha"
        assert body["committer"]["name"] == "sqsp-klaviyo-bot"
        assert body["message"].startswith("Update processed orders @ ")
        assert "branch" not in body

    @pytest.mark.asyncio
    async def test_create_omits_sha(self) -> None:
        backend = _github(branch="state")
        backend._client.put = AsyncMock(
            return_value=_response(201, {"content": {"sha": "first"}})
        )
        await backend.write(KEY, "[]")
        body = backend._client.put.call_args[1]["json"]
        assert "sha" not in body
        assert body["branch"] == "state"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [409, 422])
    async def test_stale_sha_is_conflict(self, status: int) -> None:
        backend = _github()
        backend._client.put = AsyncMock(return_value=_response(status, {"message": "sha mismatch"}))
        with pytest.raises(LedgerConflictError):
            await backend.write(KEY, "[]", revision="stale")

    @pytest.mark.asyncio
    async def test_other_error_is_backend_error(self) -> None:
        backend = _github()
        backend._client.put = AsyncMock(return_value=_response(403, text="forbidden"))
        with pytest.raises(LedgerBackendError) as excinfo:
            await backend.write(KEY, "[]")
        assert not isinstance(excinfo.value, LedgerConflictError)


# ---------------------------------------------------------------------------
# LocalFileBackend
# ---------------------------------------------------------------------------


class TestLocalFileBackend:
    @pytest.mark.asyncio
    async def test_missing_file_is_none(self, tmp_path) -> None:
        assert await LocalFileBackend(tmp_path).read(KEY) is None

    @pytest.mark.asyncio
    async def test_write_then_read(self, tmp_path) -> None:
        backend = LocalFileBackend(tmp_path)
        revision = await backend.write(KEY, "[1]")
        assert revision == content_revision("[1]")
        assert (tmp_path / KEY).read_text() == "[1]"
        assert await backend.read(KEY) == StoredDocument(content="[1]", revision=revision)

    @pytest.mark.asyncio
    async def test_update_with_current_revision(self, tmp_path) -> None:
        backend = LocalFileBackend(tmp_path)
        first = await backend.write(KEY, "[1]")
        second = await backend.write(KEY, "[1, 2]", revision=first)
        assert second == content_revision("[1, 2]")

    @pytest.mark.asyncio
    async def test_stale_revision_conflicts(self, tmp_path) -> None:
        backend = LocalFileBackend(tmp_path)
        first = await backend.write(KEY, "[1]")
        await backend.write(KEY, "[1, 2]", revision=first)
        with pytest.raises(LedgerConflictError):
            await backend.write(KEY, "[1, 3]", revision=first)
        assert (tmp_path / KEY).read_text() == "[1, 2]"

    @pytest.mark.asyncio
    async def test_create_over_existing_conflicts(self, tmp_path) -> None:
        backend = LocalFileBackend(tmp_path)
        await backend.write(KEY, "[1]")
        with pytest.raises(LedgerConflictError):
            await backend.write(KEY, "[2]")

    @pytest.mark.asyncio
    async def test_key_cannot_escape_root(self, tmp_path) -> None:
        backend = LocalFileBackend(tmp_path / "root")
        with pytest.raises(LedgerBackendError, match="escapes"):
            await backend.read("../outside.json")

    @pytest.mark.asyncio
    async def test_file_io_runs_off_event_loop_thread(self, tmp_path, monkeypatch) -> None:
        threads: list[int] = []
        original_read = LocalFileBackend._read_sync
        original_replace = LocalFileBackend._replace_sync

        def tracking_read(self, path):
            threads.append(threading.get_ident())
            return original_read(self, path)

        def tracking_replace(self, path, content):
            threads.append(threading.get_ident())
            return original_replace(self, path, content)

        monkeypatch.setattr(LocalFileBackend, "_read_sync", tracking_read)
        monkeypatch.setattr(LocalFileBackend, "_replace_sync", tracking_replace)

        backend = LocalFileBackend(tmp_path)
        await backend.write(KEY, "[1]")
        assert (await backend.read(KEY)).content == "[1]"

        assert len(threads) == 3  # read inside write, replace, read
        assert threading.get_ident() not in threads

    @pytest.mark.asyncio
    async def test_unreadable_path_is_backend_error(self, tmp_path) -> None:
        (tmp_path / KEY).mkdir(parents=True)
        with pytest.raises(LedgerBackendError, match="cannot read"):
            await LocalFileBackend(tmp_path).read(KEY)
