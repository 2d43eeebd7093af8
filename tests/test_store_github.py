"""Tests for the GitHub-backed document store."""

import base64
import json

import httpx
import pytest

from chat_ledger.config import StoreConfig
from chat_ledger.store.github import (
    ABSENT,
    ConflictError,
    GitHubDocumentStore,
    StoreError,
    decode_document,
    encode_document,
)


@pytest.fixture
def config() -> StoreConfig:
    """Provide store config pointing at a fake GitHub API."""
    return StoreConfig(
        api_url="https://api.github.test",
        owner="acme",
        repo="chats",
        branch="main",
        token="gh-token",
        commit_message="Update chats",
    )


def b64(document) -> str:
    return base64.b64encode(json.dumps(document).encode()).decode()


def make_store(config: StoreConfig, handler) -> GitHubDocumentStore:
    return GitHubDocumentStore(config, transport=httpx.MockTransport(handler))


class TestEncoding:
    """Tests for document encoding helpers."""

    def test_encode_is_indented_json(self) -> None:
        """Should base64-encode indented JSON."""
        raw = base64.b64decode(encode_document([{"text": "héllo"}])).decode("utf-8")

        assert raw == json.dumps([{"text": "héllo"}], indent=2, ensure_ascii=False)

    def test_decode_ignores_line_wrapping(self) -> None:
        """Should decode content wrapped the way GitHub returns it."""
        content = b64([{"id": 1}])
        wrapped = "\n".join(content[i : i + 10] for i in range(0, len(content), 10))

        assert decode_document(wrapped) == [{"id": 1}]

    def test_decode_empty_file(self) -> None:
        """An empty file should decode to None."""
        assert decode_document("") is None


class TestRead:
    """Tests for GitHubDocumentStore.read."""

    def test_returns_document_and_sha(self, config: StoreConfig) -> None:
        """Should return the parsed document and its blob SHA."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(
                200, json={"sha": "abc123", "encoding": "base64", "content": b64([{"id": 1}])}
            )

        result = make_store(config, handler).read("chats.json")

        assert result.document == [{"id": 1}]
        assert result.revision == "abc123"
        assert result.exists
        assert seen["url"] == "https://api.github.test/repos/acme/chats/contents/chats.json?ref=main"
        assert seen["auth"] == "token gh-token"

    def test_missing_file_is_absent(self, config: StoreConfig) -> None:
        """A 404 should read as an absent document."""
        store = make_store(config, lambda r: httpx.Response(404, json={"message": "Not Found"}))

        result = store.read("chats.json")

        assert result == ABSENT
        assert not result.exists

    def test_large_file_falls_back_to_blob(self, config: StoreConfig) -> None:
        """Should fetch files over 1 MB through the blobs API."""
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/git/blobs/big"):
                return httpx.Response(200, json={"content": b64(["x"]), "encoding": "base64"})
            return httpx.Response(200, json={"sha": "big", "encoding": "none", "content": ""})

        result = make_store(config, handler).read("chats.json")

        assert result.document == ["x"]
        assert result.revision == "big"

    def test_auth_failure_raises(self, config: StoreConfig) -> None:
        """Should raise StoreError with the status on 401."""
        store = make_store(config, lambda r: httpx.Response(401, json={"message": "Bad credentials"}))

        with pytest.raises(StoreError) as exc_info:
            store.read("chats.json")

        assert exc_info.value.status_code == 401
        assert "Bad credentials" in str(exc_info.value)

    def test_network_error_raises(self, config: StoreConfig) -> None:
        """Should wrap network failures in StoreError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(StoreError):
            make_store(config, handler).read("chats.json")

    def test_invalid_json_raises(self, config: StoreConfig) -> None:
        """Should raise StoreError for content that is not JSON."""
        content = base64.b64encode(b"{not json").decode()
        store = make_store(
            config,
            lambda r: httpx.Response(200, json={"sha": "s", "encoding": "base64", "content": content}),
        )

        with pytest.raises(StoreError):
            store.read("chats.json")


class TestWrite:
    """Tests for GitHubDocumentStore.write."""

    def test_update_sends_expected_sha(self, config: StoreConfig) -> None:
        """Should send the expected SHA with an update."""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"content": {"sha": "new-sha"}})

        revision = make_store(config, handler).write("chats.json", [{"id": 1}], "old-sha")

        assert revision == "new-sha"
        body = bodies[0]
        assert body["sha"] == "old-sha"
        assert body["branch"] == "main"
        assert body["message"] == "Update chats"
        assert decode_document(body["content"]) == [{"id": 1}]

    def test_create_omits_sha(self, config: StoreConfig) -> None:
        """Should omit the SHA when creating."""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"content": {"sha": "first"}})

        assert make_store(config, handler).write("chats.json", [], None) == "first"
        assert "sha" not in bodies[0]

    def test_stale_sha_is_conflict(self, config: StoreConfig) -> None:
        """A 409 should raise ConflictError."""
        store = make_store(
            config,
            lambda r: httpx.Response(409, json={"message": "chats.json does not match old-sha"}),
        )

        with pytest.raises(ConflictError) as exc_info:
            store.write("chats.json", [], "old-sha")

        assert exc_info.value.status_code == 409

    def test_create_over_existing_is_conflict(self, config: StoreConfig) -> None:
        """Creating over an existing file should raise ConflictError."""
        store = make_store(
            config,
            lambda r: httpx.Response(422, json={"message": "\"sha\" wasn't supplied."}),
        )

        with pytest.raises(ConflictError):
            store.write("chats.json", [], None)

    def test_update_of_deleted_file_recreates(self, config: StoreConfig) -> None:
        """Should create the file when it vanished before the update."""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            bodies.append(body)
            if "sha" in body:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(201, json={"content": {"sha": "recreated"}})

        revision = make_store(config, handler).write("chats.json", [], "gone")

        assert revision == "recreated"
        assert len(bodies) == 2
        assert "sha" not in bodies[1]

    def test_server_error_is_store_error(self, config: StoreConfig) -> None:
        """A 5xx should raise StoreError, not ConflictError."""
        store = make_store(config, lambda r: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(StoreError) as exc_info:
            store.write("chats.json", [], "sha")

        assert not isinstance(exc_info.value, ConflictError)
        assert exc_info.value.status_code == 502


class TestInit:
    """Tests for store construction."""

    def test_requires_repository(self) -> None:
        """Should require owner and repo."""
        with pytest.raises(ValueError):
            GitHubDocumentStore(StoreConfig(owner="", repo="chats"))

    def test_context_manager_closes(self, config: StoreConfig) -> None:
        """Leaving the context should close the HTTP client."""
        with make_store(config, lambda r: httpx.Response(404)) as store:
            assert store.read("x.json") == ABSENT
