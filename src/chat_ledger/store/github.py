"""Versioned JSON document store backed by the GitHub Contents API.

Each document is one file in a repository. The file's blob SHA serves as
the revision tag: reads return it, and updates must present the SHA they
were based on so that GitHub rejects writes made from a stale copy.
"""

import base64
import json
from dataclasses import dataclass
from typing import Any, Self

import httpx

from chat_ledger.config import StoreConfig
from chat_ledger.logging import get_logger

logger = get_logger("store")


class StoreError(Exception):
    """Transient store failure (network, auth, server, malformed payload)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConflictError(StoreError):
    """The expected revision tag no longer matches the stored document."""


class MalformedDocumentError(StoreError):
    """A stored document does not decode into the expected records."""


@dataclass(frozen=True)
class ReadResult:
    """Parsed document plus its revision tag; both ``None`` when absent."""

    document: Any
    revision: str | None

    @property
    def exists(self) -> bool:
        return self.revision is not None


ABSENT = ReadResult(document=None, revision=None)


def encode_document(document: Any) -> str:
    """Serialize a document to the base64 payload the Contents API expects."""
    raw = json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_document(content: str) -> Any:
    # GitHub wraps base64 content at 60 columns; b64decode drops the newlines.
    raw = base64.b64decode(content)
    if not raw.strip():
        return None
    return json.loads(raw.decode("utf-8"))


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message", response.text)
    except ValueError:
        return response.text


class GitHubDocumentStore:
    """Read and conditionally replace JSON documents in a GitHub repository."""

    def __init__(self, config: StoreConfig, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize the store client.

        Args:
            config: StoreConfig with repository coordinates and token
            transport: Optional httpx transport (used by tests)
        """
        if not config.owner or not config.repo:
            raise ValueError("Store owner and repo must be configured")
        self._config = config
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if config.token:
            headers["Authorization"] = f"token {config.token}"
        self._client = httpx.Client(
            base_url=f"{config.api_url}/repos/{config.owner}/{config.repo}/",
            headers=headers,
            timeout=httpx.Timeout(config.timeout_seconds),
            transport=transport,
        )

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {url} failed: {e}") from e

    def read(self, path: str) -> ReadResult:
        """Fetch a document and its revision tag.

        Args:
            path: Repository-relative file path

        Returns:
            ReadResult; ``ABSENT`` if the file does not exist

        Raises:
            StoreError: On transport, auth, or decoding failure
        """
        response = self._request("GET", f"contents/{path}", params={"ref": self._config.branch})
        if response.status_code == 404:
            logger.debug("Document absent: path=%s", path)
            return ABSENT
        if response.status_code != 200:
            raise StoreError(
                f"Reading {path} failed: {_error_message(response)}",
                status_code=response.status_code,
            )

        data = response.json()
        sha = data["sha"]
        content = data.get("content", "")
        if data.get("encoding") != "base64" or not content:
            # Files over 1 MB come back without inline content.
            content = self._read_blob(sha)

        try:
            document = decode_document(content)
        except ValueError as e:
            raise StoreError(f"Document {path} is not valid JSON: {e}") from e

        logger.debug("Read document: path=%s revision=%s", path, sha)
        return ReadResult(document=document, revision=sha)

    def _read_blob(self, sha: str) -> str:
        response = self._request("GET", f"git/blobs/{sha}")
        if response.status_code != 200:
            raise StoreError(
                f"Reading blob {sha} failed: {_error_message(response)}",
                status_code=response.status_code,
            )
        return response.json().get("content", "")

    def write(self, path: str, document: Any, expected_revision: str | None) -> str:
        """Replace a document if it is still at ``expected_revision``.

        With ``expected_revision=None`` the document is created; GitHub
        refuses that when the file already exists, which surfaces as a
        conflict.

        Args:
            path: Repository-relative file path
            document: JSON-serializable document
            expected_revision: Revision tag the new content is based on

        Returns:
            The new revision tag

        Raises:
            ConflictError: If the stored revision differs from the expected one
            StoreError: On any other failure
        """
        body: dict[str, Any] = {
            "message": self._config.commit_message,
            "content": encode_document(document),
            "branch": self._config.branch,
        }
        if expected_revision is not None:
            body["sha"] = expected_revision

        response = self._request("PUT", f"contents/{path}", json=body)

        if response.status_code == 404 and expected_revision is not None:
            # The file was removed since it was read; fall back to creating it.
            logger.warning("Document vanished before update, recreating: path=%s", path)
            return self.write(path, document, None)

        if response.status_code == 409 or (
            response.status_code == 422 and expected_revision is None
        ):
            raise ConflictError(
                f"Revision conflict writing {path}: {_error_message(response)}",
                status_code=response.status_code,
            )

        if response.status_code not in (200, 201):
            raise StoreError(
                f"Writing {path} failed: {_error_message(response)}",
                status_code=response.status_code,
            )

        new_revision = response.json()["content"]["sha"]
        logger.debug(
            "Wrote document: path=%s revision=%s previous=%s", path, new_revision, expected_revision
        )
        return new_revision

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()
