"""
GitHub repository content fetcher.

Builds the RepositorySnapshot handed to evaluation workers: the branch is
resolved to its head commit and that commit's tree is listed through the
GitHub REST API. Text source files are selected by extension (vendored and
build directories are skipped) and capped by per-file size, file count and
total bytes; their bodies are downloaded from the raw content host at the
same commit.
"""

import logging
import posixpath
from typing import Dict, List, Optional
from urllib.parse import quote

import httpx

from codereview.domain.exceptions import RepositoryFetchError
from codereview.infrastructure.config.settings import settings
from codereview.infrastructure.constants.evaluation_constants import REPO_FETCH_TIMEOUT_SECONDS
from codereview.schemas import RepositoryFile, RepositorySnapshot

logger = logging.getLogger(__name__)

LANGUAGES: Dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "csharp",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".swift": "swift",
    ".scala": "scala",
    ".sh": "shell",
    ".sql": "sql",
    ".md": "markdown",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".html": "html",
    ".css": "css",
    ".vue": "vue",
    ".svelte": "svelte",
}

EXCLUDED_DIRECTORIES = {
    ".git",
    ".github",
    ".next",
    ".venv",
    "__pycache__",
    "build",
    "coverage",
    "dist",
    "node_modules",
    "target",
    "vendor",
    "venv",
}

EXCLUDED_FILES = {"package-lock.json", "yarn.lock", "pnpm-lock.yaml", "poetry.lock"}

MAX_STRUCTURE_LINES = 300


def detect_language(path: str) -> Optional[str]:
    _, ext = posixpath.splitext(path.lower())
    return LANGUAGES.get(ext)


def is_candidate(path: str) -> bool:
    parts = path.split("/")
    if any(part in EXCLUDED_DIRECTORIES for part in parts[:-1]):
        return False
    if parts[-1] in EXCLUDED_FILES:
        return False
    return detect_language(path) is not None


def build_structure(paths: List[str], max_lines: int = MAX_STRUCTURE_LINES) -> str:
    """Render paths as an indented tree, directories before the files they hold."""
    lines: List[str] = []
    seen_dirs = set()
    for path in sorted(paths):
        parts = path.split("/")
        for depth in range(len(parts) - 1):
            directory = "/".join(parts[: depth + 1])
            if directory not in seen_dirs:
                seen_dirs.add(directory)
                lines.append(f"{'  ' * depth}{parts[depth]}/")
        lines.append(f"{'  ' * (len(parts) - 1)}{parts[-1]}")

    if len(lines) > max_lines:
        omitted = len(lines) - max_lines
        lines = lines[:max_lines] + [f"... ({omitted} more entries)"]
    return "\n".join(lines)


class GitHubContentFetcher:
    """Fetch a capped snapshot of a repository branch from GitHub."""

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        raw_url: Optional[str] = None,
        max_files: Optional[int] = None,
        max_file_bytes: Optional[int] = None,
        max_total_bytes: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.token = token if token is not None else settings.github_token
        self.api_url = (api_url or settings.github_api_url).rstrip("/")
        self.raw_url = (raw_url or settings.github_raw_url).rstrip("/")
        self.max_files = max_files or settings.repo_max_files
        self.max_file_bytes = max_file_bytes or settings.repo_max_file_bytes
        self.max_total_bytes = max_total_bytes or settings.repo_max_total_bytes
        self._client = http_client

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def fetch(self, owner: str, name: str, branch: str) -> RepositorySnapshot:
        """
        Fetch the repository snapshot of one branch.

        Raises:
            RepositoryFetchError: If the tree cannot be listed
        """
        if self._client is not None:
            return await self._fetch(self._client, owner, name, branch)
        async with httpx.AsyncClient(timeout=REPO_FETCH_TIMEOUT_SECONDS) as client:
            return await self._fetch(client, owner, name, branch)

    async def _fetch(
        self, client: httpx.AsyncClient, owner: str, name: str, branch: str
    ) -> RepositorySnapshot:
        logger.info(f"[Fetcher] Fetching {owner}/{name}@{branch}")
        sha = await self._resolve_commit(client, owner, name, branch)
        tree = await self._list_tree(client, owner, name, branch, sha)

        candidates = [
            entry
            for entry in tree
            if entry.get("type") == "blob" and is_candidate(entry.get("path", ""))
        ]
        # Shallow files first
        candidates.sort(key=lambda entry: (entry["path"].count("/"), entry["path"]))

        files: List[RepositoryFile] = []
        total_bytes = 0
        for entry in candidates:
            if len(files) >= self.max_files:
                break
            size = entry.get("size") or 0
            if size > self.max_file_bytes or total_bytes + size > self.max_total_bytes:
                continue

            content = await self._download(client, owner, name, sha, entry["path"])
            if content is None:
                continue
            encoded_size = len(content.encode("utf-8"))
            if total_bytes + encoded_size > self.max_total_bytes:
                continue

            total_bytes += encoded_size
            files.append(
                RepositoryFile(
                    path=entry["path"],
                    content=content,
                    language=detect_language(entry["path"]) or "text",
                )
            )

        structure = build_structure([entry["path"] for entry in candidates])
        logger.info(
            f"[Fetcher] {owner}/{name}@{branch}: {len(files)} of {len(candidates)} "
            f"candidate files, {total_bytes} bytes"
        )
        return RepositorySnapshot(files=files, structure=structure)

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        owner: str,
        name: str,
        branch: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict:
        try:
            response = await client.get(url, params=params, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 404:
                raise RepositoryFetchError(
                    f"Repository {owner}/{name} or branch '{branch}' not found"
                ) from e
            raise RepositoryFetchError(
                f"GitHub returned {status} while listing {owner}/{name}@{branch}"
            ) from e
        except httpx.HTTPError as e:
            raise RepositoryFetchError(f"Could not reach GitHub: {str(e)}") from e
        return response.json()

    async def _resolve_commit(
        self, client: httpx.AsyncClient, owner: str, name: str, branch: str
    ) -> str:
        """Resolve a branch name, which may contain slashes, to its head commit SHA."""
        url = f"{self.api_url}/repos/{owner}/{name}/branches/{quote(branch, safe='')}"
        data = await self._get_json(client, url, owner, name, branch)
        sha = (data.get("commit") or {}).get("sha")
        if not sha:
            raise RepositoryFetchError(
                f"GitHub did not report a head commit for {owner}/{name}@{branch}"
            )
        return sha

    async def _list_tree(
        self, client: httpx.AsyncClient, owner: str, name: str, branch: str, sha: str
    ) -> List[Dict]:
        url = f"{self.api_url}/repos/{owner}/{name}/git/trees/{sha}"
        data = await self._get_json(client, url, owner, name, branch, params={"recursive": "1"})
        if data.get("truncated"):
            logger.warning(f"[Fetcher] Tree listing of {owner}/{name}@{branch} was truncated")
        return data.get("tree", [])

    async def _download(
        self, client: httpx.AsyncClient, owner: str, name: str, sha: str, path: str
    ) -> Optional[str]:
        url = f"{self.raw_url}/{owner}/{name}/{sha}/{quote(path)}"
        try:
            response = await client.get(url, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"[Fetcher] Skipping {path}: {str(e)}")
            return None
        return response.text
