"""
GitHub repository URL helpers.

Supported input formats:
- https://github.com/owner/repo
- https://github.com/owner/repo.git
- https://github.com/owner/repo/tree/branch[/more/branch/segments]
- git@github.com:owner/repo(.git)
"""

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urlparse

from codereview.domain.exceptions import InvalidRepositoryUrlError

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9._-]*[A-Za-z0-9])?$")
_SSH_PATTERN = re.compile(r"^git@github\.com:([^/]+)/([^/]+?)(\.git)?$")
_GITHUB_HOSTS = {"github.com", "www.github.com"}


@dataclass(frozen=True)
class ParsedGitHubUrl:
    owner: str
    repo: str
    branch: Optional[str] = None


def _is_valid_name(name: str) -> bool:
    return bool(name) and len(name) <= 100 and bool(_NAME_PATTERN.match(name))


def parse_github_url(url: str) -> ParsedGitHubUrl:
    """
    Parse a GitHub repository URL into owner, repository and optional branch.

    Raises:
        InvalidRepositoryUrlError: If the URL is empty, not a GitHub URL, or
            carries an invalid owner/repository name
    """
    if not url or not isinstance(url, str) or not url.strip():
        raise InvalidRepositoryUrlError("Repository URL is required")

    trimmed = url.strip()

    ssh_match = _SSH_PATTERN.match(trimmed)
    if ssh_match:
        owner, repo = ssh_match.group(1), ssh_match.group(2)
        if not _is_valid_name(owner) or not _is_valid_name(repo):
            raise InvalidRepositoryUrlError("Invalid owner or repository name in URL")
        return ParsedGitHubUrl(owner=owner, repo=repo)

    parsed = urlparse(trimmed)
    if parsed.scheme not in ("http", "https"):
        raise InvalidRepositoryUrlError("URL must use HTTP or HTTPS protocol")
    if (parsed.hostname or "").lower() not in _GITHUB_HOSTS:
        raise InvalidRepositoryUrlError("URL must be a GitHub repository URL (github.com)")

    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) < 2:
        raise InvalidRepositoryUrlError("URL must include owner and repository name")

    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[:-4]
    if not _is_valid_name(owner) or not _is_valid_name(repo):
        raise InvalidRepositoryUrlError("Invalid owner or repository name in URL")

    branch = None
    # Branch names may contain slashes
    if len(parts) >= 4 and parts[2] == "tree":
        branch = "/".join(parts[3:])

    return ParsedGitHubUrl(owner=owner, repo=repo, branch=branch)


def build_github_url(owner: str, repo: str, branch: Optional[str] = None) -> str:
    base_url = f"https://github.com/{owner}/{repo}"
    if branch:
        return f"{base_url}/tree/{branch}"
    return base_url


def build_file_url(
    owner: str,
    repo: str,
    branch: str,
    file_path: str,
    line_start: Optional[int] = None,
    line_end: Optional[int] = None,
) -> str:
    """Link to a file on GitHub, anchored to a line or line range when given."""
    encoded_branch = "/".join(quote(seg, safe="") for seg in branch.split("/") if seg)
    encoded_path = "/".join(quote(seg, safe="") for seg in file_path.split("/") if seg)
    url = f"https://github.com/{owner}/{repo}/blob/{encoded_branch}/{encoded_path}"

    if line_start and line_end and line_end != line_start:
        return f"{url}#L{line_start}-L{line_end}"
    if line_start:
        return f"{url}#L{line_start}"
    return url
