import pytest

from codereview.domain.exceptions import InvalidRepositoryUrlError
from codereview.utils.github_url import build_file_url, build_github_url, parse_github_url


@pytest.mark.parametrize(
    "url, owner, repo, branch",
    [
        ("https://github.com/acme/widgets", "acme", "widgets", None),
        ("https://github.com/acme/widgets.git", "acme", "widgets", None),
        ("https://www.github.com/acme/widgets/", "acme", "widgets", None),
        ("https://github.com/acme/widgets/tree/feature/login", "acme", "widgets", "feature/login"),
        ("git@github.com:acme/widgets.git", "acme", "widgets", None),
        ("  https://github.com/acme/widgets  ", "acme", "widgets", None),
    ],
)
def test_parse_supported_formats(url, owner, repo, branch):
    parsed = parse_github_url(url)

    assert (parsed.owner, parsed.repo, parsed.branch) == (owner, repo, branch)


@pytest.mark.parametrize(
    "url",
    [
        "",
        "   ",
        "ftp://github.com/acme/widgets",
        "https://gitlab.com/acme/widgets",
        "https://github.com/acme",
        "https://github.com/-acme/widgets",
    ],
)
def test_parse_rejects_invalid_urls(url):
    with pytest.raises(InvalidRepositoryUrlError):
        parse_github_url(url)


def test_invalid_url_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_github_url("not a url")


def test_build_github_url():
    assert build_github_url("acme", "widgets") == "https://github.com/acme/widgets"
    assert build_github_url("acme", "widgets", "dev") == "https://github.com/acme/widgets/tree/dev"


def test_build_file_url_line_anchors():
    base = "https://github.com/acme/widgets/blob/main/src/app.py"

    assert build_file_url("acme", "widgets", "main", "src/app.py") == base
    assert build_file_url("acme", "widgets", "main", "src/app.py", 4) == f"{base}#L4"
    assert build_file_url("acme", "widgets", "main", "src/app.py", 4, 4) == f"{base}#L4"
    assert build_file_url("acme", "widgets", "main", "src/app.py", 4, 9) == f"{base}#L4-L9"


def test_build_file_url_encodes_segments():
    url = build_file_url("acme", "widgets", "feature/x y", "docs/my file.md")

    assert url == "https://github.com/acme/widgets/blob/feature/x%20y/docs/my%20file.md"
