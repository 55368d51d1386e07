"""Repository URL helpers: credentials and hosting-provider links."""

import re
from urllib.parse import quote, urlsplit, urlunsplit

# host -> commit path template, relative to https://<host>/<owner>/<repo>
PROVIDERS = {
    "github.com": "/commit/{sha}",
    "gitlab.com": "/-/commit/{sha}",
}

_SSH_PATTERN = re.compile(r"^git@([^:]+):([^/]+)/([^/]+?)(?:\.git)?/?$")
_CREDENTIALS_PATTERN = re.compile(r"(\b[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")


def _replace_userinfo(url: str, userinfo: str) -> str:
    """Rebuilds a URL with `userinfo` in front of the host (empty drops it)."""
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{userinfo}@{host}" if userinfo else host
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def embed_credential(url: str, token: str | None) -> str:
    """Returns the transport URL with `token` as username and an empty password.

    Only HTTPS URLs carry a credential; any other URL, or a missing token,
    is returned unchanged.

    Args:
        url (str): The configured repository URL.
        token (str | None): The access token.

    Returns:
        str: The URL to hand to git for clone and push.
    """
    if not token or not url.startswith("https://"):
        return url
    return _replace_userinfo(url, f"{quote(token, safe='')}:")


def strip_credentials(url: str) -> str:
    """Removes username and password from a URL so it can be displayed."""
    if "://" not in url:
        return url
    try:
        return _replace_userinfo(url, "")
    except ValueError:
        return url


def redact_credentials(text: str) -> str:
    """Scrubs `scheme://user:pass@` fragments out of arbitrary text (e.g. git stderr)."""
    return _CREDENTIALS_PATTERN.sub(r"\1", text)


def parse_repo_url(url: str | None) -> tuple[str, str, str] | None:
    """Extracts (host, owner, repo) from a recognized hosting-provider URL.

    Handles:
    - git@github.com:owner/repo.git
    - https://github.com/owner/repo.git (credentials in the URL are ignored)

    Returns:
        tuple[str, str, str] | None: The parsed triple, or None if the host is
                                     not a known provider or the shape is wrong.
    """
    if not url:
        return None

    if ssh_match := _SSH_PATTERN.match(url):
        host, owner, repo = ssh_match.groups()
    else:
        try:
            parts = urlsplit(url)
        except ValueError:
            return None
        if parts.scheme not in ("https", "http") or not parts.hostname:
            return None
        segments = [s for s in re.sub(r"\.git$", "", parts.path).split("/") if s]
        if len(segments) < 2:
            return None
        host, owner, repo = parts.hostname, segments[0], segments[1]

    if host not in PROVIDERS:
        return None
    return host, owner, repo


def build_commit_url(url: str | None, sha: str) -> str | None:
    """Derives a browsable commit URL, or None rather than guessing."""
    parsed = parse_repo_url(url)
    if not parsed:
        return None
    host, owner, repo = parsed
    return f"https://{host}/{owner}/{repo}" + PROVIDERS[host].format(sha=sha)
