"""
GitHub REST client used as the issue tracker.

One ``aiohttp.ClientSession`` per client; ``close()`` on shutdown.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import Any, Dict, Optional, Sequence

import aiohttp

from .errors import ResourceNotFound, UpstreamFailure, UpstreamTimeout
from .interfaces import Issue

log = logging.getLogger("repobridge.github")

USER_AGENT = "repobridge"


def issue_body(body: str, author: str) -> str:
    return f"{body}\n\n---\n*Reported by {author} via Discord*"


def feature_request_body(body: str, priority: str, author: str, approved_by: Optional[str] = None) -> str:
    text = f"{body}\n\n---\n**Priority:** {priority.upper()}\n**Requested by:** {author} via Discord"
    if approved_by:
        text += f"\n**Approved by:** {approved_by}"
    return text


def decode_content(payload: Dict[str, Any]) -> str:
    raw = payload.get("content") or ""
    encoding = payload.get("encoding", "base64")
    if encoding != "base64":
        return str(raw)
    try:
        return base64.b64decode(raw).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as e:
        raise UpstreamFailure(f"Could not decode file content: {e}") from e


class GitHubClient:
    def __init__(
        self,
        token: str = "",
        owner: str = "",
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.token = token
        self.owner = owner
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._headers())
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, kind: str, name: str, **kwargs: Any) -> Dict[str, Any]:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, **kwargs) as resp:
                if resp.status == 404:
                    raise ResourceNotFound(kind, name)
                if resp.status >= 400:
                    detail = await resp.text()
                    log.warning("GitHub %s %s failed: %s %s", method, path, resp.status, detail[:200])
                    raise UpstreamFailure(f"GitHub returned {resp.status} for {kind.lower()} {name}")
                return await resp.json()
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout(f"GitHub timed out fetching {kind.lower()} {name}") from e
        except aiohttp.ClientError as e:
            raise UpstreamFailure(f"GitHub request failed: {e}") from e

    async def create_issue(
        self, owner: str, repo: str, title: str, body: str, labels: Sequence[str]
    ) -> Issue:
        data = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues",
            "Repository",
            f"{owner}/{repo}",
            json={"title": title, "body": body, "labels": list(labels)},
        )
        issue = Issue(number=int(data["number"]), url=str(data["html_url"]), title=str(data.get("title", title)))
        log.info("Created issue #%d in %s/%s", issue.number, owner, repo)
        return issue

    async def fetch_file(self, owner: str, repo: str, path: str) -> str:
        data = await self._request(
            "GET", f"/repos/{owner}/{repo}/contents/{path.lstrip('/')}", "File", f"{repo}/{path}"
        )
        return decode_content(data)

    async def fetch_readme(self, owner: str, repo: str) -> str:
        data = await self._request("GET", f"/repos/{owner}/{repo}/readme", "README", repo)
        return decode_content(data)

    async def create_feature_request(
        self,
        repo: str,
        title: str,
        body: str,
        priority: str,
        author: str,
        approved_by: Optional[str] = None,
    ) -> Issue:
        return await self.create_issue(
            self.owner,
            repo,
            title,
            feature_request_body(body, priority, author, approved_by),
            ["enhancement", f"priority: {priority}"],
        )
