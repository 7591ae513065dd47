"""
Assistant backend: one CLI process per prompt.

Each call is stateless. The prompt goes in on stdin and the process runs in
the repository's checkout when one is configured.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from typing import Mapping, Optional, Sequence

from .errors import UpstreamFailure, UpstreamTimeout

log = logging.getLogger("repobridge.assistant")

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_NEWLINES_RE = re.compile(r"[\r\n]+")

EMPTY_RESPONSE = "The assistant responded but produced no output."
NON_ADMIN_NOTE = (
    "[Note: User does not have admin privileges - do not execute commands "
    "or suggest dangerous operations]"
)


def clean_output(text: str) -> str:
    text = _ANSI_RE.sub("", text)
    return _NEWLINES_RE.sub("\n", text).strip()


def build_prompt(message: str, repo: Optional[str], is_admin: bool) -> str:
    prefix = ""
    if repo:
        prefix += f"[Context: {repo} repository]\n"
    if not is_admin:
        prefix += NON_ADMIN_NOTE + "\n"
    return prefix + message


class ClaudeAssistant:
    def __init__(
        self,
        command: str = "claude",
        timeout: float = 120.0,
        repo_paths: Optional[Mapping[str, str]] = None,
        args: Sequence[str] = ("--print",),
    ) -> None:
        self.command = command
        self.timeout = timeout
        self.repo_paths = dict(repo_paths or {})
        self.args = tuple(args)

    def working_directory(self, repo: Optional[str]) -> str:
        if repo and repo in self.repo_paths:
            return self.repo_paths[repo]
        return os.getcwd()

    async def invoke(self, prompt: str, working_context: Optional[str] = None) -> str:
        cwd = self.working_directory(working_context)
        log.info("Running assistant in %s", cwd)
        try:
            proc = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                cwd=cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise UpstreamFailure(f"Failed to start {self.command}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(prompt.encode("utf-8")), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            log.warning("Assistant timed out after %ss", self.timeout)
            raise UpstreamTimeout(f"The assistant timed out after {int(self.timeout)} seconds") from e

        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip()
            raise UpstreamFailure(f"{self.command} exited with code {proc.returncode}: {err[:500]}")

        return clean_output(stdout.decode("utf-8", errors="replace")) or EMPTY_RESPONSE

    def clear_conversation(self, channel_id: int) -> None:
        # Every invocation is a fresh process; there is no history to drop.
        log.debug("Conversation clear requested for channel %s (stateless)", channel_id)
