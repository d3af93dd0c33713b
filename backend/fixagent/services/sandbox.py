"""
Local Sandbox — an isolated working copy of the repository in which fixes
are applied and tests are run.
"""

import asyncio
import logging
import os
import shutil
import subprocess
import tarfile
import tempfile
import time
from typing import Optional

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from fixagent.config import Settings, settings as default_settings
from fixagent.errors import SandboxError
from fixagent.models import RepoFingerprint, TestResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
COPY_IGNORE = shutil.ignore_patterns(".git", "node_modules", "__pycache__", ".venv", "venv")


class LocalSandbox:
    """
    A throwaway directory holding a copy of the repository. All commands run
    with that copy as their working directory and are bounded by the
    configured session timeout.
    """

    REPO_DIR = "repo"

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings
        self.workdir: Optional[str] = None

    @property
    def repo_dir(self) -> str:
        if not self.workdir:
            raise SandboxError("Sandbox not initialized")
        return os.path.join(self.workdir, self.REPO_DIR)

    async def provision(
        self, repo_url: str, fingerprint: RepoFingerprint, local_path: Optional[str] = None
    ) -> None:
        """Create the working copy and install the project's dependencies."""
        logger.info("Creating sandbox...")
        self.workdir = tempfile.mkdtemp(prefix="fixagent-sandbox-", dir=self.config.sandbox_base_dir or None)

        if local_path:
            logger.info(f"Syncing local repository: {local_path}")
            await asyncio.to_thread(self._sync_local_repo, local_path, self.repo_dir)
        else:
            try:
                await asyncio.to_thread(Repo.clone_from, repo_url, self.repo_dir, depth=1)
            except GitCommandError as e:
                raise SandboxError(f"Git clone failed with exit code {e.status}: {e.stderr}") from e

        if fingerprint.install_command:
            result = await self.run_tests(fingerprint.install_command)
            if not result.passed:
                logger.warning(f"Installation command failed: {result.error[:500]}")

        logger.info("Sandbox environment is ready")

    def _sync_local_repo(self, local_path: str, destination: str) -> None:
        """Copy the committed tree (git archive of HEAD), or the directory when it is not a git repo."""
        try:
            repo = Repo(local_path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            repo = None

        if repo is None or not repo.head.is_valid():
            shutil.copytree(local_path, destination, ignore=COPY_IGNORE)
            return

        os.makedirs(destination, exist_ok=True)
        with tempfile.TemporaryFile() as archive:
            repo.archive(archive, treeish="HEAD", format="tar")
            archive.seek(0)
            with tarfile.open(fileobj=archive) as tar:
                tar.extractall(destination, filter="data")

    def _resolve(self, path: str) -> str:
        root = os.path.realpath(self.repo_dir)
        full = os.path.realpath(os.path.join(root, path))
        if full != root and not full.startswith(root + os.sep):
            raise SandboxError(f"Path escapes the sandbox: {path}")
        return full

    async def write_file(self, path: str, content: str) -> None:
        full = self._resolve(path)

        def _write():
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "w") as f:
                f.write(content)

        await asyncio.to_thread(_write)

    async def read_file(self, path: str) -> str:
        full = self._resolve(path)

        def _read():
            with open(full, "r") as f:
                return f.read()

        try:
            return await asyncio.to_thread(_read)
        except OSError as e:
            raise SandboxError(f"Could not read {path}: {e}") from e

    async def run_tests(self, command: str) -> TestResult:
        """Run a shell command in the working copy and capture the outcome."""
        cwd = self.repo_dir
        logger.info(f"Running in sandbox: {command}")
        return await asyncio.to_thread(self._run_cmd, command, cwd)

    def _run_cmd(self, command: str, cwd: str) -> TestResult:
        timeout = self.config.sandbox_timeout
        start = time.monotonic()
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                env={**os.environ, "CI": "true", "FORCE_COLOR": "0"},
            )
        except subprocess.TimeoutExpired as e:
            output = e.stdout.decode(errors="replace") if isinstance(e.stdout, bytes) else (e.stdout or "")
            return TestResult(
                passed=False,
                output=output,
                error=f"Command timed out after {timeout}s",
                exit_code=TIMEOUT_EXIT_CODE,
                duration=round(time.monotonic() - start, 3),
            )

        return TestResult(
            passed=result.returncode == 0,
            output=result.stdout,
            error=result.stderr,
            exit_code=result.returncode,
            duration=round(time.monotonic() - start, 3),
        )

    async def cleanup(self) -> None:
        """Remove the working copy. Safe to call more than once."""
        if not self.workdir:
            return
        workdir, self.workdir = self.workdir, None
        await asyncio.to_thread(shutil.rmtree, workdir, ignore_errors=True)
        logger.info(f"Sandbox removed: {workdir}")
