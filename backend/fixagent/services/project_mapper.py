"""
Project Mapper — an indented map of the file structure for the search agents.
"""

import asyncio
import logging
import os

logger = logging.getLogger(__name__)

EXCLUDED = {"node_modules", ".git", "dist", "build", "target", "venv", ".venv", ".next", ".cache", "__pycache__"}


class ProjectMapper:

    def __init__(self, max_depth: int = 3):
        self.max_depth = max_depth

    async def get_map(self, repo_path: str) -> str:
        logger.info(f"Mapping project structure: {repo_path}")
        if not os.path.isdir(repo_path):
            raise FileNotFoundError(f"Repository path does not exist: {repo_path}")

        lines = await asyncio.to_thread(self._walk, repo_path, 0)
        return "\n".join(lines)

    def _walk(self, directory: str, depth: int) -> list[str]:
        if depth > self.max_depth:
            return []

        results: list[str] = []
        try:
            names = sorted(os.listdir(directory))
        except OSError as e:
            logger.warning(f"Error mapping directory {directory}: {e}")
            return results

        indent = "  " * depth
        for name in names:
            if name in EXCLUDED:
                continue
            full_path = os.path.join(directory, name)
            if os.path.isdir(full_path):
                results.append(f"{indent}{name}/")
                results.extend(self._walk(full_path, depth + 1))
            else:
                results.append(f"{indent}{name}")
        return results
