"""Where a scaffolded project might have landed on disk."""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Sequence

logger = logging.getLogger("hackhelper.candidates")

SCAFFOLD_DIRS_ENV = "HACKHELPER_SCAFFOLD_DIRS"


@dataclass(frozen=True)
class CandidateContext:
    output_dir: Path
    project_name: str | None = None
    run_id: str | None = None


CandidateProvider = Callable[[CandidateContext], Iterable[Path]]


def _with_project(root: Path, project_name: str | None) -> list[Path]:
    if project_name:
        return [root / project_name, root / "projects" / project_name, root]
    return [root]


class EnvCandidates:
    """Directories listed in an environment variable (``os.pathsep``-separated)."""

    def __init__(self, var: str = SCAFFOLD_DIRS_ENV):
        self.var = var

    def __call__(self, ctx: CandidateContext) -> list[Path]:
        raw = os.environ.get(self.var, "")
        paths = []
        for entry in raw.split(os.pathsep):
            if entry.strip():
                paths.extend(_with_project(Path(entry.strip()).expanduser(), ctx.project_name))
        return paths


class WorkingDirCandidates:
    """Places the runtime writes to when it shares our working directory."""

    def __init__(self, base: Path | None = None):
        self.base = base

    def __call__(self, ctx: CandidateContext) -> list[Path]:
        base = self.base or Path.cwd()
        paths = []
        if ctx.project_name:
            paths += [
                base / "projects" / ctx.project_name,
                base / ctx.project_name,
                base / "output" / ctx.project_name,
            ]
        paths.append(base / "projects")
        return paths


class ConfiguredRootCandidates:
    """A configured output root of the runtime (``scaffold_root`` setting)."""

    def __init__(self, root: str | Path | None):
        self.root = Path(root).expanduser() if root else None

    def __call__(self, ctx: CandidateContext) -> list[Path]:
        if self.root is None:
            return []
        return _with_project(self.root, ctx.project_name)


def default_providers(scaffold_root: str | None = None) -> list[CandidateProvider]:
    return [EnvCandidates(), WorkingDirCandidates(), ConfiguredRootCandidates(scaffold_root)]


def collect_candidates(
    providers: Sequence[CandidateProvider],
    ctx: CandidateContext,
) -> list[Path]:
    """Candidate directories in priority order, de-duplicated, destination excluded."""
    dest = ctx.output_dir.resolve()
    seen: set[Path] = set()
    ordered: list[Path] = []

    for provider in providers:
        try:
            paths = list(provider(ctx))
        except Exception as e:
            logger.warning(f"Candidate provider {provider!r} failed: {e}")
            continue
        for path in paths:
            resolved = path.resolve()
            if resolved in seen or resolved == dest or resolved.is_relative_to(dest):
                continue
            seen.add(resolved)
            ordered.append(path)

    return ordered
