"""Artifact reconciler — finds the files a run produced and writes them locally.

Strategies, tried in order until one writes something:

1. Structured lookup: the scaffold step's ``output.files`` from the run record.
2. Project root: the first candidate directory that looks like a project
   (marker file first, any source file as a second pass), copied whole.
3. Partial collection: every candidate's subdirectories that hold relevant
   files, each copied under its own name.

All three share one copy filter and one writer. Writes overwrite, so running
a pass twice leaves the same files behind.
"""

from __future__ import annotations
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterator, Sequence

from hackhelper.client.candidates import CandidateContext, CandidateProvider, collect_candidates
from hackhelper.client.runtime import RuntimeClient
from hackhelper.client.throttle import RequestThrottle
from hackhelper.core.errors import ReconciliationMiss
from hackhelper.models.run import Artifact, StepStatus
from hackhelper.schemas.run import RunRecord, ScaffoldFile

logger = logging.getLogger("hackhelper.reconciler")

SCAFFOLD_STEP_PATTERN = re.compile(r"scaffold", re.IGNORECASE)

EXCLUDED_DIRS = frozenset({
    "node_modules", "bower_components", "jspm_packages",
    ".git", ".hg", ".svn",
    "dist", "build", "out", ".next", ".nuxt", ".turbo", ".cache", ".parcel-cache",
    ".mastra", "coverage", "tmp", "temp",
    "__pycache__", ".venv", "venv", ".tox", ".pytest_cache", ".mypy_cache",
})

SOURCE_EXTENSIONS = frozenset({
    ".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".vue", ".svelte",
    ".py", ".go", ".rs", ".java", ".kt", ".rb", ".php", ".cs", ".swift",
    ".sh", ".sql", ".graphql", ".prisma",
})

INCLUDED_EXTENSIONS = SOURCE_EXTENSIONS | frozenset({
    ".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf", ".xml",
    ".html", ".htm", ".css", ".scss", ".sass", ".less", ".svg",
    ".md", ".mdx", ".txt", ".rst",
})

NAMED_FILES = frozenset({
    "package.json", "readme", "readme.md", "license", "dockerfile",
    "makefile", "procfile", "gemfile", "go.mod", "go.sum", "requirements.txt", "tsconfig.json",
})

HIDDEN_ALLOWLIST = frozenset({".gitignore"})

MARKER_FILES = frozenset({
    "package.json", "pyproject.toml", "tsconfig.json", "cargo.toml", "go.mod",
    "requirements.txt", "setup.py", "readme.md", "readme",
})


@dataclass(frozen=True)
class CopyFilter:
    """Decides which directories are walked and which files are copied."""

    excluded_dirs: frozenset[str] = EXCLUDED_DIRS
    extensions: frozenset[str] = INCLUDED_EXTENSIONS
    named_files: frozenset[str] = NAMED_FILES
    hidden_allowlist: frozenset[str] = HIDDEN_ALLOWLIST

    def accepts_dir(self, name: str) -> bool:
        return name not in self.excluded_dirs and not name.startswith(".")

    def accepts_file(self, relative_path: str) -> bool:
        parts = PurePosixPath(relative_path).parts
        if not parts or not all(self.accepts_dir(p) for p in parts[:-1]):
            return False
        name = parts[-1]
        if name.startswith("."):
            return name in self.hidden_allowlist
        if name.lower() in self.named_files:
            return True
        return PurePosixPath(name).suffix.lower() in self.extensions

    def walk(self, root: Path, skip: Sequence[Path] = ()) -> Iterator[tuple[Path, str]]:
        """Yield ``(path, relative_posix_path)`` for every accepted file under ``root``."""
        skip_resolved = {p.resolve() for p in skip}
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            dirnames[:] = sorted(
                d for d in dirnames
                if self.accepts_dir(d) and (current / d).resolve() not in skip_resolved
            )
            for name in sorted(filenames):
                path = current / name
                rel = path.relative_to(root).as_posix()
                if self.accepts_file(rel):
                    yield path, rel


@dataclass
class ReconcileResult:
    strategy: str | None = None
    artifacts: list[Artifact] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.artifacts)


def write_artifacts(dest: Path, artifacts: Sequence[Artifact]) -> list[Artifact]:
    """Write artifacts under ``dest``, overwriting existing files. Returns what was written."""
    dest.mkdir(parents=True, exist_ok=True)
    root = dest.resolve()
    written = []
    for artifact in artifacts:
        target = dest.joinpath(*artifact.relative_path.split("/"))
        if not target.resolve().is_relative_to(root):
            logger.warning(f"Refusing to write outside {dest}: {artifact.relative_path}")
            continue
        try:
            if target.is_dir():
                logger.warning(f"Skipping {artifact.relative_path}: a directory exists there")
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(artifact.data)
            written.append(artifact)
        except OSError as e:
            logger.warning(f"Failed to write {artifact.relative_path}: {e}")
    return written


def find_scaffold_files(record: RunRecord) -> list[ScaffoldFile] | None:
    """Files from the scaffold step, preferring a step that succeeded."""
    fallback = None
    for step_id, step in record.steps.items():
        if not SCAFFOLD_STEP_PATTERN.search(step_id):
            continue
        files = step.files()
        if not files:
            continue
        if StepStatus.parse(step.status) == StepStatus.SUCCESS:
            return files
        if fallback is None:
            fallback = files
    return fallback


class ArtifactReconciler:
    """Best-effort materialization of a run's files. Never raises."""

    def __init__(
        self,
        runtime: RuntimeClient | None = None,
        providers: Sequence[CandidateProvider] = (),
        copy_filter: CopyFilter | None = None,
    ):
        self.runtime = runtime
        self.providers = list(providers)
        self.copy_filter = copy_filter or CopyFilter()

    async def reconcile(
        self,
        run_id: str | None,
        output_dir: str | Path,
        project_name: str | None = None,
        throttle: RequestThrottle | None = None,
    ) -> ReconcileResult:
        dest = Path(output_dir)
        ctx = CandidateContext(output_dir=dest, project_name=project_name, run_id=run_id)

        strategies = [
            ("structured", lambda: self._from_run_record(run_id, dest, throttle)),
            ("project-root", lambda: self._from_project_root(ctx)),
            ("partial", lambda: self._from_partial_collection(ctx)),
        ]
        for name, strategy in strategies:
            try:
                written = await strategy()
            except ReconciliationMiss as e:
                logger.debug(f"{name}: {e}")
                continue
            except Exception as e:
                logger.warning(f"{name} lookup failed: {type(e).__name__}: {e}")
                continue
            if written:
                logger.info(f"Wrote {len(written)} file(s) to {dest} via {name} lookup")
                return ReconcileResult(strategy=name, artifacts=written)

        logger.info(f"No generated files found for run {run_id or '-'}")
        return ReconcileResult()

    async def ensure_files_extracted(
        self,
        output_dir: str | Path,
        run_id: str | None = None,
        project_name: str | None = None,
    ) -> ReconcileResult:
        """Manual recovery: reconcile without a monitoring session."""
        return await self.reconcile(run_id, output_dir, project_name=project_name)

    # ─── Strategies ───

    async def _from_run_record(
        self, run_id: str | None, dest: Path, throttle: RequestThrottle | None
    ) -> list[Artifact]:
        if not run_id or self.runtime is None:
            raise ReconciliationMiss("no run to look up")

        record = await self.runtime.get_run(run_id, throttle=throttle)
        files = find_scaffold_files(record)
        if not files:
            raise ReconciliationMiss("run record has no scaffold files")

        artifacts = []
        for f in files:
            try:
                artifact = Artifact(relative_path=f.path, content=f.content or "")
            except ValueError as e:
                logger.warning(f"Skipping scaffold file: {e}")
                continue
            if self.copy_filter.accepts_file(artifact.relative_path):
                artifacts.append(artifact)
        if not artifacts:
            raise ReconciliationMiss("no scaffold files passed the copy filter")
        return write_artifacts(dest, artifacts)

    async def _from_project_root(self, ctx: CandidateContext) -> list[Artifact]:
        candidates = [c for c in collect_candidates(self.providers, ctx) if c.is_dir()]
        for looks_right in (self._has_marker, self._has_source):
            for candidate in candidates:
                if not looks_right(candidate, ctx.output_dir):
                    continue
                artifacts = self._collect(candidate, ctx.output_dir)
                if artifacts:
                    logger.info(f"Using project root {candidate}")
                    return write_artifacts(ctx.output_dir, artifacts)
        raise ReconciliationMiss("no candidate directory looks like a project root")

    async def _from_partial_collection(self, ctx: CandidateContext) -> list[Artifact]:
        merged: dict[str, Artifact] = {}
        for candidate in collect_candidates(self.providers, ctx):
            if not candidate.is_dir():
                continue
            for child in sorted(candidate.iterdir()):
                if not child.is_dir() or not self.copy_filter.accepts_dir(child.name):
                    continue
                if child.resolve() == ctx.output_dir.resolve():
                    continue
                for artifact in self._collect(child, ctx.output_dir, prefix=child.name):
                    merged.setdefault(artifact.relative_path, artifact)
        if not merged:
            raise ReconciliationMiss("no candidate subdirectory holds relevant files")
        return write_artifacts(ctx.output_dir, list(merged.values()))

    # ─── Helpers ───

    def _collect(self, root: Path, dest: Path, prefix: str = "") -> list[Artifact]:
        artifacts = []
        for path, rel in self.copy_filter.walk(root, skip=[dest]):
            try:
                content = path.read_bytes()
            except OSError as e:
                logger.warning(f"Cannot read {path}: {e}")
                continue
            artifacts.append(Artifact(relative_path=f"{prefix}/{rel}" if prefix else rel, content=content))
        return artifacts

    def _has_marker(self, root: Path, dest: Path) -> bool:
        try:
            return any(p.is_file() and p.name.lower() in MARKER_FILES for p in root.iterdir())
        except OSError:
            return False

    def _has_source(self, root: Path, dest: Path) -> bool:
        return any(
            PurePosixPath(rel).suffix.lower() in SOURCE_EXTENSIONS
            for _, rel in self.copy_filter.walk(root, skip=[dest])
        )
