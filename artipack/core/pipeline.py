"""Build pipeline: the command surface's build operation.

Wires ArtifactParser -> ToolIndex -> DependencyResolver -> ToolFetcher ->
PackageBuilder -> ManifestGenerator and turns every failure into a
per-identifier BuildError. Definition problems (parse, conflict, unknown
artifact) stop the build before anything is downloaded or written.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from artipack.config import Settings
from artipack.core.artifact_parser import load_definitions
from artipack.core.errors import ArtipackError
from artipack.core.manifest import ManifestGenerator
from artipack.core.package_builder import PackageBuilder, check_output_path
from artipack.core.resolver import DependencyResolver
from artipack.core.tool_cache import ToolCache
from artipack.core.tool_fetcher import ToolFetcher
from artipack.core.tool_index import ToolIndex
from artipack.models.artifacts import ArtifactDefinition
from artipack.models.build import BuildError, BuildRequest, BuildResult, BuildStatus
from artipack.models.fetch import FetchFailure, FetchMode, FetchReport
from artipack.models.resolution import ResolvedToolSet

logger = logging.getLogger(__name__)


class BuildPipeline:
    """Runs package builds against one cache.

    Parameters
    ----------
    settings:
        Engine settings. Defaults are used if not provided.
    cache:
        ToolCache to use; opened at ``settings.cache_dir`` when omitted.
    fetcher:
        ToolFetcher to use; built from ``settings`` when omitted and closed
        by ``close()``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        cache: ToolCache | None = None,
        fetcher: ToolFetcher | None = None,
        manifests: ManifestGenerator | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.cache = cache or ToolCache(self.settings.cache_dir)
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or ToolFetcher(
            self.cache,
            max_workers=self.settings.max_workers,
            retry_attempts=self.settings.retry_attempts,
            backoff_base=self.settings.backoff_base,
            backoff_max=self.settings.backoff_max,
            timeout=self.settings.download_timeout,
            user_agent=self.settings.user_agent,
        )
        self.manifests = manifests or ManifestGenerator()
        self.builder = PackageBuilder(self.manifests)

    def close(self) -> None:
        if self._owns_fetcher:
            self.fetcher.close()

    def __enter__(self) -> BuildPipeline:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    @staticmethod
    def load(definition_paths: Iterable[Path]) -> DependencyResolver:
        """Parse every definition and index its tools."""
        definitions = load_definitions(definition_paths)
        return DependencyResolver(definitions, ToolIndex.build(definitions))

    def resolve(
        self, definition_paths: Iterable[Path], artifacts: Iterable[str]
    ) -> ResolvedToolSet:
        return self.load(definition_paths).resolve(artifacts)

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self, request: BuildRequest) -> BuildResult:
        """Build a package for *request*; never raises engine errors."""
        logger.info(
            "Building %s from %d artifact(s) (%s)",
            request.output, len(request.artifacts), request.mode.value,
        )
        try:
            resolver = self.load(request.definitions)
            selected = resolver.definitions_for(request.artifacts)
            resolved = resolver.resolve(request.artifacts)
            check_output_path(request.output, request.overwrite)
        except ArtipackError as exc:
            logger.error("Build aborted: %s", exc)
            return _failed([_error_from(exc)])
        except FileExistsError as exc:
            logger.error("Build aborted: %s", exc)
            return _failed([_output_error(request.output, exc)])

        report = self.fetcher.fetch(resolved, request.mode)

        if request.mode == FetchMode.FAIL_FAST and not report.ok:
            first = report.failed[0] if report.failed else None
            errors = [_error_from_failure(first)] if first else [
                BuildError(
                    identifier=name,
                    error_type="Skipped",
                    message=f"tool {name!r} was not fetched",
                )
                for name in report.skipped
            ]
            logger.error("Build aborted by fetch failure: %s", errors[0].message)
            return _failed(errors, fetch_report=report)

        packaged, omitted = _split_by_failures(selected, report)
        if omitted:
            logger.warning(
                "Best-effort build omits %d artifact(s) whose tools failed: %s",
                len(omitted), ", ".join(omitted),
            )
            resolved = resolver.resolve([d.name for d in packaged])

        try:
            package = self.builder.build(
                packaged,
                resolved,
                report.succeeded,
                request.output,
                archive=request.archive,
                overwrite=request.overwrite,
                omitted_artifacts=omitted,
                failed_tools=report.failed_names,
            )
        except ArtipackError as exc:
            logger.error("Package assembly failed: %s", exc)
            return _failed([_error_from(exc)], fetch_report=report)
        except FileExistsError as exc:
            logger.error("Package assembly failed: %s", exc)
            return _failed([_output_error(request.output, exc)], fetch_report=report)

        status = BuildStatus.PARTIAL if package.manifest.partial else BuildStatus.SUCCESS
        return BuildResult(
            status=status,
            manifest_path=package.manifest_path,
            archive_path=package.archive_path,
            manifest=package.manifest,
            errors=[_error_from_failure(f) for f in report.failed],
            fetch_report=report,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _split_by_failures(
    selected: list[ArtifactDefinition], report: FetchReport
) -> tuple[list[ArtifactDefinition], list[str]]:
    """Keep artifacts whose tools all succeeded; name the ones dropped."""
    failed = set(report.failed_names) | set(report.skipped)
    if not failed:
        return list(selected), []
    packaged = [d for d in selected if not failed.intersection(d.tool_names)]
    omitted = [d.name for d in selected if failed.intersection(d.tool_names)]
    return packaged, omitted


def _failed(
    errors: list[BuildError], *, fetch_report: FetchReport | None = None
) -> BuildResult:
    return BuildResult(status=BuildStatus.FAILED, errors=errors, fetch_report=fetch_report)


def _error_from(exc: ArtipackError) -> BuildError:
    return BuildError(**exc.to_dict())


def _error_from_failure(failure: FetchFailure) -> BuildError:
    return BuildError(
        identifier=failure.name,
        error_type=failure.error_type,
        message=failure.message,
    )


def _output_error(output: Path, exc: OSError) -> BuildError:
    return BuildError(
        identifier=str(output),
        error_type=type(exc).__name__,
        message=str(exc),
    )
