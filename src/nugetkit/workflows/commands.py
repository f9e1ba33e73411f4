"""
Registry command workflows.

The set of workflows is closed: Ping, Search, Publish, Unlist, Relist, View
and Login. Each is a small state machine with an ``execute(context)``
coroutine that never raises for registry or input failures; it ends in a
WorkflowOutcome instead.

    Ping:    START -> RESOLVE_INDEX -> PROBE -> SUCCESS | FAILURE
    Search:  START -> RESOLVE_INDEX -> QUERY -> RESULTS_PAGE | FAILURE
    Publish: START -> BUILD_ARCHIVE -> RESOLVE_INDEX -> UPLOAD -> SUCCESS | CONFLICT | FAILURE
    Unlist:  START -> RESOLVE_INDEX -> TOGGLE_VISIBILITY -> SUCCESS | NOT_FOUND | FAILURE
    Relist:  same as Unlist with visible=True
    View:    START -> RESOLVE_INDEX -> FETCH_METADATA -> METADATA | NOT_FOUND | FAILURE
             (summary, versions, readme or icon)
    Login:   START -> VALIDATE_CREDENTIALS -> SUCCESS | FAILURE
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from nugetkit.archive.builder import Archive, build_archive
from nugetkit.archive.reader import load_archive, read_entry
from nugetkit.connectors.types import Credentials, FailureReason, RequestOutcome
from nugetkit.errors import (
    ArchiveFormatError,
    AuthenticationError,
    BuildError,
    NoMatchingResourceError,
    NugetkitError,
    PackageExistsError,
    PackageNotFoundError,
    RegistryUnreachableError,
    UnexpectedResponseError,
    VersionError,
)
from nugetkit.manifest.nuspec import read_nuspec
from nugetkit.registry.client import MAX_SEARCH_TAKE
from nugetkit.registry.resources import (
    PACKAGE_PUBLISH,
    SUPPORTED_VERSIONS,
    find_resource,
)
from nugetkit.versioning import SemanticVersion, VersionRange, parse_version, pick_version
from nugetkit.workflows.types import Step, TerminalState, ViewPart, WorkflowOutcome

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from nugetkit.contracts import CatalogEntry, ServiceIndex
    from nugetkit.manifest.model import Manifest, PackageIdentity, PackageRef
    from nugetkit.registry.resources import Endpoint
    from nugetkit.workflows.context import WorkflowContext

logger = logging.getLogger(__name__)


class _Run:
    """Trail bookkeeping for one workflow execution."""

    def __init__(self, command: str) -> None:
        self.command = command
        self.trail: list[str] = [Step.START.value]

    def step(self, step: Step) -> None:
        self.trail.append(step.value)
        logger.debug("Workflow step", extra={"command": self.command, "step": step.value})

    def finish(
        self,
        state: TerminalState,
        message: str,
        *,
        data: dict[str, Any] | None = None,
        error: NugetkitError | None = None,
        request: RequestOutcome | None = None,
    ) -> WorkflowOutcome:
        self.trail.append(state.value)
        outcome = WorkflowOutcome(
            command=self.command,
            state=state,
            message=message,
            data=data or {},
            error=error,
            request=request,
            trail=tuple(self.trail),
        )
        log = logger.info if outcome.ok else logger.warning
        log(
            "Workflow finished",
            extra={
                "command": self.command,
                "state": state.value,
                "error_code": error.code if error is not None else None,
                "exit_code": outcome.exit_code,
            },
        )
        return outcome

    def fail(self, error: NugetkitError, message: str | None = None) -> WorkflowOutcome:
        request = getattr(error, "outcome", None)
        return self.finish(
            TerminalState.FAILURE,
            message or f"{self.command} failed: {error}",
            error=error,
            request=request,
        )


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def supported_endpoints(index: ServiceIndex) -> list[Endpoint]:
    """One endpoint per resource type the client supports and the index advertises."""
    endpoints: list[Endpoint] = []
    for resource_type in SUPPORTED_VERSIONS:
        try:
            endpoints.append(find_resource(index, resource_type))
        except NoMatchingResourceError:
            continue
    return endpoints


@dataclass(frozen=True)
class Ping:
    """Connectivity check: fetch a fresh service index and list usable endpoints."""

    name: ClassVar[str] = "ping"

    async def execute(self, ctx: WorkflowContext) -> WorkflowOutcome:
        run = _Run(self.name)
        started = time.monotonic()

        run.step(Step.RESOLVE_INDEX)
        try:
            index = await ctx.resolver.resolve(ctx.registry_url, refresh=True)
        except NugetkitError as e:
            return run.fail(e, f"Registry {ctx.registry_url} did not respond with a service index")

        run.step(Step.PROBE)
        endpoints = supported_endpoints(index)
        elapsed_ms = (time.monotonic() - started) * 1000
        if not endpoints:
            advertised = tuple(t for resource in index.resources for t in resource.types)
            error = NoMatchingResourceError(", ".join(SUPPORTED_VERSIONS), advertised)
            return run.fail(error, f"Registry {ctx.registry_url} advertises no supported resources")

        return run.finish(
            TerminalState.SUCCESS,
            f"Registry {ctx.registry_url} is reachable",
            data={
                "source": ctx.registry_url,
                "time_ms": round(elapsed_ms, 3),
                "index_version": index.version,
                "endpoints": {endpoint.type_string: endpoint.url for endpoint in endpoints},
            },
        )


@dataclass(frozen=True)
class Search:
    """One page of search results. Further pages are the caller's business."""

    query: str = ""
    skip: int = 0
    take: int = 20
    prerelease: bool = False
    package_type: str | None = None

    name: ClassVar[str] = "search"

    def __post_init__(self) -> None:
        if self.skip < 0:
            raise ValueError(f"skip must be >= 0, got {self.skip}")
        if not 0 < self.take <= MAX_SEARCH_TAKE:
            raise ValueError(f"take must be in 1..{MAX_SEARCH_TAKE}, got {self.take}")

    async def execute(self, ctx: WorkflowContext) -> WorkflowOutcome:
        run = _Run(self.name)
        client = ctx.client()

        run.step(Step.RESOLVE_INDEX)
        try:
            await ctx.resolver.resolve(ctx.registry_url)
        except NugetkitError as e:
            return run.fail(e)

        run.step(Step.QUERY)
        try:
            page = await client.search(
                self.query,
                skip=self.skip,
                take=self.take,
                prerelease=self.prerelease,
                package_type=self.package_type,
            )
        except NugetkitError as e:
            return run.fail(e)

        return run.finish(
            TerminalState.RESULTS_PAGE,
            f"Found {page.total_hits} package(s)",
            data={
                "query": self.query,
                "total_hits": page.total_hits,
                "skip": self.skip,
                "take": self.take,
                "results": [_dump(result) for result in page.data],
            },
        )


@dataclass(frozen=True)
class Publish:
    """
    Build (or load) a package archive and upload it.

    Exactly one of ``manifest``, ``archive`` or ``archive_path`` is given.
    Relative content sources of ``manifest`` resolve against ``base_dir``.
    """

    manifest: Manifest | None = None
    archive: Archive | None = None
    archive_path: Path | None = None
    base_dir: Path | None = None

    name: ClassVar[str] = "publish"

    def __post_init__(self) -> None:
        given = sum(value is not None for value in (self.manifest, self.archive, self.archive_path))
        if given != 1:
            raise ValueError("Publish needs exactly one of manifest, archive or archive_path")

    def _archive(self, ctx: WorkflowContext) -> Archive:
        if self.archive is not None:
            return self.archive
        if self.archive_path is not None:
            return load_archive(self.archive_path)
        assert self.manifest is not None
        return build_archive(self.manifest, ctx.reader(self.base_dir), ctx.build)

    async def execute(self, ctx: WorkflowContext) -> WorkflowOutcome:
        run = _Run(self.name)

        run.step(Step.BUILD_ARCHIVE)
        try:
            archive = self._archive(ctx)
        except NugetkitError as e:
            return run.fail(e, f"Could not prepare package: {e}")
        except (OSError, ValueError) as e:
            error = BuildError(f"Could not prepare package: {e}")
            return run.fail(error, str(error))
        label = f"{archive.identity.id} {archive.identity.version}"
        data: dict[str, Any] = {
            "id": archive.identity.id,
            "version": str(archive.identity.version),
            "filename": archive.filename,
            "sha256": archive.sha256,
            "size_bytes": archive.size,
        }

        run.step(Step.RESOLVE_INDEX)
        try:
            await ctx.resolver.resolve(ctx.registry_url)
        except NugetkitError as e:
            return run.fail(e)

        run.step(Step.UPLOAD)
        try:
            outcome = await ctx.client().push(archive.data)
        except PackageExistsError as e:
            return run.finish(
                TerminalState.CONFLICT,
                f"{label} already exists on {ctx.registry_url}",
                data=data,
                error=e,
                request=e.outcome,
            )
        except NugetkitError as e:
            return run.fail(e, f"Publishing {label} failed: {e}")

        data["http_status"] = outcome.http_status
        return run.finish(TerminalState.SUCCESS, f"Published {label}", data=data, request=outcome)


@dataclass(frozen=True)
class _ToggleVisibility:
    identity: PackageIdentity

    name: ClassVar[str]
    visible: ClassVar[bool]

    async def _toggle(self, ctx: WorkflowContext) -> RequestOutcome:
        client = ctx.client()
        if self.visible:
            return await client.relist(self.identity.id, self.identity.version)
        return await client.unlist(self.identity.id, self.identity.version)

    async def _already_in_state(self, ctx: WorkflowContext) -> bool:
        """Status check after a conflict: is the version already (un)listed?"""
        try:
            entry = await ctx.client().metadata(self.identity.id, self.identity.version)
        except NugetkitError:
            return False
        # Registration entries without "listed" are listed
        listed = True if entry.listed is None else entry.listed
        return listed == self.visible

    async def execute(self, ctx: WorkflowContext) -> WorkflowOutcome:
        run = _Run(self.name)
        label = f"{self.identity.id} {self.identity.version}"
        target = "listed" if self.visible else "unlisted"
        data = {"id": self.identity.id, "version": str(self.identity.version), "listed": self.visible}

        run.step(Step.RESOLVE_INDEX)
        try:
            await ctx.resolver.resolve(ctx.registry_url)
        except NugetkitError as e:
            return run.fail(e)

        run.step(Step.TOGGLE_VISIBILITY)
        try:
            outcome = await self._toggle(ctx)
        except PackageNotFoundError as e:
            return run.finish(
                TerminalState.NOT_FOUND,
                f"{label} was not found on {ctx.registry_url}",
                data=data,
                error=e,
                request=e.outcome,
            )
        except UnexpectedResponseError as e:
            # Some registries answer 409 when the version is already in the requested state
            if e.outcome is not None and e.outcome.reason == FailureReason.CONFLICT:
                if await self._already_in_state(ctx):
                    return run.finish(TerminalState.SUCCESS, f"{label} is {target}", data=data, request=e.outcome)
            return run.fail(e)
        except NugetkitError as e:
            return run.fail(e)

        return run.finish(TerminalState.SUCCESS, f"{label} is {target}", data=data, request=outcome)


@dataclass(frozen=True)
class Unlist(_ToggleVisibility):
    """Hide a package version from search. Repeating it still succeeds."""

    name: ClassVar[str] = "unlist"
    visible: ClassVar[bool] = False


@dataclass(frozen=True)
class Relist(_ToggleVisibility):
    """Make an unlisted package version visible again. Repeating it still succeeds."""

    name: ClassVar[str] = "relist"
    visible: ClassVar[bool] = True


def _choose_version(versions: Sequence[SemanticVersion], version_range: VersionRange | None) -> SemanticVersion | None:
    if version_range is not None:
        return pick_version(version_range, versions)
    # No range: latest stable, or latest pre-release when nothing stable exists
    return pick_version(VersionRange.any(), versions, force_floating=True) or max(versions, default=None)


@dataclass(frozen=True)
class View:
    """
    Show a package from ``Id`` or ``Id@range``.

    ``summary`` and ``versions`` read the registration index. ``readme`` and
    ``icon`` pick a version from the flat container, then read the file the
    version's nuspec names out of the downloaded archive. The readme comes
    back as text, the icon base64-encoded.
    """

    ref: PackageRef
    part: ViewPart = ViewPart.SUMMARY

    name: ClassVar[str] = "view"

    async def execute(self, ctx: WorkflowContext) -> WorkflowOutcome:
        run = _Run(self.name)

        run.step(Step.RESOLVE_INDEX)
        try:
            await ctx.resolver.resolve(ctx.registry_url)
        except NugetkitError as e:
            return run.fail(e)

        run.step(Step.FETCH_METADATA)
        if self.part in (ViewPart.README, ViewPart.ICON):
            return await self._packaged_file(run, ctx)
        return await self._summary(run, ctx)

    def _not_found(self, run: _Run, ctx: WorkflowContext, error: PackageNotFoundError) -> WorkflowOutcome:
        return run.finish(
            TerminalState.NOT_FOUND,
            f"{self.ref.id} was not found on {ctx.registry_url}",
            error=error,
            request=error.outcome,
        )

    def _no_version(self, run: _Run, ctx: WorkflowContext, versions: Sequence[SemanticVersion]) -> WorkflowOutcome:
        return run.finish(
            TerminalState.NOT_FOUND,
            f"No version of {self.ref} was found on {ctx.registry_url}",
            data={"id": self.ref.id, "versions": [str(v) for v in sorted(versions)]},
        )

    async def _summary(self, run: _Run, ctx: WorkflowContext) -> WorkflowOutcome:
        try:
            leaves = await ctx.client().registration_leaves(self.ref.id)
        except PackageNotFoundError as e:
            return self._not_found(run, ctx, e)
        except NugetkitError as e:
            return run.fail(e)

        entries: dict[SemanticVersion, CatalogEntry] = {}
        for leaf in leaves:
            try:
                entries[parse_version(leaf.catalog_entry.version)] = leaf.catalog_entry
            except VersionError:
                logger.debug("Skipping unparseable version", extra={"version_text": leaf.catalog_entry.version})
        versions = [str(v) for v in sorted(entries)]

        if self.part == ViewPart.VERSIONS:
            package_id = next(iter(entries.values())).id if entries else self.ref.id
            return run.finish(
                TerminalState.METADATA,
                f"{len(versions)} version(s) of {package_id}",
                data={"id": package_id, "versions": versions},
            )

        chosen = _choose_version(list(entries), self.ref.range)
        if chosen is None:
            return self._no_version(run, ctx, list(entries))

        entry = entries[chosen]
        return run.finish(
            TerminalState.METADATA,
            f"{entry.id} {chosen}",
            data={
                "id": entry.id,
                "version": str(chosen),
                "versions": versions,
                "metadata": _dump(entry),
            },
        )

    async def _packaged_file(self, run: _Run, ctx: WorkflowContext) -> WorkflowOutcome:
        client = ctx.client()
        kind = self.part.value
        try:
            versions = await client.versions(self.ref.id)
        except PackageNotFoundError as e:
            return self._not_found(run, ctx, e)
        except NugetkitError as e:
            return run.fail(e)

        chosen = _choose_version(versions, self.ref.range)
        if chosen is None:
            return self._no_version(run, ctx, versions)
        label = f"{self.ref.id} {chosen}"
        data: dict[str, Any] = {"id": self.ref.id, "version": str(chosen)}

        try:
            path = read_nuspec(await client.nuspec(self.ref.id, chosen)).get(kind)
            content = read_entry(await client.download(self.ref.id, chosen), path) if path else None
        except NugetkitError as e:
            return run.fail(e)
        if content is None:
            return run.finish(TerminalState.NOT_FOUND, f"{label} has no {kind}", data=data)

        data["path"] = path
        data["size_bytes"] = len(content)
        if self.part == ViewPart.README:
            try:
                data["readme"] = content.decode("utf-8")
            except UnicodeDecodeError:
                return run.fail(ArchiveFormatError(f"README {path} of {label} is not valid UTF-8"))
        else:
            data["icon"] = base64.b64encode(content).decode("ascii")
        return run.finish(TerminalState.METADATA, f"{kind} of {label}", data=data)


@dataclass(frozen=True)
class Login:
    """
    Validate an API key against a registry.

    The key is attached to a fresh service index fetch and the registry must
    offer a publish resource. The validated Credentials are returned in
    ``data["credentials"]``; storing them is up to the caller.

    This only proves the key is not refused on the index. Registries that
    serve the index without checking ``X-NuGet-ApiKey`` (nuget.org among
    them) accept any key here; a bad key then surfaces on the first push,
    unlist or relist. The outcome says so in ``data["key_checked"]``.
    """

    api_key: str = field(repr=False)

    name: ClassVar[str] = "login"

    async def execute(self, ctx: WorkflowContext) -> WorkflowOutcome:
        run = _Run(self.name)

        run.step(Step.VALIDATE_CREDENTIALS)
        if not self.api_key.strip():
            return run.fail(AuthenticationError("An API key is required to log in"))
        credentials = Credentials(registry_url=ctx.registry_url, api_key=self.api_key.strip())

        try:
            index = await ctx.resolver.resolve(ctx.registry_url, refresh=True, credentials=credentials)
            endpoint = find_resource(index, PACKAGE_PUBLISH)
        except RegistryUnreachableError as e:
            outcome = e.outcome
            if outcome is not None and outcome.reason in (FailureReason.UNAUTHENTICATED, FailureReason.FORBIDDEN):
                return run.fail(AuthenticationError(f"API key was rejected by {ctx.registry_url}", outcome))
            return run.fail(e)
        except NugetkitError as e:
            return run.fail(e)

        return run.finish(
            TerminalState.SUCCESS,
            f"API key not refused by {ctx.registry_url} (checked against the service index only)",
            data={
                "source": ctx.registry_url,
                "publish_endpoint": endpoint.url,
                "key_checked": "index",
                "credentials": credentials,
            },
        )


Workflow = Ping | Search | Publish | Unlist | Relist | View | Login

WORKFLOW_TYPES: tuple[type, ...] = (Ping, Search, Publish, Unlist, Relist, View, Login)


async def run_workflow(command: Workflow, ctx: WorkflowContext) -> WorkflowOutcome:
    """
    Execute one workflow.

    Raises:
        TypeError: If ``command`` is not one of the workflow variants.
    """
    if not isinstance(command, WORKFLOW_TYPES):
        raise TypeError(f"Unknown workflow: {type(command).__name__}")
    return await command.execute(ctx)


async def run_workflows(
    commands: Sequence[Workflow],
    ctx: WorkflowContext,
    *,
    concurrency: int = 4,
) -> list[WorkflowOutcome]:
    """
    Execute independent workflows concurrently, e.g. batch publishing.

    Outcomes are returned in the order of ``commands``.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")
    semaphore = asyncio.Semaphore(concurrency)

    async def _one(command: Workflow) -> WorkflowOutcome:
        async with semaphore:
            return await run_workflow(command, ctx)

    return list(await asyncio.gather(*(_one(command) for command in commands)))
