"""
End-to-end workflow tests against the in-process registry.

Each workflow ends in exactly one terminal state and records the states it
passed through in its trail.
"""

from __future__ import annotations

import asyncio
import base64
from pathlib import Path

import pytest

from nugetkit.connectors import Credentials
from nugetkit.errors import (
    ArchiveFormatError,
    AuthenticationError,
    BuildError,
    EntryTooLargeError,
    NoMatchingResourceError,
    RegistryUnreachableError,
)
from nugetkit.archive import BuildConfig
from nugetkit.manifest import PackageIdentity, parse_package_ref
from nugetkit.manifest.model import parse_manifest
from nugetkit.versioning import parse_version
from nugetkit.workflows import (
    ExitCode,
    Login,
    Ping,
    Publish,
    Relist,
    Search,
    TerminalState,
    Unlist,
    View,
    ViewPart,
    run_workflow,
    run_workflows,
)
from tests.fixtures.mock_registry import (
    ICON_PNG,
    README_TEXT,
    SAMPLE_FILES,
    MockRegistry,
    documented_archive,
    StaticReader,
    registry_context,
    sample_archive,
    sample_manifest,
    serve,
)


def _identity(package_id: str, version: str) -> PackageIdentity:
    return PackageIdentity(package_id, parse_version(version))


class TestPing:
    """Tests for the Ping workflow."""

    @pytest.mark.asyncio
    async def test_reachable(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Ping(), ctx)
        assert outcome.state == TerminalState.SUCCESS
        assert outcome.trail == ("START", "RESOLVE_INDEX", "PROBE", "SUCCESS")
        assert outcome.data["index_version"] == "3.0.0"
        assert set(outcome.data["endpoints"]) == {
            "PackagePublish/2.0.0",
            "SearchQueryService/3.5.0",
            "RegistrationsBaseUrl/3.6.0",
            "PackageBaseAddress/3.0.0",
        }
        assert outcome.data["time_ms"] >= 0

    @pytest.mark.asyncio
    async def test_always_fetches_fresh_index(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, registry_context(url) as ctx:
            await run_workflow(Ping(), ctx)
            await run_workflow(Ping(), ctx)
        assert ctx.resolver.fetch_count == 2

    @pytest.mark.asyncio
    async def test_unreachable(self) -> None:
        registry = MockRegistry(index_status=503)
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Ping(), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert isinstance(outcome.error, RegistryUnreachableError)
        assert outcome.exit_code == ExitCode.FAILURE
        assert outcome.trail == ("START", "RESOLVE_INDEX", "FAILURE")

    @pytest.mark.asyncio
    async def test_no_supported_resources(self) -> None:
        registry = MockRegistry(resources=(("Unknown/1.0.0", "/x"), ("SearchQueryService/9.0.0", "/query")))
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Ping(), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert isinstance(outcome.error, NoMatchingResourceError)


class TestSearch:
    """Tests for the Search workflow."""

    @pytest.mark.asyncio
    async def test_results_page(self) -> None:
        registry = MockRegistry()
        for package_id in ("Json.A", "Json.B", "Json.C"):
            registry.add(package_id, "1.0.0", description=f"{package_id} library")
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Search("json", skip=1, take=1), ctx)
        assert outcome.state == TerminalState.RESULTS_PAGE
        assert outcome.ok
        assert outcome.data["total_hits"] == 3
        assert [r["id"] for r in outcome.data["results"]] == ["Json.B"]
        assert outcome.data["results"][0]["totalDownloads"] == 10
        assert outcome.trail == ("START", "RESOLVE_INDEX", "QUERY", "RESULTS_PAGE")

    @pytest.mark.asyncio
    async def test_empty_results(self) -> None:
        async with serve(MockRegistry()) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Search("nothing"), ctx)
        assert outcome.state == TerminalState.RESULTS_PAGE
        assert outcome.data["results"] == []

    @pytest.mark.asyncio
    async def test_missing_search_resource(self) -> None:
        registry = MockRegistry(resources=(("PackagePublish/2.0.0", "/api/v2/package"),))
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Search("x"), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert isinstance(outcome.error, NoMatchingResourceError)
        assert outcome.trail[-2:] == ("QUERY", "FAILURE")

    @pytest.mark.parametrize(("skip", "take"), [(-1, 10), (0, 0), (0, 1001)])
    def test_invalid_paging(self, skip: int, take: int) -> None:
        with pytest.raises(ValueError):
            Search("x", skip=skip, take=take)


class TestPublish:
    """Tests for the Publish workflow."""

    @pytest.mark.asyncio
    async def test_publish_then_conflict(self) -> None:
        """The first publish succeeds, the second reports a conflict."""
        registry = MockRegistry()
        command = Publish(manifest=sample_manifest())
        async with serve(registry) as url, registry_context(
            url, "test-key", file_reader=StaticReader(SAMPLE_FILES)
        ) as ctx:
            first = await run_workflow(command, ctx)
            second = await run_workflow(command, ctx)

        assert first.state == TerminalState.SUCCESS
        assert first.data["http_status"] == 201
        assert first.data["filename"] == "sample.pkg.1.0.0.nupkg"
        assert first.trail == ("START", "BUILD_ARCHIVE", "RESOLVE_INDEX", "UPLOAD", "SUCCESS")

        assert second.state == TerminalState.CONFLICT
        assert second.exit_code == ExitCode.CONFLICT
        assert second.error.code == "nugetkit::api::package_exists"
        assert second.data["sha256"] == first.data["sha256"]
        assert len(registry.packages) == 1

    @pytest.mark.asyncio
    async def test_publish_prebuilt_archive(self, tmp_path: Path) -> None:
        registry = MockRegistry()
        path = sample_archive("Prebuilt.Pkg", "2.0.0").write(tmp_path)
        async with serve(registry) as url, registry_context(url, "test-key") as ctx:
            outcome = await run_workflow(Publish(archive_path=path), ctx)
        assert outcome.state == TerminalState.SUCCESS
        assert registry.get("Prebuilt.Pkg", "2.0.0") is not None

    @pytest.mark.asyncio
    async def test_publish_from_disk(self, tmp_path: Path) -> None:
        """Relative sources resolve against base_dir."""
        (tmp_path / "bin").mkdir()
        (tmp_path / "bin" / "a.dll").write_bytes(SAMPLE_FILES["bin/a.dll"])
        registry = MockRegistry()
        async with serve(registry) as url, registry_context(url, "test-key") as ctx:
            outcome = await run_workflow(Publish(manifest=sample_manifest(), base_dir=tmp_path), ctx)
        assert outcome.state == TerminalState.SUCCESS
        assert registry.get("Sample.Pkg", "1.0.0").data == sample_archive().data

    @pytest.mark.asyncio
    async def test_build_failure_sends_nothing(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, registry_context(
            url, "test-key", file_reader=StaticReader(SAMPLE_FILES), build=BuildConfig(max_entry_bytes=4)
        ) as ctx:
            outcome = await run_workflow(Publish(manifest=sample_manifest()), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert isinstance(outcome.error, EntryTooLargeError)
        assert outcome.exit_code == ExitCode.INVALID_INPUT
        assert outcome.trail == ("START", "BUILD_ARCHIVE", "FAILURE")
        assert registry.requests == []

    @pytest.mark.asyncio
    async def test_reader_error_becomes_build_error(self) -> None:
        """Errors outside the toolkit's own hierarchy still end the run with an outcome."""

        class BrokenReader:
            def read(self, source: str) -> bytes:
                raise ValueError(f"embedded null byte in {source}")

        registry = MockRegistry()
        async with serve(registry) as url, registry_context(url, "test-key", file_reader=BrokenReader()) as ctx:
            outcome = await run_workflow(Publish(manifest=sample_manifest()), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert isinstance(outcome.error, BuildError)
        assert "embedded null byte" in outcome.message
        assert outcome.exit_code == ExitCode.INVALID_INPUT
        assert registry.requests == []

    @pytest.mark.asyncio
    async def test_minimal_manifest_published(self) -> None:
        registry = MockRegistry()
        manifest = parse_manifest({"id": "Bare.Pkg", "version": "0.1.0"}, check_files=False)
        async with serve(registry) as url, registry_context(url, "test-key") as ctx:
            outcome = await run_workflow(Publish(manifest=manifest), ctx)
        assert outcome.state == TerminalState.SUCCESS
        assert registry.get("Bare.Pkg", "0.1.0") is not None

    @pytest.mark.asyncio
    async def test_missing_api_key(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Publish(archive=sample_archive()), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert isinstance(outcome.error, AuthenticationError)
        assert outcome.exit_code == ExitCode.AUTHENTICATION
        assert registry.calls("PUT") == []

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        registry = MockRegistry(push_status=500)
        async with serve(registry) as url, registry_context(url, "test-key") as ctx:
            outcome = await run_workflow(Publish(archive=sample_archive()), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert outcome.exit_code == ExitCode.FAILURE
        assert len(registry.calls("PUT")) == 1

    def test_exactly_one_input(self) -> None:
        with pytest.raises(ValueError):
            Publish()
        with pytest.raises(ValueError):
            Publish(manifest=sample_manifest(), archive=sample_archive())

    @pytest.mark.asyncio
    async def test_batch_publish(self) -> None:
        """Independent publishes run concurrently and keep their order."""
        registry = MockRegistry()
        commands = [Publish(archive=sample_archive(f"Batch.Pkg{i}", "1.0.0")) for i in range(5)]
        commands.append(Publish(archive=sample_archive("Batch.Pkg0", "1.0.0")))
        async with serve(registry) as url, registry_context(url, "test-key") as ctx:
            outcomes = await run_workflows(commands, ctx, concurrency=3)
        assert [o.state for o in outcomes[:5]] == [TerminalState.SUCCESS] * 5
        assert outcomes[5].state == TerminalState.CONFLICT
        assert [o.data["id"] for o in outcomes] == [f"Batch.Pkg{i}" for i in range(5)] + ["Batch.Pkg0"]
        assert ctx.resolver.fetch_count == 1


class TestToggleVisibility:
    """Tests for Unlist and Relist."""

    @pytest.mark.asyncio
    async def test_unlist_twice(self) -> None:
        """Unlisting an already unlisted version still succeeds."""
        registry = MockRegistry()
        registry.add("Sample.Pkg", "1.0.0")
        command = Unlist(_identity("Sample.Pkg", "1.0.0"))
        async with serve(registry) as url, registry_context(url, "test-key") as ctx:
            first = await run_workflow(command, ctx)
            second = await run_workflow(command, ctx)
        assert first.state == second.state == TerminalState.SUCCESS
        assert first.trail == ("START", "RESOLVE_INDEX", "TOGGLE_VISIBILITY", "SUCCESS")
        assert registry.get("Sample.Pkg", "1.0.0").listed is False

    @pytest.mark.asyncio
    async def test_unlist_twice_with_conflict_registry(self) -> None:
        """A 409 for an already unlisted version is confirmed via metadata."""
        registry = MockRegistry(toggle_conflict=True)
        registry.add("Sample.Pkg", "1.0.0", listed=False)
        async with serve(registry) as url, registry_context(url, "test-key") as ctx:
            outcome = await run_workflow(Unlist(_identity("Sample.Pkg", "1.0.0")), ctx)
        assert outcome.state == TerminalState.SUCCESS
        assert registry.calls("GET", "/registration")

    @pytest.mark.asyncio
    async def test_conflict_without_listed_flag_fails(self) -> None:
        """Leaves without "listed" count as listed, so a refused unlist is not a success."""
        registry = MockRegistry(locked=True, omit_listed=True)
        registry.add("Sample.Pkg", "1.0.0")
        async with serve(registry) as url, registry_context(url, "test-key") as ctx:
            outcome = await run_workflow(Unlist(_identity("Sample.Pkg", "1.0.0")), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert outcome.exit_code == ExitCode.FAILURE
        assert registry.get("Sample.Pkg", "1.0.0").listed is True

    @pytest.mark.asyncio
    async def test_relist_conflict_without_listed_flag(self) -> None:
        registry = MockRegistry(locked=True, omit_listed=True)
        registry.add("Sample.Pkg", "1.0.0")
        async with serve(registry) as url, registry_context(url, "test-key") as ctx:
            outcome = await run_workflow(Relist(_identity("Sample.Pkg", "1.0.0")), ctx)
        assert outcome.state == TerminalState.SUCCESS

    @pytest.mark.asyncio
    async def test_relist(self) -> None:
        registry = MockRegistry()
        registry.add("Sample.Pkg", "1.0.0", listed=False)
        async with serve(registry) as url, registry_context(url, "test-key", relist_method="POST") as ctx:
            outcome = await run_workflow(Relist(_identity("Sample.Pkg", "1.0.0")), ctx)
        assert outcome.state == TerminalState.SUCCESS
        assert outcome.data["listed"] is True
        assert registry.get("Sample.Pkg", "1.0.0").listed is True
        assert len(registry.calls("POST")) == 1

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        async with serve(MockRegistry()) as url, registry_context(url, "test-key") as ctx:
            outcome = await run_workflow(Unlist(_identity("Missing.Pkg", "1.0.0")), ctx)
        assert outcome.state == TerminalState.NOT_FOUND
        assert outcome.exit_code == ExitCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_forbidden(self) -> None:
        registry = MockRegistry()
        registry.add("Sample.Pkg", "1.0.0")
        async with serve(registry) as url, registry_context(url, "other-key") as ctx:
            outcome = await run_workflow(Unlist(_identity("Sample.Pkg", "1.0.0")), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert outcome.exit_code == ExitCode.AUTHENTICATION
        assert registry.get("Sample.Pkg", "1.0.0").listed is True


class TestView:
    """Tests for the View workflow."""

    @pytest.mark.asyncio
    async def test_latest_stable(self) -> None:
        registry = MockRegistry()
        for version in ("1.0.0", "1.5.0", "2.0.0-beta"):
            registry.add("Sample.Pkg", version, description=f"v{version}")
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(View(parse_package_ref("sample.pkg")), ctx)
        assert outcome.state == TerminalState.METADATA
        assert outcome.data["version"] == "1.5.0"
        assert outcome.data["versions"] == ["1.0.0", "1.5.0", "2.0.0-beta"]
        assert outcome.data["metadata"]["description"] == "v1.5.0"
        assert outcome.trail == ("START", "RESOLVE_INDEX", "FETCH_METADATA", "METADATA")

    @pytest.mark.asyncio
    async def test_only_prereleases(self) -> None:
        registry = MockRegistry()
        registry.add("Sample.Pkg", "1.0.0-alpha")
        registry.add("Sample.Pkg", "1.0.0-beta")
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(View(parse_package_ref("Sample.Pkg")), ctx)
        assert outcome.data["version"] == "1.0.0-beta"

    @pytest.mark.asyncio
    async def test_range(self) -> None:
        registry = MockRegistry()
        for version in ("1.0.0", "1.5.0", "2.0.0"):
            registry.add("Sample.Pkg", version)
        async with serve(registry) as url, registry_context(url) as ctx:
            exact = await run_workflow(View(parse_package_ref("Sample.Pkg@[1.5.0]")), ctx)
            floating = await run_workflow(View(parse_package_ref("Sample.Pkg@1.*")), ctx)
            missing = await run_workflow(View(parse_package_ref("Sample.Pkg@[3.0,)")), ctx)
        assert exact.data["version"] == "1.5.0"
        assert floating.data["version"] == "1.5.0"
        assert missing.state == TerminalState.NOT_FOUND
        assert missing.data["versions"] == ["1.0.0", "1.5.0", "2.0.0"]

    @pytest.mark.asyncio
    async def test_unknown_package(self) -> None:
        async with serve(MockRegistry()) as url, registry_context(url) as ctx:
            outcome = await run_workflow(View(parse_package_ref("Missing.Pkg")), ctx)
        assert outcome.state == TerminalState.NOT_FOUND
        assert outcome.exit_code == ExitCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_versions(self) -> None:
        registry = MockRegistry()
        for version in ("2.0.0", "1.0.0-rc.1", "1.0.0"):
            registry.add("Sample.Pkg", version)
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(View(parse_package_ref("sample.pkg"), ViewPart.VERSIONS), ctx)
        assert outcome.state == TerminalState.METADATA
        assert outcome.data == {"id": "Sample.Pkg", "versions": ["1.0.0-rc.1", "1.0.0", "2.0.0"]}


class TestViewPackagedFiles:
    """README and icon views read the file the nuspec names out of the nupkg."""

    @pytest.mark.asyncio
    async def test_readme(self) -> None:
        registry = MockRegistry()
        registry.add_archive(documented_archive("1.0.0"))
        registry.add_archive(documented_archive("1.1.0"))
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(View(parse_package_ref("doc.pkg"), ViewPart.README), ctx)
        assert outcome.state == TerminalState.METADATA
        assert outcome.data["version"] == "1.1.0"
        assert outcome.data["path"] == "docs\\README.md"
        assert outcome.data["readme"] == README_TEXT
        assert outcome.trail == ("START", "RESOLVE_INDEX", "FETCH_METADATA", "METADATA")
        assert [r.path for r in registry.calls("GET", "/flatcontainer")] == [
            "/flatcontainer/doc.pkg/index.json",
            "/flatcontainer/doc.pkg/1.1.0/doc.pkg.nuspec",
            "/flatcontainer/doc.pkg/1.1.0/doc.pkg.1.1.0.nupkg",
        ]

    @pytest.mark.asyncio
    async def test_readme_for_range(self) -> None:
        registry = MockRegistry()
        registry.add_archive(documented_archive("1.0.0"))
        registry.add_archive(documented_archive("2.0.0"))
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(View(parse_package_ref("Doc.Pkg@[1.0,2.0)"), ViewPart.README), ctx)
        assert outcome.data["version"] == "1.0.0"

    @pytest.mark.asyncio
    async def test_icon(self) -> None:
        registry = MockRegistry()
        registry.add_archive(documented_archive())
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(View(parse_package_ref("Doc.Pkg"), ViewPart.ICON), ctx)
        assert outcome.state == TerminalState.METADATA
        assert base64.b64decode(outcome.data["icon"]) == ICON_PNG
        assert outcome.data["size_bytes"] == len(ICON_PNG)

    @pytest.mark.asyncio
    async def test_no_readme_declared(self) -> None:
        registry = MockRegistry()
        registry.add_archive(documented_archive(readme=None))
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(View(parse_package_ref("Doc.Pkg"), ViewPart.README), ctx)
        assert outcome.state == TerminalState.NOT_FOUND
        assert outcome.exit_code == ExitCode.NOT_FOUND
        assert outcome.message == "Doc.Pkg 1.0.0 has no readme"
        assert registry.calls("GET", "/flatcontainer/doc.pkg/1.0.0/doc.pkg.1.0.0.nupkg") == []

    @pytest.mark.asyncio
    async def test_icon_declared_but_not_packed(self) -> None:
        registry = MockRegistry()
        registry.add_archive(documented_archive(icon="images/missing.png"))
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(View(parse_package_ref("Doc.Pkg"), ViewPart.ICON), ctx)
        assert outcome.state == TerminalState.NOT_FOUND
        assert outcome.message == "Doc.Pkg 1.0.0 has no icon"

    @pytest.mark.asyncio
    async def test_readme_not_text(self) -> None:
        registry = MockRegistry()
        registry.add_archive(documented_archive(files={"README.md": b"\xff\xfe\x00", "icon.png": ICON_PNG}))
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(View(parse_package_ref("Doc.Pkg"), ViewPart.README), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert isinstance(outcome.error, ArchiveFormatError)
        assert outcome.exit_code == ExitCode.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_unknown_package(self) -> None:
        async with serve(MockRegistry()) as url, registry_context(url) as ctx:
            outcome = await run_workflow(View(parse_package_ref("Missing.Pkg"), ViewPart.ICON), ctx)
        assert outcome.state == TerminalState.NOT_FOUND
        assert outcome.exit_code == ExitCode.NOT_FOUND


class TestLogin:
    """Tests for the Login workflow."""

    @pytest.mark.asyncio
    async def test_valid_key(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Login(api_key="test-key"), ctx)
        assert outcome.state == TerminalState.SUCCESS
        assert outcome.data["credentials"] == Credentials(url, "test-key")
        assert outcome.data["publish_endpoint"].endswith("/api/v2/package")
        assert registry.calls("GET")[0].api_key == "test-key"
        assert "test-key" not in repr(Login(api_key="test-key"))

    @pytest.mark.asyncio
    async def test_success_states_how_far_key_was_checked(self) -> None:
        """An index that ignores the key cannot confirm it; the outcome says so."""
        async with serve(MockRegistry()) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Login(api_key="test-key"), ctx)
        assert outcome.data["key_checked"] == "index"
        assert "service index only" in outcome.message

    @pytest.mark.asyncio
    async def test_key_never_serialized(self) -> None:
        async with serve(MockRegistry()) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Login(api_key="test-key"), ctx)
        assert "test-key" not in str(outcome.to_dict())
        assert outcome.to_dict()["data"]["credentials"] == {"registry_url": url}

    @pytest.mark.asyncio
    async def test_rejected_key(self) -> None:
        async with serve(MockRegistry()) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Login(api_key="wrong"), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert isinstance(outcome.error, AuthenticationError)
        assert outcome.exit_code == ExitCode.AUTHENTICATION
        assert outcome.trail == ("START", "VALIDATE_CREDENTIALS", "FAILURE")

    @pytest.mark.asyncio
    async def test_empty_key(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Login(api_key="  "), ctx)
        assert outcome.exit_code == ExitCode.AUTHENTICATION
        assert registry.requests == []

    @pytest.mark.asyncio
    async def test_registry_without_publish(self) -> None:
        registry = MockRegistry(resources=(("SearchQueryService/3.5.0", "/query"),))
        async with serve(registry) as url, registry_context(url) as ctx:
            outcome = await run_workflow(Login(api_key="test-key"), ctx)
        assert outcome.state == TerminalState.FAILURE
        assert isinstance(outcome.error, NoMatchingResourceError)


class TestRunWorkflow:
    """Tests for dispatch."""

    @pytest.mark.asyncio
    async def test_unknown_command(self) -> None:
        async with registry_context("https://example.test/v3/index.json") as ctx:
            with pytest.raises(TypeError):
                await run_workflow(object(), ctx)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_concurrency_validated(self) -> None:
        async with registry_context("https://example.test/v3/index.json") as ctx:
            with pytest.raises(ValueError):
                await run_workflows([Ping()], ctx, concurrency=0)

    @pytest.mark.asyncio
    async def test_contexts_isolated(self) -> None:
        """Concurrent workflows against two registries do not mix state."""
        first, second = MockRegistry(), MockRegistry()
        first.add("Only.First", "1.0.0")
        second.add("Only.Second", "1.0.0")
        async with serve(first) as url1, serve(second) as url2:
            async with registry_context(url1) as ctx1, registry_context(url2) as ctx2:
                one, two = await asyncio.gather(
                    run_workflow(View(parse_package_ref("Only.First")), ctx1),
                    run_workflow(View(parse_package_ref("Only.First")), ctx2),
                )
        assert one.state == TerminalState.METADATA
        assert two.state == TerminalState.NOT_FOUND
