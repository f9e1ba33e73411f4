"""
Command-line interface for nugetkit.

Usage:
    nugetkit ping --source https://api.nuget.org/v3/index.json
    nugetkit search json --take 5
    nugetkit pack Sample.Pkg.nuspec --output dist/
    nugetkit publish Sample.Pkg.nuspec --api-key $KEY
    nugetkit publish dist/sample.pkg.1.0.0.nupkg
    nugetkit unlist Sample.Pkg 1.0.0
    nugetkit relist Sample.Pkg 1.0.0
    nugetkit view Newtonsoft.Json@13.*
    nugetkit view Newtonsoft.Json readme
    nugetkit view Newtonsoft.Json icon --output icon.png
    nugetkit login --api-key $KEY

Exit codes:
    0  success
    1  failure (network, registry or unexpected response)
    2  invalid input (manifest, archive, arguments, config)
    3  conflict (package version already exists)
    4  not found
    5  authentication (missing or rejected API key)
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

import orjson

from nugetkit import __version__
from nugetkit.archive import LocalFileReader, build_archive
from nugetkit.config import load_config
from nugetkit.credentials import ChainCredentialSource, EnvCredentialSource, StaticCredentialSource
from nugetkit.errors import NugetkitError
from nugetkit.logging_config import setup_logging
from nugetkit.manifest import PackageIdentity, load_manifest, parse_package_ref
from nugetkit.manifest.model import validate_id
from nugetkit.versioning import parse_version
from nugetkit.workflows import (
    ExitCode,
    Login,
    Ping,
    Publish,
    Relist,
    Search,
    Unlist,
    View,
    WorkflowContext,
    run_workflow,
)
from nugetkit.workflows.types import TerminalState, ViewPart, exit_code_for

if TYPE_CHECKING:
    from nugetkit.config import ClientConfig
    from nugetkit.workflows import Workflow, WorkflowOutcome


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="nugetkit",
        description="Build NuGet packages and talk to NuGet v3 registries.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Exit codes: 0 success, 1 failure, 2 invalid input, 3 conflict, 4 not found, 5 authentication",
    )
    parser.add_argument("--version", action="version", version=f"nugetkit {__version__}")
    parser.add_argument("--source", help="Registry service index URL (default: nuget.org or config)")
    parser.add_argument("--api-key", help="API key for the registry (default: NUGETKIT_API_KEY)")
    parser.add_argument("--config", type=Path, help="YAML config file (default: NUGETKIT_CONFIG)")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--quiet", action="store_true", help="Print nothing but errors")
    parser.add_argument(
        "--loglevel",
        default="warning",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: warning)",
    )
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("ping", help="Check that a registry is reachable")

    search = sub.add_parser("search", help="Search for packages")
    search.add_argument("query", nargs="*", help="Search terms")
    search.add_argument("--skip", type=int, default=0, help="Results to skip (default: 0)")
    search.add_argument("--take", type=int, default=20, help="Results to return (default: 20)")
    search.add_argument("--prerelease", action="store_true", help="Include pre-release versions")
    search.add_argument("--package-type", help="Filter by package type")

    pack = sub.add_parser("pack", help="Build a .nupkg from a manifest")
    pack.add_argument("manifest", type=Path, help="Manifest file (.nuspec, .json, .yaml)")
    pack.add_argument("--output", "-o", type=Path, default=Path(), help="Output directory or file (default: .)")

    publish = sub.add_parser("publish", help="Publish a manifest or a prebuilt .nupkg")
    publish.add_argument("package", type=Path, help="Manifest file or .nupkg archive")

    for name, text in (("unlist", "Hide a package version from search"), ("relist", "Relist a package version")):
        toggle = sub.add_parser(name, help=text)
        toggle.add_argument("id", help="Package id")
        toggle.add_argument("version", help="Package version")

    view = sub.add_parser("view", help="Show package metadata, versions, README or icon")
    view.add_argument("package", help="Package id, optionally with @range (e.g. Foo@[1.0,2.0))")
    view.add_argument(
        "part",
        nargs="?",
        default=ViewPart.SUMMARY.value,
        choices=[part.value for part in ViewPart],
        help="What to show (default: summary)",
    )
    view.add_argument("--output", "-o", type=Path, help="Write the icon to this file")

    sub.add_parser("login", help="Validate an API key against the registry")

    return parser


def _identity(raw_id: str, raw_version: str) -> PackageIdentity:
    problem = validate_id(raw_id)
    if problem:
        raise ValueError(problem)
    return PackageIdentity(id=raw_id, version=parse_version(raw_version))


def credential_source(args: argparse.Namespace, config: ClientConfig) -> ChainCredentialSource:
    """API key lookup for the configured source: ``--api-key``, then ``NUGETKIT_API_KEY``, then the config file."""
    given = {config.source: args.api_key} if args.api_key else {}
    configured = {config.source: config.api_key} if config.api_key else {}
    return ChainCredentialSource(
        StaticCredentialSource(given),
        EnvCredentialSource(),
        StaticCredentialSource(configured),
    )


def _command(args: argparse.Namespace, config: ClientConfig) -> Workflow:
    """Turn parsed arguments into a workflow variant."""
    if args.command == "ping":
        return Ping()
    if args.command == "search":
        return Search(
            query=" ".join(args.query),
            skip=args.skip,
            take=args.take,
            prerelease=args.prerelease,
            package_type=args.package_type,
        )
    if args.command == "publish":
        path: Path = args.package
        if path.suffix.lower() == ".nupkg":
            return Publish(archive_path=path)
        return Publish(manifest=load_manifest(path), base_dir=path.parent)
    if args.command == "unlist":
        return Unlist(_identity(args.id, args.version))
    if args.command == "relist":
        return Relist(_identity(args.id, args.version))
    if args.command == "view":
        return View(parse_package_ref(args.package), ViewPart(args.part))
    if args.command == "login":
        credentials = credential_source(args, config).get(config.source)
        return Login(api_key=credentials.api_key if credentials else "")
    raise ValueError(f"Unknown command {args.command!r}")


def _print_json(payload: dict[str, Any], out: TextIO) -> None:
    out.write(orjson.dumps(payload, default=str, option=orjson.OPT_INDENT_2).decode() + "\n")


def _print_error(error: BaseException, err: TextIO) -> None:
    code = getattr(error, "code", None)
    prefix = f"error[{code}]" if code else "error"
    err.write(f"{prefix}: {error}\n")
    help_text = getattr(error, "help", None)
    if help_text:
        err.write(f"  help: {help_text}\n")


def render_outcome(outcome: WorkflowOutcome, *, as_json: bool, quiet: bool, out: TextIO, err: TextIO) -> None:
    """Print a workflow outcome for humans or as JSON."""
    if as_json:
        if not quiet:
            _print_json(outcome.to_dict(), out)
        return
    if outcome.error is not None and not outcome.ok and outcome.state == TerminalState.FAILURE:
        _print_error(outcome.error, err)
        return
    if quiet:
        return

    err.write(f"{outcome.command}: {outcome.message}\n")
    data = outcome.data
    if outcome.command == "search":
        for result in data.get("results", []):
            description = (result.get("description") or "").strip().splitlines()
            summary = f" - {description[0]}" if description else ""
            out.write(f"{result['id']} {result['version']}{summary}\n")
    elif outcome.command == "view" and "readme" in data:
        out.write(data["readme"].rstrip("\n") + "\n")
    elif outcome.command == "view" and "icon" in data:
        out.write(f"{data['path']} ({data['size_bytes']} bytes)\n")
    elif outcome.command == "view" and "metadata" not in data and "versions" in data and outcome.ok:
        for version in data["versions"]:
            out.write(f"{version}\n")
    elif outcome.command == "view" and "metadata" in data:
        metadata = data["metadata"]
        out.write(f"{metadata.get('id')} {data['version']}\n")
        if metadata.get("description"):
            out.write(f"{metadata['description']}\n")
        out.write(f"versions: {', '.join(data.get('versions', []))}\n")
    elif outcome.command == "ping":
        out.write(f"pong: {data.get('time_ms')}ms\n")


def _pack(args: argparse.Namespace, config: ClientConfig, out: TextIO, err: TextIO) -> int:
    manifest_path: Path = args.manifest
    manifest = load_manifest(manifest_path)
    archive = build_archive(manifest, LocalFileReader(manifest_path.parent), config.build)
    written = archive.write(args.output)
    if args.json:
        _print_json(
            {"command": "pack", "path": str(written), "sha256": archive.sha256, "size_bytes": archive.size},
            out,
        )
    elif not args.quiet:
        err.write(f"pack: wrote {written} ({archive.size} bytes)\n")
    return int(ExitCode.SUCCESS)


async def _run(args: argparse.Namespace, config: ClientConfig, out: TextIO, err: TextIO) -> int:
    command = _command(args, config)
    async with WorkflowContext.from_config(config, credential_source=credential_source(args, config)) as ctx:
        outcome = await run_workflow(command, ctx)
    icon_path: Path | None = getattr(args, "output", None)
    if args.command == "view" and outcome.ok and icon_path is not None and "icon" in outcome.data:
        icon_path.write_bytes(base64.b64decode(outcome.data["icon"]))
    render_outcome(outcome, as_json=args.json, quiet=args.quiet, out=out, err=err)
    return outcome.exit_code


def main(argv: list[str] | None = None, *, out: TextIO | None = None, err: TextIO | None = None) -> int:
    """Entry point. Returns the process exit code."""
    out = out or sys.stdout
    err = err or sys.stderr
    args = build_parser().parse_args(argv)
    setup_logging(level=args.loglevel.upper(), json_format=args.log_json, stream=err)

    try:
        config = load_config(args.config)
        if args.source:
            config.source = args.source
        if args.command == "pack":
            return _pack(args, config, out, err)
        return asyncio.run(_run(args, config, out, err))
    except NugetkitError as e:
        _print_error(e, err)
        return int(exit_code_for(TerminalState.FAILURE, e))
    except ValueError as e:
        _print_error(e, err)
        return int(ExitCode.INVALID_INPUT)
    except OSError as e:
        _print_error(e, err)
        return int(ExitCode.FAILURE)


if __name__ == "__main__":
    sys.exit(main())
