"""
docker-registry-client CLI

Thin wrapper over RegistryClient:
- parse-repo: Show how a repository reference is parsed
- ping: GET /v2/ and report status and auth challenge
- tags: List repository tags
- manifest: Fetch a manifest and print it as JSON
- head-blob: Show blob headers (following redirects)
- download-blob: Stream a verified blob to a file
- digest: Compute the Docker-Content-Digest of a manifest file
"""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from .client import RegistryClient
from .digest import digest_from_manifest_str
from .reference import parse_repo, url_from_index

T = TypeVar("T")

app = typer.Typer(name="docker-registry-client", help="Docker Registry API v2 client")

# Exit code mapping, matched against the exception's class hierarchy
EXIT_CODES = {
    "NotFoundError": 1,
    "ValueError": 2,
    "ParseError": 2,
    "InvalidContentError": 2,
    "RegistryError": 3,
}


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    Returns:
    - 1: Repository, manifest or blob not found
    - 2: Invalid input or content (bad reference, malformed header/manifest)
    - 3: Any other registry, network or unknown error
    """
    for cls in type(exc).__mro__:
        if cls.__name__ in EXIT_CODES:
            return EXIT_CODES[cls.__name__]
    return 3


def run_and_exit(func: Callable[[], Awaitable[T]]) -> T:
    """
    Run an async command body and map failures to exit codes.

    Raises:
        typer.Exit: With the mapped exit code if the body raises
    """
    try:
        return asyncio.run(func())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=exit_code_for(e)) from e


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


def _client(
    name: str,
    username: Optional[str],
    password: Optional[str],
    insecure: bool,
    **kwargs: Any,
) -> RegistryClient:
    return RegistryClient(name, username=username, password=password, insecure=insecure, **kwargs)


def _echo_json(obj: Any) -> None:
    typer.echo(json.dumps(obj, indent=4))


USERNAME = typer.Option(None, "--username", "-u", envvar="DOCKER_REGISTRY_USERNAME", help="Registry username")
PASSWORD = typer.Option(None, "--password", "-p", envvar="DOCKER_REGISTRY_PASSWORD", help="Registry password")
INSECURE = typer.Option(False, "--insecure", "-k", help="Skip TLS certificate verification")
VERBOSE = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr")


@app.command("parse-repo")
def parse_repo_cmd(name: str = typer.Argument(..., help="Repository reference")) -> None:
    """Show how a repository reference is parsed."""

    async def _parse() -> None:
        repo = parse_repo(name)
        _echo_json({
            "index": {"name": repo.index.name, "official": repo.index.official},
            "url": url_from_index(repo.index),
            "remoteName": repo.remote_name,
            "localName": repo.local_name,
            "canonicalName": repo.canonical_name,
            "tag": repo.tag,
            "digest": repo.digest,
        })

    run_and_exit(_parse)


@app.command()
def ping(
    name: str = typer.Argument(..., help="Repository reference (selects the registry)"),
    insecure: bool = INSECURE,
    verbose: bool = VERBOSE,
) -> None:
    """Ping the registry's /v2/ endpoint."""
    _configure_logging(verbose)

    async def _ping() -> None:
        async with _client(name, None, None, insecure) as client:
            res = await client.ping()
            typer.echo(f"status: {res.status_code}")
            for header in ("docker-distribution-api-version", "www-authenticate"):
                if header in res.headers:
                    typer.echo(f"{header}: {res.headers[header]}")
            typer.echo(f"supports v2: {await client.supports_v2()}")

    run_and_exit(_ping)


@app.command()
def tags(
    name: str = typer.Argument(..., help="Repository reference"),
    username: Optional[str] = USERNAME,
    password: Optional[str] = PASSWORD,
    insecure: bool = INSECURE,
    verbose: bool = VERBOSE,
) -> None:
    """List tags of a repository."""
    _configure_logging(verbose)

    async def _tags() -> None:
        async with _client(name, username, password, insecure) as client:
            tag_list = await client.list_tags()
            _echo_json(tag_list.to_json_dict())

    run_and_exit(_tags)


@app.command()
def manifest(
    name: str = typer.Argument(..., help="Repository reference, e.g. alpine:3.18"),
    ref: Optional[str] = typer.Option(None, "--ref", help="Tag or digest (overrides the one in NAME)"),
    lists: bool = typer.Option(True, "--lists/--no-lists", help="Accept manifest lists"),
    oci: bool = typer.Option(True, "--oci/--no-oci", help="Accept OCI manifests"),
    username: Optional[str] = USERNAME,
    password: Optional[str] = PASSWORD,
    insecure: bool = INSECURE,
    verbose: bool = VERBOSE,
) -> None:
    """Fetch a manifest and print it with its digest."""
    _configure_logging(verbose)

    async def _manifest() -> None:
        async with _client(name, username, password, insecure) as client:
            result = await client.get_manifest(
                ref,
                accept_manifest_lists=lists,
                accept_oci_manifests=oci,
            )
            _echo_json({
                "digest": result.digest or digest_from_manifest_str(result.body),
                "manifest": result.manifest.to_json_dict(),
            })

    run_and_exit(_manifest)


@app.command("head-blob")
def head_blob(
    name: str = typer.Argument(..., help="Repository reference"),
    digest: str = typer.Argument(..., help="Blob digest (sha256:...)"),
    username: Optional[str] = USERNAME,
    password: Optional[str] = PASSWORD,
    insecure: bool = INSECURE,
    verbose: bool = VERBOSE,
) -> None:
    """Show blob headers for every response in the redirect chain."""
    _configure_logging(verbose)

    async def _head() -> None:
        async with _client(name, username, password, insecure) as client:
            responses = await client.head_blob(digest)
            _echo_json([
                {"status": res.status_code, "url": str(res.url), "headers": dict(res.headers)}
                for res in responses
            ])

    run_and_exit(_head)


@app.command("download-blob")
def download_blob(
    name: str = typer.Argument(..., help="Repository reference"),
    digest: str = typer.Argument(..., help="Blob digest (sha256:...)"),
    out: Path = typer.Argument(..., help="Output file"),
    username: Optional[str] = USERNAME,
    password: Optional[str] = PASSWORD,
    insecure: bool = INSECURE,
    verbose: bool = VERBOSE,
) -> None:
    """Download a blob, verifying its digest."""
    _configure_logging(verbose)

    async def _download() -> None:
        async with _client(name, username, password, insecure) as client:
            result = await client.create_blob_read_stream(digest)
            partial = out.with_name(out.name + ".partial")
            try:
                with open(partial, "wb") as f:
                    async with result.stream as stream:
                        async for chunk in stream:
                            f.write(chunk)
            except BaseException:
                partial.unlink(missing_ok=True)
                raise
            partial.replace(out)
            typer.echo(f"Downloaded {result.stream.bytes_read} bytes to {out}")

    run_and_exit(_download)


@app.command()
def digest(file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Manifest JSON file")) -> None:
    """Print the Docker-Content-Digest of a manifest file."""

    async def _digest() -> None:
        typer.echo(digest_from_manifest_str(file.read_bytes()))

    run_and_exit(_digest)


if __name__ == "__main__":
    app()
