"""kodo CLI - upload files and directories to Qiniu Kodo.

The CLI is a thin wrapper around the library (files, keys, batch, store).
All upload logic lives in the library; the CLI resolves settings and
prints results.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, NoReturn

import click

from kodo_cli.batch import (
    BatchResult,
    UploadOutcome,
    build_tasks,
    exit_code_for,
    run_batch,
    split_into_chunks,
    upload_single_file,
)
from kodo_cli.config import (
    KNOWN_SETTINGS,
    SECRET_SETTINGS,
    UploadConfig,
    get_config_path,
    get_setting,
    list_settings,
    resolve_upload_config,
    set_setting,
    unset_setting,
)
from kodo_cli.constants import DRY_RUN_PREVIEW_LIMIT, MAX_PART_SIZE, MIN_PART_SIZE
from kodo_cli.errors import KodoError
from kodo_cli.files import collect_files
from kodo_cli.json_output import (
    error_detail_from,
    error_envelope,
    success_envelope,
    upload_failure_details,
)
from kodo_cli.keys import single_file_key
from kodo_cli.output import detail, error, info, link, success, warn
from kodo_cli.store import KodoClient, check_credentials

COMPLETION_SHELLS = ("bash", "zsh", "fish")


def should_output_json(ctx: click.Context, json_flag: bool = False) -> bool:
    """Determine if JSON output should be used.

    Global --format=json takes precedence; a per-command --json flag also works.
    """
    obj = ctx.find_root().obj or {}
    return obj.get("format", "text") == "json" or json_flag


def output_json_envelope(envelope: Any) -> None:
    """Output a JSON envelope to stdout."""
    click.echo(envelope.to_json())


def _config_file(ctx: click.Context) -> Path | None:
    obj = ctx.find_root().obj or {}
    return obj.get("config_file")


def _fail(ctx: click.Context, command: str, err: Exception) -> NoReturn:
    """Report a fatal error and exit with status 1."""
    if should_output_json(ctx):
        output_json_envelope(error_envelope(command, [error_detail_from(err)]))
    else:
        error(getattr(err, "message", None) or str(err))
    raise SystemExit(1) from err


@click.group()
@click.version_option(package_name="kodo-cli")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "text"]),
    default="text",
    help="Output format (json for machine parsing, text for humans).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Settings file (default: $KODO_CONFIG or the per-user config directory).",
)
@click.pass_context
def cli(
    ctx: click.Context, output_format: str, verbose: bool, config_file: Path | None
) -> None:
    """kodo - upload files and directories to Qiniu Kodo object storage."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["format"] = output_format
    ctx.obj["config_file"] = config_file


# =============================================================================
# upload
# =============================================================================


def _print_outcome(outcome: UploadOutcome) -> None:
    """Print one per-file line as the outcome arrives."""
    if outcome.succeeded:
        success(f"{outcome.local_path} -> {outcome.remote_key}")
        if outcome.download_url:
            link(outcome.download_url)
    else:
        error(f"{outcome.local_path} -> {outcome.remote_key} failed: {outcome.error}")


def _print_batch_summary(source: Path, result: BatchResult) -> None:
    for crash in result.crashes:
        err = crash.to_error()
        error(f"[{err.code}] {err.message}")
    summary = (
        f"Uploaded directory {source}: {result.success_count} succeeded, "
        f"{result.failure_count} failed, {result.elapsed_seconds:.2f}s elapsed"
    )
    if result.failure_count:
        warn(summary)
    else:
        success(summary)


def _print_dry_run(pairs: list[tuple[Path, str]], chunk_count: int) -> None:
    info(f"Would upload {len(pairs)} file(s) using {chunk_count} worker(s)", dry_run=True)
    for local_path, key in pairs[:DRY_RUN_PREVIEW_LIMIT]:
        detail(f"  {local_path} -> {key}")
    if len(pairs) > DRY_RUN_PREVIEW_LIMIT:
        detail(f"  ... and {len(pairs) - DRY_RUN_PREVIEW_LIMIT} more file(s)")


def _require_credentials(config: UploadConfig) -> None:
    ok, hint = check_credentials(config.access_key, config.secret_key)
    if not ok:
        raise click.UsageError(hint)


def _upload_directory(
    ctx: click.Context, path: Path, files: list[Path], config: UploadConfig, dry_run: bool
) -> None:
    use_json = should_output_json(ctx)
    tasks = build_tasks(files, path, config.object_name, lowercase=config.lowercase_keys)
    chunk_count = len(split_into_chunks(tasks, config.max_workers))

    if dry_run:
        pairs = [(t.local_path, t.remote_key) for t in tasks]
        if use_json:
            output_json_envelope(
                success_envelope(
                    "upload",
                    {
                        "dry_run": True,
                        "mode": "directory",
                        "source": str(path),
                        "workers": chunk_count,
                        "planned": [{"local_path": str(p), "remote_key": k} for p, k in pairs],
                    },
                )
            )
        else:
            _print_dry_run(pairs, chunk_count)
        return

    _require_credentials(config)
    client = KodoClient.from_config(config)

    if not use_json:
        info(f"Found {len(tasks)} file(s) in {path}, uploading with {chunk_count} worker(s)")

    result = run_batch(
        client,
        tasks,
        max_workers=config.max_workers,
        part_size=config.part_size,
        domain_name=config.domain_name,
        on_outcome=None if use_json else _print_outcome,
    )
    code = exit_code_for(
        result.success_count, result.failure_count, config.fail_on, crashed=bool(result.crashes)
    )

    if use_json:
        data = {"mode": "directory", "source": str(path), **result.to_dict()}
        if result.success:
            output_json_envelope(success_envelope("upload", data))
        else:
            errors = upload_failure_details(result.outcomes, result.crashes)
            output_json_envelope(error_envelope("upload", errors, data=data))
    else:
        _print_batch_summary(path, result)

    if code:
        raise SystemExit(code)


def _upload_file(ctx: click.Context, path: Path, config: UploadConfig, dry_run: bool) -> None:
    use_json = should_output_json(ctx)
    key = single_file_key(path, config.object_name)

    if dry_run:
        if use_json:
            output_json_envelope(
                success_envelope(
                    "upload",
                    {
                        "dry_run": True,
                        "mode": "file",
                        "source": str(path),
                        "planned": [{"local_path": str(path), "remote_key": key}],
                    },
                )
            )
        else:
            info(f"Would upload {path} -> {key}", dry_run=True)
        return

    _require_credentials(config)
    client = KodoClient.from_config(config)
    outcome, elapsed = _timed_single_upload(client, path, key, config)

    if use_json:
        data = {"mode": "file", "source": str(path), "elapsed_seconds": round(elapsed, 2)}
        data.update(outcome.to_dict())
        if outcome.succeeded:
            output_json_envelope(success_envelope("upload", data))
        else:
            errors = upload_failure_details([outcome])
            output_json_envelope(error_envelope("upload", errors, data=data))
    else:
        _print_outcome(outcome)
        detail(f"{elapsed:.2f}s elapsed")

    succeeded = int(outcome.succeeded)
    code = exit_code_for(succeeded, 1 - succeeded, config.fail_on)
    if code:
        raise SystemExit(code)


def _timed_single_upload(
    client: KodoClient, path: Path, key: str, config: UploadConfig
) -> tuple[UploadOutcome, float]:
    start_time = time.time()
    outcome = upload_single_file(
        client,
        path,
        key,
        part_size=config.part_size,
        threads=config.threads,
        domain_name=config.domain_name,
    )
    return outcome, time.time() - start_time


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--access-key", "-a", help="Kodo access key (env: QINIU_ACCESS_KEY).")
@click.option("--secret-key", "-s", help="Kodo secret key (env: QINIU_SECRET_KEY).")
@click.option("--bucket-name", "-b", help="Target bucket (env: QINIU_BUCKET_NAME).")
@click.option("--region", help="Kodo region code such as z0, z1, z2, na0, as0 (default: z0).")
@click.option("--endpoint", help="S3 endpoint URL overriding the region's Kodo endpoint.")
@click.option(
    "--object-name",
    "-o",
    help="Object key for a file, or destination prefix for a directory.",
)
@click.option(
    "--domain-name",
    "-d",
    help="Download domain bound to the bucket; enables download links.",
)
@click.option(
    "--part-size",
    type=click.IntRange(MIN_PART_SIZE, MAX_PART_SIZE),
    help="Multipart part size in bytes (1 MiB - 1 GiB).",
)
@click.option(
    "--threads",
    type=click.IntRange(1, 255),
    help="Concurrent part uploads for a single file.",
)
@click.option(
    "--max-workers",
    type=click.IntRange(1, 1000),
    help="Maximum concurrent workers for a directory (default: 30).",
)
@click.option(
    "--keep-case",
    is_flag=True,
    default=False,
    help="Do not lower-case object keys derived in directory mode.",
)
@click.option(
    "--fail-on",
    type=click.Choice(["never", "all", "any"]),
    default=None,
    help="Exit non-zero when all uploads fail ('all') or any fails ('any').",
)
@click.option("--dry-run", is_flag=True, help="Show planned uploads without uploading.")
@click.pass_context
def upload(
    ctx: click.Context,
    path: Path,
    access_key: str | None,
    secret_key: str | None,
    bucket_name: str | None,
    region: str | None,
    endpoint: str | None,
    object_name: str | None,
    domain_name: str | None,
    part_size: int | None,
    threads: int | None,
    max_workers: int | None,
    keep_case: bool,
    fail_on: str | None,
    dry_run: bool,
) -> None:
    """Upload a file or a directory tree.

    PATH is a file or a directory. Directories are uploaded recursively by
    concurrent workers; a file that fails does not stop the others.

    Examples:

        kodo upload report.pdf -b media

        kodo upload photos/ -b media -o backups -d cdn.example.com
    """
    cli_values = {
        "access_key": access_key,
        "secret_key": secret_key,
        "bucket_name": bucket_name,
        "region": region,
        "endpoint": endpoint,
        "object_name": object_name,
        "domain_name": domain_name,
        "part_size": part_size,
        "threads": threads,
        "max_workers": max_workers,
        "lowercase_keys": False if keep_case else None,
        "fail_on": fail_on,
    }

    try:
        config = resolve_upload_config(cli_values, _config_file(ctx))
        files = collect_files(path)
        if path.is_dir():
            _upload_directory(ctx, path, files, config, dry_run)
        else:
            _upload_file(ctx, path, config, dry_run)
    except (click.UsageError, KodoError) as err:
        _fail(ctx, "upload", err)


# =============================================================================
# config
# =============================================================================


def _display_value(key: str, value: Any) -> str:
    if key in SECRET_SETTINGS and value:
        text = str(value)
        return f"{text[:4]}****" if len(text) > 4 else "****"
    return str(value)


@cli.group()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Manage stored settings."""


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Store KEY=VALUE in the settings file.

    Examples:

        kodo config set bucket_name media

        kodo config set domain_name cdn.example.com
    """
    use_json = should_output_json(ctx)
    config_file = _config_file(ctx)
    try:
        stored = set_setting(key, value, config_file)
    except KodoError as err:
        _fail(ctx, "config_set", err)

    if use_json:
        output_json_envelope(
            success_envelope("config_set", {"key": key, "value": _display_value(key, stored)})
        )
        return
    if key not in KNOWN_SETTINGS:
        warn(f"'{key}' is not a known setting")
    success(f"Set {key} = {_display_value(key, stored)} in {get_config_path(config_file)}")


@config.command("get")
@click.argument("key")
@click.pass_context
def config_get(ctx: click.Context, key: str) -> None:
    """Show the resolved value of KEY."""
    use_json = should_output_json(ctx)
    try:
        value = get_setting(key, config_file=_config_file(ctx))
    except KodoError as err:
        _fail(ctx, "config_get", err)

    if use_json:
        shown = None if value is None else _display_value(key, value)
        output_json_envelope(success_envelope("config_get", {"key": key, "value": shown}))
        return
    if value is None:
        info(f"{key} is not set")
        return
    click.echo(_display_value(key, value))


@config.command("list")
@click.pass_context
def config_list(ctx: click.Context) -> None:
    """List settings with their values and sources."""
    use_json = should_output_json(ctx)
    try:
        settings = list_settings(_config_file(ctx))
    except KodoError as err:
        _fail(ctx, "config_list", err)

    shown = {
        key: {"value": _display_value(key, entry["value"]), "source": entry["source"]}
        for key, entry in settings.items()
    }
    if use_json:
        output_json_envelope(success_envelope("config_list", {"settings": shown}))
        return
    for key, entry in shown.items():
        info(f"{key} = {entry['value']}")
        detail(f"  source: {entry['source']}")


@config.command("unset")
@click.argument("key")
@click.pass_context
def config_unset(ctx: click.Context, key: str) -> None:
    """Remove KEY from the settings file."""
    use_json = should_output_json(ctx)
    try:
        removed = unset_setting(key, _config_file(ctx))
    except KodoError as err:
        _fail(ctx, "config_unset", err)

    if use_json:
        output_json_envelope(success_envelope("config_unset", {"key": key, "removed": removed}))
    elif removed:
        success(f"Removed {key}")
    else:
        info(f"{key} was not set")


# =============================================================================
# completion
# =============================================================================


@cli.command()
@click.argument("shell", type=click.Choice(COMPLETION_SHELLS, case_sensitive=False))
def completion(shell: str) -> None:
    """Print a shell completion script for SHELL.

    Examples:

        eval "$(kodo completion bash)"

        kodo completion fish > ~/.config/fish/completions/kodo.fish
    """
    from click.shell_completion import get_completion_class

    comp_cls = get_completion_class(shell.lower())
    if comp_cls is None:
        raise click.BadParameter(f"Unsupported shell: {shell}")
    comp = comp_cls(cli, {}, "kodo", "_KODO_COMPLETE")
    click.echo(comp.source())
