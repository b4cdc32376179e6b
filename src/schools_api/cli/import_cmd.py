"""Import CLI commands for school CSV files."""

import asyncio
import time
import uuid
from pathlib import Path

import typer

import_app = typer.Typer()


def _echo_summary(result) -> None:  # type: ignore[no-untyped-def]
    typer.echo(f"\nImport {result.status}:")
    typer.echo(f"  Total records:  {result.total_records}")
    typer.echo(f"  Processed:      {result.processed_records}")
    typer.echo(f"  Inserted:       {result.inserted_records}")
    typer.echo(f"  Skipped:        {result.skipped_records}")
    typer.echo(f"  Failed:         {result.failed_records}")
    if result.error_message:
        typer.echo(f"  Error:          {result.error_message}")


def _progress_printer(started: float):  # type: ignore[no-untyped-def]
    """Build an on_batch callback printing counts and an ETA."""
    from schools_api.lib.jobs.progress import estimate_remaining_seconds, format_elapsed

    def _on_batch(result) -> None:  # type: ignore[no-untyped-def]
        eta = estimate_remaining_seconds(
            result.processed_records,
            result.total_records,
            time.monotonic() - started,
        )
        eta_text = format_elapsed(int(eta * 1000)) if eta is not None else "unknown"
        typer.echo(
            f"  batch {result.current_batch}: {result.processed_records}/{result.total_records} processed, "
            f"{result.inserted_records} inserted, {result.skipped_records} skipped, "
            f"{result.failed_records} failed ({result.batch_time_ms} ms, ETA {eta_text})"
        )

    return _on_batch


@import_app.command("schools")
def import_schools(
    file: Path = typer.Argument(..., help="Path to school CSV file", exists=True),  # noqa: B008
    batch_size: int | None = typer.Option(None, "--batch-size", help="Rows per batch"),  # noqa: B008
) -> None:
    """Import schools from a CSV file, processing every batch."""
    asyncio.run(_import_schools(file, batch_size))


async def _import_schools(file_path: Path, batch_size: int | None) -> None:
    """Async implementation of school import."""
    from schools_api.core.config import get_settings
    from schools_api.core.database import dispose_engine, get_session_factory, init_engine
    from schools_api.lib.jobs.errors import ImportEngineError
    from schools_api.services.import_service import build_controller, drive_import_job

    settings = get_settings()
    if batch_size is not None:
        settings = settings.model_copy(update={"import_batch_size": batch_size})
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            controller = build_controller(session, settings)
            try:
                checkpoint = await controller.create_job(file_path.name, file_path.read_bytes())
            except ImportEngineError as e:
                typer.echo(f"Error: {e}", err=True)
                raise typer.Exit(code=1) from e
        typer.echo(f"Import job created: {checkpoint.id} ({checkpoint.total_records} rows)")
        typer.echo(f"Processing {file_path}...")

        result = await drive_import_job(
            factory,
            settings,
            checkpoint.id,
            on_batch=_progress_printer(time.monotonic()),
        )
        _echo_summary(result)
        if result.status == "failed":
            raise typer.Exit(code=1)
    finally:
        await dispose_engine()


@import_app.command("run")
def run_job(
    job_id: uuid.UUID = typer.Argument(..., help="Import job ID"),  # noqa: B008
) -> None:
    """Process the remaining batches of an existing import job."""
    asyncio.run(_run_job(job_id))


async def _run_job(job_id: uuid.UUID) -> None:
    from schools_api.core.config import get_settings
    from schools_api.core.database import dispose_engine, get_session_factory, init_engine
    from schools_api.lib.jobs.errors import JobNotFoundError
    from schools_api.services.import_service import drive_import_job

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        try:
            result = await drive_import_job(
                get_session_factory(),
                settings,
                job_id,
                on_batch=_progress_printer(time.monotonic()),
            )
        except JobNotFoundError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(code=1) from e
        _echo_summary(result)
        if result.status == "failed":
            raise typer.Exit(code=1)
    finally:
        await dispose_engine()


@import_app.command("process")
def process_batch(
    job_id: uuid.UUID = typer.Argument(..., help="Import job ID"),  # noqa: B008
) -> None:
    """Process exactly one batch of an import job."""
    asyncio.run(_process_batch(job_id))


async def _process_batch(job_id: uuid.UUID) -> None:
    from schools_api.core.config import get_settings
    from schools_api.core.database import dispose_engine, get_session_factory, init_engine
    from schools_api.lib.jobs.errors import JobNotFoundError
    from schools_api.services.import_service import build_controller

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            controller = build_controller(session, settings, job_id=job_id)
            try:
                result = await controller.process_next_batch(job_id)
            except JobNotFoundError as e:
                typer.echo(f"Error: {e}", err=True)
                raise typer.Exit(code=1) from e
        typer.echo(
            f"Batch {result.current_batch}: {result.processed_records}/{result.total_records} processed "
            f"({result.status}{', done' if result.done else ''})"
        )
        if result.error_message:
            typer.echo(f"Error: {result.error_message}", err=True)
    finally:
        await dispose_engine()


@import_app.command("status")
def job_status(
    job_id: uuid.UUID = typer.Argument(..., help="Import job ID"),  # noqa: B008
) -> None:
    """Show the checkpoint of an import job."""
    asyncio.run(_job_status(job_id))


async def _job_status(job_id: uuid.UUID) -> None:
    from schools_api.core.config import get_settings
    from schools_api.core.database import dispose_engine, get_session_factory, init_engine
    from schools_api.lib.jobs.errors import JobNotFoundError
    from schools_api.services.import_service import build_controller

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            try:
                checkpoint = await build_controller(session, settings).get_status(job_id)
            except JobNotFoundError as e:
                typer.echo(f"Error: {e}", err=True)
                raise typer.Exit(code=1) from e

        typer.echo(f"Job {checkpoint.id} ({checkpoint.file_name})")
        typer.echo(f"  Status:         {checkpoint.status}")
        typer.echo(f"  Batch:          {checkpoint.current_batch} (size {checkpoint.batch_size})")
        typer.echo(f"  Cursor line:    {checkpoint.cursor_line}")
        typer.echo(f"  Processed:      {checkpoint.processed_records}/{checkpoint.total_records}")
        typer.echo(f"  Inserted:       {checkpoint.inserted_records}")
        typer.echo(f"  Skipped:        {checkpoint.skipped_records}")
        typer.echo(f"  Failed:         {checkpoint.failed_records}")
        if "elapsed_formatted" in checkpoint.error_details:
            typer.echo(f"  Elapsed:        {checkpoint.error_details['elapsed_formatted']}")
        if checkpoint.error_message:
            typer.echo(f"  Error:          {checkpoint.error_message}")
    finally:
        await dispose_engine()


@import_app.command("restart")
def restart_job(
    job_id: uuid.UUID = typer.Argument(..., help="Failed import job ID"),  # noqa: B008
) -> None:
    """Create a new job from the source of a failed import job."""
    asyncio.run(_restart_job(job_id))


async def _restart_job(job_id: uuid.UUID) -> None:
    from schools_api.core.config import get_settings
    from schools_api.core.database import dispose_engine, get_session_factory, init_engine
    from schools_api.lib.jobs.errors import ImportEngineError
    from schools_api.services.import_service import build_controller

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            try:
                restarted = await build_controller(session, settings).restart_job(job_id)
            except ImportEngineError as e:
                typer.echo(f"Error: {e}", err=True)
                raise typer.Exit(code=1) from e
        typer.echo(f"Restarted as import job {restarted.id} ({restarted.total_records} rows)")
    finally:
        await dispose_engine()


@import_app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", help="Filter by status"),  # noqa: B008
    page_size: int = typer.Option(20, "--limit", help="Maximum jobs to show"),  # noqa: B008
) -> None:
    """List recent import jobs."""
    asyncio.run(_list_jobs(status, page_size))


async def _list_jobs(status: str | None, page_size: int) -> None:
    from schools_api.core.config import get_settings
    from schools_api.core.database import dispose_engine, get_session_factory, init_engine
    from schools_api.services.import_service import list_import_jobs

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            jobs, total = await list_import_jobs(session, status=status, page=1, page_size=page_size)
        typer.echo(f"{total} import job(s)")
        for job in jobs:
            typer.echo(
                f"  {job.id}  {job.status:<10}  {job.processed_records}/{job.total_records}  {job.file_name}"
            )
    finally:
        await dispose_engine()
