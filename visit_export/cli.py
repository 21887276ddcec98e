from __future__ import annotations

import json
import logging

import click

from .backend import SupabaseBackend
from .config import Config, configure_logging
from .errors import VisitExportError
from .export import ExportState, export_to_file
from .images import NORMALIZERS, select_normalizer
from .locations import CACHE_FIRST, DOCUMENTS_FIRST, WritableLocationResolver, candidates_from_config
from .records import is_submission_id


def _alert(title, message):
    click.echo("{0}: {1}".format(title, message), err=True)


def _print_share(path, mime_type=None, uti=None, title=None):
    click.echo(path)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level")
def cli(verbose=False):
    """Retail visit spreadsheet exports."""
    configure_logging(logging.DEBUG if verbose else logging.INFO)


@cli.command("xlsx")
@click.argument("submission_id")
@click.option("--out-dir", "-o", type=click.Path(file_okay=False), help="Preferred output directory")
@click.option("--cache-first", is_flag=True, help="Prefer the cache directory over the export directory")
@click.option(
    "--normalizer",
    type=click.Choice(sorted(NORMALIZERS)),
    default=None,
    help="Image normalizer variant (default: IMAGE_NORMALIZER)",
)
@click.option("--diagnostics", is_flag=True, help="Print per-photo fetch diagnostics as JSON")
def xlsx_cli(submission_id, out_dir=None, cache_first=False, normalizer=None, diagnostics=False):
    """Write one submission's spreadsheet to disk and print its path."""
    if not is_submission_id(submission_id):
        raise click.BadParameter("not a UUID", param_hint="SUBMISSION_ID")
    try:
        backend = SupabaseBackend.from_config(Config)
        record = backend.get_submission(submission_id)
    except VisitExportError as exc:
        raise click.ClickException(exc.message)
    if record is None:
        raise click.ClickException("submission {0} not found".format(submission_id))

    candidates = candidates_from_config(Config)
    if out_dir:
        candidates["documents"] = out_dir
    outcome = export_to_file(
        record,
        select_normalizer(normalizer or Config.IMAGE_NORMALIZER, backend, Config),
        WritableLocationResolver(notify=_alert),
        candidates,
        share=_print_share,
        preference=CACHE_FIRST if cache_first else DOCUMENTS_FIRST,
    )

    if diagnostics and outcome.result is not None:
        click.echo(
            json.dumps([item.as_dict() for item in outcome.result.diagnostics], indent=2),
            err=True,
        )
    if outcome.state is ExportState.FAILED:
        raise click.ClickException(outcome.message or "export failed")


@cli.command("serve")
@click.option("--host", default="0.0.0.0", help="Host to bind to")
@click.option("--port", default=5000, type=int, help="Port to bind to")
@click.option("--debug", is_flag=True, help="Enable debug mode")
def serve_cli(host, port, debug=False):
    """Run the HTTP service."""
    from .web import create_app

    create_app().run(host=host, port=port, debug=debug)


def main():
    cli()


if __name__ == "__main__":
    main()
