"""
Command line interface.

    linestrata REPO_PATH [-o OUTPUT] [--ref REF ...] [--preset quick] ...

Analyzes a local git repository and writes the attribution datasets,
a manifest and a Markdown report to the output directory.
"""

import importlib.util
import logging
import os
import sys
import traceback
from datetime import datetime

import click

from . import __version__
from .config import PRESETS, ConfigResolver
from .engine import AttributionEngine
from .errors import LineStrataError
from .export import (
    DATASETS,
    LINE_RECORDS_FILE,
    TABLES,
    AttributionReportGenerator,
    export_datasets,
    export_line_records,
    generate_manifest,
)
from .object_store import GitObjectStore
from .reporting import ProfilingContext, ProgressReporter

DEPENDENCIES = [
    ("click", "click", "command line"),
    ("tqdm", "tqdm", "progress bars"),
    ("colorama", "colorama", "colored output"),
    ("yaml", "PyYAML", "YAML config"),
    ("psutil", "psutil", "memory monitoring"),
    ("pandas", "pandas", "line_records.csv export, optional"),
]


def check_dependencies() -> bool:
    """Print which runtime and optional libraries are importable."""
    click.echo("Checking dependencies...")
    missing = []
    for module, distribution, purpose in DEPENDENCIES:
        available = importlib.util.find_spec(module) is not None
        if not available:
            missing.append(distribution)
        status = "✓ Available" if available else "✗ Not installed"
        click.echo(f"  {distribution} ({purpose}): {status}")
    if missing:
        click.echo("\nInstall missing dependencies:")
        click.echo(f"  pip install {' '.join(missing)}")
    return not missing


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.argument(
    "repo_path",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    required=False,
)
@click.option(
    "-o",
    "--output",
    type=click.Path(file_okay=False),
    help="Output directory (default: linestrata_output_TIMESTAMP)",
)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path (.yaml or .json)",
)
@click.option(
    "--preset",
    type=click.Choice(sorted(PRESETS)),
    help="Use predefined analysis configuration",
)
# Analysis
@click.option("--ref", "heads", multiple=True, help="Head reference to analyze (repeatable, first is final)")
@click.option("--workers", type=click.IntRange(min=1), help="Worker threads for per-file work")
@click.option("--max-file-size", type=click.IntRange(min=0), help="Skip files larger than this (bytes)")
@click.option("--exclude", multiple=True, help="fnmatch pattern of paths to ignore (repeatable)")
@click.option(
    "--include-unknown",
    is_flag=True,
    default=None,
    help="Report the 'unknown' language in per-language breakdowns",
)
@click.option("--timeout", "io_timeout", type=float, help="Object store read timeout in seconds")
# Performance
@click.option("--memory-limit", type=float, help="Memory limit in MB")
@click.option("--profile", is_flag=True, default=None, help="Enable performance profiling")
@click.option("--profile-output", default="profile_stats.prof", help="Profile output file")
# Output Control
@click.option("--line-records", is_flag=True, default=None, help=f"Also write {LINE_RECORDS_FILE} (needs pandas)")
@click.option(
    "--table",
    type=click.Choice(sorted(TABLES)),
    help="Print a text table after the analysis",
)
@click.option("-q", "--quiet", is_flag=True, default=None, help="Suppress progress output")
@click.option("-v", "--verbose", is_flag=True, default=None, help="Show detailed progress information")
@click.option("--no-color", is_flag=True, default=None, help="Disable colored output")
# Utils
@click.option("--dry-run", is_flag=True, help="Show the resolved configuration without running analysis")
@click.option("--check-dependencies", "check_deps", is_flag=True, help="Check dependencies and exit")
@click.version_option(version=__version__)
def main(repo_path, output, config, preset, **kwargs):
    """
    Attribute every line of a repository to the commit and contributor that
    produced it, classified by language and as code, comment or blank.
    """
    if kwargs.pop("check_deps"):
        check_dependencies()
        return

    if not repo_path:
        ctx = click.get_current_context()
        click.echo(ctx.get_help())
        ctx.exit(2)

    try:
        resolver = ConfigResolver(kwargs, config, preset, repo_path)
        analysis_config = resolver.analysis_config()
    except (OSError, ValueError) as e:
        ProgressReporter().error(f"Invalid configuration: {e}")
        sys.exit(1)

    quiet = resolver.get("quiet", False)
    verbose = resolver.get("verbose", False)
    no_color = resolver.get("no_color", False)
    dry_run = resolver.get("dry_run", False)
    memory_limit = resolver.get("memory_limit")
    profile = resolver.get("profile", False)
    profile_output_file = resolver.get("profile_output", "profile_stats.prof")
    line_records = resolver.get("line_records", False)
    table = resolver.get("table")

    logging.basicConfig(
        level=logging.DEBUG if verbose else (logging.WARNING if quiet else logging.INFO),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )
    reporter = ProgressReporter(quiet=quiet, verbose=verbose, use_colors=not no_color)

    if dry_run:
        reporter.info("DRY RUN MODE - No analysis will be performed")
        reporter.info(f"Repository: {repo_path}")
        if resolver.config_path:
            reporter.info(f"Configuration file: {resolver.config_path}")
        if resolver.preset_name:
            reporter.info(f"Preset: {resolver.preset_name}")
        for key, value in analysis_config.to_dict().items():
            reporter.info(f"  {key}: {value}")
        if memory_limit:
            reporter.info(f"Memory limit: {memory_limit} MB")
        if profile:
            reporter.info(f"Profiling enabled (output: {profile_output_file})")
        reporter.info("Datasets to generate:")
        for file_name in DATASETS.values():
            reporter.info(f"  ✓ {file_name}")
        if line_records:
            reporter.info(f"  ✓ {LINE_RECORDS_FILE}")
        reporter.info("  ✓ manifest.json")
        reporter.info("  ✓ attribution_report.md")
        return

    if not GitObjectStore.is_repository(repo_path):
        reporter.error(f"Not a git repository: {repo_path}")
        sys.exit(1)

    if output:
        output_dir = output
    else:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_dir = f"linestrata_output_{timestamp}"

    os.makedirs(output_dir, exist_ok=True)
    reporter.info(f"Output directory: {output_dir}")

    profile_path = os.path.join(output_dir, profile_output_file) if profile else None

    try:
        with ProfilingContext(enabled=profile, output_path=profile_path):
            engine = AttributionEngine.for_repository(
                repo_path,
                analysis_config,
                reporter=reporter,
                memory_limit_mb=memory_limit,
            )
            engine.analyze()

            reporter.stage_start("Exporting datasets", f"Writing to {output_dir}")
            datasets = export_datasets(engine, output_dir)
            if line_records:
                try:
                    count = export_line_records(engine, os.path.join(output_dir, LINE_RECORDS_FILE))
                    datasets["line_records"] = LINE_RECORDS_FILE
                    reporter.info(f"Wrote {count:,} line records")
                except ImportError:
                    reporter.warning(
                        f"pandas not installed - skipping {LINE_RECORDS_FILE} (pip install pandas)"
                    )
            generate_manifest(output_dir, engine, datasets, repo_path)
            report_path = AttributionReportGenerator(engine, output_dir, datasets, repo_path).generate()
            reporter.stage_complete("Exporting datasets", {"Datasets": len(datasets), "Report": report_path})

            if table:
                click.echo(TABLES[table](engine))

            if verbose:
                for diagnostic in engine.diagnostics:
                    where = diagnostic.path or diagnostic.commit_id
                    reporter.warning(f"{diagnostic.kind}: {where} ({diagnostic.reason})")

            reporter.summary(engine.summary())
            reporter.success(f"Datasets written to {output_dir}")

    except KeyboardInterrupt:
        reporter.error("Interrupted")
        sys.exit(130)
    except (LineStrataError, MemoryError) as e:
        reporter.error(f"{type(e).__name__}: {e}")
        if verbose:
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
