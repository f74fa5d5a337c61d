"""CLI entrypoint for the bundle reconciler."""

import json
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from bundle_reconciler.config import Config, ConfigError, load_config

# Load .env file on CLI startup
load_dotenv()


def _make_generator(config: Config, model: Optional[str]):
    from bundle_reconciler.generator import CommandGenerator

    return CommandGenerator(cmd=config.generator_cmd, model=model or config.generator_model)


def _make_validator(profile: Optional[str]):
    from bundle_reconciler.validator import BundleValidator, load_validation_profile

    if profile:
        return BundleValidator(load_validation_profile(Path(profile)))
    return BundleValidator()


def _read_prompt(prompt_file: Optional[str], config: Config) -> str:
    path = Path(prompt_file) if prompt_file else config.prompt_file
    if not path.is_file():
        raise FileNotFoundError(f"Prompt file not found: {path}")
    return path.read_text(encoding="utf-8")


def _print_outcome(outcome) -> None:
    click.echo()
    click.echo("=" * 60)
    click.echo(f"RESULT: {outcome.status} after {outcome.attempts} attempt(s)")
    click.echo("=" * 60)
    click.echo(f"  Written:      {len(outcome.resolution.written)}")
    click.echo(f"  Manual merge: {len(outcome.resolution.forked)}")
    click.echo(f"  Backed up:    {len(outcome.resolution.backed_up)}")
    click.echo(f"  Untouched:    {len(outcome.resolution.untouched)}")
    click.echo(f"  Run logs:     {outcome.run_dir}")
    if outcome.update_report:
        click.echo(f"  Report:       {outcome.update_report}")

    if not outcome.succeeded:
        click.echo()
        click.echo("Validation errors by attempt:", err=True)
        for attempt, errors in outcome.attempt_errors:
            click.echo(f"  Attempt {attempt}:", err=True)
            for err in errors:
                click.echo(f"    - {err}", err=True)


def _run_regeneration(
    bundle_dir: str,
    app_repo: Optional[str],
    environments: Optional[str],
    max_attempts: Optional[int],
    model: Optional[str],
    no_trace: bool,
    prompt_file: Optional[str],
    profile: Optional[str],
    force: bool = False,
    only: Optional[str] = None,
    components_file: Optional[str] = None,
) -> None:
    from bundle_reconciler.context import RunContext, parse_environments
    from bundle_reconciler.engine import regenerate
    from bundle_reconciler.resolver import (
        ResolutionPolicy,
        build_component_scope,
        load_components,
    )

    try:
        config = load_config(require_all=True)
        spec_text = _read_prompt(prompt_file, config)
        envs = parse_environments(environments)
        only_components = [c.strip() for c in only.split(",")] if only else []
        components = load_components(Path(components_file)) if components_file else None
        scope = build_component_scope(only_components, components)

        ctx = RunContext(
            bundle_dir=Path(bundle_dir),
            spec_text=spec_text,
            app_repo=Path(app_repo) if app_repo else None,
            environments=envs,
            policy=ResolutionPolicy(force_overwrite=force, component_scope=scope),
            only_components=only_components,
            max_attempts=max_attempts if max_attempts is not None else config.max_attempts,
            history_keep=config.history_keep,
            runs_dir=config.runs_dir,
            use_graph=not no_trace,
        )

        click.echo(f"Bundle:       {Path(bundle_dir).resolve()}")
        click.echo(f"Environments: {', '.join(envs)}")
        if only_components:
            click.echo(f"Components:   {', '.join(only_components)}")
        if force:
            click.echo("Force overwrite: user-modified files will be backed up and replaced")
        if not no_trace:
            click.echo("  (LangGraph tracing enabled)")
        click.echo()

        outcome = regenerate(ctx, _make_generator(config, model), _make_validator(profile))
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)
    except (ValueError, RuntimeError, FileNotFoundError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    _print_outcome(outcome)
    if not outcome.succeeded:
        raise SystemExit(1)


@click.group()
@click.version_option(package_name="bundle-reconciler")
def cli():
    """Bundle reconciler - regenerate generated bundles without losing user edits."""
    pass


@cli.command()
def check_config():
    """Check that the generator is configured and on PATH."""
    try:
        config = load_config(require_all=True)
        click.echo("Configuration loaded successfully!")
        click.echo(f"  BUNDLE_GENERATOR_CMD: {config.generator_cmd}")
        click.echo(f"  BUNDLE_GENERATOR_MODEL: {config.generator_model or '[default]'}")
        click.echo(f"  BUNDLE_MAX_ATTEMPTS: {config.max_attempts}")
        click.echo(f"  BUNDLE_HISTORY_KEEP: {config.history_keep}")
        click.echo(f"  BUNDLE_RUNS_DIR: {config.runs_dir}")
        click.echo(f"  BUNDLE_PROMPT_FILE: {config.prompt_file}")
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)


_common_options = [
    click.option("--app-repo", type=click.Path(exists=True, file_okay=False),
                 help="Application repository the generator scans (read-only)."),
    click.option("--environments", default=None,
                 help="Comma-separated environments (default: dev,staging,prod)."),
    click.option("--max-attempts", type=int, default=None,
                 help="Generation attempt ceiling (default: BUNDLE_MAX_ATTEMPTS or 3)."),
    click.option("--model", default=None, help="Model passed to the generator."),
    click.option("--no-trace", is_flag=True,
                 help="Disable LangGraph tracing (run without graph wrapper)"),
    click.option("--prompt-file", type=click.Path(), default=None,
                 help="Generator prompt file (default: BUNDLE_PROMPT_FILE)."),
    click.option("--profile", type=click.Path(exists=True, dir_okay=False), default=None,
                 help="YAML validation profile overriding the required files."),
]


def common_options(f):
    for option in reversed(_common_options):
        f = option(f)
    return f


@cli.command()
@click.argument("bundle_dir", type=click.Path(file_okay=False))
@common_options
def new(bundle_dir, app_repo, environments, max_attempts, model, no_trace, prompt_file, profile):
    """Generate a new bundle.

    BUNDLE_DIR: Where the bundle is written (created if missing)
    """
    from bundle_reconciler.manifest import has_manifest

    if has_manifest(Path(bundle_dir)):
        click.echo(f"Error: {bundle_dir} already has a manifest; use 'bundle update'.", err=True)
        raise SystemExit(1)

    _run_regeneration(
        bundle_dir, app_repo, environments, max_attempts, model, no_trace, prompt_file, profile
    )


@cli.command()
@click.argument("bundle_dir", type=click.Path(exists=True, file_okay=False))
@common_options
@click.option("--force", is_flag=True,
              help="Overwrite user-modified files (originals saved as .bak).")
@click.option("--only", default=None,
              help="Comma-separated components to regenerate; everything else is untouched.")
@click.option("--components-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="YAML map of component names to path prefixes.")
@click.option("--dry-run", is_flag=True, help="Show what would happen without generating.")
def update(bundle_dir, app_repo, environments, max_attempts, model, no_trace, prompt_file,
           profile, force, only, components_file, dry_run):
    """Regenerate an existing bundle, preserving user edits.

    BUNDLE_DIR: A bundle previously generated with 'bundle new'

    \b
    User-modified files are kept and the new version is written next to
    them as <file>.new, unless --force is given.
    """
    if dry_run:
        from bundle_reconciler.engine import plan_update
        from bundle_reconciler.resolver import (
            ResolutionPolicy,
            build_component_scope,
            load_components,
        )

        try:
            config = load_config(require_all=False)
            spec_text = _read_prompt(prompt_file, config)
            components = load_components(Path(components_file)) if components_file else None
            scope = build_component_scope(only.split(",") if only else None, components)
        except (ConfigError, ValueError, FileNotFoundError) as e:
            click.echo(f"Error: {e}", err=True)
            raise SystemExit(1)

        plan = plan_update(Path(bundle_dir), spec_text, ResolutionPolicy(force, scope))
        click.echo("DRY RUN - no files will be generated or written")
        click.echo()
        click.echo(json.dumps(plan, indent=2))
        return

    _run_regeneration(
        bundle_dir, app_repo, environments, max_attempts, model, no_trace, prompt_file, profile,
        force=force, only=only, components_file=components_file,
    )


@cli.command()
@click.argument("bundle_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--prompt-file", type=click.Path(), default=None,
              help="Compare against this prompt file (default: BUNDLE_PROMPT_FILE).")
def status(bundle_dir: str, prompt_file: Optional[str]):
    """Show managed files, user edits and history for a bundle."""
    from bundle_reconciler.detector import analyze_update
    from bundle_reconciler.engine import read_lock
    from bundle_reconciler.history import list_snapshots
    from bundle_reconciler.manifest import load_manifest

    bundle = Path(bundle_dir)
    manifest = load_manifest(bundle)
    if manifest is None:
        click.echo(f"No manifest in {bundle}; run 'bundle new' first.")
        return

    try:
        config = load_config(require_all=False)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)
    try:
        spec_text = _read_prompt(prompt_file, config)
    except FileNotFoundError:
        spec_text = None

    analysis = analyze_update(bundle, manifest, spec_text or "")

    click.echo(f"Bundle:          {bundle.resolve()}")
    click.echo(f"Last generated:  {analysis.last_generated}")
    click.echo(f"App commit:      {manifest.app_repo_commit}")
    click.echo(f"Managed files:   {analysis.managed_files_count}")
    click.echo(f"User-modified:   {analysis.user_modified_count}")
    for path in analysis.user_modified_files:
        click.echo(f"  - {path}")
    if spec_text is None:
        click.echo("Prompt changed:  unknown (prompt file not found)")
    else:
        click.echo(f"Prompt changed:  {'yes' if analysis.prompt_changed else 'no'}")
    click.echo(f"Snapshots:       {len(list_snapshots(bundle))}")

    lock = read_lock(bundle)
    if lock:
        click.echo(f"LOCKED by pid {lock.get('pid')} since {lock.get('held_since')}")


@cli.command()
@click.argument("bundle_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--environments", default=None,
              help="Comma-separated environments (default: dev,staging,prod).")
@click.option("--profile", type=click.Path(exists=True, dir_okay=False), default=None,
              help="YAML validation profile overriding the required files.")
def validate(bundle_dir: str, environments: Optional[str], profile: Optional[str]):
    """Run the structural validator against a bundle."""
    from bundle_reconciler.context import parse_environments

    try:
        envs = parse_environments(environments)
        validator = _make_validator(profile)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    errors = validator.validate(Path(bundle_dir), envs)
    if not errors:
        click.echo("Validation PASSED")
        return

    click.echo(f"Validation FAILED with {len(errors)} error(s):")
    for err in errors:
        click.echo(f"  - {err}")
    raise SystemExit(1)


@cli.command()
@click.argument("bundle_dir", type=click.Path(exists=True, file_okay=False))
def history(bundle_dir: str):
    """List manifest snapshots, oldest first."""
    from bundle_reconciler.history import list_snapshots

    snapshots = list_snapshots(Path(bundle_dir))
    if not snapshots:
        click.echo("No snapshots.")
        return
    for snapshot in snapshots:
        click.echo(snapshot.name)


@cli.command()
@click.argument("bundle_dir", type=click.Path(exists=True, file_okay=False))
@click.argument("snapshot")
def rollback(bundle_dir: str, snapshot: str):
    """Restore the manifest from a history snapshot.

    SNAPSHOT: Snapshot name as printed by 'bundle history'
    """
    from bundle_reconciler.engine import acquire_lock, release_lock
    from bundle_reconciler.history import restore_snapshot

    bundle = Path(bundle_dir)
    try:
        acquire_lock(bundle)
    except RuntimeError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    try:
        previous = restore_snapshot(bundle, snapshot)
    except (FileNotFoundError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        release_lock(bundle)

    click.echo(f"Manifest restored from {snapshot}")
    if previous is not None:
        click.echo(f"Previous manifest saved as {previous.name}")


@cli.command()
@click.argument("bundle_dir", type=click.Path(exists=True, file_okay=False))
def unlock(bundle_dir: str):
    """Remove a lock left behind by an interrupted run."""
    from bundle_reconciler.engine import break_lock

    if break_lock(Path(bundle_dir)):
        click.echo("Lock removed.")
    else:
        click.echo("Bundle is not locked.")


@cli.command("observe")
@click.argument("bundle_name", required=False)
@click.option(
    "--runs-dir",
    type=click.Path(),
    default=None,
    help="Directory holding run logs (default: BUNDLE_RUNS_DIR)",
)
def observe(bundle_name: Optional[str], runs_dir: Optional[str]):
    """Show a summary of recorded regeneration runs.

    BUNDLE_NAME: Limit to one bundle (its directory name)

    Read-only.
    """
    from bundle_reconciler.observe import print_summary

    if runs_dir is None:
        try:
            runs_dir = str(load_config(require_all=False).runs_dir)
        except ConfigError as e:
            click.echo(f"Configuration error:\n{e}", err=True)
            raise SystemExit(1)
    print_summary(runs_dir=Path(runs_dir), bundle_name=bundle_name)


if __name__ == "__main__":
    cli()
