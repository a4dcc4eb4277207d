import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
from dotenv import find_dotenv, load_dotenv

from releaseminer.cancellation import CancellationToken
from releaseminer.domain.models import RunState
from releaseminer.exceptions import ConfigurationError, MinerError, SevenZipError
from releaseminer.infra.extract import SevenZip
from releaseminer.main import get_build_targets, get_engine

logger = logging.getLogger(__name__)


def get_default_config() -> Path:
    return Path(os.environ.get("RELEASEMINER_CONFIG_FILE", "config.yaml"))


@click.group()
def cli():
    pass


def _load(config_file: str, version: Optional[str], debug: Optional[bool]):
    try:
        engine = get_engine(config_file)
        targets = get_build_targets(config_file, version)
    except ConfigurationError as e:
        if debug:
            raise
        else:
            logger.exception(f"Failed due a configuration error: {e}")
            sys.exit(1)
    return engine, targets


@cli.command()
@click.option(
    "--config",
    "config_file",
    required=False,
    help="Yaml config file",
    type=click.Path(exists=True),
    default=get_default_config,
)
@click.option(
    "--version",
    "version",
    required=False,
    help="Version - only mine a single configured version",
    type=str,
)
@click.option("--debug", "debug", required=False, help="Debugging enabled", type=bool)
@click.option(
    "--dry-run",
    "dry_run",
    required=False,
    help="Dry run - only show the plan",
    is_flag=True,
    type=bool,
)
def mine(
    config_file: str,
    version: Optional[str],
    debug: Optional[bool],
    dry_run: Optional[bool],
):
    engine, targets = _load(config_file, version, debug)

    if not dry_run:
        try:
            SevenZip().ensure_installed()
        except SevenZipError as e:
            if debug:
                raise
            logger.error(f"7-Zip is required for extraction: {e}")
            sys.exit(1)

    cancellation_token = CancellationToken()
    failed = []
    for target in targets:
        try:
            summary = engine.mine(
                target, cancellation_token=cancellation_token, dry_run=dry_run
            )
        except KeyboardInterrupt:
            cancellation_token.cancel()
            logger.warning("Interrupted")
            sys.exit(130)
        except MinerError as e:
            if debug:
                raise
            logger.exception(f"[{target.identity}] Mining failed: {e}")
            failed.append(target.identity)
            continue

        if not dry_run:
            summary.output_report()
        if summary.state == RunState.ABORTED:
            failed.append(target.identity)

    if failed:
        logger.error(f"Failed to mine {', '.join(failed)}")
        sys.exit(1)

    logger.info("Done")


@cli.command()
@click.option(
    "--config",
    "config_file",
    required=False,
    help="Yaml config file",
    type=click.Path(exists=True),
    default=get_default_config,
)
@click.option(
    "--version",
    "version",
    required=False,
    help="Version - only plan a single configured version",
    type=str,
)
@click.option("--debug", "debug", required=False, help="Debugging enabled", type=bool)
def plan(config_file: str, version: Optional[str], debug: Optional[bool]):
    engine, targets = _load(config_file, version, debug)

    for target in targets:
        target_plan = engine.plan(target)
        if target_plan is None:
            logger.warning(f"[{target.identity}] No consistent plan")
        else:
            target_plan.output_report()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    path = find_dotenv(usecwd=True)
    load_dotenv(path)

    cli(obj={})


if __name__ == "__main__":
    main()
