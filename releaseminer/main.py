import importlib
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import List, Optional, Type

from pyaml_env import parse_config
from pydantic import ValidationError

from releaseminer.application.dispatcher import DEFAULT_RETRY_DELAY
from releaseminer.application.mining_engine import MiningEngine
from releaseminer.domain.models import BuildTarget, MinerJob
from releaseminer.domain.models.event import EventBus, Publisher, Subscriber
from releaseminer.exceptions import ConfigurationError
from releaseminer.infra.fetch import configure_transfer_permits
from releaseminer.infra.fetch.http import DEFAULT_TIMEOUT
from releaseminer.infra.jobs import RepackageJob
from releaseminer.utils import get_max_parallel_downloads

logger = logging.getLogger(__name__)


def import_cls(name):
    components = name.split(".")
    mod = importlib.import_module(".".join(components[:-1]))
    return getattr(mod, components[-1])


def load_config(config_file: str) -> dict:
    config = parse_config(config_file, default_value="")
    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file '{config_file}' is empty or invalid")
    return config


def get_job_cls(key: Optional[str]) -> Type[MinerJob]:
    if not key or key == "repackage":
        return RepackageJob

    try:
        cls = import_cls(key)
    except (ImportError, AttributeError, ValueError) as e:
        raise ConfigurationError(f"Cannot import job type '{key}'") from e

    if not (isinstance(cls, type) and issubclass(cls, MinerJob)):
        raise ConfigurationError(f"Job type '{key}' is not a MinerJob")
    return cls


def build_job(job_args: dict, output_dir: Path) -> MinerJob:
    job_args = dict(job_args)
    if "name" not in job_args:
        raise ConfigurationError(f"Job is missing a name: {job_args}")

    job_cls = get_job_cls(job_args.pop("type", None))
    if job_cls is RepackageJob:
        job_args.setdefault("output_dir", output_dir)

    try:
        return job_cls(**job_args)
    except (TypeError, ValueError, ValidationError) as e:
        raise ConfigurationError(
            f"Invalid configuration for job '{job_args['name']}': {e}"
        ) from e


def build_target(target_args: dict) -> BuildTarget:
    try:
        return BuildTarget.model_validate(target_args)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid target configuration: {e}") from e


def get_build_targets(
    config_file: str, version: Optional[str] = None
) -> List[BuildTarget]:
    config = load_config(config_file)
    targets = [build_target(target_args) for target_args in config.get("targets", [])]
    if version is not None:
        targets = [target for target in targets if target.version == version]
        if not targets:
            raise ConfigurationError(f"Version '{version}' is not configured")
    return targets


def get_event_subscriber_cls(key: str) -> Type[Subscriber]:
    return import_cls(key)


def get_engine(config_file: str, disable_events: bool = False) -> MiningEngine:
    config = load_config(config_file)
    main_config = config.get("main") or {}

    # Job and subscriber types can live next to the config file
    sys.path.append(os.path.dirname(os.path.abspath(config_file)))
    # Relative paths in the config are relative to the config file
    config_dir = Path(config_file).resolve().parent

    download_dir = main_config.get("download_dir") or (
        Path(tempfile.gettempdir()) / "releaseminer-downloads"
    )
    output_dir = config_dir / (main_config.get("output_dir") or "output")

    configure_transfer_permits(
        int(
            main_config.get("max_parallel_downloads") or get_max_parallel_downloads()
        )
    )

    retry_delay = main_config.get("retry_delay")
    max_transient_retries = main_config.get("max_transient_retries")

    event_bus = EventBus()
    if not disable_events:
        publisher = Publisher()
        for subscriber in config.get("event_subscribers", []):
            cls = get_event_subscriber_cls(subscriber["type"])
            publisher.add_subscriber(cls(subscriber.get("configuration", {})))
        event_bus.register(publisher)
    else:
        logger.info("Disabling all event handlers")

    logger.info("Initializing MiningEngine")

    engine = MiningEngine(
        download_dir=config_dir / download_dir,
        scratch_dir=main_config.get("scratch_dir") or None,
        retry_delay=(
            float(retry_delay) if retry_delay not in ("", None) else DEFAULT_RETRY_DELAY
        ),
        max_transient_retries=(
            int(max_transient_retries)
            if max_transient_retries not in ("", None)
            else None
        ),
        pre_extract=main_config.get("pre_extract", True) not in (False, "false"),
        timeout=(
            float(main_config.get("connect_timeout") or DEFAULT_TIMEOUT[0]),
            float(main_config.get("read_timeout") or DEFAULT_TIMEOUT[1]),
        ),
        event_bus=event_bus,
    )

    logger.info("Adding jobs...")
    for job_args in config.get("jobs", []):
        engine.add_job(build_job(job_args, output_dir))

    return engine
