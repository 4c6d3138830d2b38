"""Building the docserver release binary and its container image.

The image is assembled from a staging root filesystem (``docker/rootfs``)
that is wiped and repopulated on every build, so nothing from a previous
build can leak into a new image.

Examples
--------
Build an image from a docserver checkout:

    cfg = DeployConfig(project_dir=Path("~/docserver").expanduser())
    cargo_build_release(cfg)
    stage_artifacts(cfg)
    image = image_reference(cfg.image_repo)
    build_image(image, cfg.resolve(cfg.docker_dir))

"""

from __future__ import annotations

import datetime as dt
import shutil
import typing as typ

from docdeploy.logging import get_logger, log_info
from docdeploy.process import run_command

if typ.TYPE_CHECKING:
    from pathlib import Path

    from docdeploy.config import DeployConfig

logger = get_logger(__name__)

IMAGE_TAG_FORMAT = "%Y%m%d%H%M%S"

_CARGO_TIMEOUT = 1800
_DOCKER_BUILD_TIMEOUT = 600


def image_tag(now: dt.datetime | None = None) -> str:
    """Return a tag unique to the second of ``now`` (local time by default)."""
    moment = now or dt.datetime.now()  # noqa: DTZ005
    return moment.strftime(IMAGE_TAG_FORMAT)


def image_reference(image_repo: str, now: dt.datetime | None = None) -> str:
    """Return ``<repo>:<timestamp>`` for a fresh build."""
    return f"{image_repo}:{image_tag(now)}"


def cargo_build_release(cfg: DeployConfig) -> Path:
    """Compile docserver for the configured static-linked target.

    Returns
    -------
    Path
        Path of the produced binary.

    Raises
    ------
    CommandFailedError
        If cargo fails.
    FileNotFoundError
        If cargo succeeded but the expected binary is missing.

    """
    log_info(logger, "Building %s for %s", cfg.binary_name, cfg.target)
    run_command(
        ["cargo", "build", "--release", "--target", cfg.target],
        cwd=cfg.project_dir,
        timeout=_CARGO_TIMEOUT,
    )
    binary = cfg.binary_path
    if not binary.is_file():
        msg = f"cargo did not produce {binary}"
        raise FileNotFoundError(msg)
    return binary


def reset_staging_dir(staging_dir: Path) -> Path:
    """Delete ``staging_dir`` if present and recreate it empty.

    The parent (the docker build context) must already exist.
    """
    if staging_dir.exists():
        shutil.rmtree(staging_dir)
    staging_dir.mkdir()
    return staging_dir


def stage_artifacts(cfg: DeployConfig) -> Path:
    """Populate the staging root with the binary and the templates directory.

    Raises
    ------
    FileNotFoundError
        If the binary or the templates directory does not exist.

    """
    binary = cfg.binary_path
    templates = cfg.resolve(cfg.templates_dir)
    if not binary.is_file():
        msg = f"Release binary not found at {binary}"
        raise FileNotFoundError(msg)
    if not templates.is_dir():
        msg = f"Templates directory not found at {templates}"
        raise FileNotFoundError(msg)

    staging = reset_staging_dir(cfg.staging_dir)
    log_info(logger, "Staging %s and %s into %s", binary, templates, staging)
    shutil.copy2(binary, staging / binary.name)
    shutil.copytree(templates, staging / templates.name)
    return staging


def build_image(image: str, context: Path) -> None:
    """Build and tag the container image from ``context``.

    Raises
    ------
    NotADirectoryError
        If the build context is not a directory.
    CommandFailedError
        If docker build fails.

    """
    if not context.is_dir():
        msg = f"Build context must be a directory: {context}"
        raise NotADirectoryError(msg)

    log_info(logger, "Building image %s", image)
    run_command(
        ["docker", "build", "-t", image, str(context)],
        timeout=_DOCKER_BUILD_TIMEOUT,
    )
