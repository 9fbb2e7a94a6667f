"""s3bin downloads or uploads binary files from/to an AWS S3 bucket.

With --put, s3bin uploads the file to the S3 bucket, and creates a file with
the same name plus the .sha1 extension. This file contains the SHA-1 hash of
the uploaded binary.

With --get, s3bin takes the .sha1 file created by --put and downloads the
corresponding file from S3 if the local file does not exist or its contents
do not match the recorded hash. --get-dir does the same for every .sha1 file
under a directory.
"""

from __future__ import annotations

import logging

import anyio
import click

from s3bin.__meta__ import __version__
from s3bin.config import load_config
from s3bin.errors import S3BinError
from s3bin.object_store import S3ObjectStore
from s3bin.s3bin import BinCache

logger = logging.getLogger(__name__)

USAGE = """\b
s3bin [options] --get <file.sha1>
s3bin [options] --get-dir <directory>
s3bin [options] --put <file>"""


async def _run(
    cache: BinCache,
    get_path: str | None,
    get_dir: str | None,
    put_path: str | None,
    dry_run: bool,
) -> None:
    if get_path:
        await cache.get(get_path, dry_run=dry_run)
    elif get_dir:
        async for _ in cache.get_dir(get_dir, dry_run=dry_run):
            pass
    elif put_path:
        pointer = await cache.put(put_path)
        logger.info("Wrote %s", pointer.path)


@click.command(
    help=f"{USAGE}\n\n{__doc__}",
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option(
    "--s3-bucket",
    envvar="S3BIN_BUCKET",
    metavar="NAME",
    help="Name of S3 bucket where binaries are stored.",
)
@click.option(
    "--aws-region",
    envvar=["S3BIN_REGION", "AWS_REGION"],
    metavar="REGION",
    help="The S3 bucket's AWS region.",
)
@click.option(
    "--endpoint-url",
    envvar="S3BIN_ENDPOINT_URL",
    metavar="URL",
    help="Use an S3-compatible endpoint instead of AWS.",
)
@click.option(
    "--config",
    "config_path",
    metavar="FILE",
    help="JSON config file. Defaults to ./.s3bin.json if present.",
)
@click.option(
    "--get", "get_path", metavar="FILE.sha1", help="Download file given its .sha1 file."
)
@click.option("--get-dir", metavar="DIRECTORY", help="Download all files in DIRECTORY.")
@click.option(
    "--put",
    "put_path",
    metavar="FILE",
    help="Put FILE in S3 and create the corresponding .sha1 file.",
)
@click.option(
    "--dry-run", is_flag=True, help="With --get/--get-dir, only report what would change."
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.version_option(__version__, prog_name="s3bin")
@click.pass_context
def main(
    ctx: click.Context,
    s3_bucket: str | None,
    aws_region: str | None,
    endpoint_url: str | None,
    config_path: str | None,
    get_path: str | None,
    get_dir: str | None,
    put_path: str | None,
    dry_run: bool,
    verbose: bool,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO, format="%(message)s"
    )

    try:
        config = load_config(config_path).merge(
            bucket=s3_bucket, region=aws_region, endpoint_url=endpoint_url
        )
    except S3BinError as exc:
        logger.error("%s", exc)
        ctx.exit(1)

    if "bucket" in config.missing:
        raise click.UsageError("--s3-bucket is required", ctx)
    if "region" in config.missing:
        raise click.UsageError("--aws-region is required", ctx)

    actions = [action for action in (get_path, get_dir, put_path) if action]
    if len(actions) != 1:
        raise click.UsageError("exactly one of --get, --get-dir or --put is required", ctx)
    if dry_run and put_path:
        raise click.UsageError("--dry-run only applies to --get and --get-dir", ctx)

    store = S3ObjectStore(config.bucket, config.region, endpoint_url=config.endpoint_url)

    try:
        anyio.run(_run, BinCache(store), get_path, get_dir, put_path, dry_run)
    except S3BinError as exc:
        logger.error("%s", exc)
        ctx.exit(1)
