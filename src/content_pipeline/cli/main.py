"""content-pipeline CLI.

Commands:
    fetch-image   Download one image through the SSRF-hardened fetcher.
    check-url     Run SSRF validation only.
    show-config   Print the effective configuration.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Tuple

import click

from content_pipeline import __version__
from content_pipeline.config import PipelineConfig, load_config
from content_pipeline.core.errors import ConfigValidationError, FetchError
from content_pipeline.core.fetch import FetchRequest, SecureImageFetcher, validate_image_url
from content_pipeline.cli.output import emit_exception, emit_success

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(ctx: click.Context) -> PipelineConfig:
    config: Optional[PipelineConfig] = ctx.obj.get("config")
    if config is None:
        try:
            config = load_config(ctx.obj.get("config_path"))
        except ConfigValidationError as e:
            emit_exception(e)
        _configure_logging(ctx.obj.get("log_level") or config.log_level)
        ctx.obj["config"] = config
    return config


@click.group("content-pipeline")
@click.version_option(__version__, prog_name="content-pipeline")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to a content-pipeline.toml file.",
)
@click.option("--log-level", default=None, help="Override the configured log level.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], log_level: Optional[str]) -> None:
    """Article generation pipeline tools."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


@cli.command("fetch-image")
@click.argument("url")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    default=None,
    help="Write the image here (extension added if missing).",
)
@click.option("--max-size", type=int, default=None, help="Maximum size in bytes.")
@click.option(
    "--allow-http-host",
    "allow_http_hosts",
    multiple=True,
    help="Host allowed over plain HTTP (repeatable).",
)
@click.option("--no-head", is_flag=True, help="Skip the HEAD size probe.")
@click.pass_context
def fetch_image_cmd(
    ctx: click.Context,
    url: str,
    output: Optional[Path],
    max_size: Optional[int],
    allow_http_hosts: Tuple[str, ...],
    no_head: bool,
) -> None:
    """Download URL, enforcing SSRF, size, redirect and magic-byte checks."""
    config = _load(ctx)
    fetch = config.fetch
    fetcher = SecureImageFetcher.from_config(
        fetch,
        trusted_http_hosts=(*fetch.trusted_http_hosts, *allow_http_hosts),
    )
    request = FetchRequest(
        url=url,
        max_size_bytes=max_size or fetch.max_size_bytes,
        check_size_first=fetch.check_size_first and not no_head,
        timeout=fetch.timeout,
        connect_timeout=fetch.connect_timeout,
        max_retries=fetch.max_retries,
        initial_delay=fetch.initial_delay,
        backoff_multiplier=fetch.backoff_multiplier,
        max_delay=fetch.max_delay,
    )

    try:
        result = asyncio.run(fetcher.download_image_with_retry(request))
    except FetchError as e:
        emit_exception(e)

    data = {
        "url": url,
        "final_url": result.final_url,
        "media_type": result.media_type,
        "size": result.size,
        "redirects": result.redirects,
    }
    if output is not None:
        path = output if output.suffix else output.with_suffix(f".{result.extension}")
        path.write_bytes(result.content)
        data["path"] = str(path)
    emit_success(data)


@cli.command("check-url")
@click.argument("url")
@click.option("--no-dns", is_flag=True, help="Skip DNS resolution.")
@click.pass_context
def check_url_cmd(ctx: click.Context, url: str, no_dns: bool) -> None:
    """Validate URL against the SSRF rules without fetching it."""
    config = _load(ctx)
    try:
        validate_image_url(
            url,
            resolve_dns=config.fetch.resolve_dns and not no_dns,
            require_https=config.fetch.require_https,
            trusted_http_hosts=config.fetch.trusted_http_hosts,
        )
    except FetchError as e:
        emit_exception(e)
    emit_success({"url": url, "allowed": True})


@cli.command("show-config")
@click.pass_context
def show_config_cmd(ctx: click.Context) -> None:
    """Print the effective configuration after file and env layering."""
    emit_success(_load(ctx).to_dict())


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
