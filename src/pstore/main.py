"""
pstore entry point.

Usage:
    pstore sample-config                               Print a config template
    pstore --config pstore.toml gather                 One collection cycle
    pstore --url https://ps/api/rest -u admin gather   Same, flags only
    pstore history --db pstore_metrics.db              Show stored points

Scheduling is left to cron / systemd timers / a host agent: every
`gather` is exactly one cycle.
"""

from __future__ import annotations

import logging
import sys

import click

from pstore import __version__
from pstore.collector.powerstore import PowerStoreCollector
from pstore.config import SAMPLE_CONFIG, ConnectionConfig
from pstore.dashboard.terminal import render_measurements
from pstore.errors import CollectorError
from pstore.sink import FanoutSink, JsonLinesSink, ListSink
from pstore.storage.sqlite_store import DEFAULT_DB_PATH, MeasurementStore

log = logging.getLogger("pstore")


def _load_config(ctx) -> ConnectionConfig:
    opts = ctx.obj
    overrides = dict(
        url=opts["url"],
        username=opts["username"],
        password=opts["password"],
        tls_ca=opts["tls_ca"],
        tls_cert=opts["tls_cert"],
        tls_key=opts["tls_key"],
        insecure_skip_verify=opts["insecure_skip_verify"],
        appliance_id=opts["appliance_id"],
        interval=opts["interval"],
        timeout_seconds=opts["timeout"],
    )

    try:
        if opts["config"]:
            with open(opts["config"], "rb") as f:
                base = ConnectionConfig.from_toml(f.read().decode("utf-8"))
            return base.with_overrides(**overrides)

        if not opts["url"]:
            raise click.UsageError("Please specify --url or --config")
        return ConnectionConfig(**{k: v for k, v in overrides.items() if v is not None})
    except ValueError as exc:
        # tomllib.TOMLDecodeError is a ValueError too
        raise click.BadParameter(str(exc), param_hint="config") from exc


@click.group()
@click.version_option(version=__version__, prog_name="pstore")
@click.option("--config", "config", type=click.Path(exists=True, dir_okay=False),
              default=None, help="TOML config file (see `pstore sample-config`)")
@click.option("--url", default=None, help="PowerStore REST API URL, e.g. https://10.0.0.5/api/rest")
@click.option("-u", "--username", default=None, help="API user")
@click.option("-p", "--password", default=None, envvar="PSTORE_PASSWORD",
              help="API password (or set PSTORE_PASSWORD)")
@click.option("--appliance-id", default=None, help="Appliance to report on (default A1)")
@click.option("--interval", default=None, help="Metrics rollup interval (default Five_Mins)")
@click.option("--tls-ca", default=None, help="CA bundle for verifying the appliance certificate")
@click.option("--tls-cert", default=None, help="Client certificate")
@click.option("--tls-key", default=None, help="Client certificate key")
@click.option("--insecure-skip-verify/--verify-tls", default=None,
              help="Skip TLS chain & host verification, or force it on over the config file")
@click.option("--timeout", type=float, default=None, help="Per-request timeout in seconds")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx, config, url, username, password, appliance_id, interval,
        tls_ca, tls_cert, tls_key, insecure_skip_verify, timeout, verbose):
    """pstore - Dell PowerStore space-metrics collector."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj.update(
        config=config,
        url=url,
        username=username,
        password=password,
        appliance_id=appliance_id,
        interval=interval,
        tls_ca=tls_ca,
        tls_cert=tls_cert,
        tls_key=tls_key,
        insecure_skip_verify=insecure_skip_verify,
        timeout=timeout,
    )


@cli.command("sample-config")
def sample_config():
    """Print a sample TOML config."""
    click.echo(SAMPLE_CONFIG, nl=False)


@cli.command()
@click.option("--output", type=click.Choice(["table", "jsonl"]), default="table",
              help="Output mode: table (Rich) or jsonl (one JSON line per measurement)")
@click.option("--db", default=DEFAULT_DB_PATH, help="SQLite database path for history")
@click.option("--no-store", is_flag=True, default=False, help="Disable SQLite storage")
@click.pass_context
def gather(ctx, output: str, db: str, no_store: bool):
    """Run one collection cycle and print the measurements."""
    config = _load_config(ctx)
    collector = PowerStoreCollector(config)

    store = None if no_store else MeasurementStore(db_path=db)
    collected = ListSink()
    sink = FanoutSink(
        collected,
        JsonLinesSink(sys.stdout) if output == "jsonl" else None,
        store,
    )

    try:
        collector.start()
        emitted = collector.gather(sink)
    except CollectorError as exc:
        log.error("Collection failed: %s", exc)
        raise SystemExit(1)
    finally:
        collector.stop()
        sink.close()

    log.info("Emitted %d measurements", emitted)
    if output == "table":
        render_measurements(collected.measurements, collector.name())


@cli.command()
@click.option("--db", default=DEFAULT_DB_PATH, type=click.Path(exists=True, dir_okay=False),
              help="SQLite database path")
@click.option("--minutes", default=60, help="How far back to look")
def history(db: str, minutes: int):
    """Show measurements stored by previous gather runs."""
    store = MeasurementStore(db_path=db)
    try:
        measurements = store.get_recent(minutes=minutes)
    finally:
        store.close()
    render_measurements(measurements, f"history ({db}, last {minutes} min)")


if __name__ == "__main__":
    cli()
