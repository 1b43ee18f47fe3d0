"""Rolling node retirement commands.

Example:
    retirectl retire run --context prod-east --role worker
    retirectl retire run --context prod-east --role worker --resume 2024-01-01T00-00-00Z
"""

import logging
import traceback
from typing import Optional

import typer
from kubernetes.config import ConfigException

from ..config import ConfigError, RetireConfig
from ..logging import setup_logging
from ..modules.batch import BatchOrchestrator
from ..modules.kube import ClusterClient
from ..modules.lifecycle import NodeLifecycle
from ..modules.retry import RetryError, RetryExecutor
from ..modules.ssh import RemoteHost
from ..modules.waits import WaitTimeoutError

logger = logging.getLogger("retire")

app = typer.Typer(help="Roll a node pool: drain, reboot and re-admit every node of a role")


def build_orchestrator(settings: RetireConfig) -> BatchOrchestrator:
    """Wire the cluster client, remote hosts and lifecycle for one run."""
    cluster = ClusterClient.connect(
        settings.context,
        proxy=settings.proxy,
        kubeconfig=settings.kubeconfig,
        role_label=settings.role_label,
        batch_label=settings.batch_label,
        drain_poll_interval=settings.polling.drain_interval,
    )
    retry = RetryExecutor(settings.retry_policy)

    def remote_factory(node):
        return RemoteHost(
            node.address,
            username=settings.ssh.user,
            key_path=settings.ssh.key_path,
            port=settings.ssh.port,
            connect_timeout=settings.ssh.connect_timeout,
            command_timeout=settings.ssh.command_timeout,
        )

    lifecycle = NodeLifecycle(cluster, remote_factory, retry, settings)
    return BatchOrchestrator(cluster, lifecycle, retry, settings)


def _load_settings(ctx: typer.Context, config_path: Optional[str], **overrides) -> RetireConfig:
    debug = bool((ctx.obj or {}).get("debug"))
    settings = RetireConfig.load(config_path, **overrides)
    setup_logging(
        debug,
        level=settings.logging.level,
        log_file=settings.logging.file,
        max_size_mb=settings.logging.max_size_mb,
        backup_count=settings.logging.backup_count,
    )
    for line in settings.describe():
        logger.debug(line)
    return settings


def _fail(ctx: typer.Context, message: str) -> None:
    if (ctx.obj or {}).get("debug"):
        logger.error(f"{message}\n{traceback.format_exc()}")
    else:
        logger.error(message)
    typer.echo(f"❌ {message}", err=True)
    raise typer.Exit(code=1)


@app.command("run")
def run(
    ctx: typer.Context,
    context: Optional[str] = typer.Option(None, "--context", "-c", help="Kubeconfig context of the target cluster"),
    role: Optional[str] = typer.Option(None, "--role", "-r", help="Role label value selecting the node pool"),
    resume: Optional[str] = typer.Option(
        None, "--resume", help="Batch id of an interrupted run; skips labeling and re-enters at drain"
    ),
    timeout: Optional[int] = typer.Option(None, "--timeout", "-t", help="Drain timeout per node in seconds [default: 300]"),
    proxy: Optional[str] = typer.Option(None, "--proxy", help="HTTP proxy for control-plane calls"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to a retirectl YAML config file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="List the nodes that would be retired and exit"),
):
    """Retire every node of a role, one at a time."""
    try:
        settings = _load_settings(
            ctx, config_path, context=context, role=role, resume=resume, drain_timeout=timeout, proxy=proxy
        )
    except ConfigError as e:
        _fail(ctx, str(e))

    try:
        orchestrator = build_orchestrator(settings)

        if dry_run:
            nodes = orchestrator.plan()
            typer.echo(f"🔍 {len(nodes)} node(s) with {settings.role_label}={settings.role} would be retired:")
            for node in nodes:
                note = f" (already in batch {node.batch_id})" if node.batch_id else ""
                typer.echo(f"  - {node.name} [{node.readiness.value}]{note}")
            return

        if settings.resume:
            batch = orchestrator.run_resume(settings.resume)
        else:
            batch = orchestrator.run_fresh()

    except (RetryError, WaitTimeoutError) as e:
        if orchestrator.resumable_batch_id:
            hint = f"Re-run with --resume {orchestrator.resumable_batch_id} to continue the batch."
        else:
            hint = "No node was labeled yet; re-run without --resume."
        _fail(ctx, f"Retirement stopped: {e}. {hint}")
    except (FileNotFoundError, ConfigException) as e:
        _fail(ctx, str(e))

    verb = "Resumed" if batch.resumed else "Retired"
    typer.echo(f"✅ {verb} batch {batch.batch_id}: {len(batch.nodes)} node(s) cycled for role={batch.role}")


@app.command("batches")
def batches(
    ctx: typer.Context,
    context: Optional[str] = typer.Option(None, "--context", "-c", help="Kubeconfig context of the target cluster"),
    role: Optional[str] = typer.Option(None, "--role", "-r", help="Role label value selecting the node pool"),
    proxy: Optional[str] = typer.Option(None, "--proxy", help="HTTP proxy for control-plane calls"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to a retirectl YAML config file"),
):
    """List unfinished retirement batches and the nodes they still owe."""
    try:
        settings = _load_settings(ctx, config_path, context=context, role=role, proxy=proxy)
    except ConfigError as e:
        _fail(ctx, str(e))

    try:
        in_flight = build_orchestrator(settings).in_flight()
    except (RetryError, FileNotFoundError, ConfigException) as e:
        _fail(ctx, str(e))

    if not in_flight:
        typer.echo(f"No unfinished batches for role={settings.role}")
        return

    for batch_id in sorted(in_flight):
        nodes = in_flight[batch_id]
        typer.echo(f"📦 {batch_id}: {len(nodes)} node(s) remaining")
        for name in nodes:
            typer.echo(f"  - {name}")
