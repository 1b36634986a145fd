"""Main CLI entry point for docker-g5k."""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from docker_g5k.exceptions import DockerG5kError
from docker_g5k.logging_config import get_logger, setup_logging

app = typer.Typer(
    name="docker-g5k",
    help="Provision Docker clusters on Grid'5000 nodes",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


def _clustering_name(config) -> str:
    if config.is_swarm_standalone:
        return "Swarm standalone"
    if config.is_swarm_mode:
        return "Swarm mode"
    return "none"


def _print_error(e: DockerG5kError, title: str = "Error") -> None:
    console.print(f"[red]{title}:[/red] {e.message}")
    if e.details:
        console.print(f"\n{e.details}")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    logger.debug("Logging initialized")


@app.command()
def version() -> None:
    """Show version information."""
    from docker_g5k import __version__

    typer.echo(f"docker-g5k version {__version__}")


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to the cluster file"),
    output: str | None = typer.Option(
        None, "--output", "-o", help="Write the resolved cluster file to this path"
    ),
) -> None:
    """
    Validate a cluster file without provisioning anything.

    Prints the cluster settings and the machines that would be created. With
    --output, the cluster file is written back with every default resolved.
    """
    from docker_g5k.config import load_cluster_file, save_cluster_file

    try:
        cluster = load_cluster_file(config_path)
    except DockerG5kError as e:
        _print_error(e, "Configuration Error")
        raise typer.Exit(code=1)

    config = cluster.config
    console.print(f"[green]✓[/green] Cluster file '{config_path}' is valid")
    console.print(f"  Clustering: {_clustering_name(config)}")
    console.print(f"  Image: {config.g5k_image}")
    console.print(f"  Walltime: {config.g5k_walltime}")
    if config.use_zookeeper_cluster_storage:
        console.print("  Zookeeper cluster storage: Enabled")
    if config.weave_networking_enabled:
        console.print("  Weave networking: Enabled")

    table = Table(title="Machines")
    table.add_column("Machine", style="cyan")
    table.add_column("Node", style="magenta")
    table.add_column("Site")
    table.add_column("Job")
    table.add_column("Role", style="yellow")

    for node in cluster.nodes:
        role = "master" if node.is_swarm_master else "worker"
        table.add_row(node.machine_name, node.node_name, node.g5k_site, str(node.g5k_job_id), role)

    console.print(table)

    if output:
        try:
            save_cluster_file(cluster, output)
        except DockerG5kError as e:
            _print_error(e)
            raise typer.Exit(code=1)
        console.print(f"[green]✓[/green] Resolved cluster file written to {output}")


@app.command()
def create_cluster(
    config_path: str = typer.Argument(..., help="Path to the cluster file"),
    parallel: int | None = typer.Option(
        None, "--parallel", "-p", min=1, help="Maximum number of nodes provisioned at once"
    ),
) -> None:
    """
    Provision every node of the cluster file.

    Each node gets Docker Engine installed, is registered in the cluster hosts
    lookup table and joins the configured Swarm cluster and Weave network.
    Failed machines are not deleted.
    """
    from docker_g5k.config import load_cluster_file

    try:
        cluster = load_cluster_file(config_path)
    except DockerG5kError as e:
        _print_error(e, "Configuration Error")
        raise typer.Exit(code=1)

    console.print(f"\n[bold cyan]Provisioning {len(cluster.nodes)} nodes[/bold cyan]")
    console.print(f"Clustering: {_clustering_name(cluster.config)}\n")

    try:
        results = cluster.provision_nodes(max_workers=parallel)
    except DockerG5kError as e:
        _print_error(e)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Provisioning interrupted by user[/yellow]")
        raise typer.Exit(code=130)

    table = Table(title="Provisioning Results")
    table.add_column("Machine", style="cyan")
    table.add_column("Node", style="magenta")
    table.add_column("Role", style="yellow")
    table.add_column("Last Step")
    table.add_column("Status")

    for result in results:
        status = {
            "provisioned": "[green]✓ provisioned[/green]",
            "failed": "[red]✗ failed[/red]",
            "skipped": "[yellow]skipped[/yellow]",
        }[result.status]
        step = result.last_completed_step.value if result.last_completed_step else "-"
        role = "master" if result.is_swarm_master else "worker"
        table.add_row(result.machine_name, result.node_name, role, step, status)

    console.print(table)

    failed = [r for r in results if not r.success]
    for result in failed:
        if result.error is not None:
            console.print(f"\n[red]{result.machine_name}:[/red] {result.error.message}")
            if result.error.details:
                console.print(result.error.details)

    if failed:
        console.print(f"\n[red]✗ {len(failed)} of {len(results)} nodes were not provisioned[/red]")
        raise typer.Exit(code=1)

    console.print("\n[green]✓ Cluster provisioned successfully[/green]")
