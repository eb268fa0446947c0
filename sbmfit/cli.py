"""sbmfit command-line interface."""

from __future__ import annotations

import logging

import click


@click.group()
@click.option("--config", "-c", default="sbmfit.yaml", help="Path to config YAML.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config: str, verbose: bool) -> None:
    """sbmfit: hierarchical stochastic block model fitting."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


def _load_network(edges: str, nodes: str | None, from_column: str, to_column: str,
                  weight_column: str | None, bipartite: bool):
    from sbmfit.adapters.tabular import build_network, read_records

    return build_network(
        read_records(edges),
        read_records(nodes) if nodes else None,
        from_column=from_column,
        to_column=to_column,
        weight_column=weight_column,
        bipartite_edges=bipartite,
    )


_network_options = [
    click.option("--nodes", type=click.Path(exists=True), default=None, help="Nodes CSV with id,type columns."),
    click.option("--from-column", default="from", show_default=True),
    click.option("--to-column", default="to", show_default=True),
    click.option("--weight-column", default=None, help="Optional edge weight column."),
    click.option("--bipartite", is_flag=True, help="Type nodes by the edge column they appear in."),
]


def network_options(fn):
    for option in reversed(_network_options):
        fn = option(fn)
    return fn


@main.command()
@click.argument("out", type=click.Path())
@click.option("--blocks", default=3, show_default=True, help="Number of planted blocks.")
@click.option("--nodes-per-block", default=40, show_default=True)
@click.option("--p-within", default=0.3, show_default=True)
@click.option("--p-between", default=0.02, show_default=True)
@click.option("--seed", default=None, type=int, help="Random seed.")
def simulate(out: str, blocks: int, nodes_per_block: int, p_within: float,
             p_between: float, seed: int | None) -> None:
    """Write a simulated block network's edges to OUT (CSV)."""
    from sbmfit.adapters.tabular import write_records
    from sbmfit.simulate import simulate_block_network

    sim = simulate_block_network(
        blocks, nodes_per_block, p_within=p_within, p_between=p_between, random_seed=seed
    )
    rows = [{"from": u, "to": v} for u, v, _ in sim.network.edges()]
    write_records(out, rows, ["from", "to"])
    click.echo(f"Wrote {len(rows)} edges between {sim.n_nodes} nodes to {out}")


@main.command()
@click.argument("edges", type=click.Path(exists=True))
@network_options
@click.option("--targets", default=None, help="Final group counts to scan, e.g. 1-10 or 2,4,6.")
@click.option("--heuristic", default=None, help="Heuristic used to pick the best state.")
@click.option("--parallel/--sequential", default=None, help="Run the scan in parallel.")
@click.option("--seed", default=None, type=int, help="Random seed (overrides config).")
@click.option("--output", "-o", type=click.Path(), default=None, help="Write the chosen snapshot as JSON.")
@click.pass_context
def fit(ctx: click.Context, edges: str, nodes: str | None, from_column: str, to_column: str,
        weight_column: str | None, bipartite: bool, targets: str | None, heuristic: str | None,
        parallel: bool | None, seed: int | None, output: str | None) -> None:
    """Fit the model to the network in EDGES (CSV) and pick the best group count."""
    import numpy as np

    from sbmfit.adapters.snapshot_json import export_snapshot
    from sbmfit.config import load_settings, parse_targets
    from sbmfit.domain.partition import PartitionState
    from sbmfit.services.entropy import EntropyModel
    from sbmfit.services.heuristics import select_best_state
    from sbmfit.services.mcmc import MCMCSampler
    from sbmfit.services.scan import collapse_run

    settings = load_settings(ctx.obj["config"])
    if targets:
        settings.scan.targets = parse_targets(targets)
    if parallel is not None:
        settings.scan.parallel = parallel
    random_seed = settings.random_seed if seed is None else seed

    network = _load_network(edges, nodes, from_column, to_column, weight_column, bipartite)
    state = PartitionState(network)
    config = settings.collapse_config()
    scan = collapse_run(state, settings.scan.targets, config, seed=random_seed)

    click.echo(f"{'run':>4} {'target':>7} {'groups':>7} {'entropy':>14}")
    for run in scan.runs:
        if run.result is None:
            click.echo(f"{run.run:>4} {run.target:>7}  failed: {run.error}")
            continue
        final = run.result.final
        click.echo(f"{run.run:>4} {run.target:>7} {final.num_groups:>7} {final.entropy:>14.4f}")

    selection = select_best_state(
        state,
        scan.records,
        heuristic or settings.heuristic.name,
        use_entropy_value=settings.heuristic.use_entropy_value,
        **settings.heuristic_bounds(),
    )
    click.echo(f"\nBest state: {selection.num_groups} groups ({selection.heuristic})")

    if settings.mcmc.num_sweeps:
        sampler = MCMCSampler(
            np.random.default_rng(random_seed), beta=config.beta, eps=config.eps
        )
        sweeps = sampler.sweep(
            state, settings.mcmc.num_sweeps, level=config.level, track_pairs=settings.mcmc.track_pairs
        )
        click.echo(f"Refinement: {sweeps.total_moves} moves, entropy delta {sweeps.total_delta:.4f}")
        if sweeps.pair_consensus:
            stable = sum(1 for share in sweeps.pair_consensus.values() if share >= 0.5)
            click.echo(f"Node pairs grouped together in at least half the sweeps: {stable}")

    click.echo(f"Entropy: {EntropyModel().entropy(state, config.level):.4f}")
    if output:
        export_snapshot(state.snapshot(), output)
        click.echo(f"Snapshot written to {output}")


@main.command()
@click.argument("edges", type=click.Path(exists=True))
@network_options
@click.option("--snapshot", "snapshot_path", type=click.Path(exists=True), required=True,
              help="Snapshot JSON produced by 'fit'.")
@click.option("--level", default=1, show_default=True)
def entropy(edges: str, nodes: str | None, from_column: str, to_column: str,
            weight_column: str | None, bipartite: bool, snapshot_path: str, level: int) -> None:
    """Report the entropy of a saved snapshot for the network in EDGES."""
    from sbmfit.adapters.snapshot_json import import_snapshot
    from sbmfit.domain.partition import PartitionState
    from sbmfit.services.entropy import EntropyModel

    network = _load_network(edges, nodes, from_column, to_column, weight_column, bipartite)
    state = PartitionState(network)
    state.restore(import_snapshot(snapshot_path))
    click.echo(f"Groups at level {level}: {state.num_groups(level)}")
    click.echo(f"Entropy: {EntropyModel().entropy(state, level):.4f}")


if __name__ == "__main__":
    main()
