# /// script
# requires-python = ">=3.11"
# dependencies = ["typer>=0.9.0", "sunjax"]
#
# [tool.uv.sources]
# sunjax = { path = ".." }
# ///
"""Simulate a bouncing ball with recorded impact events.

The ball falls under constant gravity; every time the height crosses zero
downwards, its velocity is reversed and scaled by the coefficient of
restitution. Each impact appears twice in the output: once with the
incoming velocity and once with the rebound velocity.

Requires sunjax to be installed (``uv pip install -e .`` from the repo root).

Usage:
    uv run examples/bouncing_ball.py [OPTIONS]

Examples:
    # Default: 10 m drop, restitution 0.9, up to 3 recorded bounces
    uv run examples/bouncing_ball.py

    # Softer ball, longer run, implicit method
    uv run examples/bouncing_ball.py --restitution 0.7 --duration 12 --max-events 10 --method sdirk2
"""

import enum
import logging
from typing import Annotated

import jax.numpy as jnp
import typer

from sunjax import (
    CrossingDirection,
    ErrorDiagnostics,
    EventSpec,
    ODEMethod,
    ODEOpts,
    OdeProblem,
    Tolerances,
    solve,
)


class Method(enum.StrEnum):
    """Stepping method."""

    dp54 = "dp54"
    sdirk2 = "sdirk2"


def main(
    height: Annotated[float, typer.Option(help="Initial height in meters")] = 10.0,
    gravity: Annotated[float, typer.Option(help="Gravitational acceleration in m/s^2")] = 9.81,
    restitution: Annotated[float, typer.Option(help="Coefficient of restitution")] = 0.9,
    duration: Annotated[float, typer.Option(help="Simulated time in seconds")] = 8.0,
    samples: Annotated[int, typer.Option(help="Number of requested output times")] = 161,
    max_events: Annotated[int, typer.Option(help="Maximum number of recorded bounces")] = 3,
    method: Annotated[Method, typer.Option(help="Stepping method")] = Method.dp54,
    verbose: Annotated[bool, typer.Option(help="Log events and restarts")] = False,
) -> None:
    """Drop a ball and report its bounces."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)

    problem = OdeProblem(
        rhs=lambda t, y: jnp.array([y[1], -gravity]),
        init_cond=jnp.array([height, 0.0]),
        sol_times=jnp.linspace(0.0, duration, samples),
        tolerances=Tolerances(rel_tolerance=1e-6, abs_tolerances=1e-9),
        events=[
            EventSpec(
                condition=lambda t, y: y[0],
                direction=CrossingDirection.DOWNWARDS,
                update=lambda t, y: y.at[1].multiply(-restitution),
                record=True,
            )
        ],
        max_events=max_events,
    )
    opts = ODEOpts(method=ODEMethod.DP54 if method is Method.dp54 else ODEMethod.SDIRK2)

    result = solve(problem, opts)
    if isinstance(result, ErrorDiagnostics):
        typer.echo(f"Solve failed: {result.error_code.name}")
        typer.echo(f"  rows computed before failure: {result.partial_results.shape[0]}")
        typer.echo(f"  max events reached: {result.diagnostics.max_events_reached}")
        raise typer.Exit(code=1)

    grid = result.actual_time_grid
    states = result.solution_matrix
    typer.echo(f"{'bounce':>6}  {'time [s]':>10}  {'v in [m/s]':>11}  {'v out [m/s]':>11}  {'next peak [m]':>13}")
    row = 0
    for n, event in enumerate(result.event_info, start=1):
        while float(grid[row]) != event.time:
            row += 1
        v_in = float(states[row, 1])
        v_out = float(states[row + 1, 1])
        peak = v_out**2 / (2.0 * gravity)
        typer.echo(f"{n:>6}  {event.time:>10.6f}  {v_in:>11.6f}  {v_out:>11.6f}  {peak:>13.6f}")
        row += 2

    d = result.diagnostics
    typer.echo("")
    typer.echo(f"Output rows:      {grid.shape[0]}")
    typer.echo(f"Steps:            {d.num_steps} ({d.num_step_attempts} attempts)")
    typer.echo(f"RHS evaluations:  {d.num_rhs_evals_fe + d.num_rhs_evals_fi}")
    typer.echo(f"Error test fails: {d.num_err_test_fails}")


if __name__ == "__main__":
    typer.run(main)
