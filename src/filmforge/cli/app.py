"""FilmForge CLI application.

Commands:
    apply     - Tone map a scene-linear image to a display image
    curve     - Print the nodes and coefficients of the tone curve
    autotune  - Suggest grey, black and white exposures from an image
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from filmforge import __version__
from filmforge.config import DEFAULT_WORKERS
from filmforge.core.types import (
    ChromaPreservation,
    ColorScience,
    CurveType,
    NoiseDistribution,
    PipelineConfig,
    ToneParameters,
)
from filmforge.errors import FilmForgeError

app = typer.Typer(
    name="filmforge",
    help="Filmic tone mapping with highlight reconstruction.",
    no_args_is_help=True,
)
console = Console()

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)


def version_callback(value: bool):
    if value:
        console.print(f"FilmForge v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", "-V", help="Show version and exit.",
        callback=version_callback, is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    if verbose:
        logging.getLogger("filmforge").setLevel(logging.DEBUG)


_STAGE_WEIGHTS = {
    "commit": 5,
    "mask": 5,
    "inpaint": 10,
    "reconstruct": 40,
    "refine": 25,
    "tonemap": 15,
}


def _build_progress_callback(progress: Progress, task_id: int):
    """Create weighted stage-progress callback for pipeline runs."""

    stage_order = list(_STAGE_WEIGHTS.keys())

    def on_progress(stage: str, fraction: float, message: str):
        base = sum(
            _STAGE_WEIGHTS[s]
            for s in stage_order
            if stage in _STAGE_WEIGHTS and stage_order.index(s) < stage_order.index(stage)
        )
        weight = _STAGE_WEIGHTS.get(stage, 0)
        pct = base + weight * fraction
        progress.update(
            task_id,
            completed=pct,
            description=f"{stage}: {message}" if message else stage,
        )

    return on_progress


def _choice(enum_cls, value: str, option: str):
    """Parse an enum option, mapping bad values to a CLI error."""
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        choices = ", ".join(e.value for e in enum_cls)
        raise typer.BadParameter(f"{option} must be one of: {choices}.") from None


def _build_params(
    *,
    grey: float,
    custom_grey: bool,
    black: float,
    white: float,
    contrast: float,
    latitude: float,
    saturation: float,
    balance: float,
    power: float,
    preserve: str,
    science: str,
    shadows: str,
    highlights: str,
    threshold: float,
    feather: float,
    hq_passes: int,
    noise: float,
    noise_distribution: str,
) -> ToneParameters:
    """Create ToneParameters from shared CLI options."""
    return ToneParameters(
        grey_point_source=grey,
        custom_grey=custom_grey,
        black_point_source=black,
        white_point_source=white,
        contrast=contrast,
        latitude=latitude,
        saturation=saturation,
        balance=balance,
        output_power=power,
        preserve_color=_choice(ChromaPreservation, preserve, "--preserve"),
        version=_choice(ColorScience, science, "--color-science"),
        shadows=_choice(CurveType, shadows, "--shadows"),
        highlights=_choice(CurveType, highlights, "--highlights"),
        reconstruct_threshold=threshold,
        reconstruct_feather=feather,
        high_quality_reconstruction=hq_passes,
        noise_level=noise,
        noise_distribution=_choice(NoiseDistribution, noise_distribution, "--noise-distribution"),
    )


@app.command()
def apply(
    input: Path = typer.Argument(..., help="Scene-linear input image."),
    output: Path = typer.Option("output.tiff", "-o", "--output", help="Output image path."),
    grey: float = typer.Option(18.45, "--grey", help="Scene grey (%)."),
    custom_grey: bool = typer.Option(False, "--custom-grey", help="Use --grey instead of 18.45 %."),
    black: float = typer.Option(-8.0, "--black", help="Black exposure relative to grey (EV)."),
    white: float = typer.Option(4.0, "--white", help="White exposure relative to grey (EV)."),
    contrast: float = typer.Option(1.5, "--contrast", help="Slope of the latitude."),
    latitude: float = typer.Option(33.0, "--latitude", help="Linear part of the curve (% of range)."),
    saturation: float = typer.Option(10.0, "--saturation", help="Extreme luminance saturation (%)."),
    balance: float = typer.Option(0.0, "--balance", help="Shadows/highlights balance (%)."),
    power: float = typer.Option(4.0, "--power", help="Output power (hardness)."),
    preserve: str = typer.Option(
        "power_norm", "--preserve",
        help="Chroma preservation: none, max_rgb, luminance, power_norm, euclidean_norm.",
    ),
    science: str = typer.Option("v2", "--color-science", help="Color science: v1, v2."),
    shadows: str = typer.Option("hard", "--shadows", help="Toe curve type: hard, soft."),
    highlights: str = typer.Option("hard", "--highlights", help="Shoulder curve type: hard, soft."),
    threshold: float = typer.Option(3.0, "--threshold", help="Reconstruction threshold (EV above white)."),
    feather: float = typer.Option(3.0, "--feather", help="Reconstruction transition smoothness."),
    hq_passes: int = typer.Option(1, "--hq-passes", min=0, help="Chromaticity refinement passes."),
    noise: float = typer.Option(0.1, "--noise", help="Noise level added in highlights."),
    noise_distribution: str = typer.Option(
        "poissonian", "--noise-distribution", help="Noise: uniform, gaussian, poissonian.",
    ),
    auto: bool = typer.Option(False, "--auto", help="Auto-tune black and white from the image."),
    show_mask: bool = typer.Option(False, "--show-mask", help="Write the clipping mask instead."),
    fast: bool = typer.Option(False, "--fast", help="Skip highlight reconstruction."),
    roi_scale: float = typer.Option(1.0, "--roi-scale", help="Full-resolution pixels per input pixel."),
    workers: int = typer.Option(DEFAULT_WORKERS, "-j", "--workers", min=1, help="Tone mapping threads."),
    bit_depth: int = typer.Option(16, "-b", "--bit-depth", help="Output bit depth (8 or 16)."),
):
    """Tone map a scene-linear image with the filmic curve."""
    from filmforge.io.image import load_image, save_image, to_working_buffer
    from filmforge.pipeline.autotune import autotune as autotune_params, sample_statistics
    from filmforge.pipeline.runner import run_pipeline

    params = _build_params(
        grey=grey, custom_grey=custom_grey, black=black, white=white, contrast=contrast, latitude=latitude,
        saturation=saturation, balance=balance, power=power, preserve=preserve,
        science=science, shadows=shadows, highlights=highlights, threshold=threshold,
        feather=feather, hq_passes=hq_passes, noise=noise,
        noise_distribution=noise_distribution,
    )

    try:
        image, meta = load_image(input)
    except (FilmForgeError, OSError) as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    buffer = to_working_buffer(image)
    if auto:
        params = autotune_params(params, *sample_statistics(buffer))

    config = PipelineConfig(
        params=params,
        roi_scale=roi_scale,
        show_mask=show_mask,
        fast=fast,
        workers=workers,
    )

    console.print(f"\n[bold]FilmForge Tone Mapping[/bold]")
    console.print(f"  Input:    {input} ({meta['width']}x{meta['height']}, {meta['backend']})")
    console.print(f"  Range:    {params.black_point_source:+.2f} / {params.white_point_source:+.2f} EV")
    console.print(f"  Preserve: {params.preserve_color.value} ({params.version.value})")
    console.print()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Tone mapping...", total=100)
        on_progress = _build_progress_callback(progress, task)

        try:
            result = run_pipeline(buffer, config, progress_callback=on_progress)
            progress.update(task, completed=100, description="Complete")
        except FilmForgeError as e:
            console.print(f"\n[red]Error:[/red] {e}")
            raise typer.Exit(code=1)

    try:
        saved = save_image(result.output, output, bit_depth=bit_depth)
    except (FilmForgeError, OSError, ValueError) as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"\n[green]Output:[/green] {saved}")
    console.print(
        f"[dim]Clipped pixels: {result.clipped_pixels:,}, "
        f"reconstruction: {result.diagnostics.get('reconstruction', 'n/a')}[/dim]"
    )
    console.print(f"[dim]Total time: {result.diagnostics.get('total_time', 0):.2f}s[/dim]\n")


@app.command()
def curve(
    grey: float = typer.Option(18.45, "--grey", help="Scene grey (%)."),
    black: float = typer.Option(-8.0, "--black", help="Black exposure relative to grey (EV)."),
    white: float = typer.Option(4.0, "--white", help="White exposure relative to grey (EV)."),
    contrast: float = typer.Option(1.5, "--contrast", help="Slope of the latitude."),
    latitude: float = typer.Option(33.0, "--latitude", help="Linear part of the curve (% of range)."),
    balance: float = typer.Option(0.0, "--balance", help="Shadows/highlights balance (%)."),
    power: float = typer.Option(4.0, "--power", help="Output power (hardness)."),
    shadows: str = typer.Option("hard", "--shadows", help="Toe curve type: hard, soft."),
    highlights: str = typer.Option("hard", "--highlights", help="Shoulder curve type: hard, soft."),
):
    """Print the tone curve nodes and segment coefficients."""
    from filmforge.core.spline import compute_spline

    params = ToneParameters(
        grey_point_source=grey,
        black_point_source=black,
        white_point_source=white,
        contrast=contrast,
        latitude=latitude,
        balance=balance,
        output_power=power,
        shadows=_choice(CurveType, shadows, "--shadows"),
        highlights=_choice(CurveType, highlights, "--highlights"),
    )

    try:
        spline = compute_spline(params)
    except FilmForgeError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    nodes = Table(title="Curve Nodes", show_header=True, header_style="bold")
    nodes.add_column("Node", style="cyan")
    nodes.add_column("Log position", justify="right")
    nodes.add_column("Display", justify="right")
    for name, x, y in zip(("black", "toe", "grey", "shoulder", "white"), spline.nodes_x, spline.nodes_y):
        nodes.add_row(name, f"{x:.4f}", f"{y:.4f}")

    coeffs = Table(title="Segment Coefficients", show_header=True, header_style="bold")
    coeffs.add_column("Segment", style="cyan")
    for i in range(5):
        coeffs.add_column(f"c{i}", justify="right")
    for name, row in zip(("toe", "latitude", "shoulder"), spline.coefficients):
        coeffs.add_row(name, *(f"{c:.5f}" for c in row))

    console.print()
    console.print(nodes)
    console.print(coeffs)
    console.print(
        f"[dim]Latitude: [{spline.latitude_min:.4f}, {spline.latitude_max:.4f}][/dim]\n"
    )


@app.command()
def autotune(
    input: Path = typer.Argument(..., help="Scene-linear input image."),
    grey: float = typer.Option(18.45, "--grey", help="Current scene grey (%)."),
    security: float = typer.Option(0.0, "--security", help="Safety margin (% of range)."),
    custom_grey: bool = typer.Option(False, "--custom-grey", help="Also measure the grey."),
):
    """Suggest grey, black and white exposures for an image."""
    from filmforge.io.image import load_image
    from filmforge.pipeline.autotune import autotune as autotune_params, sample_statistics

    try:
        image, _ = load_image(input)
        mean_rgb, min_rgb, max_rgb = sample_statistics(image)
    except (FilmForgeError, OSError, ValueError) as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    params = ToneParameters(grey_point_source=grey, security_factor=security, custom_grey=custom_grey)
    tuned = autotune_params(params, mean_rgb, min_rgb, max_rgb)

    table = Table(title="Suggested Exposures", show_header=True, header_style="bold")
    table.add_column("Parameter", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Grey (%)", f"{tuned.grey_point_source:.3f}")
    table.add_row("Black (EV)", f"{tuned.black_point_source:+.3f}")
    table.add_row("White (EV)", f"{tuned.white_point_source:+.3f}")
    table.add_row("Dynamic range (EV)", f"{tuned.dynamic_range:.3f}")
    table.add_row("Output power", f"{tuned.output_power:.3f}")

    console.print()
    console.print(table)
    console.print(
        f"[dim]Sampled mean {np.round(mean_rgb, 4)}, min {np.round(min_rgb, 4)}, "
        f"max {np.round(max_rgb, 4)}[/dim]\n"
    )


if __name__ == "__main__":
    app()
