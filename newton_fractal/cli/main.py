"""
Command-line interface for Newton fractal rendering.

This module exposes rendering, orbit tracing, benchmarking and settings file
handling as ``newton-fractal`` subcommands.
"""

import click
import configparser
import sys
import threading
from pathlib import Path
from typing import List, Optional, Tuple
import logging

import numba

from .. import __version__
from ..api import FractalRenderer
from ..acceleration.gpu_backend import GPUUnavailableError, is_gpu_available
from ..acceleration.render_thread import RenderThread, RenderedFrame, RenderFailure
from ..core.parameters import FractalParameters, MAX_ROOTS, Processor, Root, default_root_color
from ..io.config import ConfigManager, EnvironmentConfig, parse_complex, parse_point, parse_size

logger = logging.getLogger(__name__)

PROCESSORS = {
    'single': Processor.CPU_SINGLE,
    'multi': Processor.CPU_MULTI,
    'gpu': Processor.GPU,
}


@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--settings', type=click.Path(exists=True, dir_okay=False),
              help='Settings file or exported PNG to start from')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--quiet', '-q', is_flag=True, help='Suppress most output')
@click.pass_context
def main(ctx, version, settings, verbose, quiet):
    """
    Newton Fractal - render basins of attraction of Newton's method.

    The polynomial is given by its roots; every pixel is colored by the root
    its Newton iteration converges to, darker the more iterations it took.
    """
    if quiet:
        logging.basicConfig(level=logging.ERROR)
    elif verbose:
        logging.basicConfig(level=logging.DEBUG,
                            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    else:
        logging.basicConfig(level=logging.INFO,
                            format='%(levelname)s: %(message)s')

    if version:
        click.echo(f"Newton Fractal v{__version__}")
        click.echo(f"Python: {sys.version}")
        click.echo(f"Numba: {numba.__version__}")
        click.echo(f"GPU acceleration: {'Available' if is_gpu_available() else 'Not available'}")
        if ctx.invoked_subcommand is None:
            sys.exit(0)

    ctx.ensure_object(dict)
    ctx.obj['settings'] = settings
    ctx.obj['verbose'] = verbose
    ctx.obj['environment'] = EnvironmentConfig()


def parameter_options(func):
    """Options shared by every command that renders."""
    options = [
        click.option('--size', type=str, help='Output size "WIDTHxHEIGHT"'),
        click.option('--iterations', type=int, help='Maximum iterations'),
        click.option('--damping', type=str, help='Damping factor "re,im"'),
        click.option('--root', 'roots', multiple=True, type=str,
                     help=f'Root "re,im" (repeatable, at most {MAX_ROOTS})'),
        click.option('--processor', type=click.Choice(list(PROCESSORS)), help='Where to compute pixels'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_parameters(ctx, size: Optional[str], iterations: Optional[int], damping: Optional[str],
                     roots: Tuple[str, ...], processor: Optional[str]) -> FractalParameters:
    """Start from the settings file (or defaults) and apply command-line overrides."""
    settings = ctx.obj.get('settings')
    try:
        params = ConfigManager().load(settings) if settings else FractalParameters()
    except (ValueError, configparser.Error) as e:
        raise click.BadParameter(str(e), param_hint='--settings')

    try:
        if size:
            new_size = parse_size(size)
            params.resize(new_size)
            params.limits.reset(new_size)
        if iterations is not None:
            params.max_iterations = iterations
        if damping:
            params.damping = parse_complex(damping)
        if roots:
            if len(roots) > MAX_ROOTS:
                raise click.BadParameter(f"at most {MAX_ROOTS} roots are supported", param_hint='--root')
            params.roots = [Root(parse_complex(r), default_root_color(i)) for i, r in enumerate(roots)]
        if processor:
            params.processor = PROCESSORS[processor]
        params.validate()
    except ValueError as e:
        raise click.BadParameter(str(e))

    return params


def create_renderer(ctx) -> FractalRenderer:
    environment = ctx.obj['environment']
    return FractalRenderer(environment.kernel_config(), environment.num_threads())


@main.command()
@click.argument('output', type=click.Path())
@parameter_options
@click.pass_context
def render(ctx, output, size, iterations, damping, roots, processor):
    """
    Render a fractal image.

    OUTPUT: Output image file or directory
    """
    params = build_parameters(ctx, size, iterations, damping, roots, processor)
    renderer = create_renderer(ctx)
    try:
        frame = renderer.render(params)
        path = renderer.save(frame, output)
    except GPUUnavailableError as e:
        click.echo(f"Error: GPU unavailable ({e}); use --processor multi", err=True)
        sys.exit(1)
    except (OSError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        renderer.close()

    click.echo(f"Render complete: {frame.fps:.2f} fps")
    click.echo(f"Saved: {path}")


@main.command()
@click.argument('output', type=click.Path())
@click.option('--start', type=str, required=True, help='Starting pixel "x,y"')
@parameter_options
@click.pass_context
def orbit(ctx, output, start, size, iterations, damping, roots, processor):
    """
    Render a fractal with the orbit of one pixel drawn on top.

    OUTPUT: Output image file
    """
    params = build_parameters(ctx, size, iterations, damping, roots, processor)
    try:
        params.orbit_start = parse_point(start)
    except ValueError:
        raise click.BadParameter("use 'x,y'", param_hint='--start')

    renderer = create_renderer(ctx)
    try:
        image, traced = renderer.render_with_orbit(params)
        path = renderer.image_exporter.save_image(image, Path(output))
    except GPUUnavailableError as e:
        click.echo(f"Error: GPU unavailable ({e}); use --processor multi", err=True)
        sys.exit(1)
    except (OSError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        renderer.close()

    click.echo(f"Orbit: {len(traced.points)} points")
    if ctx.obj.get('verbose'):
        for x, y in traced.points:
            click.echo(f"  {x},{y}")
    click.echo(f"Saved: {path}")


@main.command()
@click.option('--frames', type=int, default=10, help='Number of frames to render')
@parameter_options
@click.pass_context
def benchmark(ctx, frames, size, iterations, damping, roots, processor):
    """Render the same frame repeatedly on the render thread and report fps."""
    if frames <= 0:
        raise click.BadParameter("must be positive", param_hint='--frames')

    params = build_parameters(ctx, size, iterations, damping, roots, processor)
    if params.processor == Processor.GPU:
        raise click.BadParameter("benchmark runs on the CPU render thread", param_hint='--processor')
    params.benchmark = True

    fps_values: List[float] = []
    failures: List[RenderFailure] = []
    done = threading.Event()

    def on_frame(frame: RenderedFrame):
        fps_values.append(frame.fps)
        click.echo(f"Frame {len(fps_values)}: {frame.fps:.2f} fps")
        if len(fps_values) >= frames:
            done.set()

    def on_failure(failure: RenderFailure):
        failures.append(failure)
        done.set()

    environment = ctx.obj['environment']
    thread = RenderThread(on_frame_rendered=on_frame, on_render_failed=on_failure,
                          num_threads=environment.num_threads(),
                          config=environment.kernel_config())
    width, height = params.result_size
    click.echo("Newton Fractal Benchmark")
    click.echo(f"Image size: {width}x{height} ({width*height:,} pixels)")
    click.echo(f"Max iterations: {params.max_iterations}, processor: {params.processor.name}")

    thread.submit(params)
    done.wait()
    thread.shutdown()

    if failures:
        click.echo(f"Error: benchmark frame failed ({failures[0].error})", err=True)
        sys.exit(1)

    measured = fps_values[:frames]
    click.echo("")
    click.echo("Performance Results:")
    click.echo(f"  Mean: {sum(measured) / len(measured):.2f} fps")
    click.echo(f"  Min:  {min(measured):.2f} fps")
    click.echo(f"  Max:  {max(measured):.2f} fps")


@main.command('export-settings')
@click.argument('output', type=click.Path(dir_okay=False))
@parameter_options
@click.pass_context
def export_settings(ctx, output, size, iterations, damping, roots, processor):
    """
    Write parameters to a settings file.

    OUTPUT: Settings file path (.ini)
    """
    params = build_parameters(ctx, size, iterations, damping, roots, processor)
    path = ConfigManager().save(params, output)
    click.echo(f"Saved: {path}")


@main.command('show-settings')
@click.argument('settings_file', type=click.Path(exists=True, dir_okay=False))
def show_settings(settings_file):
    """
    Print the parameters a settings file resolves to.

    SETTINGS_FILE: Settings file (.ini) or exported PNG
    """
    manager = ConfigManager()
    try:
        params = manager.load(settings_file)
    except (ValueError, configparser.Error) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(manager.dumps(params), nl=False)


@main.command()
def info():
    """Show information about available backends."""
    click.echo(f"Newton Fractal v{__version__}")
    click.echo(f"Numba: {numba.__version__}")
    click.echo(f"GPU acceleration: {'Available' if is_gpu_available() else 'Not available'}")
    click.echo(f"Maximum roots: {MAX_ROOTS}")


if __name__ == '__main__':
    main()
