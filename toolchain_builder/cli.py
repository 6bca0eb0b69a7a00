#!/usr/bin/env python3

import json
import logging
import sys

import click

from toolchain_builder.api import ToolchainBuilder
from toolchain_builder.config import SUPPORTED_ARCHITECTURES, load_config
from toolchain_builder.exit_codes import (
    SUCCESS, INTERRUPTED,
    CommandError, get_exit_code_for_exception,
)
from toolchain_builder.progress import (
    LoggingProgressSink, RichProgressSink, get_progress,
)


def _make_progress(pretty: bool, verbose: bool, quiet: bool):
    """Pick a progress sink for the current terminal and flags."""
    if pretty:
        return RichProgressSink()
    reporter = get_progress(enabled=False if quiet else (verbose or None))
    if not reporter.enabled and verbose:
        return LoggingProgressSink()
    return reporter


def _emit(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False), flush=True)


@click.command()
@click.version_option(package_name='toolchain-builder')
@click.argument('package')
@click.option('-r', '--repository', 'repository_url', metavar='REPOSITORY',
              help='Address of the package repository (default: http://repo.msys2.org/mingw)')
@click.option('-n', '--reponame', 'repository_name', metavar='REPOSITORY_NAME',
              help='Package repository name, used for the <name>.db file (default: mingw64)')
@click.option('-a', '--arch', 'architecture', type=click.Choice(SUPPORTED_ARCHITECTURES),
              help='Package architecture (default: x86_64)')
@click.option('-o', '--output', metavar='OUTPUT',
              help='Output folder, created with all parents if missing (default: ./)')
@click.option('-p', '--parallelism', type=click.IntRange(min=1), metavar='PARALLELISM',
              help='Download/extract parallelism (default: number of CPUs)')
@click.option('-e', '--exclude', multiple=True, metavar='EXCLUDE',
              help='Exclude files or folders by regex')
@click.option('-i', '--include', multiple=True, metavar='INCLUDE',
              help='Include files or folders by regex. Only files which match are extracted; '
                   'files matching both include and exclude are *not* extracted')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='Configuration file (default: ~/.toolchain-builder/config.json)')
@click.option('--dry-run', is_flag=True, help='Resolve dependencies and print them without downloading')
@click.option('--pretty', is_flag=True, help='Display progress bars with rich formatting')
@click.option('-v', '--verbose', is_flag=True, help='Show detailed progress')
@click.option('-q', '--quiet', is_flag=True, help='Suppress progress and data output')
def cli(package, repository_url, repository_name, architecture, output, parallelism,
        exclude, include, config_path, dry_run, pretty, verbose, quiet):
    """Download PACKAGE and all of its dependencies and extract them.

    Files of every package are extracted into the output folder, filtered
    by --exclude and --include regexes. Exclude always wins over include.

    \b
    Examples:
        toolchain-builder mingw-w64-x86_64-gcc -o ./toolchain
        toolchain-builder mingw-w64-x86_64-gcc -e '^mingw64/share/' -p 4
        toolchain-builder mingw-w64-x86_64-zlib -i '^mingw64/(include|lib)/'
    """
    if verbose:
        logging.getLogger('toolchain_builder').setLevel(logging.DEBUG)
    elif quiet:
        logging.getLogger('toolchain_builder').setLevel(logging.WARNING)

    progress = None
    try:
        config = load_config(config_path)
        level = config.get('logging', {}).get('level')
        if level and not (verbose or quiet):
            logging.getLogger('toolchain_builder').setLevel(level.upper())

        progress = _make_progress(pretty, verbose, quiet)
        builder = ToolchainBuilder(
            config=config,
            progress=progress,
            repository_url=repository_url,
            repository_name=repository_name,
            architecture=architecture,
        )

        if dry_run:
            run_config = builder.run_config(package, output=output, parallelism=parallelism,
                                            exclude=exclude, include=include)
            closure = builder.resolve(run_config.package)
            if not quiet:
                for item in closure:
                    _emit(item.to_dict())
        else:
            summary = builder.build(
                package,
                output=output,
                parallelism=parallelism,
                exclude=exclude,
                include=include,
            )
            if not quiet:
                _emit(summary.to_dict())
    except KeyboardInterrupt:
        click.echo("Interrupted by user", err=True)
        sys.exit(INTERRUPTED)
    except CommandError as e:
        click.echo(f"ERROR: {e}", err=True)
        if not quiet:
            _emit({
                "error": str(e),
                "type": type(e).__name__,
                "exit_code": e.exit_code,
            })
        sys.exit(e.exit_code)
    except OSError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(get_exit_code_for_exception(e))
    finally:
        if progress is not None:
            progress.close()

    sys.exit(SUCCESS)


def main():
    cli()


if __name__ == "__main__":
    main()
