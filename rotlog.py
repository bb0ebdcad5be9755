#!/usr/bin/env python3
"""
rotlog: Copy standard input to a log file, rotating earlier generations first.

Usage:
    some_command | python rotlog.py <logfile> [-c COUNT] [-d DIR] [-z TOOL] [-Z]
                                     [-u USER] [-g GROUP] [-m MODE] [-v] [-n]

Each run shifts <logfile>.0 .. <logfile>.N-3 up by one index, moves the
previous <logfile> to <logfile>.0 (compressing it), and then appends every
input line to a fresh <logfile> until input ends.
"""

import os
import re
import sys
import shutil
import signal
import logging
import argparse
import subprocess
from contextlib import suppress
from pathlib import Path
from dataclasses import dataclass
from typing import Iterable, List, Optional


log = logging.getLogger('rotlog')

DEFAULT_COUNT = 10
DEFAULT_COMPRESSOR = 'gzip'


@dataclass(frozen=True)
class Config:
    """Options for a single run, built once from the command line."""
    log_path: Path
    max_count: int = DEFAULT_COUNT
    compressor: Optional[str] = DEFAULT_COMPRESSOR  # None disables compression
    user: Optional[str] = None
    group: Optional[str] = None
    mode: Optional[int] = None
    verbose: bool = False
    dry_run: bool = False


@dataclass(frozen=True, order=True)
class Generation:
    """A rotated file: <log_path>.<index><suffix>."""
    index: int
    suffix: str = ''

    def path(self, log_path: Path, index: Optional[int] = None) -> Path:
        if index is None:
            index = self.index
        return log_path.with_name(f'{log_path.name}.{index}{self.suffix}')


@dataclass(frozen=True)
class RotationStep:
    """A single filesystem action of a rotation."""
    action: str  # 'delete', 'rename' or 'compress'
    source: Path
    destination: Optional[Path] = None
    tool: Optional[str] = None

    def describe(self) -> str:
        if self.action == 'rename':
            return f'rotate: {self.source} -> {self.destination}'
        if self.action == 'compress':
            return f'compress: {self.tool} {self.source}'
        return f'delete: {self.source}'


def generation_pattern(base_name: str) -> 're.Pattern[str]':
    """Match `<base_name>.<index>` plus a suffix that does not start with a digit.

    The anchoring keeps index 1 from claiming `log.10.gz`, and the canonical
    index form keeps `log.01` out entirely.
    """
    return re.compile(re.escape(base_name) + r'\.(0|[1-9][0-9]*)((?:[^0-9].*)?)', re.DOTALL)


def find_generations(log_path: Path) -> List[Generation]:
    """List the rotated generations of log_path, lowest index first."""
    directory = log_path.parent
    if not directory.is_dir():
        return []

    pattern = generation_pattern(log_path.name)
    found = []
    for entry in os.listdir(directory):
        match = pattern.fullmatch(entry)
        if not match:
            continue
        found.append(Generation(int(match.group(1)), match.group(2)))
    return sorted(found)


def plan_rotation(log_path: Path, max_count: int,
                  compressor: Optional[str] = None) -> List[RotationStep]:
    """Compute the ordered steps that make room for a fresh log_path.

    max_count counts the active log too, so at most max_count - 1 rotated
    generations survive. Generations that would shift past that range are
    deleted first (highest index first), the rest shift up one index in
    strictly descending order, and finally the active log becomes index 0.
    """
    keep = max(max_count, 1) - 1
    generations = find_generations(log_path)
    steps = []

    for gen in reversed(generations):
        if gen.index >= keep - 1:
            steps.append(RotationStep('delete', gen.path(log_path)))

    for gen in reversed(generations):
        if gen.index <= keep - 2:
            steps.append(RotationStep('rename', gen.path(log_path), gen.path(log_path, gen.index + 1)))

    if os.path.lexists(log_path):
        if keep == 0:
            steps.append(RotationStep('delete', log_path))
        else:
            first = Generation(0).path(log_path)
            steps.append(RotationStep('rename', log_path, first))
            if compressor:
                steps.append(RotationStep('compress', first, tool=compressor))

    return steps


def execute_step(step: RotationStep) -> None:
    """Perform one rotation step. Filesystem errors propagate."""
    if step.action == 'delete':
        with suppress(FileNotFoundError):
            os.remove(step.source)
    elif step.action == 'rename':
        os.rename(step.source, step.destination)
    elif step.action == 'compress':
        # Exit status is not checked: a failed compressor leaves the file
        # uncompressed and it still rotates as a generation next time.
        subprocess.run([step.tool, str(step.source)], stdin=subprocess.DEVNULL)
    else:
        raise ValueError(f'unknown rotation step: {step.action}')


def rotate(log_path: Path, max_count: int, compressor: Optional[str] = None,
           dry_run: bool = False) -> List[RotationStep]:
    """Rotate existing generations of log_path so a fresh log can be written."""
    log_path = Path(log_path)
    if not dry_run:
        log_path.parent.mkdir(parents=True, exist_ok=True)

    steps = plan_rotation(log_path, max_count, compressor)
    for step in steps:
        if dry_run:
            log.info('[DRY RUN] Would %s', step.describe())
            continue
        log.info(step.describe())
        execute_step(step)

    renamed = sum(1 for s in steps if s.action == 'rename')
    deleted = sum(1 for s in steps if s.action == 'delete')
    prefix = '[DRY RUN] ' if dry_run else ''
    log.info('%sRotated %d file(s), deleted %d', prefix, renamed, deleted)
    return steps


def apply_permissions(log_path: Path, user: Optional[str] = None,
                      group: Optional[str] = None, mode: Optional[int] = None) -> None:
    """Set mode, then owner, then group on log_path; only what was asked for."""
    if mode is not None:
        log.info('chmod: %s %04o', log_path, mode)
        os.chmod(log_path, mode)
    if user is not None:
        log.info('chown: %s %s', log_path, user)
        shutil.chown(log_path, user=_id_or_name(user))
    if group is not None:
        log.info('chgrp: %s %s', log_path, group)
        shutil.chown(log_path, group=_id_or_name(group))


def _id_or_name(value: str):
    return int(value) if value.isdigit() else value


def copy_stream(log_path: Path, source: Iterable[bytes], user: Optional[str] = None,
                group: Optional[str] = None, mode: Optional[int] = None) -> int:
    """Append each line from source to log_path until source is exhausted.

    Returns the number of lines written.
    """
    count = 0
    with open(log_path, 'ab') as out:
        apply_permissions(log_path, user, group, mode)
        for line in source:
            if not line.endswith(b'\n'):
                line += b'\n'
            out.write(line)
            out.flush()
            count += 1
    return count


def parse_mode(value: str) -> int:
    try:
        mode = int(value, 8)
    except ValueError:
        raise argparse.ArgumentTypeError(f'invalid octal mode: {value!r}') from None
    if not 0 <= mode <= 0o7777:
        raise argparse.ArgumentTypeError(f'mode out of range: {value!r}')
    return mode


class UsageParser(argparse.ArgumentParser):
    """ArgumentParser that exits with status 1 on usage errors."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f'{self.prog}: error: {message}\n')


def build_parser() -> argparse.ArgumentParser:
    parser = UsageParser(prog='rotlog', description='Copy stdin to a rotated log file')
    parser.add_argument('logfile', help='Log file to write')
    parser.add_argument('-c', dest='count', type=int, default=DEFAULT_COUNT,
                        help=f'Maximum number of generations, active log included (default {DEFAULT_COUNT})')
    parser.add_argument('-d', dest='directory', help='Log directory (overrides the directory of logfile)')
    parser.add_argument('-u', dest='user', help='Owner of the new log file')
    parser.add_argument('-g', dest='group', help='Group of the new log file')
    parser.add_argument('-m', dest='mode', type=parse_mode, help='Octal permissions of the new log file')
    parser.add_argument('-v', dest='verbose', action='store_true', help='Report each rotation action')
    parser.add_argument('-n', dest='dry_run', action='store_true', help='Show the rotation plan and exit')
    parser.add_argument('-z', dest='compressor', default=DEFAULT_COMPRESSOR,
                        help=f'Compression tool (default {DEFAULT_COMPRESSOR})')
    parser.add_argument('-Z', dest='compressor', action='store_const', const=None,
                        help='Do not compress rotated logs')
    return parser


def parse_args(argv: Optional[List[str]] = None) -> Config:
    """Build a Config from command-line arguments, exiting on usage errors."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.compressor is not None and (not args.compressor or shutil.which(args.compressor) is None):
        parser.error(f'compression tool not found: {args.compressor}')

    log_path = Path(args.logfile)
    if args.directory:
        log_path = Path(args.directory) / log_path.name

    return Config(
        log_path=log_path,
        max_count=args.count,
        compressor=args.compressor,
        user=args.user,
        group=args.group,
        mode=args.mode,
        verbose=args.verbose,
        dry_run=args.dry_run,
    )


def setup_logging(verbose: bool = False) -> None:
    """Send diagnostics to stdout, only when verbose."""
    for handler in list(log.handlers):
        log.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter('%(message)s'))
    log.addHandler(handler)
    log.setLevel(logging.INFO if verbose else logging.WARNING)
    log.propagate = False


def _exit_on_signal(signum, frame):
    raise SystemExit(128 + signum)


def main(argv: Optional[List[str]] = None) -> int:
    config = parse_args(argv)
    setup_logging(config.verbose or config.dry_run)

    rotate(config.log_path, config.max_count, config.compressor, dry_run=config.dry_run)
    if config.dry_run:
        return 0

    previous = {sig: signal.signal(sig, _exit_on_signal) for sig in (signal.SIGTERM, signal.SIGHUP)}
    try:
        count = copy_stream(config.log_path, sys.stdin.buffer,
                            config.user, config.group, config.mode)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    log.info('Wrote %d line(s) to %s', count, config.log_path)
    return 0


if __name__ == '__main__':
    sys.exit(main())
