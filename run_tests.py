#!/usr/bin/env python3
"""
Run the insider-risk-monitor suite under pytest with coverage.

    python run_tests.py                      # whole suite, coverage gate at 80%
    python run_tests.py scheduler -k stop    # tests/test_scheduler.py, filtered
    python run_tests.py --no-cov --quick     # no coverage, stop at first failure
"""

import argparse
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

PROJECT_DIR = Path(__file__).parent
TESTS_DIR = "tests"

COVERED_MODULES = (
    "insider_risk",
    "server",
    "cli",
    "config",
    "monitoring",
    "models_validation",
)
COVERAGE_GATE = 80


def resolve_targets(names: List[str]) -> List[str]:
    """Map short suite names such as ``scheduler`` to test module paths."""
    if not names:
        return [TESTS_DIR]

    targets = []
    for name in names:
        stem = name if name.startswith("test_") else f"test_{name}"
        path = Path(TESTS_DIR) / f"{stem.removesuffix('.py')}.py"
        if not (PROJECT_DIR / path).exists():
            raise ValueError(f"No test module for '{name}' ({path})")
        targets.append(str(path))
    return targets


def build_command(args: argparse.Namespace) -> List[str]:
    cmd = [sys.executable, "-m", "pytest", *resolve_targets(args.suites), "--tb=short"]
    cmd.append("-q" if args.quick else "-v")
    if args.quick:
        cmd.append("-x")
    if args.keyword:
        cmd.extend(["-k", args.keyword])

    if not args.no_cov:
        cmd.extend(f"--cov={module}" for module in COVERED_MODULES)
        cmd.append("--cov-report=term-missing")
        if args.html:
            cmd.append("--cov-report=html")
        # A partial run cannot meet the whole-project gate
        if not args.suites and not args.keyword:
            cmd.append(f"--cov-fail-under={COVERAGE_GATE}")
    return cmd


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Insider Risk Monitor test runner")
    parser.add_argument("suites", nargs="*", help="Test modules to run, e.g. scheduler or test_cli")
    parser.add_argument("-k", "--keyword", help="Only run tests matching this pytest expression")
    parser.add_argument("--no-cov", action="store_true", help="Skip coverage collection")
    parser.add_argument("--html", action="store_true", help="Also write an HTML coverage report")
    parser.add_argument("--quick", action="store_true", help="Quiet output, stop at first failure")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        cmd = build_command(args)
    except ValueError as e:
        parser.error(str(e))

    print("🧪 Insider Risk Monitor - Test Suite")
    print(f"   {' '.join(cmd[2:])}")
    print()

    try:
        return subprocess.run(cmd, cwd=PROJECT_DIR).returncode
    except KeyboardInterrupt:
        print("\n⏹️  Tests interrupted")
        return 130
    except OSError as e:
        print(f"\n❌ Could not start pytest: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
