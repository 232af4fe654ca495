#!/usr/bin/env python3
"""
StreamVio Test Runner

Usage:
    python test.py                # Run all tests
    python test.py quick          # Skip slow and FFmpeg integration tests
    python test.py integration    # Only the end-to-end FFmpeg tests
    python test.py verbose        # Show captured output and long tracebacks
    python test.py coverage       # Coverage report for the streamvio package
    python test.py failed         # Re-run only the last failures
    python test.py scheduler      # tests/test_scheduler.py, or tests matching the name
"""

import os
import shutil
import subprocess
import sys

MODES = {
    "quick": (["-v", "--tb=short", "-m", "not slow"], "[QUICK] Running quick tests (skipping slow)..."),
    "integration": (["-v", "--tb=short", "-m", "integration"], "[INTEGRATION] Running FFmpeg end-to-end tests..."),
    "verbose": (["-v", "-s", "--tb=long"], "[VERBOSE] Running tests with verbose output..."),
    "coverage": (
        ["--cov=streamvio", "--cov-report=term-missing", "--cov-report=html:coverage_html", "-v"],
        "[COVERAGE] Running tests with coverage report...",
    ),
    "failed": (["--lf", "-v"], "[RETRY] Re-running failed tests..."),
}


def build_command(args):
    cmd = [sys.executable, "-m", "pytest"]
    if not args:
        print("[TEST] Running all tests...\n")
        return cmd + ["tests/", "-v", "--tb=short"]

    mode = args[0]
    if mode in MODES:
        extra, banner = MODES[mode]
        if mode == "integration" and shutil.which("ffmpeg") is None:
            print("[WARN] ffmpeg not found on PATH; integration tests will be skipped")
        print(banner + "\n")
        return cmd + ["tests/"] + extra

    test_file = f"tests/test_{mode}.py"
    if os.path.exists(test_file):
        print(f"[MODULE] Running tests for {mode}...\n")
        return cmd + [test_file, "-v", "--tb=short"]

    print(f"[FILTER] Running tests matching '{mode}'...\n")
    return cmd + ["tests/", "-v", "--tb=short", "-k", mode]


def main():
    os.chdir(os.path.dirname(os.path.abspath(__file__)))
    cmd = build_command(sys.argv[1:])

    try:
        returncode = subprocess.run(cmd).returncode
    except KeyboardInterrupt:
        print("\n\n[ABORT] Tests interrupted by user")
        return 1

    print("\n" + "=" * 60)
    if returncode == 0:
        print("[PASS] All tests passed!")
    else:
        print(f"[FAIL] Tests failed (exit code: {returncode})")
    print("=" * 60)
    return returncode


if __name__ == "__main__":
    sys.exit(main())
