#!/usr/bin/env python3
"""
Authenticas Test Runner

Unified entrypoint for the live-server suites. The in-process unit tests in
backend/tests run with plain `pytest`.

Usage:
    python -m tests.run smoke              # Quick critical path tests
    python -m tests.run api                # All live API tests
    python -m tests.run stress             # Load/stress tests

Options:
    --base-url URL        Backend base URL (default: http://127.0.0.1:5001)
    --concurrency N       Number of concurrent users for stress tests (default: 10)
    --duration N          Duration in seconds for stress tests (default: 60)
    --verbose             Verbose output
"""

import argparse
import os
import sys
import subprocess
import time
from pathlib import Path
from typing import List
from datetime import datetime


# Directories
TESTS_DIR = Path(__file__).parent
REPO_ROOT = TESTS_DIR.parent
ARTIFACTS_DIR = TESTS_DIR / "artifacts"

# Ensure artifacts directory exists
ARTIFACTS_DIR.mkdir(exist_ok=True)


def print_banner(text: str):
    """Print a banner for section headers."""
    width = 80
    print()
    print("=" * width)
    print(f" {text} ".center(width))
    print("=" * width)


class TestRunner:
    """Test runner; the pytest suites start and stop their own server."""

    def __init__(self, args: argparse.Namespace):
        self.args = args

    def setup_environment(self):
        """Set up environment variables for tests."""
        os.environ["TEST_BACKEND_URL"] = self.args.base_url
        os.environ["TEST_STRESS_USERS"] = str(self.args.concurrency)
        os.environ["TEST_STRESS_DURATION"] = str(self.args.duration)

    def run_pytest(self, markers: List[str], label: str) -> int:
        """Run the live API suite, optionally filtered by markers."""
        cmd = [sys.executable, "-m", "pytest"]

        if markers:
            cmd.extend(["-m", " or ".join(markers)])

        cmd.extend([
            "-v" if self.args.verbose else "-q",
            "--tb=short",
            f"--junitxml={ARTIFACTS_DIR}/junit-{label}.xml",
            str(TESTS_DIR / "api"),
        ])

        print(f"Running: {' '.join(cmd)}")
        return subprocess.call(cmd, cwd=str(REPO_ROOT))

    def run_smoke_tests(self) -> int:
        """Run smoke tests (quick critical paths)."""
        print_banner("SMOKE TESTS")
        return self.run_pytest(["smoke"], "smoke")

    def run_api_tests(self) -> int:
        """Run API tests only."""
        print_banner("API TESTS")
        return self.run_pytest([], "api")

    def run_stress_tests(self) -> int:
        """Run stress/load tests."""
        print_banner("STRESS/LOAD TESTS")

        try:
            import locust  # noqa: F401
        except ImportError:
            print("Locust not installed. Install with:")
            print("  pip install -e .[stress]")
            return 1

        locustfile = TESTS_DIR / "stress" / "locustfile.py"

        cmd = [
            sys.executable, "-m", "locust",
            "-f", str(locustfile),
            "--host", self.args.base_url,
            "--users", str(self.args.concurrency),
            "--spawn-rate", "2",
            "--run-time", f"{self.args.duration}s",
            "--headless",
        ]

        print(f"Running: {' '.join(cmd)}")
        print(f"  Users: {self.args.concurrency}")
        print(f"  Duration: {self.args.duration}s")
        print()

        return subprocess.call(cmd)

    def run(self, mode: str) -> int:
        """Run tests in specified mode."""
        self.setup_environment()

        start_time = time.time()

        if mode == "smoke":
            result = self.run_smoke_tests()
        elif mode == "api":
            result = self.run_api_tests()
        elif mode == "stress":
            result = self.run_stress_tests()
        else:
            print(f"Unknown mode: {mode}")
            return 1

        elapsed = time.time() - start_time
        print()
        print(f"Total time: {elapsed:.1f}s")

        return result


def main():
    parser = argparse.ArgumentParser(
        description="Authenticas Test Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modes:
  smoke     Quick critical path tests
  api       All live API tests
  stress    Load/stress tests against --base-url (server must be running)

Examples:
  python -m tests.run smoke
  python -m tests.run api --verbose
  STRESS_RETAILER_API_KEY=rk_... python -m tests.run stress --concurrency 20 --duration 120
        """
    )

    parser.add_argument("mode", choices=["smoke", "api", "stress"], help="Test mode to run")
    parser.add_argument("--base-url", default="http://127.0.0.1:5001", help="Backend base URL")
    parser.add_argument("--concurrency", type=int, default=10, help="Number of concurrent users for stress tests")
    parser.add_argument("--duration", type=int, default=60, help="Duration in seconds for stress tests")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args()

    print_banner(f"AUTHENTICAS TEST SUITE - {args.mode.upper()}")
    print(f"Started: {datetime.now().isoformat()}")
    print(f"Backend URL: {args.base_url}")

    runner = TestRunner(args)
    sys.exit(runner.run(args.mode))


if __name__ == "__main__":
    main()
