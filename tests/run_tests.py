import os
import sys
from datetime import datetime

import pytest


def run_tests():
    """Run the suite with coverage for the hostwatch package"""
    print(f"\n{'=' * 50}")
    print(f"Test run started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"{'=' * 50}\n")

    test_dir = os.path.dirname(os.path.abspath(__file__))

    pytest_args = [
        test_dir,
        "-v",
        "--tb=short",
        "--cov=hostwatch",
        "--cov-report=term-missing",
        "--cov-report=html:coverage_report",
    ]

    exit_code = pytest.main(pytest_args)

    print(f"\n{'=' * 50}")
    print(f"Test run finished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Exit code: {exit_code}")
    print(f"{'=' * 50}\n")

    return exit_code


if __name__ == "__main__":
    sys.exit(run_tests())
