import os
import sys


def pytest_configure():
    # `src/` packages import as top-level (`common.*`, `fhe.*`, ...); the
    # shared fakes live next to the unit tests.
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    for path in (os.path.join(root, "src"), os.path.join(root, "tests", "unit")):
        if path not in sys.path:
            sys.path.insert(0, path)
