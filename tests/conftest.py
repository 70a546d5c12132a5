"""Pytest configuration for all tests."""

import os
import sys

# Make the src layout and the shared test fakes importable for all tests
tests_dir = os.path.abspath(os.path.dirname(__file__))
src_dir = os.path.abspath(os.path.join(tests_dir, "..", "src"))
for path in (src_dir, tests_dir):
    if path not in sys.path:
        sys.path.insert(0, path)
