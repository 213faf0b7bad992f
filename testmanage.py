#!/usr/bin/env python
"""Run Django management commands against the test project, e.g. `./testmanage.py check`."""

import os
import sys
import warnings
from pathlib import Path

from django.core.management import execute_from_command_line

ROOT = Path(__file__).resolve().parent

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "testapp.settings")
sys.path[:0] = [str(ROOT / "src"), str(ROOT / "tests")]


def main():
    argv = sys.argv
    if "--deprecation" in argv:
        argv.remove("--deprecation")
        warnings.simplefilter("default", DeprecationWarning)
        warnings.simplefilter("default", PendingDeprecationWarning)
    if len(argv) == 1:
        argv = [*argv, "check"]
    execute_from_command_line(argv)


if __name__ == "__main__":
    main()
