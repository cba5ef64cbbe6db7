#!/usr/bin/env python3
"""
Run the cross_build CLI from a source checkout without installing it.

    python build.py build-linux
    python build.py build linux-musl --debug
    python build.py --targets my-targets.yaml build-all

Arguments are handed to ``cross_build.__main__.main`` unchanged, in this
process, so Ctrl+C and the exit status behave exactly as with
``python -m cross_build`` or the installed ``crossbuild`` script.
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cross_build.__main__ import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
