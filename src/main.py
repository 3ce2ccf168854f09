import os, sys

# Make sure the package is importable when running from source AND when frozen.
def _ensure_path():
    # When running from source repo, this puts src/ on sys.path
    here = os.path.abspath(os.path.dirname(__file__))
    if here not in sys.path:
        sys.path.insert(0, here)
_ensure_path()

from xbrecunpack.gui_qt import main

if __name__ == "__main__":
    sys.exit(main())
