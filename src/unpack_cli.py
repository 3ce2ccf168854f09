import argparse, logging, os, sys
from xbrecunpack.errors import RecoveryError
from xbrecunpack.parser import format_summary
from xbrecunpack.recovery import RemoteRecovery
from xbrecunpack.scanner import SCAN_CHUNK
from xbrecunpack.utils import parse_size

def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Unpack the files embedded in a recovery executable")
    p.add_argument("source", help="Path to the recovery executable")
    p.add_argument("out", nargs="?", help="Output folder (default: source name without extension)")
    p.add_argument("-l", "--list", action="store_true", help="List the contents without extracting")
    p.add_argument("-v", "--verbose", action="store_true", help="Show debug output")
    p.add_argument("--chunk", default=str(SCAN_CHUNK), help="Scan window size, e.g. 16M")
    args = p.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s: %(message)s")
    out = args.out or os.path.splitext(os.path.basename(args.source))[0]
    try:
        with RemoteRecovery(args.source, chunk=parse_size(args.chunk)) as rec:
            print("Scanning recovery EXE...")
            manifest = rec.read()
            for line in format_summary(manifest):
                print(line)
            print()
            for r in rec.extract(out, list_only=args.list):
                print(r.describe())
    except (RecoveryError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main())
