"""Format script for the Datamind backend."""

import subprocess
import sys
from pathlib import Path


def _paths() -> list[str]:
    return ["datamind/", "scripts/", *sorted(str(p) for p in Path(".").glob("test_*.py"))]


def main():
    """Run ruff format and whitespace fixes on the codebase."""
    try:
        targets = _paths()

        subprocess.run(["uv", "run", "ruff", "format", *targets], check=True)

        # Whitespace-only cleanups
        subprocess.run(
            ["uv", "run", "ruff", "check", "--fix", "--select", "W291,W293,I", *targets],
            check=True,
        )
        print("✅ Formatting complete")
    except subprocess.CalledProcessError as e:
        print(f"❌ Formatting failed: {e}")
        sys.exit(e.returncode)


if __name__ == "__main__":
    main()
