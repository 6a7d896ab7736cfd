"""Build the Lambda code asset for deployment.

The remediation and custom resource functions import pydantic and PyYAML,
which the Lambda Python runtime does not ship. This script copies the
project packages into an asset directory and installs the runtime
dependencies next to them. It defaults to dry-run mode and requires the
explicit --apply flag to write anything.
"""

import argparse
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJECT_ROOT / "src"

# Packages and modules the Lambda handlers import
LAMBDA_PACKAGES = ["remediation", "dispatch", "ops"]
LAMBDA_MODULES = ["deployer_guard.py"]

# boto3/botocore come with the Lambda runtime
RUNTIME_REQUIREMENTS = ["pydantic>=2.0", "PyYAML>=6.0"]


class PackagingError(RuntimeError):
    pass


def validate_sources(src_dir: Path = SRC_DIR) -> None:
    """Ensure every package and module to be bundled exists.

    Raises:
        PackagingError: If a package or module is missing.
    """
    missing = [name for name in LAMBDA_PACKAGES if not (src_dir / name / "__init__.py").exists()]
    missing += [name for name in LAMBDA_MODULES if not (src_dir / name).exists()]
    if missing:
        raise PackagingError(f"Missing Lambda sources in {src_dir}: {', '.join(missing)}")


def _inside(path: Path, parent: Path) -> bool:
    path, parent = path.resolve(), parent.resolve()
    return path == parent or parent in path.parents


def copy_sources(output_dir: Path, src_dir: Path = SRC_DIR) -> List[Path]:
    """Copy the Lambda packages into ``output_dir``. Returns the copied paths."""
    if _inside(output_dir, src_dir):
        raise PackagingError(f"Refusing to copy sources into themselves: {output_dir}")
    copied = []
    for name in LAMBDA_PACKAGES:
        dest = output_dir / name
        if dest.exists():
            shutil.rmtree(dest)
        shutil.copytree(src_dir / name, dest, ignore=shutil.ignore_patterns("__pycache__", "*.pyc"))
        copied.append(dest)
        print(f"  Added: {name}/")
    for name in LAMBDA_MODULES:
        dest = output_dir / name
        shutil.copy2(src_dir / name, dest)
        copied.append(dest)
        print(f"  Added: {name}")
    return copied


def pip_install_command(output_dir: Path) -> List[str]:
    """pip command installing Linux x86_64 wheels for the Lambda runtime."""
    return [
        sys.executable, "-m", "pip", "install",
        "--target", str(output_dir),
        "--platform", "manylinux2014_x86_64",
        "--implementation", "cp",
        "--python-version", "3.11",
        "--only-binary=:all:",
        "--upgrade",
        *RUNTIME_REQUIREMENTS,
    ]


def build_asset(output_dir: Path, dry_run: bool = True) -> Path:
    """Assemble the asset directory.

    Args:
        output_dir: Directory to build into (created if missing)
        dry_run: If True, only print what would be done

    Returns:
        The asset directory

    Raises:
        PackagingError: If ``output_dir`` lies inside the source tree.
    """
    if _inside(output_dir, SRC_DIR):
        raise PackagingError(f"Refusing to build the Lambda asset inside the source tree: {output_dir}")
    validate_sources()
    cmd = pip_install_command(output_dir)

    if dry_run:
        print(f"DRY RUN: Would copy {', '.join(LAMBDA_PACKAGES + LAMBDA_MODULES)} to {output_dir}")
        print(f"DRY RUN: {' '.join(cmd)}")
        return output_dir

    output_dir.mkdir(parents=True, exist_ok=True)
    print(f"Building Lambda asset: {output_dir}")
    copy_sources(output_dir)

    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise PackagingError(f"pip install failed: {result.stderr}")
    print("✅ Lambda asset built")
    return output_dir


def main() -> int:
    parser = argparse.ArgumentParser(description="Build the Lambda code asset")
    parser.add_argument(
        "--output",
        type=Path,
        default=PROJECT_ROOT / "dist" / "lambda",
        help="Asset directory (default: dist/lambda)"
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Actually build the asset (default: dry-run)"
    )
    args = parser.parse_args()

    try:
        build_asset(args.output, dry_run=not args.apply)
    except PackagingError as e:
        print(f"❌ Packaging failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
