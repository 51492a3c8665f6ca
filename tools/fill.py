"""Run the test suite and write the recorded cases as JSON fixtures."""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import click

ROOT = Path(__file__).resolve().parent.parent
OUT = ROOT / "fixtures"
# src for vaultpay_spec, the root for tools.*, the harness for its flat imports.
PYTHONPATH = [ROOT / "src", ROOT, ROOT / "conformance" / "harness"]


@click.command()
@click.option("--output", default=str(OUT), show_default=True, help="Fixture output directory")
@click.option("-k", "keyword", default=None, help="Only fill cases from tests matching this expression")
def main(output: str, keyword: str | None) -> None:
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(str(p) for p in PYTHONPATH)

    cmd = [sys.executable, "-m", "pytest", str(ROOT / "tests"), "-q", "--output", output]
    if keyword:
        cmd += ["-k", keyword]
    click.echo("Running: " + " ".join(cmd))
    sys.exit(subprocess.call(cmd, env=env, cwd=str(ROOT)))


if __name__ == "__main__":
    main()
