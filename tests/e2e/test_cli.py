"""End-to-end tests asserting CLI commands execute successfully.

What:
  Launch the ``routeforge.cli`` module through ``python -m`` and validate
  observable behaviour for the inspection, generation, and import commands
  using the example options file.

Why:
  These tests ensure the packaging metadata, entry point wiring, and
  environment bootstrapping work when invoked the same way operators do on
  routers and from cron.

How:
  Construct subprocess invocations with a controlled ``PYTHONPATH`` pointing to
  the in-repo source tree and a runtime configuration rooted in ``tmp_path``,
  then assert on return codes, stdout, and written artifacts.

Interfaces:
  ``test_cli_presets``, ``test_cli_generate_and_import``,
  ``test_cli_validation_failure_exit_code``.

Invariants & Safety:
  - Tests run against the local source tree to avoid depending on installed
    packages.
  - Commands must succeed without network access or installed proxy cores.
"""

import json
import os
import pathlib
import subprocess
import sys

import yaml

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[2]


def _run_cli(config: pathlib.Path, *args: str, stdin: str = "") -> subprocess.CompletedProcess[str]:
    """Execute the routeforge CLI with the provided arguments.

    Args:
      config: Runtime configuration passed through ``--config``.
      *args: Command-line arguments to pass to ``routeforge.cli``.
      stdin: Text fed to the process standard input.

    Returns:
      Completed subprocess result containing return code and output.
    """

    cmd = [sys.executable, "-m", "routeforge.cli", "--config", str(config), *args]
    env = dict(os.environ)
    env["PYTHONPATH"] = f"{PROJECT_ROOT / 'routeforge' / 'src'}:{env.get('PYTHONPATH', '')}"
    env.pop("ROUTEFORGE_CONFIG_PATH", None)
    return subprocess.run(cmd, text=True, input=stdin, capture_output=True, cwd=PROJECT_ROOT, env=env)


def _config(tmp_path: pathlib.Path) -> pathlib.Path:
    path = tmp_path / "routeforge.yaml"
    payload = yaml.safe_load((PROJECT_ROOT / "examples" / "routeforge.yaml").read_text(encoding="utf-8"))
    payload["paths"] = {
        "state_dir": str(tmp_path / "state"),
        "output_dir": str(tmp_path / "output"),
        "ruleset_dir": str(tmp_path / "rulesets"),
    }
    path.write_text(yaml.safe_dump(payload), encoding="utf-8")
    return path


def test_cli_presets(tmp_path: pathlib.Path) -> None:
    """``presets`` lists the built-in presets with clean stdout."""

    result = _run_cli(_config(tmp_path), "presets", "--engine", "singbox")
    assert result.returncode == 0
    assert [line.split("\t")[0] for line in result.stdout.splitlines()] == ["singbox-standard", "singbox-minimal"]


def test_cli_generate_and_import(tmp_path: pathlib.Path) -> None:
    """Generate both artifacts with the example options and import one back.

    What:
      Writes the mihomo and sing-box artifacts, checks their structure, and
      imports the sing-box artifact into the store.

    Why:
      Proves the full path from persisted template to artifact and back works
      from a fresh state directory, including JSON log output staying on
      stderr.
    """

    config = _config(tmp_path)
    options = str(PROJECT_ROOT / "examples" / "options.yaml")

    mihomo = _run_cli(config, "generate", "--options", options, "--no-check")
    assert mihomo.returncode == 0, mihomo.stderr
    artifact = tmp_path / "output" / "mihomo" / "config.yaml"
    assert f"{artifact} (bootstrap)" in mihomo.stdout
    document = yaml.safe_load(artifact.read_text(encoding="utf-8"))
    assert document["rules"][-1] == "MATCH,final"
    assert [proxy["name"] for proxy in document["proxies"]] == ["HK 01", "JP 01"]
    assert "template bootstrapped" in mihomo.stderr

    preview = _run_cli(config, "preview", "--engine", "singbox")
    assert preview.returncode == 0
    assert json.loads(preview.stdout)["route"]["final"] == "final"

    singbox = _run_cli(config, "generate", "-e", "singbox", "--no-check")
    assert singbox.returncode == 0
    imported = _run_cli(config, "import", str(tmp_path / "output" / "singbox" / "config.json"), "-e", "singbox")
    assert imported.returncode == 0
    assert "singbox template imported" in imported.stdout


def test_cli_validation_failure_exit_code(tmp_path: pathlib.Path) -> None:
    config = _config(tmp_path)
    result = _run_cli(config, "add-rules", "domain", "--target", "nowhere", stdin="example.com\n")
    assert result.returncode == 1
    assert "UnknownReference rules[21].target: target 'nowhere' is not a known group" in result.stdout
