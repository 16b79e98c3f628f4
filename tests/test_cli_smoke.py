from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import pytest

from utagent import __main__ as cli

CLI_CMDS = [
    ["--help"],
    ["run", "--help"],
    ["check", "--help"],
]


def test_cli_help_smoke() -> None:
    for cmd in CLI_CMDS:
        proc = subprocess.run(
            [sys.executable, "-m", "utagent", *cmd],
            capture_output=True,
            text=True,
            check=False,
        )
        assert proc.returncode == 0, f"command failed: {cmd}\nstdout={proc.stdout}\nstderr={proc.stderr}"
        assert "usage:" in proc.stdout.lower()


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.main([])
    assert exc_info.value.code == cli.EXIT_FAILED
    assert "usage:" in capsys.readouterr().out.lower()


def test_config_error_exit_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["check", "--config", str(tmp_path / "missing.yaml")])
    assert exc_info.value.code == cli.EXIT_CONFIG
    assert "Configuration error" in capsys.readouterr().err


@pytest.mark.parametrize(
    "template_body",
    [
        None,  # file does not exist
        "messages: not-a-list\n",
        "messages:\n  - role: user\n    content: \"{{ undefined_var }}\"\n",
    ],
)
def test_bad_template_exit_code(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], template_body: str | None
) -> None:
    template = tmp_path / "prompt.yaml"
    if template_body is not None:
        template.write_text(template_body, encoding="utf-8")
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["run", "--project", str(tmp_path), "--target", "app.py", "--template", str(template)])
    assert exc_info.value.code == cli.EXIT_CONFIG
    assert "Cannot render prompt template" in capsys.readouterr().err
