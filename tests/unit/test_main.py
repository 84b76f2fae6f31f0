import pytest

from essaycoach.main import run


@pytest.mark.unit
def test_cli_returns_non_zero_for_unknown_vendor(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = run(["--vendor", "no-such-vendor", "--dry-run-startup"])
    captured = capsys.readouterr()

    assert exit_code == 2
    assert "ERROR:" in captured.err
    assert "doubao" in captured.err


@pytest.mark.unit
def test_cli_dry_run_succeeds() -> None:
    assert run(["--dry-run-startup"]) == 0
