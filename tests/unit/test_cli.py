import pytest
from typer.testing import CliRunner

from stepwise.cli import app

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
database_url: sqlite:///{tmp_path}/cli.db
admin_actors: [admin]
"""
    )
    monkeypatch.setenv("STEPWISE_CONFIG", str(config_path))
    return tmp_path


def _invoke(*args: str):
    result = runner.invoke(app, list(args))
    return result


def _seed_and_find(name: str) -> str:
    result = _invoke("template", "seed", "acme", "--pack", "generic")
    assert result.exit_code == 0, result.output
    listing = _invoke("template", "list", "acme")
    assert listing.exit_code == 0, listing.output
    for line in listing.output.splitlines():
        if name in line:
            return line.split("\t")[0]
    raise AssertionError(f"{name} not in {listing.output}")


def _step_ids(run_id: str) -> list[str]:
    result = _invoke("run", "show", "acme", run_id)
    assert result.exit_code == 0, result.output
    return [line.split("\t")[0] for line in result.output.splitlines() if "\t" in line]


def test_pack_list_shows_builtin_packs(cli_env):
    result = _invoke("pack", "list")
    assert result.exit_code == 0, result.output
    assert "generic:onboarding:new_employee_onboarding" in result.output
    assert "convene:chair_recruitment:chair_recruitment" in result.output
    assert "locked" in result.output


def test_template_seed_is_idempotent(cli_env):
    result = _invoke("template", "seed", "acme", "--pack", "generic")
    assert result.exit_code == 0, result.output
    assert "Created 6 workflows for acme" in result.output

    again = _invoke("template", "seed", "acme", "--pack", "generic")
    assert "Created 0 workflows for acme" in again.output

    missing = _invoke("template", "seed", "acme", "--missing-only")
    assert "Created 2 workflows for acme" in missing.output


def test_template_show_activate_and_restore(cli_env):
    wf_id = _seed_and_find("HR Request Process")

    shown = _invoke("template", "show", "acme", wf_id)
    assert shown.exit_code == 0, shown.output
    assert "Source: generic:request:hr_request" in shown.output
    assert "[approval_step]" in shown.output

    off = _invoke("template", "activate", "acme", wf_id, "--deactivate")
    assert "inactive (v2)" in off.output
    blocked = _invoke("run", "start", "acme", wf_id, "--by", "alice")
    assert blocked.exit_code == 1
    assert "inactive" in blocked.output

    restored = _invoke("template", "restore", "acme", wf_id)
    assert restored.exit_code == 0, restored.output
    assert "v3" in restored.output

    missing = _invoke("template", "show", "acme", "missing-id")
    assert missing.exit_code == 1
    assert "not found" in missing.output


def test_run_lifecycle_through_cli(cli_env):
    wf_id = _seed_and_find("HR Request Process")

    started = _invoke("run", "start", "acme", wf_id, "--by", "alice", "--target", "emp:7")
    assert started.exit_code == 0, started.output
    run_id = started.output.strip().split()[-1]
    approval_id, task_id, _ = _step_ids(run_id)

    claimed = _invoke("step", "start", approval_id, "--by", "manager", "--claim")
    assert claimed.exit_code == 0, claimed.output
    assert "in_progress" in claimed.output
    assert "@manager" in claimed.output

    mine = _invoke("step", "mine", "acme", "manager")
    assert approval_id in mine.output

    stale = _invoke("step", "reject", approval_id, "--notes", "No", "--by", "manager", "--version", "1")
    assert stale.exit_code == 1
    assert "version mismatch" in stale.output

    rejected = _invoke("step", "reject", approval_id, "--notes", "No budget", "--by", "manager")
    assert rejected.exit_code == 0, rejected.output
    assert "rejected" in rejected.output

    show = _invoke("run", "show", "acme", run_id)
    assert f"Run {run_id}: failed" in show.output
    assert "Target: emp:7" in show.output

    halted = _invoke("step", "start", task_id, "--by", "bob")
    assert halted.exit_code == 1
    assert "run is failed" in halted.output

    stats = _invoke("run", "stats", "acme", wf_id)
    assert "Total runs: 1" in stats.output
    assert "failed: 1" in stats.output


def test_skip_fail_and_cancel_through_cli(cli_env):
    wf_id = _seed_and_find("IT Support Request Process")
    run_id = _invoke("run", "start", "acme", wf_id, "--by", "alice").output.strip().split()[-1]
    first, second, third = _step_ids(run_id)

    forbidden = _invoke("step", "skip", first, "--notes", "dup", "--by", "bob")
    assert forbidden.exit_code == 1
    assert "may not skip" in forbidden.output

    skipped = _invoke("step", "skip", first, "--notes", "dup", "--by", "admin")
    assert skipped.exit_code == 0, skipped.output
    assert "skipped" in skipped.output

    failed = _invoke("step", "fail", third, "--reason", "mailer down")
    assert failed.exit_code == 0, failed.output
    assert "failed" in failed.output

    _invoke("step", "start", second, "--by", "bob")
    completed = _invoke("step", "complete", second, "--by", "bob", "--link", "ticket:T-1")
    assert completed.exit_code == 0, completed.output

    listed = _invoke("run", "list", "acme", "--status", "failed")
    assert run_id in listed.output

    second_run = _invoke("run", "start", "acme", wf_id, "--by", "alice").output.strip().split()[-1]
    cancelled = _invoke("run", "cancel", "acme", second_run, "--reason", "duplicate", "--by", "admin")
    assert cancelled.exit_code == 0, cancelled.output
    assert "cancelled" in cancelled.output

    again = _invoke("run", "cancel", "acme", second_run, "--reason", "again")
    assert again.exit_code == 1
    assert "already cancelled" in again.output


def test_bad_link_is_rejected(cli_env):
    result = _invoke("step", "complete", "whatever", "--by", "bob", "--link", "nocolon")
    assert result.exit_code != 0
