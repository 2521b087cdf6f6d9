import pytest

from kube_snapshot import main as cli
from kube_snapshot.errors import CollectionError


@pytest.fixture(autouse=True)
def no_signal_handlers(monkeypatch):
    monkeypatch.setattr(cli, "_install_signal_handlers", lambda stop_event: None)


def test_collect_failure_exits_1(monkeypatch):
    def failing(settings, hooks=None, cancel=None):
        raise CollectionError("pods", "connection refused")

    monkeypatch.setattr(cli, "run_collection", failing)

    assert cli.main(["collect"]) == 1


def test_unexpected_error_exits_2(monkeypatch):
    def broken(stop_event, settings=None, hooks=None):
        raise RuntimeError("boom")

    monkeypatch.setattr(cli, "run_consumer", broken)

    assert cli.main(["consume"]) == 2


def test_cli_flags_override_settings(monkeypatch, tmp_path):
    seen = {}

    def capture(stop_event, settings=None, hooks=None):
        seen["settings"] = settings

    monkeypatch.setattr(cli, "run_consumer", capture)
    kubeconfig = tmp_path / "config"

    assert cli.main(["--kubeconfig", str(kubeconfig), "--context", "staging", "consume"]) == 0
    assert seen["settings"].kubeconfig == kubeconfig
    assert seen["settings"].context == "staging"


def test_subcommand_required():
    with pytest.raises(SystemExit):
        cli.main([])
