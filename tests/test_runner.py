from lorekeeper.services.crawl import runner


def test_conflicting_reset_flags_exit_with_configuration_status(monkeypatch):
    monkeypatch.setenv("LOREKEEPER_DROP_ON_START", "true")
    monkeypatch.setenv("LOREKEEPER_TRUNCATE_ON_START", "true")
    started = []
    monkeypatch.setattr(runner, "HarvestHost", lambda *a, **k: started.append(a))
    assert runner.main(["crawl", "--wiki", "https://w", "--category", "Category:X"]) == 2
    assert started == []


def test_bootstrap_command_rejects_conflicting_flags(monkeypatch):
    monkeypatch.setenv("LOREKEEPER_DROP_ON_START", "1")
    monkeypatch.setenv("LOREKEEPER_TRUNCATE_ON_START", "1")
    assert runner.main(["bootstrap"]) == 2


def test_cli_overrides_are_applied(monkeypatch, capsys):
    monkeypatch.delenv("LOREKEEPER_DROP_ON_START", raising=False)
    monkeypatch.delenv("LOREKEEPER_TRUNCATE_ON_START", raising=False)
    captured = {}

    class _Host:
        def __init__(self, crawler_config, storage_config):
            captured["config"] = crawler_config

        def start(self, *, discover, crawl):
            captured["phases"] = (discover, crawl)
            return True

        def wait(self, timeout=None):
            return True

        def status(self):
            return {"state": "finished"}

    monkeypatch.setattr(runner, "HarvestHost", _Host)
    code = runner.main(["discover", "--wiki", "https://a", "--wiki", "https://b", "--min-sites", "2", "--delay-ms", "0"])
    assert code == 0
    cfg = captured["config"]
    assert cfg.wikis == ("https://a", "https://b")
    assert cfg.min_sites_for_global == 2
    assert cfg.delay_ms_between_calls == 0
    assert captured["phases"] == (True, False)
    assert '"finished"' in capsys.readouterr().out
