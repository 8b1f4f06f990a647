import pytest
from click.testing import CliRunner

from wa_relay.cli import cli


@pytest.fixture
def env(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'queue.db'}")
    monkeypatch.setenv("RETRY_DELAY_MS", "0")
    monkeypatch.setenv("INTER_JOB_DELAY_SECONDS", "0")
    monkeypatch.delenv("TRANSPORT_MODE", raising=False)
    return tmp_path


@pytest.fixture
def runner():
    return CliRunner()


def test_enqueue_and_stats(runner, env):
    result = runner.invoke(cli, ["enqueue", "--scope", "admin-1", "--to", "0771234567", "--message", "Hi"])
    assert result.exit_code == 0, result.output
    assert "Enqueued admin-1/" in result.output

    result = runner.invoke(cli, ["stats"])
    assert result.exit_code == 0
    assert "pending" in result.output
    assert "1" in result.output.splitlines()[0]


def test_bridge_once_delivers(runner, env, monkeypatch, relay_client):
    monkeypatch.setattr("wa_relay.services.relay_client.RelayClient", lambda *a, **kw: relay_client)
    runner.invoke(cli, ["enqueue", "--scope", "s", "--to", "0771234567", "--message", "Hi"])

    result = runner.invoke(cli, ["bridge", "--once"])

    assert result.exit_code == 0, result.output
    assert "ready=True" in result.output
    assert relay_client.sent == [("0771234567", "Hi")]


def test_reset_failed(runner, env, monkeypatch, relay_client):
    monkeypatch.setenv("MAX_RETRIES", "1")
    monkeypatch.setattr("wa_relay.services.relay_client.RelayClient", lambda *a, **kw: relay_client)
    relay_client.results = ["boom"]
    runner.invoke(cli, ["enqueue", "--scope", "s", "--to", "0771234567", "--message", "Hi"])
    runner.invoke(cli, ["bridge", "--once"])

    result = runner.invoke(cli, ["reset-failed"])

    assert result.exit_code == 0
    assert "Total reset: 1 messages" in result.output


def test_store_commands_need_database(runner, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    result = runner.invoke(cli, ["stats"])
    assert result.exit_code == 1
    assert "DATABASE_URL is not set" in result.output


def test_invalid_numeric_env_exits(runner, monkeypatch):
    monkeypatch.setenv("BATCH_SIZE", "ten")
    result = runner.invoke(cli, ["stats"])
    assert result.exit_code == 1
    assert "BATCH_SIZE" in result.output


def test_reset_failed_include_processing(runner, env):
    from wa_relay.db import init_db, make_engine, make_session_factory
    from wa_relay.services.queue_store import SqlQueueStore

    engine = make_engine(f"sqlite:///{env / 'queue.db'}")
    init_db(engine)
    store = SqlQueueStore(make_session_factory(engine))
    job = store.enqueue("s", "0771234567", "Hi")
    store.update_status("s", job.id, "processing", 1)

    assert "Total reset: 0 messages" in runner.invoke(cli, ["reset-failed"]).output
    result = runner.invoke(cli, ["reset-failed", "--include-processing"])

    assert result.exit_code == 0
    assert "Total reset: 1 messages" in result.output
    assert store.get("s", job.id).status == "pending"
    engine.dispose()
