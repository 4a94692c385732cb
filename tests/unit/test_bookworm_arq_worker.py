import pytest

pytest.importorskip("arq", reason="arq not installed")

from bookworm.infrastructure.queue import arq_worker
from bookworm.infrastructure.queue.arq_worker import WorkerSettings, _cron_schedule


def test_arq_worker_settings_has_functions():
    assert hasattr(WorkerSettings, "functions")
    assert len(WorkerSettings.functions) == 4
    assert len(WorkerSettings.cron_jobs) == 4


def test_cron_schedule_spreads_short_intervals_over_the_hour():
    assert _cron_schedule(30) == {"minute": {0, 30}}
    assert _cron_schedule(30, offset=2) == {"minute": {2, 32}}
    assert _cron_schedule(20, offset=4) == {"minute": {4, 24, 44}}


def test_cron_schedule_uses_hours_for_long_intervals():
    assert _cron_schedule(60, offset=8) == {"minute": {8}, "hour": set(range(24))}
    assert _cron_schedule(120) == {"minute": {0}, "hour": set(range(0, 24, 2))}
    assert _cron_schedule(240, offset=4) == {"minute": {4}, "hour": {0, 4, 8, 12, 16, 20}}


@pytest.mark.parametrize("interval", [45, 90, 7 * 60, 25 * 60])
def test_cron_schedule_rejects_uneven_intervals(interval):
    with pytest.raises(ValueError, match="cannot be expressed"):
        _cron_schedule(interval)


def test_dedup_cron_follows_its_interval_setting(monkeypatch):
    from bookworm.config import BookwormSettings

    monkeypatch.setattr(
        arq_worker,
        "get_settings",
        lambda: BookwormSettings(
            calibre_sync_interval_minutes=0,
            want_sync_interval_minutes=0,
            bookshelf_sync_interval_minutes=0,
            suggested_dedup_interval_minutes=120,
        ),
    )
    [job] = arq_worker._build_cron_jobs()
    assert job.minute == {8}
    assert job.hour == set(range(0, 24, 2))


@pytest.mark.asyncio
async def test_cron_job_without_credentials_is_skipped():
    result = await arq_worker.cron_want_sync({})
    assert result["skipped"] is True
    assert "Hardcover API key" in result["reason"]
