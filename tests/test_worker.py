"""Tests for worker process entry point.

This test module covers:
- Configuration loading
- Graceful shutdown on SIGTERM/SIGINT
- Exit codes
- Resource cleanup
"""

import signal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from songreel import worker


@pytest.fixture(autouse=True)
def reset_worker_globals():
    worker.shutdown_requested = False
    worker._pgq = None
    worker.asyncpg_pool = None
    yield
    worker.shutdown_requested = False
    worker._pgq = None
    worker.asyncpg_pool = None


class TestWorkerConfig:
    def test_get_config_reads_environment(self, monkeypatch):
        worker.get_database_url.cache_clear()
        monkeypatch.setenv("DATABASE_URL", "postgresql://user:pw@db:5432/songreel")
        monkeypatch.setenv("WORKER_CONCURRENCY", "4")
        monkeypatch.setenv("MAX_STAGE_ATTEMPTS", "5")
        monkeypatch.setenv("STALLED_JOB_SWEEP_INTERVAL", "60")
        monkeypatch.setenv("STALLED_JOB_AGE", "900")

        config = worker.get_config()
        worker.get_database_url.cache_clear()

        assert config.database_url == "postgresql+asyncpg://user:pw@db:5432/songreel"
        assert config.concurrency == 4
        assert config.max_stage_attempts == 5
        assert config.sweep_interval == 60
        assert config.stalled_job_age == 900


class TestSignalHandling:
    def test_signal_handler_sets_shutdown_flag(self):
        worker.signal_handler(signal.SIGTERM)

        assert worker.shutdown_requested is True

    def test_signal_handler_stops_pgqueuer(self):
        worker._pgq = MagicMock()

        worker.signal_handler(signal.SIGINT, None)

        worker._pgq.shutdown.set.assert_called_once()


class TestMain:
    @patch("songreel.worker.get_config")
    def test_configuration_failure_exits_1(self, mock_config):
        mock_config.side_effect = ValueError("DATABASE_URL environment variable is required")

        with pytest.raises(SystemExit) as exc_info:
            worker.main()

        assert exc_info.value.code == 1

    @patch("songreel.worker.run_worker", new_callable=AsyncMock)
    @patch("songreel.worker.get_config")
    def test_clean_shutdown_exits_0(self, mock_config, mock_run):
        mock_config.return_value = worker.WorkerConfig(
            database_url="postgresql+asyncpg://user:pw@db:5432/songreel",
            concurrency=2,
            max_stage_attempts=3,
        )

        with pytest.raises(SystemExit) as exc_info:
            worker.main()

        assert exc_info.value.code == 0
        mock_run.assert_awaited_once_with(mock_config.return_value)

    @patch("songreel.worker.run_worker", new_callable=AsyncMock)
    @patch("songreel.worker.get_config")
    def test_fatal_error_exits_1(self, mock_config, mock_run):
        mock_config.return_value = worker.WorkerConfig("postgresql+asyncpg://db/songreel", 2, 3)
        mock_run.side_effect = OSError("connection refused")

        with pytest.raises(SystemExit) as exc_info:
            worker.main()

        assert exc_info.value.code == 1


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_closes_pool_and_engine(self):
        pool = MagicMock()
        pool.close = AsyncMock()
        engine = MagicMock()
        engine.dispose = AsyncMock()
        worker.asyncpg_pool = pool

        with patch("songreel.database.engine", engine):
            await worker.shutdown_worker()

        pool.close.assert_awaited_once()
        engine.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_worker_always_shuts_down(self):
        config = worker.WorkerConfig("postgresql+asyncpg://db/songreel", 2, 3)

        with patch("songreel.worker.worker_main_loop", new=AsyncMock(side_effect=RuntimeError("boom"))), \
             patch("songreel.worker.shutdown_worker", new=AsyncMock()) as mock_shutdown:
            with pytest.raises(RuntimeError):
                await worker.run_worker(config)

        mock_shutdown.assert_awaited_once()
