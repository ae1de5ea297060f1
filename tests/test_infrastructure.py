# tests/test_infrastructure.py
"""Tests for infrastructure components"""
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from cdadmin.infra.db_resilience_async import is_transient_error, safe_db_conn


class TestDatabaseResilience:
    def test_connection_errors_are_transient(self):
        assert is_transient_error(asyncpg.PostgresConnectionError("server closed")) is True
        assert is_transient_error(asyncpg.TooManyConnectionsError("too many")) is True
        assert is_transient_error(OSError("connection refused")) is True

    def test_sql_errors_are_not_transient(self):
        assert is_transient_error(asyncpg.PostgresError("connection-looking syntax error")) is False

    def test_pool_not_initialised_is_not_transient(self):
        assert is_transient_error(RuntimeError("Connection pool not initialized")) is False

    def test_message_patterns(self):
        assert is_transient_error(Exception("network unreachable")) is True
        assert is_transient_error(ValueError("some other error")) is False

    @pytest.mark.asyncio
    async def test_safe_db_conn_retries_acquisition(self):
        attempts = []

        @asynccontextmanager
        async def flaky_conn(autocommit=True):
            attempts.append(autocommit)
            if len(attempts) == 1:
                raise OSError("connection reset")
            yield "conn"

        with patch("cdadmin.infra.db_resilience_async.db_conn", flaky_conn):
            async with safe_db_conn() as conn:
                assert conn == "conn"

        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_safe_db_conn_does_not_retry_non_transient(self):
        attempts = []

        @asynccontextmanager
        async def broken_conn(autocommit=True):
            attempts.append(autocommit)
            raise RuntimeError("Connection pool not initialized")
            yield  # pragma: no cover

        with patch("cdadmin.infra.db_resilience_async.db_conn", broken_conn):
            with pytest.raises(RuntimeError):
                async with safe_db_conn():
                    pass

        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_safe_db_conn_does_not_replay_block(self):
        runs = []

        @asynccontextmanager
        async def ok_conn(autocommit=True):
            yield "conn"

        with patch("cdadmin.infra.db_resilience_async.db_conn", ok_conn):
            with pytest.raises(OSError):
                async with safe_db_conn():
                    runs.append(1)
                    raise OSError("connection lost mid-write")

        assert runs == [1]


class TestMetrics:
    def test_metrics_counter_increment(self):
        from cdadmin.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.inc_counter("test_counter", 1)
        collector.inc_counter("test_counter", 2)

        assert collector.get_metrics()["counters"]["test_counter"] == 3

    def test_metrics_histogram_observe(self):
        from cdadmin.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        for value in (0.1, 0.2, 0.5):
            collector.observe_histogram("test_histogram", value)

        stats = collector.get_metrics()["histograms"]["test_histogram"]
        assert stats["count"] == 3
        assert stats["min"] == 0.1
        assert stats["max"] == 0.5

    def test_metrics_with_labels(self):
        from cdadmin.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.inc_counter("fc_invocations_total", 1, {"service": "a"})
        collector.inc_counter("fc_invocations_total", 2, {"service": "b"})

        assert collector.get_counter("fc_invocations_total", service="b") == 2
        assert "fc_invocations_total{service=a}" in collector.get_metrics()["counters"]

    def test_histogram_keeps_recent_window(self):
        from cdadmin.infra.metrics import MetricsCollector

        collector = MetricsCollector(window=3)
        for value in (9.0, 1.0, 2.0, 3.0):
            collector.observe_histogram("fc_request_seconds", value)

        stats = collector.get_metrics()["histograms"]["fc_request_seconds"]
        assert stats["count"] == 3
        assert stats["max"] == 3.0


# ============================================================================
# Config
# ============================================================================

class TestConfig:
    def test_defaults(self):
        from cdadmin.config import Settings
        s = Settings(_env_file=None)
        assert s.fc_worker_service == "serverless-cd"
        assert s.fc_worker_function == "engine"
        assert s.fc_api_version == "2016-08-15"
        assert s.owner_role_keys == ["owner", "admin"]

    def test_fc_endpoint_from_account_and_region(self):
        from cdadmin.config import Settings
        s = Settings(fc_account_id="123", fc_region="cn-shanghai", _env_file=None)
        assert s.fc_endpoint_url == "https://123.cn-shanghai.fc.aliyuncs.com"

    def test_fc_endpoint_override(self):
        from cdadmin.config import Settings
        s = Settings(fc_account_id="123", fc_endpoint="https://fc.internal/", _env_file=None)
        assert s.fc_endpoint_url == "https://fc.internal"

    def test_invalid_app_env_rejected(self):
        from cdadmin.config import Settings
        from pydantic import ValidationError
        with pytest.raises(ValidationError):
            Settings(app_env="banana", _env_file=None)

    def test_prod_requires_credentials(self):
        from cdadmin.config import Settings, validate_or_warn
        s = Settings(app_env="prod", _env_file=None)
        missing = s.validate_required_for_production()
        assert "admin_token" in missing
        assert "fc_access_key_id" in missing
        with pytest.raises(RuntimeError):
            validate_or_warn(s)

    def test_dev_only_warns(self, caplog):
        from cdadmin.config import Settings, validate_or_warn
        s = Settings(app_env="dev", _env_file=None)
        assert s.validate_required_for_production() == []
        with caplog.at_level(logging.WARNING):
            validate_or_warn(s)
        assert any("Function Compute is not configured" in r.getMessage() for r in caplog.records)

    def test_short_admin_token_warns(self):
        from cdadmin.config import Settings, warn_on_risky_config
        s = Settings(admin_token="short", _env_file=None)
        assert any("shorter than 32" in w for w in warn_on_risky_config(s))


# ============================================================================
# Logging / audit
# ============================================================================

class TestLogging:
    def test_mask_token(self):
        from cdadmin.infra.logging_config import mask_token
        assert mask_token(None) == ""
        assert mask_token("abc") == "****"
        assert mask_token("ghp_abcdef123456") == "ghp_****56"

    def test_json_formatter_includes_context(self):
        from cdadmin.infra.logging_config import JSONFormatter
        record = logging.LogRecord("cdadmin.test", logging.INFO, __file__, 1, "hello", None, None)
        record.task_id = "t1"
        record.app_id = "a1"

        data = json.loads(JSONFormatter().format(record))
        assert data["message"] == "hello"
        assert data["task_id"] == "t1"
        assert data["app_id"] == "a1"
        assert "org_id" not in data

    def test_log_context_adds_fields(self, caplog):
        from cdadmin.infra.logging_config import LogContext
        logger = logging.getLogger("cdadmin.test.context")
        with caplog.at_level(logging.INFO, logger="cdadmin.test.context"):
            LogContext(logger, task_id="t1", org_id="o1").info("dispatch")

        record = caplog.records[-1]
        assert record.task_id == "t1"
        assert record.org_id == "o1"
        assert not hasattr(record, "app_id")

    def test_audit_event(self, caplog):
        from cdadmin.infra.audit_log import audit_event
        with caplog.at_level(logging.INFO, logger="audit"):
            audit_event("task.cancel", app_id="app1", task_id="t1")

        record = caplog.records[-1]
        assert record.name == "audit"
        assert record.audit_action == "task.cancel"
        assert record.task_id == "t1"


# ============================================================================
# Postgres repositories
# ============================================================================

class TestBuildUpdate:
    def test_jsonb_and_plain_columns(self):
        from cdadmin.infra.pg_repos_async import _build_update
        sql, params = _build_update(
            "tasks", "t1", {"status": "cancel", "steps": [{"run": "a"}]},
            {"status", "steps"}, {"steps": "jsonb"},
        )
        assert sql == "UPDATE tasks SET status = $2, steps = $3::jsonb, updated_at = now() WHERE id = $1"
        assert params == ["t1", "cancel", json.dumps([{"run": "a"}])]

    def test_unknown_column_rejected(self):
        from cdadmin.infra.pg_repos_async import _build_update
        with pytest.raises(ValueError, match="password"):
            _build_update("users", "u1", {"password": "x"}, {"email"}, {})

    def test_empty_update_rejected(self):
        from cdadmin.infra.pg_repos_async import _build_update
        with pytest.raises(ValueError):
            _build_update("users", "u1", {}, {"email"}, {})

    def test_parse_json(self):
        from cdadmin.infra.pg_repos_async import _parse_json
        assert _parse_json('{"a": 1}') == {"a": 1}
        assert _parse_json([1]) == [1]
        assert _parse_json(None) == {}


class TestTaskRepository:
    @pytest.mark.asyncio
    async def test_get_task_detail(self):
        from cdadmin.infra.pg_repos_async import AsyncPostgresTaskRepository

        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        conn = AsyncMock()
        conn.fetchrow.return_value = {
            "id": "t1",
            "app_id": "app1",
            "status": "running",
            "steps": json.dumps([{"run": "build", "stepCount": "1", "status": "running"}]),
            "trigger_payload": {"taskId": "t1", "envName": "prod"},
            "created_at": now,
            "updated_at": None,
        }

        @asynccontextmanager
        async def fake_conn(autocommit=True):
            yield conn

        with patch("cdadmin.infra.pg_repos_async.safe_db_conn", fake_conn):
            task = await AsyncPostgresTaskRepository().get_task_detail("t1")

        assert task.steps[0].status == "running"
        assert task.trigger_payload["envName"] == "prod"
        assert task.created_at == now.isoformat()
        assert task.updated_at is None

    @pytest.mark.asyncio
    async def test_update_task(self):
        from cdadmin.infra.pg_repos_async import AsyncPostgresTaskRepository

        conn = AsyncMock()

        @asynccontextmanager
        async def fake_conn(autocommit=True):
            yield conn

        with patch("cdadmin.infra.pg_repos_async.safe_db_conn", fake_conn):
            await AsyncPostgresTaskRepository().update_task("t1", {"status": "cancel"})

        conn.execute.assert_awaited_once_with(
            "UPDATE tasks SET status = $2, updated_at = now() WHERE id = $1", "t1", "cancel",
        )


class TestApplicationRepository:
    @pytest.mark.asyncio
    async def test_environment_keeps_declaration_order(self):
        from cdadmin.core.dispatch.merge import select_env_name
        from cdadmin.infra.pg_repos_async import AsyncPostgresApplicationRepository

        # json columns come back as the text that was written
        conn = AsyncMock()
        conn.fetchrow.return_value = {
            "id": "app1",
            "owner_org_id": "org-owner",
            "provider": "github",
            "owner": "acme-gh",
            "repo_name": "web",
            "repo_url": "",
            "environment": '{"staging": {"secrets": {"K": "s"}}, "prod": {"secrets": {"K": "1"}}}',
            "description": "",
        }

        @asynccontextmanager
        async def fake_conn(autocommit=True):
            yield conn

        with patch("cdadmin.infra.pg_repos_async.safe_db_conn", fake_conn):
            app = await AsyncPostgresApplicationRepository().get_app_by_id("app1")

        assert list(app.environment) == ["staging", "prod"]
        assert select_env_name(app.environment) == "staging"

    @pytest.mark.asyncio
    async def test_environment_written_as_json_text_in_order(self):
        from cdadmin.infra.pg_repos_async import AsyncPostgresApplicationRepository

        conn = AsyncMock()

        @asynccontextmanager
        async def fake_conn(autocommit=True):
            yield conn

        env = {"staging": {"region": "sh"}, "prod": {"region": "hz"}}
        with patch("cdadmin.infra.pg_repos_async.safe_db_conn", fake_conn):
            await AsyncPostgresApplicationRepository().update_application("app1", {"environment": env})

        sql, app_id, text = conn.execute.await_args.args
        assert sql == "UPDATE applications SET environment = $2::json, updated_at = now() WHERE id = $1"
        assert list(json.loads(text)) == ["staging", "prod"]

    def test_order_sensitive_columns_are_not_jsonb(self):
        from cdadmin.infra.migrations_async import list_migrations

        ddl = list_migrations()[0].read_text()
        assert "environment   json NOT NULL" in ddl
        assert "trigger_payload json NOT NULL" in ddl


class TestMigrations:
    def test_sql_files_listed_in_order(self):
        from cdadmin.infra.migrations_async import list_migrations
        names = [p.name for p in list_migrations()]
        assert names[0] == "001_init.sql"
        assert names == sorted(names)

    @pytest.mark.asyncio
    async def test_apply_skips_recorded_versions_under_lock(self):
        from cdadmin.infra import migrations_async

        conn = AsyncMock()
        conn.fetch.return_value = [{"version": "001_init.sql"}]

        @asynccontextmanager
        async def fake_conn(autocommit=True):
            assert autocommit is False
            yield conn

        with patch.object(migrations_async, "db_conn", fake_conn):
            result = await migrations_async.apply_migrations()

        assert "001_init.sql" not in result["applied"]
        assert result["count"] == len(result["applied"])
        first_call = conn.execute.await_args_list[0]
        assert first_call.args == ("SELECT pg_advisory_xact_lock($1)", migrations_async.MIGRATION_LOCK_ID)
