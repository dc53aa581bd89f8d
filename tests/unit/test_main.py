"""Unit tests for main entry point."""

import os
from unittest.mock import MagicMock, patch

import fakeredis
from fastapi import FastAPI

from main import build_services, create_app, get_redis_client, main
from services.notifiers import AgentWebhookNotifier
from services.settings import EngineSettings


class TestGetRedisClient:
    """Tests for get_redis_client."""

    def test_uses_settings_url(self):
        """Should connect to the configured URL."""
        with patch("main.redis.Redis") as mock_redis:
            get_redis_client(EngineSettings(redis_url="redis://custom:1234"))
            mock_redis.from_url.assert_called_once_with(
                "redis://custom:1234", decode_responses=True
            )


class TestEngineSettings:
    """Tests for environment configuration."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = EngineSettings.from_env()
        assert settings.redis_url == "redis://localhost:6379"
        assert settings.auto_approve_threshold == 0.90
        assert settings.resume_on_manual_submit is True
        assert settings.agent_webhook_url is None

    def test_environment_values(self):
        env = {
            "REDIS_URL": "redis://cache:6380",
            "LOG_LEVEL": "DEBUG",
            "AUTO_APPROVE_THRESHOLD": "0.95",
            "RESUME_ON_MANUAL_SUBMIT": "false",
            "AGENT_WEBHOOK_URL": "http://agents.local/hook",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = EngineSettings.from_env()
        assert settings.redis_url == "redis://cache:6380"
        assert settings.log_level == "debug"
        assert settings.auto_approve_threshold == 0.95
        assert settings.resume_on_manual_submit is False
        assert settings.agent_webhook_url == "http://agents.local/hook"


class TestBuildServices:
    """Tests for build_services."""

    def test_wires_services(self):
        settings = EngineSettings(escalate_to_role="ops-lead", resume_on_manual_submit=False)
        services = build_services(
            settings, fakeredis.FakeRedis(decode_responses=True), MagicMock()
        )

        assert services.router._default_rules.escalate_to_role == "ops-lead"
        assert services.manual_entries._resume_on_submit is False
        assert services.instance_manager._scheduler is not None

    def test_retry_wait_bounded_by_lock(self):
        settings = EngineSettings(lock_timeout_seconds=60.0)
        services = build_services(
            settings, fakeredis.FakeRedis(decode_responses=True), MagicMock()
        )

        assert services.instance_manager._dispatcher._max_retry_wait == 30.0

    def test_webhook_notifier_added(self):
        settings = EngineSettings(agent_webhook_url="http://agents.local/hook")
        services = build_services(
            settings, fakeredis.FakeRedis(decode_responses=True), MagicMock()
        )

        notifiers = services.router._notifier._notifiers
        assert any(isinstance(n, AgentWebhookNotifier) for n in notifiers)


class TestCreateApp:
    """Tests for create_app."""

    def test_creates_fastapi_app(self):
        services = build_services(
            EngineSettings(), fakeredis.FakeRedis(decode_responses=True), MagicMock()
        )
        app = create_app(services)

        assert isinstance(app, FastAPI)
        paths = {route.path for route in app.routes}
        assert "/instances" in paths
        assert "/suggestions/{suggestion_id}/approve" in paths

    def test_builds_services_from_environment(self):
        with patch.dict(os.environ, {}, clear=True):
            with patch(
                "main.get_redis_client",
                return_value=fakeredis.FakeRedis(decode_responses=True),
            ) as mock_get:
                app = create_app()

        assert isinstance(app, FastAPI)
        mock_get.assert_called_once()


class TestMain:
    """Tests for main function."""

    def test_parses_arguments(self, tmp_path):
        """Should parse command line arguments."""
        with patch.dict(os.environ, {"LOG_DIR": str(tmp_path)}):
            with patch("main.get_redis_client", return_value=MagicMock()):
                with patch("main.build_services"), patch("main.create_app"), patch(
                    "main.configure_logging"
                ):
                    with patch("main.uvicorn.run") as mock_uvicorn:
                        with patch(
                            "sys.argv",
                            ["main.py", "--host", "127.0.0.1", "--port", "9000"],
                        ):
                            result = main()

        assert result == 0
        call_kwargs = mock_uvicorn.call_args[1]
        assert call_kwargs["host"] == "127.0.0.1"
        assert call_kwargs["port"] == 9000

    def test_sets_log_level(self, tmp_path):
        """Should pass the log level through to uvicorn."""
        with patch.dict(os.environ, {"LOG_DIR": str(tmp_path)}):
            with patch("main.get_redis_client", return_value=MagicMock()):
                with patch("main.build_services"), patch("main.create_app"), patch(
                    "main.configure_logging"
                ):
                    with patch("main.uvicorn.run") as mock_uvicorn:
                        with patch("sys.argv", ["main.py", "--log-level", "debug"]):
                            main()

        assert mock_uvicorn.call_args[1]["log_level"] == "debug"
