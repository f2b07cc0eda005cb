"""Unit tests for custom exception hierarchy"""
import pytest
from datetime import datetime

import httpx
import psycopg

from taskquest.exceptions import (
    TaskQuestError,
    ValidationError,
    DatabaseError,
    PersistenceFailure,
    ConcurrencyConflict,
    RecordNotFoundError,
    ExternalAPIError,
    SyncFailure,
    AuthenticationError,
    ConfigurationError,
    wrap_external_exception
)


class TestTaskQuestError:
    """Test base exception class"""

    def test_basic_exception(self):
        """Test basic exception creation"""
        error = TaskQuestError("Test error")
        assert error.message == "Test error"
        assert error.user_message == "An error occurred. Please try again."
        assert error.request_id is not None
        assert isinstance(error.timestamp, datetime)

    def test_exception_with_context(self):
        """Test exception with full context"""
        error = TaskQuestError(
            message="Task save failed",
            user_id="auth0|123",
            operation="save_task",
            context={"task_id": "task_abc"},
            user_message="Could not save your task"
        )
        assert error.user_id == "auth0|123"
        assert error.operation == "save_task"
        assert error.context["task_id"] == "task_abc"
        assert error.user_message == "Could not save your task"

    def test_to_dict(self):
        """Test exception serialization"""
        error = TaskQuestError(message="Test error", user_id="auth0|123")
        error_dict = error.to_dict()
        assert error_dict["error"] == "TaskQuestError"
        assert error_dict["message"] == "Test error"
        assert error_dict["user_message"] == "An error occurred. Please try again."
        assert "request_id" in error_dict
        assert "timestamp" in error_dict

    def test_logs_on_creation(self, caplog):
        """Errors log themselves with their class name"""
        with caplog.at_level("ERROR"):
            TaskQuestError("Something broke", operation="test_op")
        assert "TaskQuestError: Something broke" in caplog.text


class TestValidationError:
    """Test validation error"""

    def test_validation_error(self):
        """Test validation error with field"""
        error = ValidationError(message="must not be empty", field="title", value="")
        assert error.field == "title"
        assert error.value == ""
        assert "Invalid title" in error.user_message


class TestDatabaseErrors:
    """Test storage-related errors"""

    def test_persistence_failure(self):
        error = PersistenceFailure()
        assert error.message == "Store unavailable"
        assert "progress" in error.user_message.lower()

    def test_concurrency_conflict(self):
        error = ConcurrencyConflict("stale", expected_version=3, actual_version=4)
        assert error.expected_version == 3
        assert error.actual_version == 4
        assert error.context == {"expected_version": 3, "actual_version": 4}

    def test_record_not_found(self):
        """Test record not found"""
        error = RecordNotFoundError(message="Task not found", record_type="Task", record_id="task_1")
        assert error.record_type == "Task"
        assert error.record_id == "task_1"
        assert "Task not found" in error.user_message


class TestExternalAPIErrors:
    """Test external API errors"""

    def test_generic_api_error(self):
        """Test generic API error"""
        error = ExternalAPIError(message="API failed", service="TestAPI", status_code=500)
        assert error.service == "TestAPI"
        assert error.status_code == 500
        assert "TestAPI" in error.user_message

    def test_sync_failure(self):
        error = SyncFailure("Calendar down", task_id="task_1", status_code=503)
        assert error.service == "Google Calendar"
        assert error.task_id == "task_1"
        assert error.status_code == 503
        assert "calendar" in error.user_message.lower()


class TestAuthAndConfigErrors:
    """Test authentication and configuration errors"""

    def test_authentication_error(self):
        error = AuthenticationError()
        assert "authentication" in error.message.lower()
        assert "authentication" in error.user_message.lower()

    def test_configuration_error(self):
        error = ConfigurationError(message="Missing token", config_key="GOOGLE_CALENDAR_TOKEN")
        assert error.config_key == "GOOGLE_CALENDAR_TOKEN"
        assert "configured" in error.user_message.lower()


class TestWrapExternalException:
    """Test exception wrapping helper"""

    def test_wrap_generic_exception(self):
        """Test wrapping generic exception"""
        original = ValueError("Invalid input")
        wrapped = wrap_external_exception(original, operation="process_data", user_id="auth0|123")
        assert isinstance(wrapped, TaskQuestError)
        assert wrapped.cause == original
        assert wrapped.operation == "process_data"
        assert wrapped.user_id == "auth0|123"

    def test_wrap_psycopg_error(self):
        """Database errors become PersistenceFailure"""
        original = psycopg.OperationalError("Connection refused")
        wrapped = wrap_external_exception(original, operation="save_progress")
        assert isinstance(wrapped, PersistenceFailure)
        assert wrapped.cause == original

    def test_wrap_httpx_timeout(self):
        """Test wrapping httpx timeout"""
        original = httpx.TimeoutException("Request timeout")
        wrapped = wrap_external_exception(original, operation="api_call", context={"task_id": "t1"})
        assert isinstance(wrapped, ExternalAPIError)
        assert "timed out" in wrapped.message.lower()
        assert wrapped.context["task_id"] == "t1"

    def test_wrap_httpx_status_error(self):
        request = httpx.Request("POST", "https://example.com")
        original = httpx.HTTPStatusError(
            "Server error", request=request, response=httpx.Response(502, request=request)
        )
        wrapped = wrap_external_exception(original, operation="api_call")
        assert isinstance(wrapped, ExternalAPIError)
        assert wrapped.status_code == 502

    def test_own_errors_pass_through(self):
        original = ConcurrencyConflict("stale")
        assert wrap_external_exception(original, operation="save_progress") is original


class TestInheritance:
    """Test exception hierarchy"""

    def test_all_inherit_from_base(self):
        exceptions = [
            ValidationError("test"),
            DatabaseError("test"),
            PersistenceFailure(),
            ConcurrencyConflict("test"),
            RecordNotFoundError("test"),
            ExternalAPIError("test"),
            SyncFailure("test"),
            AuthenticationError(),
            ConfigurationError("test"),
        ]
        for exc in exceptions:
            assert isinstance(exc, TaskQuestError)
            assert isinstance(exc, Exception)

    def test_database_hierarchy(self):
        for exc in (PersistenceFailure(), ConcurrencyConflict("x"), RecordNotFoundError("x")):
            assert isinstance(exc, DatabaseError)

    def test_sync_failure_is_external(self):
        assert isinstance(SyncFailure("x"), ExternalAPIError)
