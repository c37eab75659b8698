"""Unit of work and measurement behaviour of BaseService."""

from datetime import datetime
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from studio.core.exceptions import (
    ConflictException,
    PolicyViolationException,
    ServiceException,
    TransientStoreException,
    ValidationException,
)
from studio.services.base import BaseService


class _ProbeService(BaseService):
    @BaseService.measure_operation("sync_probe")
    def sync_probe(self, value: int) -> int:
        return value * 2

    @BaseService.measure_operation("async_probe")
    async def async_probe(self, value: int) -> int:
        return value + 1

    @BaseService.measure_operation("failing_probe")
    def failing_probe(self) -> None:
        raise PolicyViolationException("nope")


@pytest.fixture
def service():
    probe = _ProbeService(Mock())
    probe.reset_metrics()
    yield probe
    probe.reset_metrics()


class TestTransaction:
    def test_commits_on_success(self, service):
        with service.transaction():
            pass
        service.db.commit.assert_called_once()
        service.db.rollback.assert_not_called()

    def test_domain_exception_rolls_back_and_propagates(self, service):
        with pytest.raises(PolicyViolationException):
            with service.transaction():
                raise PolicyViolationException("class started", code="CLASS_STARTED")
        service.db.rollback.assert_called_once()
        service.db.commit.assert_not_called()

    def test_integrity_error_becomes_conflict(self, service):
        error = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        with pytest.raises(ConflictException) as exc_info:
            with service.transaction():
                raise error
        assert exc_info.value.code == "INTEGRITY_CONFLICT"
        service.db.rollback.assert_called_once()

    def test_lock_timeout_becomes_transient(self, service):
        error = OperationalError("UPDATE", {}, Exception("database is locked"))
        with pytest.raises(TransientStoreException):
            with service.transaction():
                raise error
        service.db.rollback.assert_called_once()

    def test_other_database_errors_become_service_errors(self, service):
        error = OperationalError("SELECT", {}, Exception("disk I/O error"))
        with pytest.raises(ServiceException):
            with service.transaction():
                raise error


class TestMeasureOperation:
    def test_sync_operation_recorded(self, service):
        assert service.sync_probe(21) == 42
        metrics = service.get_metrics()["sync_probe"]
        assert metrics["count"] == 1
        assert metrics["success_rate"] == 1.0

    def test_failures_recorded(self, service):
        with pytest.raises(PolicyViolationException):
            service.failing_probe()
        assert service.get_metrics()["failing_probe"]["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_async_operation_recorded(self, service):
        assert await service.async_probe(1) == 2
        assert service.get_metrics()["async_probe"]["success_count"] == 1


class TestResolveNow:
    def test_naive_now_rejected(self):
        with pytest.raises(ValidationException):
            BaseService._resolve_now(datetime(2030, 1, 1, 9, 0))

    def test_defaults_to_aware_utc(self):
        assert BaseService._resolve_now(None).tzinfo is not None
