"""Execution Recorder: persistence of execution records and log trails."""

import math
import threading
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..models.core import (
    ErrorDetail,
    ExecutionLogEntry,
    ExecutionPage,
    ExecutionRecord,
    ExecutionStatistics,
    ExecutionStatusEnum,
    LogLevelEnum,
    TERMINAL_STATUSES,
    utc_now,
)
from ..storage.database import get_session_factory
from ..storage.models import ExecutionLogModel, ExecutionModel
from .error_recovery import RetryConfig, with_retry
from .exceptions import StorageError, TransientError
from .logging import get_logger

logger = get_logger(__name__)


def to_jsonable(value: Any) -> Any:
    """Convert arbitrary run data into JSON-compatible values."""
    return to_jsonable_python(value, fallback=str)


class ExecutionRecorder(ABC):
    """Append-only sink for execution records and logs, plus their read side."""

    @abstractmethod
    def create_execution(self, record: ExecutionRecord) -> None:
        """Persist a new execution record."""

    @abstractmethod
    def update_execution(self, record: ExecutionRecord) -> None:
        """Overwrite the stored state of an existing execution record."""

    @abstractmethod
    def append_log(self, entry: ExecutionLogEntry) -> None:
        """Append one log entry."""

    @abstractmethod
    def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        """Return the record for ``execution_id`` or None."""

    @abstractmethod
    def list_executions(
        self,
        flow_id: Optional[str] = None,
        status: Optional[ExecutionStatusEnum] = None,
        page: int = 1,
        limit: int = 10,
    ) -> ExecutionPage:
        """Return one page of records, newest first."""

    @abstractmethod
    def get_logs(self, execution_id: str, level: Optional[LogLevelEnum] = None) -> List[ExecutionLogEntry]:
        """Return log entries of one execution in (timestamp, sequence) order."""

    @abstractmethod
    def get_statistics(self, flow_id: Optional[str] = None, days: int = 7) -> ExecutionStatistics:
        """Aggregate records started within the last ``days`` days."""

    @abstractmethod
    def cleanup_completed(self, max_age_hours: int = 24) -> int:
        """Delete terminal records older than the cutoff with their logs; returns the count."""


def _page_bounds(page: int, limit: int):
    page = max(1, int(page))
    limit = max(1, int(limit))
    return page, limit, (page - 1) * limit


def _build_statistics(records: List[ExecutionRecord], days: int) -> ExecutionStatistics:
    breakdown: Dict[str, int] = {}
    durations = []
    for record in records:
        breakdown[record.status.value] = breakdown.get(record.status.value, 0) + 1
        if record.duration_ms is not None:
            durations.append(record.duration_ms)
    return ExecutionStatistics(
        total=len(records),
        status_breakdown=breakdown,
        average_duration_ms=sum(durations) / len(durations) if durations else 0.0,
        period=f"{days}d",
    )


class InMemoryExecutionRecorder(ExecutionRecorder):
    """Recorder keeping everything in process memory."""

    def __init__(self):
        self._records: Dict[str, ExecutionRecord] = {}
        self._logs: Dict[str, List[ExecutionLogEntry]] = {}
        self._lock = threading.RLock()

    def create_execution(self, record: ExecutionRecord) -> None:
        with self._lock:
            if record.id in self._records:
                raise StorageError(f"Execution {record.id} already exists", operation="create_execution")
            self._records[record.id] = record.model_copy(deep=True)
            self._logs.setdefault(record.id, [])

    def update_execution(self, record: ExecutionRecord) -> None:
        with self._lock:
            if record.id not in self._records:
                raise StorageError(f"Execution {record.id} not found", operation="update_execution",
                                   recoverable=False)
            self._records[record.id] = record.model_copy(deep=True)

    def append_log(self, entry: ExecutionLogEntry) -> None:
        with self._lock:
            self._logs.setdefault(entry.execution_id, []).append(entry.model_copy(deep=True))

    def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        with self._lock:
            record = self._records.get(execution_id)
            return record.model_copy(deep=True) if record else None

    def list_executions(self, flow_id=None, status=None, page=1, limit=10) -> ExecutionPage:
        page, limit, offset = _page_bounds(page, limit)
        with self._lock:
            records = [
                r for r in self._records.values()
                if (flow_id is None or r.flow_id == flow_id)
                and (status is None or r.status == ExecutionStatusEnum(status))
            ]
        records.sort(key=lambda r: r.started_at, reverse=True)
        return ExecutionPage(
            items=[r.model_copy(deep=True) for r in records[offset:offset + limit]],
            total=len(records),
            page=page,
            limit=limit,
            total_pages=math.ceil(len(records) / limit),
        )

    def get_logs(self, execution_id: str, level: Optional[LogLevelEnum] = None) -> List[ExecutionLogEntry]:
        with self._lock:
            entries = list(self._logs.get(execution_id, []))
        if level is not None:
            entries = [e for e in entries if e.level == LogLevelEnum(level)]
        return sorted(entries, key=lambda e: (e.timestamp, e.sequence))

    def get_statistics(self, flow_id: Optional[str] = None, days: int = 7) -> ExecutionStatistics:
        cutoff = utc_now() - timedelta(days=days)
        with self._lock:
            records = [
                r for r in self._records.values()
                if r.started_at >= cutoff and (flow_id is None or r.flow_id == flow_id)
            ]
        return _build_statistics(records, days)

    def cleanup_completed(self, max_age_hours: int = 24) -> int:
        cutoff = utc_now() - timedelta(hours=max_age_hours)
        with self._lock:
            expired = [
                r.id for r in self._records.values()
                if r.status in TERMINAL_STATUSES and r.completed_at is not None and r.completed_at < cutoff
            ]
            for execution_id in expired:
                self._records.pop(execution_id, None)
                self._logs.pop(execution_id, None)
        if expired:
            logger.info(f"Cleaned up {len(expired)} completed executions older than {max_age_hours} hours")
        return len(expired)


_STORAGE_RETRY = RetryConfig(
    max_attempts=3,
    base_delay=0.05,
    max_delay=1.0,
    retryable_exceptions=[StorageError, TransientError],
)


class SqlExecutionRecorder(ExecutionRecorder):
    """Recorder backed by the SQLAlchemy ``executions``/``execution_logs`` tables."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory
        # SQLite allows one writer; serializing here avoids "database is locked"
        self._write_lock = threading.RLock()
        logger.info("SqlExecutionRecorder initialized")

    def _session(self):
        factory = self._session_factory or get_session_factory()
        return factory()

    @staticmethod
    def _apply(model: ExecutionModel, record: ExecutionRecord):
        model.flow_id = record.flow_id
        model.flow_name = record.flow_name
        model.status = record.status.value
        model.input_data = to_jsonable(record.input_data)
        model.output_data = to_jsonable(record.output_data)
        model.error_message = record.error_message
        model.error_detail = record.error_detail.model_dump(mode="json") if record.error_detail else None
        model.execution_path = list(record.execution_path)
        model.started_at = record.started_at
        model.completed_at = record.completed_at
        model.duration_ms = record.duration_ms

    @staticmethod
    def _to_record(model: ExecutionModel) -> ExecutionRecord:
        return ExecutionRecord(
            id=model.id,
            flow_id=model.flow_id,
            flow_name=model.flow_name,
            status=ExecutionStatusEnum(model.status),
            input_data=model.input_data,
            output_data=model.output_data,
            error_message=model.error_message,
            error_detail=ErrorDetail.model_validate(model.error_detail) if model.error_detail else None,
            execution_path=model.execution_path or [],
            started_at=model.started_at,
            completed_at=model.completed_at,
            duration_ms=model.duration_ms,
        )

    @staticmethod
    def _to_entry(model: ExecutionLogModel) -> ExecutionLogEntry:
        return ExecutionLogEntry(
            execution_id=model.execution_id,
            node_id=model.node_id,
            level=LogLevelEnum(model.level),
            message=model.message,
            data=model.data,
            timestamp=model.timestamp,
            sequence=model.sequence,
        )

    @with_retry(_STORAGE_RETRY)
    def create_execution(self, record: ExecutionRecord) -> None:
        with self._write_lock:
            db = self._session()
            try:
                model = ExecutionModel(id=record.id)
                self._apply(model, record)
                db.add(model)
                db.commit()
                logger.debug(f"Created execution record {record.id}")
            except IntegrityError as e:
                db.rollback()
                raise StorageError(f"Execution {record.id} already exists: {str(e)}",
                                   operation="create_execution", table="executions", recoverable=False)
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageError(f"Failed to create execution record: {str(e)}",
                                   operation="create_execution", table="executions")
            finally:
                db.close()

    @with_retry(_STORAGE_RETRY)
    def update_execution(self, record: ExecutionRecord) -> None:
        with self._write_lock:
            db = self._session()
            try:
                model = db.get(ExecutionModel, record.id)
                if model is None:
                    raise StorageError(f"Execution {record.id} not found", operation="update_execution",
                                       table="executions", recoverable=False)
                self._apply(model, record)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageError(f"Failed to update execution record: {str(e)}",
                                   operation="update_execution", table="executions")
            finally:
                db.close()

    @with_retry(_STORAGE_RETRY)
    def append_log(self, entry: ExecutionLogEntry) -> None:
        with self._write_lock:
            db = self._session()
            try:
                db.add(ExecutionLogModel(
                    execution_id=entry.execution_id,
                    node_id=entry.node_id,
                    level=entry.level.value,
                    message=entry.message,
                    data=to_jsonable(entry.data),
                    timestamp=entry.timestamp,
                    sequence=entry.sequence,
                ))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageError(f"Failed to append execution log: {str(e)}",
                                   operation="append_log", table="execution_logs")
            finally:
                db.close()

    def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        db = self._session()
        try:
            model = db.get(ExecutionModel, execution_id)
            return self._to_record(model) if model else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load execution record: {str(e)}", operation="get_execution")
        finally:
            db.close()

    def list_executions(self, flow_id=None, status=None, page=1, limit=10) -> ExecutionPage:
        page, limit, offset = _page_bounds(page, limit)
        db = self._session()
        try:
            query = db.query(ExecutionModel)
            if flow_id is not None:
                query = query.filter(ExecutionModel.flow_id == flow_id)
            if status is not None:
                query = query.filter(ExecutionModel.status == ExecutionStatusEnum(status).value)

            total = query.count()
            models = (
                query.order_by(ExecutionModel.started_at.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return ExecutionPage(
                items=[self._to_record(m) for m in models],
                total=total,
                page=page,
                limit=limit,
                total_pages=math.ceil(total / limit),
            )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list executions: {str(e)}", operation="list_executions")
        finally:
            db.close()

    def get_logs(self, execution_id: str, level: Optional[LogLevelEnum] = None) -> List[ExecutionLogEntry]:
        db = self._session()
        try:
            query = db.query(ExecutionLogModel).filter(ExecutionLogModel.execution_id == execution_id)
            if level is not None:
                query = query.filter(ExecutionLogModel.level == LogLevelEnum(level).value)
            models = query.order_by(
                ExecutionLogModel.timestamp, ExecutionLogModel.sequence, ExecutionLogModel.id
            ).all()
            return [self._to_entry(m) for m in models]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load execution logs: {str(e)}", operation="get_logs")
        finally:
            db.close()

    def get_statistics(self, flow_id: Optional[str] = None, days: int = 7) -> ExecutionStatistics:
        cutoff = utc_now() - timedelta(days=days)
        db = self._session()
        try:
            base = db.query(ExecutionModel).filter(ExecutionModel.started_at >= cutoff)
            if flow_id is not None:
                base = base.filter(ExecutionModel.flow_id == flow_id)

            rows = (
                base.with_entities(ExecutionModel.status, func.count(ExecutionModel.id))
                .group_by(ExecutionModel.status)
                .all()
            )
            average = (
                base.filter(ExecutionModel.duration_ms.isnot(None))
                .with_entities(func.avg(ExecutionModel.duration_ms))
                .scalar()
            )
            breakdown = {status: count for status, count in rows}
            return ExecutionStatistics(
                total=sum(breakdown.values()),
                status_breakdown=breakdown,
                average_duration_ms=float(average or 0.0),
                period=f"{days}d",
            )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to compute execution statistics: {str(e)}", operation="get_statistics")
        finally:
            db.close()

    def cleanup_completed(self, max_age_hours: int = 24) -> int:
        cutoff = utc_now() - timedelta(hours=max_age_hours)
        terminal = [s.value for s in TERMINAL_STATUSES]
        with self._write_lock:
            db = self._session()
            try:
                expired_ids = [
                    row[0] for row in db.query(ExecutionModel.id)
                    .filter(ExecutionModel.status.in_(terminal))
                    .filter(ExecutionModel.completed_at.isnot(None))
                    .filter(ExecutionModel.completed_at < cutoff)
                    .all()
                ]
                if not expired_ids:
                    return 0

                db.query(ExecutionLogModel).filter(
                    ExecutionLogModel.execution_id.in_(expired_ids)
                ).delete(synchronize_session=False)
                db.query(ExecutionModel).filter(
                    ExecutionModel.id.in_(expired_ids)
                ).delete(synchronize_session=False)
                db.commit()

                logger.info(f"Cleaned up {len(expired_ids)} completed executions older than {max_age_hours} hours")
                return len(expired_ids)
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageError(f"Failed to clean up executions: {str(e)}", operation="cleanup_completed")
            finally:
                db.close()
