from __future__ import annotations

from datetime import date

from sqlalchemy.exc import OperationalError

from equipdb.apps.compliance import router as compliance_router
from equipdb.apps.compliance.models import Credential, LoadTest
from equipdb.apps.equipment.models import Equipment
from equipdb.jobs import compliance_check_runner as runner_module
from equipdb.jobs.compliance_check_runner import ComplianceCheckRunner

TODAY = date(2024, 6, 1)


def _seed(db_session):
    crane = Equipment(equipment_id="CR-010", type="Gantry Crane", capacity=20.0)
    db_session.add(crane)
    db_session.flush()
    db_session.add_all(
        [
            LoadTest(
                equipment_id=crane.id,
                test_date=date(2023, 5, 20),
                rated_capacity=20.0,
                test_type="annual",
                test_load_percentage=125.0,
                test_load=25.0,
                test_results="pass",
                next_test_due=date(2024, 5, 20),
                inspector="J. Kamau",
            ),
            Credential(
                person_name="P. Mwangi",
                credential_type="Rigger",
                issue_date=date(2021, 6, 4),
                expiration_date=date(2024, 6, 4),
                status="active",
            ),
        ]
    )
    db_session.commit()


class _FailingSession:
    def __init__(self):
        self.closed = False

    def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    def rollback(self):
        pass

    def close(self):
        self.closed = True


def test_run_check_counts_and_notifies(session_factory, db_session):
    _seed(db_session)

    summary = runner_module.run_check(session_factory, today=TODAY)

    assert summary.as_of == TODAY
    assert summary.counts["load_test"]["overdue"] == 1
    assert summary.counts["credential"]["due-soon"] == 1
    assert summary.counts["calibration"] == {
        "overdue": 0,
        "due-soon": 0,
        "upcoming": 0,
        "current": 0,
        "no-date": 0,
    }
    assert sorted(item.type for item in summary.notifications) == ["critical", "warning"]


def test_failed_tick_is_logged_and_swallowed(caplog):
    sessions = []

    def factory():
        session = _FailingSession()
        sessions.append(session)
        return session

    runner = ComplianceCheckRunner(factory, clock=lambda: TODAY)

    assert runner.run_once() is None
    assert runner.latest is None
    assert sessions[0].closed
    assert "Compliance check failed" in caplog.text


def test_runner_keeps_the_latest_summary(session_factory, db_session):
    _seed(db_session)
    runner = ComplianceCheckRunner(session_factory, clock=lambda: TODAY)

    summary = runner.run_once()

    assert runner.latest is summary
    assert len(summary.notifications) == 2


def test_start_and_stop(session_factory):
    runner = ComplianceCheckRunner(
        session_factory, interval_sec=60, initial_delay_sec=0, clock=lambda: TODAY
    )
    runner.start()
    runner.stop(timeout=5)

    assert runner._thread is None


def test_notifications_endpoint_without_runner():
    assert compliance_router.latest_notifications(runner=None) == {
        "asOf": None,
        "counts": {},
        "notifications": [],
    }


def test_notifications_endpoint_runs_a_check_when_none_completed(session_factory, db_session):
    _seed(db_session)
    runner = ComplianceCheckRunner(session_factory, clock=lambda: TODAY)

    body = compliance_router.latest_notifications(runner=runner)

    assert body["asOf"] == "2024-06-01"
    assert {item["type"] for item in body["notifications"]} == {"critical", "warning"}
    assert runner.latest is not None
