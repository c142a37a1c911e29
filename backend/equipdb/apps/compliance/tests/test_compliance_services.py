from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy import select

from equipdb.apps.audit.models import AuditLogEntry
from equipdb.apps.compliance import services as compliance_services
from equipdb.apps.compliance.models import Certificate, Credential, LoadTest
from equipdb.apps.equipment.models import Equipment, Inspection
from equipdb.utils import serialization

TODAY = date(2024, 6, 1)


def _equipment(db_session, code: str, equipment_type: str, capacity: float = 10.0) -> Equipment:
    equipment = Equipment(equipment_id=code, type=equipment_type, capacity=capacity)
    db_session.add(equipment)
    db_session.commit()
    return equipment


def _load_test(dispatcher, equipment_id: int, test_date: str, **extra):
    params = {
        "equipmentId": equipment_id,
        "testDate": test_date,
        "testType": "annual",
        "inspector": "J. Smith",
        "testResults": "pass",
        "testLoadPercentage": 125,
    }
    params.update(extra)
    return dispatcher.dispatch("loadTests", "create", params, today=TODAY)


def test_load_test_create_computes_next_due_and_issues_certificate(dispatcher, db_session):
    crane = _equipment(db_session, "CR-001", "Overhead Crane", capacity=20.0)

    result = _load_test(dispatcher, crane.id, "2024-01-15")

    assert result.ok is True
    value = result.value
    assert value["next_test_due"] == "2025-01-15"
    assert value["rated_capacity"] == 20.0
    assert value["test_load"] == 25.0
    assert value["certificate_number"] == f"LT-CR-001-2024-{value['id']:04d}"
    assert value["certificate"]["expiration_date"] == "2025-01-15"

    certificate = db_session.execute(select(Certificate)).scalar_one()
    assert certificate.entity_id == value["id"]
    assert certificate.certificate_type == "load_test"

    # one audit entry covers the event and the certificate it issued
    entry = db_session.execute(select(AuditLogEntry)).scalar_one()
    assert entry.entity_type == "load_test"
    assert serialization.loads(entry.new_values)["certificate_id"] == certificate.id


def test_failed_load_test_issues_no_certificate(dispatcher, db_session):
    crane = _equipment(db_session, "CR-002", "Gantry Crane")
    result = _load_test(dispatcher, crane.id, "2024-01-15", testResults="fail", deficienciesFound="Brake slip")

    assert result.ok is True
    assert result.value["certificate"] is None
    assert db_session.execute(select(Certificate)).first() is None


def test_load_test_refused_for_ineligible_equipment(dispatcher, db_session):
    gauge = _equipment(db_session, "PG-001", "Pressure Gauge")
    result = _load_test(dispatcher, gauge.id, "2024-01-15")

    assert result.error.error_kind == "ConstraintViolation"
    assert result.error.relationship == "equipment.type"
    assert db_session.execute(select(LoadTest)).first() is None
    assert db_session.execute(select(AuditLogEntry)).first() is None


def test_load_test_due_and_overdue_use_the_current_event(dispatcher, db_session):
    crane = _equipment(db_session, "CR-003", "Overhead Crane")
    hoist = _equipment(db_session, "HO-001", "Chain Hoist")
    lift = _equipment(db_session, "LF-001", "Scissor Lift")

    # superseded by the 2023-06-20 test; only the newer one counts
    _load_test(dispatcher, crane.id, "2022-06-10")
    _load_test(dispatcher, crane.id, "2023-06-20")
    _load_test(dispatcher, hoist.id, "2023-05-01")
    _load_test(dispatcher, lift.id, "2023-09-01")

    due = dispatcher.dispatch("loadTests", "getDue", {}, today=TODAY).value
    assert [row["equipment_identifier"] for row in due] == ["CR-003"]
    assert due[0]["next_test_due"] == "2024-06-20"

    overdue = dispatcher.dispatch("loadTests", "getOverdue", {}, today=TODAY).value
    assert [row["equipment_identifier"] for row in overdue] == ["HO-001"]

    wider = dispatcher.dispatch("loadTests", "getDue", {"dueDate": "2024-09-30"}, today=TODAY).value
    assert [row["equipment_identifier"] for row in wider] == ["CR-003", "LF-001"]

    history = dispatcher.dispatch("loadTests", "getByEquipmentId", {"equipmentId": crane.id}, today=TODAY).value
    assert [row["test_date"] for row in history] == ["2023-06-20", "2022-06-10"]

    last = dispatcher.dispatch("loadTests", "getLastByEquipment", {"equipmentId": crane.id}, today=TODAY).value
    assert last["test_date"] == "2023-06-20"
    assert dispatcher.dispatch("loadTests", "getTotal", {}, today=TODAY).value == 4


def test_periodic_calibration_and_limited_result(dispatcher, db_session):
    scale = _equipment(db_session, "SC-001", "Platform Scale")

    result = dispatcher.dispatch(
        "calibrations",
        "create",
        {
            "equipmentId": scale.id,
            "instrumentType": "Load cell",
            "calibrationDate": "2023-11-30",
            "intervalType": "periodic",
            "calibratedBy": "K. Njoroge",
            "calibrationAgency": "Metrology Lab",
            "calibrationResults": "limited",
        },
        today=TODAY,
    )

    assert result.ok is True
    assert result.value["calibration_due_date"] == "2024-05-30"
    assert result.value["certificate"] is None

    overdue = dispatcher.dispatch("calibrations", "getOverdue", {}, today=TODAY).value
    assert [row["id"] for row in overdue] == [result.value["id"]]


def test_passing_calibration_issues_cal_certificate(dispatcher, db_session):
    gauge = _equipment(db_session, "PG-002", "Pressure Gauge")
    result = dispatcher.dispatch(
        "calibrations",
        "create",
        {
            "equipmentId": gauge.id,
            "instrumentType": "Bourdon gauge",
            "calibrationDate": "2024-05-20",
            "calibratedBy": "K. Njoroge",
            "calibrationResults": "pass",
        },
        today=TODAY,
    )
    assert result.value["calibration_due_date"] == "2025-05-20"
    assert result.value["certificate_number"].startswith("CAL-PG-002-2024-")

    by_number = dispatcher.dispatch(
        "certificates",
        "getByCertificateNumber",
        {"certificateNumber": result.value["certificate_number"]},
        today=TODAY,
    ).value
    assert by_number["certificate_type"] == "calibration"


def test_calibration_refused_for_non_instrument(dispatcher, db_session):
    vessel = _equipment(db_session, "PV-001", "Pressure Vessel")
    result = dispatcher.dispatch(
        "calibrations",
        "create",
        {
            "equipmentId": vessel.id,
            "instrumentType": "Shell",
            "calibrationDate": "2024-05-20",
            "calibratedBy": "K. Njoroge",
            "calibrationResults": "pass",
        },
        today=TODAY,
    )
    assert result.error.error_kind == "ConstraintViolation"


def test_credential_renewal_defaults(dispatcher):
    periods = {"Crane Operator": "2027-03-01", "Rigger": "2027-03-01", "Inspector": "2026-03-01", "Forklift": "2025-03-01"}
    for credential_type, expected in periods.items():
        result = dispatcher.dispatch(
            "credentials",
            "create",
            {"personName": "A. Wekesa", "credentialType": credential_type, "issueDate": "2024-03-01"},
            today=TODAY,
        )
        assert result.value["expiration_date"] == expected


def test_expiring_credentials_include_expired_and_skip_inactive(dispatcher, db_session):
    db_session.add_all(
        [
            Credential(person_name="A", credential_type="Rigger", issue_date=date(2021, 1, 1), expiration_date=TODAY + timedelta(days=5)),
            Credential(person_name="B", credential_type="Rigger", issue_date=date(2021, 1, 1), expiration_date=TODAY - timedelta(days=3)),
            Credential(person_name="C", credential_type="Rigger", issue_date=date(2021, 1, 1), expiration_date=TODAY + timedelta(days=60)),
            Credential(person_name="D", credential_type="Rigger", issue_date=date(2021, 1, 1), expiration_date=TODAY + timedelta(days=2), status="revoked"),
        ]
    )
    db_session.commit()

    expiring = dispatcher.dispatch("credentials", "getExpiring", {}, today=TODAY).value
    assert sorted(row["person_name"] for row in expiring) == ["A", "B"]

    later = dispatcher.dispatch("credentials", "getExpiring", {"expirationDate": "2024-08-30"}, today=TODAY).value
    assert sorted(row["person_name"] for row in later) == ["A", "B", "C"]


def test_credential_status_update_is_audited(dispatcher, db_session):
    created = dispatcher.dispatch(
        "credentials",
        "create",
        {
            "personName": "A. Wekesa",
            "credentialType": "Rigger",
            "issueDate": "2024-03-01",
            "equipmentTypes": ["crane", "hoist"],
        },
        today=TODAY,
    ).value
    assert created["equipment_types"] == ["crane", "hoist"]

    result = dispatcher.dispatch(
        "credentials", "updateStatus", {"id": created["id"], "status": "suspended"}, today=TODAY
    )
    assert result.value["status"] == "suspended"

    entries = db_session.execute(
        select(AuditLogEntry).order_by(AuditLogEntry.id)
    ).scalars().all()
    assert [entry.action for entry in entries] == ["create", "update_status"]
    assert serialization.loads(entries[1].old_values)["status"] == "active"


def test_check_qualification(dispatcher, db_session):
    db_session.add_all(
        [
            Credential(person_name="P. Mwangi", credential_type="Crane Operator", issue_date=date(2023, 1, 1), expiration_date=date(2026, 1, 1)),
            Credential(person_name="P. Mwangi", credential_type="Rigger", issue_date=date(2021, 1, 1), expiration_date=date(2024, 5, 1)),
        ]
    )
    db_session.commit()

    result = dispatcher.dispatch(
        "credentials",
        "checkQualification",
        {"personName": "P. Mwangi", "equipmentType": "Overhead Crane"},
        today=TODAY,
    ).value

    assert result["qualified"] is False
    by_type = {item["credentialType"]: item for item in result["requirements"]}
    assert by_type["Crane Operator"]["valid"] is True
    assert by_type["Crane Operator"]["status"] == "current"
    assert by_type["Rigger"]["status"] == "overdue"
    assert by_type["Signal Person"]["status"] == "missing"

    hoist = dispatcher.dispatch(
        "credentials",
        "checkQualification",
        {"personName": "P. Mwangi", "equipmentType": "Chain Hoist"},
        today=TODAY,
    ).value
    assert hoist["qualified"] is True


def test_required_credential_types():
    assert compliance_services.required_credential_types(
        "Mobile Crane", work_type="emergency", priority="critical", title="Inspect boom"
    ) == ["Crane Operator", "Rigger", "Signal Person", "Maintenance Technician", "Supervisor", "Inspector"]
    assert compliance_services.required_credential_types("Pressure Gauge") == []


def test_certificate_create_and_expiring(dispatcher, db_session):
    crane = _equipment(db_session, "CR-010", "Overhead Crane")
    inspection = Inspection(equipment_id=crane.id, inspector="J. Kamau", inspection_date=date(2023, 6, 15))
    db_session.add(inspection)
    db_session.commit()
    created = dispatcher.dispatch(
        "certificates",
        "create",
        {
            "certificateNumber": "INS-CR-010-2023-0001",
            "certificateType": "inspection",
            "equipmentId": crane.id,
            "entityId": inspection.id,
            "issueDate": "2023-06-15",
            "expirationDate": "2024-06-15",
            "issuedBy": "Safety Board",
        },
        today=TODAY,
    )
    assert created.ok is True

    expiring = dispatcher.dispatch("certificates", "getExpiring", {}, today=TODAY).value
    assert [row["certificate_number"] for row in expiring] == ["INS-CR-010-2023-0001"]

    revoked = dispatcher.dispatch(
        "certificates", "updateStatus", {"id": created.value["id"], "status": "revoked"}, today=TODAY
    )
    assert revoked.value["status"] == "revoked"
    assert dispatcher.dispatch("certificates", "getExpiring", {}, today=TODAY).value == []

    bad_dates = dispatcher.dispatch(
        "certificates",
        "create",
        {
            "certificateNumber": "X-1",
            "certificateType": "inspection",
            "equipmentId": crane.id,
            "entityId": inspection.id,
            "issueDate": "2024-06-15",
            "expirationDate": "2024-06-14",
            "issuedBy": "Safety Board",
        },
        today=TODAY,
    )
    assert bad_dates.error.fields == ["expirationDate"]


def test_pm_schedule_lifecycle(dispatcher, db_session):
    hoist = _equipment(db_session, "HO-010", "Chain Hoist")
    template = dispatcher.dispatch(
        "pmTemplates",
        "create",
        {
            "name": "Chain lubrication",
            "equipmentType": "Chain Hoist",
            "frequencyType": "calendar",
            "frequencyValue": 3,
            "frequencyUnit": "months",
        },
        today=TODAY,
    ).value

    schedule = dispatcher.dispatch(
        "pmSchedules",
        "create",
        {"equipmentId": hoist.id, "pmTemplateId": template["id"]},
        today=TODAY,
    ).value
    assert schedule["next_due_date"] == "2024-09-01"

    assert dispatcher.dispatch("pmSchedules", "getTotal", {}, today=TODAY).value == 1
    assert dispatcher.dispatch("pmSchedules", "getDue", {}, today=TODAY).value == []
    overdue = dispatcher.dispatch("pmSchedules", "getOverdue", {}, today=date(2024, 9, 2)).value
    assert [row["template_name"] for row in overdue] == ["Chain lubrication"]

    completed = dispatcher.dispatch(
        "pmSchedules",
        "complete",
        {"id": schedule["id"], "completedDate": "2024-09-05"},
        today=date(2024, 9, 5),
    ).value
    assert completed["last_completed_date"] == "2024-09-05"
    assert completed["next_due_date"] == "2024-12-05"

    templates = dispatcher.dispatch("pmTemplates", "getAll", {"equipmentType": "Chain Hoist"}, today=TODAY).value
    assert [row["name"] for row in templates] == ["Chain lubrication"]


def test_compliance_summary_and_notifications(dispatcher, db_session):
    crane = _equipment(db_session, "CR-020", "Overhead Crane")
    scale = _equipment(db_session, "SC-020", "Bench Scale")
    _load_test(dispatcher, crane.id, "2023-06-05")  # due 2024-06-05, 4 days out
    dispatcher.dispatch(
        "calibrations",
        "create",
        {
            "equipmentId": scale.id,
            "instrumentType": "Load cell",
            "calibrationDate": "2023-01-01",
            "calibratedBy": "K. Njoroge",
            "calibrationResults": "pass",
        },
        today=TODAY,
    )

    notifications = dispatcher.dispatch("compliance", "getNotifications", {}, today=TODAY).value
    by_class = {item["assetClass"]: item for item in notifications}
    assert by_class["load_test"]["type"] == "warning"
    assert by_class["load_test"]["message"] == "Load test for CR-020 due in 4 days (2024-06-05)"
    assert by_class["calibration"]["type"] == "critical"
    assert by_class["calibration"]["equipmentId"] == scale.id
    assert "certificate" not in by_class

    summary = dispatcher.dispatch("compliance", "getSummary", {}, today=TODAY).value
    assert summary["asOf"] == "2024-06-01"
    assert summary["counts"]["load_test"]["due-soon"] == 1
    assert summary["counts"]["calibration"]["overdue"] == 1
    assert summary["counts"]["certificate"]["overdue"] == 1

    status = dispatcher.dispatch("compliance", "getStatus", {"assetClass": "load_test"}, today=TODAY).value
    assert [(item["equipmentId"], item["status"], item["daysUntilDue"]) for item in status] == [
        (crane.id, "due-soon", 4)
    ]


def test_certificate_must_point_at_an_event_of_its_type(dispatcher, db_session):
    crane = _equipment(db_session, "CR-011", "Overhead Crane")
    hoist = _equipment(db_session, "HO-011", "Chain Hoist")
    inspection = Inspection(equipment_id=hoist.id, inspector="J. Kamau", inspection_date=date(2023, 6, 15))
    db_session.add(inspection)
    db_session.commit()
    base = {
        "certificateNumber": "INS-CR-011-2023-0001",
        "equipmentId": crane.id,
        "issueDate": "2023-06-15",
        "issuedBy": "Safety Board",
    }

    # inspection exists but belongs to another piece of equipment
    other_equipment = dispatcher.dispatch(
        "certificates",
        "create",
        dict(base, certificateType="inspection", entityId=inspection.id),
        today=TODAY,
    )
    assert other_equipment.ok is False
    assert other_equipment.error.error_kind == "ConstraintViolation"
    assert other_equipment.error.relationship == "inspections.id"

    # no load test with that id at all
    missing = dispatcher.dispatch(
        "certificates",
        "create",
        dict(base, certificateType="load_test", entityId=inspection.id),
        today=TODAY,
    )
    assert missing.error.error_kind == "ConstraintViolation"
    assert missing.error.relationship == "load_tests.id"

    assert db_session.execute(select(Certificate)).first() is None


def _standard(dispatcher, name, authority="OSHA"):
    result = dispatcher.dispatch(
        "standards",
        "create",
        {"name": name, "description": f"{name} requirements", "authority": authority},
        today=TODAY,
    )
    assert result.ok, result.to_envelope()
    return result.value


def test_standards_assignment_and_report(dispatcher, db_session):
    b30 = _standard(dispatcher, "ASME B30.2", authority="ASME")
    osha = _standard(dispatcher, "OSHA 1910.179")

    def call(action, params=None):
        result = dispatcher.dispatch("standards", action, params or {}, today=TODAY)
        assert result.ok, result.to_envelope()
        return result.value

    assert [row["name"] for row in call("getAll")] == ["ASME B30.2", "OSHA 1910.179"]

    call("assign", {"equipmentType": "Overhead Crane", "standardId": osha["id"]})
    call("assign", {"equipmentType": "Overhead Crane", "standardId": b30["id"]})
    # assigning again changes nothing
    call("assign", {"equipmentType": "Overhead Crane", "standardId": b30["id"]})
    call("assign", {"equipmentType": "Chain Hoist", "standardId": b30["id"]})

    assert call("getAssigned", {"equipmentType": "Overhead Crane"}) == [
        {"id": b30["id"], "name": "ASME B30.2"},
        {"id": osha["id"], "name": "OSHA 1910.179"},
    ]
    assert call("getReport") == [
        {"equipment_type": "Chain Hoist", "standard_name": "ASME B30.2", "standard_id": b30["id"]},
        {"equipment_type": "Overhead Crane", "standard_name": "ASME B30.2", "standard_id": b30["id"]},
        {"equipment_type": "Overhead Crane", "standard_name": "OSHA 1910.179", "standard_id": osha["id"]},
    ]

    removed = call("unassign", {"equipmentType": "Chain Hoist", "standardId": b30["id"]})
    assert removed == {"equipmentType": "Chain Hoist", "standardId": b30["id"], "assigned": False}
    assert call("getAssigned", {"equipmentType": "Chain Hoist"}) == []

    entries = db_session.execute(
        select(AuditLogEntry).where(AuditLogEntry.entity_type == "standard").order_by(AuditLogEntry.id)
    ).scalars().all()
    assert [entry.action for entry in entries] == ["create", "create", "assign", "assign", "assign", "assign", "unassign"]
    assert entries[-1].new_values is None


def test_standard_cannot_be_removed_while_assigned(dispatcher, db_session):
    b30 = _standard(dispatcher, "ASME B30.16")
    dispatcher.dispatch(
        "standards", "assign", {"equipmentType": "Chain Hoist", "standardId": b30["id"]}, today=TODAY
    )

    refused = dispatcher.dispatch("standards", "delete", {"id": b30["id"]}, today=TODAY)
    assert refused.error.error_kind == "ConstraintViolation"
    assert refused.error.relationship == "equipment_type_compliance.standard_id"

    dispatcher.dispatch(
        "standards", "unassign", {"equipmentType": "Chain Hoist", "standardId": b30["id"]}, today=TODAY
    )
    deleted = dispatcher.dispatch("standards", "delete", {"id": b30["id"]}, today=TODAY)
    assert deleted.value == {"id": b30["id"], "deleted": True}


def test_standard_references_are_checked(dispatcher, db_session):
    _standard(dispatcher, "ANSI B30.5")

    duplicate = dispatcher.dispatch(
        "standards",
        "create",
        {"name": "ANSI B30.5", "description": "again", "authority": "ANSI"},
        today=TODAY,
    )
    assert duplicate.error.relationship == "unique"

    unknown = dispatcher.dispatch(
        "standards", "assign", {"equipmentType": "Mobile Crane", "standardId": 404}, today=TODAY
    )
    assert unknown.error.relationship == "compliance_standards.id"

    not_assigned = dispatcher.dispatch(
        "standards", "unassign", {"equipmentType": "Mobile Crane", "standardId": 1}, today=TODAY
    )
    assert not_assigned.error.relationship == "equipment_type_compliance.standard_id"

    missing_fields = dispatcher.dispatch("standards", "create", {"name": "NFPA 70"}, today=TODAY)
    assert missing_fields.error.fields == ["description", "authority"]
