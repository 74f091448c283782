from __future__ import annotations

import io
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook
from sqlalchemy import select
from sqlalchemy.orm import Session

from practice_forecast.api.dependencies import get_data_source
from practice_forecast.models.entities import (
    AvailabilityExceptionKind,
    Client,
    RecurrenceType,
    RecurringTask,
    Skill,
    StaffAvailabilityException,
    StaffMember,
    TaskInstance,
    TaskStatus,
)
from practice_forecast.services.matrix_export import parse_matrix_csv

MATRIX_URL = "/api/v1/matrix"
AS_OF = {"as_of": "2025-01-15"}


def _seed(db: Session) -> dict[str, str]:
    created = datetime(2024, 6, 1, tzinfo=timezone.utc)
    ann_id, bob_id = uuid.uuid4(), uuid.uuid4()
    acme_id, beta_id = uuid.uuid4(), uuid.uuid4()

    db.add_all(
        [
            Skill(name="Junior", sequence_no=1),
            Skill(name="Senior", sequence_no=2),
            StaffMember(id=ann_id, full_name="Ann Analyst", weekly_hours=Decimal("40"), assigned_skills=["Junior"]),
            StaffMember(
                id=bob_id,
                full_name="Bob Reviewer",
                weekly_hours=Decimal("20"),
                assigned_skills=["Senior", "Junior"],
            ),
        ]
    )
    db.flush()
    db.add_all(
        [
            StaffAvailabilityException(
                staff_id=ann_id,
                month_start=date(2025, 1, 1),
                kind=AvailabilityExceptionKind.LEAVE,
                hours=Decimal("24"),
            ),
            Client(id=acme_id, legal_name="Acme Ltd", expected_monthly_revenue=Decimal("1000"), staff_liaison_id=ann_id),
            Client(id=beta_id, legal_name="Beta LLC", expected_monthly_revenue=Decimal("500")),
        ]
    )
    db.flush()
    db.add_all(
        [
            RecurringTask(
                client_id=acme_id,
                name="Monthly review",
                estimated_hours=Decimal("8"),
                required_skills=["Senior"],
                due_date=date(2025, 1, 15),
                recurrence_type=RecurrenceType.MONTHLY,
                day_of_month=15,
                created_at=created,
            ),
            RecurringTask(
                client_id=beta_id,
                name="Monthly bookkeeping",
                estimated_hours=Decimal("2"),
                required_skills=["Junior"],
                due_date=date(2025, 1, 15),
                recurrence_type=RecurrenceType.MONTHLY,
                day_of_month=15,
                created_at=created,
            ),
            TaskInstance(
                client_id=acme_id,
                name="Year-end adjustments",
                estimated_hours=Decimal("4"),
                required_skills=["Junior"],
                status=TaskStatus.COMPLETED,
                due_date=date(2025, 1, 10),
            ),
            TaskInstance(
                client_id=acme_id,
                name="Payroll setup",
                estimated_hours=Decimal("6"),
                required_skills=["Junior"],
                status=TaskStatus.SCHEDULED,
                due_date=date(2025, 2, 5),
            ),
        ]
    )
    db.commit()
    return {"acme": str(acme_id), "beta": str(beta_id), "ann": str(ann_id), "bob": str(bob_id)}


@pytest.fixture()
def seeded(db_session: Session) -> dict[str, str]:
    return _seed(db_session)


def _point(payload: dict, skill: str, month: str) -> dict:
    return next(
        point
        for point in payload["matrix"]["data_points"]
        if point["skill_type"] == skill and point["month"] == month
    )


def test_virtual_matrix_from_database(client: TestClient, seeded: dict[str, str]) -> None:
    response = client.get(MATRIX_URL, params={"forecast_type": "virtual", **AS_OF})

    assert response.status_code == 200
    payload = response.json()
    assert payload["as_of"] == "2025-01"
    assert payload["validation"] == {"valid": True, "issue_count": 0, "issues": []}
    matrix = payload["matrix"]
    assert matrix["skills"] == ["Junior", "Senior"]
    assert len(matrix["months"]) == 12
    assert len(matrix["data_points"]) == 24
    assert matrix["total_demand"] == pytest.approx(120)
    junior_jan = _point(payload, "Junior", "2025-01")
    assert junior_jan["demand_hours"] == 2
    assert junior_jan["capacity_hours"] == pytest.approx(230)
    assert _point(payload, "Senior", "2025-01")["capacity_hours"] == pytest.approx(46)


def test_actual_matrix_uses_instances_and_leave(client: TestClient, seeded: dict[str, str]) -> None:
    payload = client.get(MATRIX_URL, params={"forecast_type": "actual", **AS_OF}).json()

    assert _point(payload, "Junior", "2025-01")["demand_hours"] == 4
    assert _point(payload, "Junior", "2025-02")["demand_hours"] == 6
    assert _point(payload, "Junior", "2025-01")["capacity_hours"] == pytest.approx(206)
    assert payload["matrix"]["total_demand"] == pytest.approx(10)


def test_leave_dated_mid_month_in_last_horizon_month_reduces_capacity(
    client: TestClient,
    db_session: Session,
    seeded: dict[str, str],
) -> None:
    db_session.add(
        StaffAvailabilityException(
            staff_id=uuid.UUID(seeded["ann"]),
            month_start=date(2025, 12, 15),
            kind=AvailabilityExceptionKind.LEAVE,
            hours=Decimal("24"),
        )
    )
    db_session.commit()

    actual = client.get(MATRIX_URL, params={"forecast_type": "actual", **AS_OF}).json()
    virtual = client.get(MATRIX_URL, params={"forecast_type": "virtual", **AS_OF}).json()

    assert _point(actual, "Junior", "2025-12")["capacity_hours"] == pytest.approx(206)
    assert _point(virtual, "Junior", "2025-12")["capacity_hours"] == pytest.approx(230)


def test_inverted_month_range_yields_an_empty_view(client: TestClient, seeded: dict[str, str]) -> None:
    response = client.get(MATRIX_URL, params={"month_start": 3, "month_end": 1, **AS_OF})

    assert response.status_code == 200
    matrix = response.json()["matrix"]
    assert matrix["months"] == []
    assert matrix["data_points"] == []
    assert matrix["total_demand"] == 0


def test_matrix_revenue_prices_demand_at_skill_fee_rates(
    client: TestClient,
    db_session: Session,
    seeded: dict[str, str],
) -> None:
    senior = db_session.scalars(select(Skill).where(Skill.name == "Senior")).one()
    senior.fee_rate = Decimal("120.00")
    db_session.commit()

    response = client.get(f"{MATRIX_URL}/revenue", params={"month_start": 0, "month_end": 1, **AS_OF})

    assert response.status_code == 200
    payload = response.json()
    assert payload["months"] == ["2025-01", "2025-02"]
    revenue = payload["revenue"]
    assert revenue["skills"] == [
        {"skill": "Junior", "demand_hours": 4, "fee_rate": 75.0, "suggested_revenue": 300, "uses_default_rate": True},
        {"skill": "Senior", "demand_hours": 16, "fee_rate": 120.0, "suggested_revenue": 1920, "uses_default_rate": False},
    ]
    acme, beta = revenue["clients"]
    assert (acme["client_name"], acme["expected_revenue"], acme["suggested_revenue"]) == ("Acme Ltd", 2000, 1920)
    assert (acme["expected_less_suggested"], acme["expected_hourly_rate"]) == (80, 125)
    assert (beta["client_name"], beta["expected_revenue"], beta["suggested_revenue"]) == ("Beta LLC", 1000, 300)
    assert revenue["totals"] == {"expected_revenue": 3000, "suggested_revenue": 2220, "expected_less_suggested": 780}

    inline = client.get(MATRIX_URL, params={"include_revenue": True, "skill": "Senior", **AS_OF}).json()
    assert [item["skill"] for item in inline["revenue"]["skills"]] == ["Senior"]
    assert [item["client_name"] for item in inline["revenue"]["clients"]] == ["Acme Ltd"]
    assert inline["revenue"]["totals"]["suggested_revenue"] == 96 * 120


def test_preferred_staff_filter_narrows_demand_only(
    client: TestClient,
    db_session: Session,
    seeded: dict[str, str],
) -> None:
    review = db_session.scalars(select(RecurringTask).where(RecurringTask.name == "Monthly review")).one()
    review.preferred_staff_id = uuid.UUID(seeded["bob"])
    db_session.commit()

    bob_only = client.get(MATRIX_URL, params={"preferred_staff": seeded["bob"].upper(), **AS_OF}).json()
    assert bob_only["matrix"]["total_demand"] == pytest.approx(96)
    assert _point(bob_only, "Junior", "2025-01")["demand_hours"] == 0
    assert _point(bob_only, "Junior", "2025-01")["capacity_hours"] == pytest.approx(230)
    assert bob_only["filters"]["preferred_staff_ids"] == [seeded["bob"].upper()]

    ann_only = client.get(MATRIX_URL, params={"preferred_staff": seeded["ann"], **AS_OF}).json()
    assert ann_only["matrix"]["total_demand"] == 0
    assert len(ann_only["matrix"]["data_points"]) == 24

    revenue = client.get(f"{MATRIX_URL}/revenue", params={"preferred_staff": seeded["bob"], **AS_OF}).json()
    assert [item["client_name"] for item in revenue["revenue"]["clients"]] == ["Acme Ltd"]


def test_matrix_filters_by_skill_month_and_client(client: TestClient, seeded: dict[str, str]) -> None:
    narrowed = client.get(
        MATRIX_URL,
        params={"skill": "Senior", "month_start": 0, "month_end": 1, **AS_OF},
    ).json()
    assert narrowed["matrix"]["skills"] == ["Senior"]
    assert [month["key"] for month in narrowed["matrix"]["months"]] == ["2025-01", "2025-02"]
    assert narrowed["matrix"]["total_demand"] == pytest.approx(16)
    assert narrowed["filters"]["skills"] == ["Senior"]

    beta_only = client.get(MATRIX_URL, params={"client_id": seeded["beta"], **AS_OF}).json()
    assert beta_only["matrix"]["total_demand"] == pytest.approx(24)
    assert beta_only["filters"]["client_ids"] == [seeded["beta"]]
    assert beta_only["validation"]["valid"] is True

    nothing = client.get(MATRIX_URL, params={"no_skills": True, **AS_OF}).json()
    assert nothing["matrix"]["skills"] == []
    assert nothing["matrix"]["data_points"] == []
    assert len(nothing["matrix"]["months"]) == 12


def test_matrix_with_analytics_and_print_layout(client: TestClient, seeded: dict[str, str]) -> None:
    analytics = client.get(MATRIX_URL, params={"include_analytics": True, **AS_OF}).json()["analytics"]
    assert [summary["skill"] for summary in analytics["skill_summaries"]] == ["Junior", "Senior"]

    printed = client.get(f"{MATRIX_URL}/print", params=AS_OF)
    assert printed.status_code == 200
    table = printed.json()["table"]
    assert [row["skill"] for row in table["rows"]] == ["Junior", "Senior"]
    assert len(table["columns"]) == 12
    assert table["grand_total"]["demand_hours"] == pytest.approx(120)


def test_invalid_matrix_requests_are_rejected(client: TestClient, seeded: dict[str, str]) -> None:
    assert client.get(MATRIX_URL, params={"forecast_type": "hybrid"}).status_code == 422
    assert client.get(MATRIX_URL, params={"as_of": "not-a-date"}).status_code == 422


def test_matrix_exports(client: TestClient, seeded: dict[str, str]) -> None:
    csv_response = client.get("/api/v1/exports/matrix", params={"format": "csv", **AS_OF})
    assert csv_response.status_code == 200
    assert csv_response.headers["content-type"].startswith("text/csv")
    assert 'filename="capacity-matrix-virtual-2025-01.csv"' in csv_response.headers["content-disposition"]
    assert parse_matrix_csv(csv_response.text).total_demand == pytest.approx(120)

    xlsx_response = client.get(
        "/api/v1/exports/matrix",
        params={"format": "xlsx", "include_analytics": True, **AS_OF},
    )
    assert xlsx_response.status_code == 200
    workbook = load_workbook(io.BytesIO(xlsx_response.content))
    assert workbook.sheetnames == ["matrix", "summary", "alerts"]

    priced = client.get(
        "/api/v1/exports/matrix",
        params={"format": "xlsx", "include_revenue": True, **AS_OF},
    )
    revenue_sheet = load_workbook(io.BytesIO(priced.content))["revenue"]
    assert [row[0] for row in revenue_sheet.iter_rows(min_row=2, values_only=True)] == ["Acme Ltd", "Beta LLC", "TOTAL"]

    assert client.get("/api/v1/exports/matrix", params={"format": "xml", **AS_OF}).status_code == 422


def test_client_summary_report(client: TestClient, seeded: dict[str, str]) -> None:
    response = client.get(f"/api/v1/reports/clients/{seeded['acme']}/summary")

    assert response.status_code == 200
    payload = response.json()
    assert payload["client_name"] == "Acme Ltd"
    assert payload["total_tasks"] == 3
    assert payload["completed_tasks"] == 1
    assert payload["total_estimated_hours"] == 18
    assert payload["hours_by_skill"] == {"Junior": 10, "Senior": 8}

    ranged = client.get(
        f"/api/v1/reports/clients/{seeded['acme']}/summary",
        params={"date_from": "2025-02-01", "date_to": "2025-02-28"},
    ).json()
    assert ranged["total_tasks"] == 1

    assert client.get(f"/api/v1/reports/clients/{uuid.uuid4()}/summary").status_code == 404
    assert client.get("/api/v1/reports/clients/not-a-uuid/summary").status_code == 404


def test_staff_liaison_report(client: TestClient, seeded: dict[str, str]) -> None:
    payload = client.get("/api/v1/reports/staff-liaisons").json()

    assert [group["liaison_name"] for group in payload["liaisons"]] == ["Ann Analyst", "Unassigned"]
    assert payload["liaisons"][0]["liaison_id"] == seeded["ann"]
    assert payload["liaisons"][0]["total_tasks"] == 3
    assert payload["total_revenue"] == 1500
    assert payload["total_clients"] == 2

    inverted = client.get(
        "/api/v1/reports/staff-liaisons",
        params={"date_from": "2025-03-01", "date_to": "2025-01-01"},
    )
    assert inverted.status_code == 422


def test_cache_stats_and_manual_invalidation(client: TestClient, seeded: dict[str, str]) -> None:
    client.get(MATRIX_URL, params=AS_OF)
    client.get(MATRIX_URL, params=AS_OF)

    stats = client.get("/api/v1/cache/stats").json()
    assert stats["size"] >= 2
    assert stats["hits"] >= 1

    removed = client.post("/api/v1/cache/invalidate", json={"pattern": "^matrix:"})
    assert removed.json() == {"removed": 1}
    assert client.post("/api/v1/cache/invalidate", json={"key": "skills:active"}).json() == {"removed": 1}
    assert client.post("/api/v1/cache/invalidate", json={"key": "a", "pattern": "b"}).status_code == 422
    assert client.post("/api/v1/cache/invalidate", json={}).status_code == 422
    assert client.post("/api/v1/cache/invalidate", json={"pattern": "("}).status_code == 422


def test_change_event_invalidates_cached_reports(client: TestClient, app, seeded: dict[str, str]) -> None:
    client.get(MATRIX_URL, params=AS_OF)
    client.get(f"/api/v1/reports/clients/{seeded['acme']}/summary")
    client.get(f"/api/v1/reports/clients/{seeded['beta']}/summary")
    cache = app.state.result_cache

    response = client.post("/api/v1/events", json={"topic": "tasks.changed", "client_id": seeded["acme"]})

    assert response.status_code == 202
    assert response.json() == {"topic": "tasks.changed", "delivered": 1}
    assert cache.get_by_pattern("^matrix:") == {}
    assert cache.get_by_pattern(f"^client-detail:{seeded['acme']}:") == {}
    assert len(cache.get_by_pattern(f"^client-detail:{seeded['beta']}:")) == 1

    assert client.post("/api/v1/events", json={"topic": "unknown.topic"}).status_code == 422


def test_client_summary_cache_is_keyed_on_canonical_client_id(client: TestClient, app, seeded: dict[str, str]) -> None:
    cache = app.state.result_cache
    upper = seeded["acme"].upper()

    assert client.get(f"/api/v1/reports/clients/{upper}/summary").status_code == 200
    assert len(cache.get_by_pattern(f"^client-detail:{seeded['acme']}:")) == 1

    client.post("/api/v1/events", json={"topic": "tasks.changed", "client_id": seeded["acme"]})
    assert cache.get_by_pattern("^client-detail:") == {}

    client.get(f"/api/v1/reports/clients/{seeded['acme']}/summary")
    client.post("/api/v1/events", json={"topic": "clients.changed", "client_id": upper})
    assert cache.get_by_pattern("^client-detail:") == {}


def test_data_source_outage_maps_to_service_unavailable(client: TestClient, app, source_factory) -> None:
    outage = source_factory()
    outage.failing.update({"list_recurring_tasks", "get_client"})
    app.dependency_overrides[get_data_source] = lambda: outage

    response = client.get(MATRIX_URL, params=AS_OF)
    report = client.get("/api/v1/reports/clients/abc123/summary")

    assert response.status_code == 503
    assert response.json()["operation"] == "list_recurring_tasks"
    assert report.status_code == 503
    assert app.state.result_cache.get_by_pattern("^matrix:") == {}
