# tests/domains/test_lims_n.py

"""
'lims' 도메인 (고객사, 공정, 시료, 분석, 결과, 권고, 대시보드) API 엔드포인트에 대한 통합 테스트 모듈입니다.
"""

import re

import pytest
from httpx import AsyncClient
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.domains.lims import models as lims_models
from app.domains.shared import models as shared_models
from app.domains.usr import models as usr_models

LIMS = "/api/v1/lims"


async def _create_analysis(ac: AsyncClient, sample_id: int) -> dict:
    response = await ac.post(f"{LIMS}/analyses", json={"sample_id": sample_id})
    assert response.status_code == 201, response.text
    return response.json()


async def _save_results(ac: AsyncClient, analysis_id: int, results: list) -> dict:
    response = await ac.put(f"{LIMS}/analyses/{analysis_id}/results", json={"results": results})
    assert response.status_code == 200, response.text
    return response.json()


# =============================================================================
# 1. 고객사 (Client)
# =============================================================================
@pytest.mark.asyncio
async def test_create_client_and_reject_duplicate_nip(laborant_client: AsyncClient):
    payload = {"company_name": "Chromal S.A.", "nip": "5260250274", "city": "Wroclaw"}
    response = await laborant_client.post(f"{LIMS}/clients", json=payload)

    assert response.status_code == 201
    created = response.json()
    assert created["company_name"] == "Chromal S.A."
    assert created["country"] == "Polska"
    assert created["is_active"] is True

    duplicate = await laborant_client.post(f"{LIMS}/clients", json={"company_name": "Inna firma", "nip": "5260250274"})
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_create_client_invalid_nip(laborant_client: AsyncClient):
    response = await laborant_client.post(f"{LIMS}/clients", json={"company_name": "Zla firma", "nip": "12-34"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_viewer_cannot_create_client(viewer_client: AsyncClient):
    response = await viewer_client.post(f"{LIMS}/clients", json={"company_name": "Brak uprawnien"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_read_clients_with_search(viewer_client: AsyncClient, test_company: lims_models.Client):
    response = await viewer_client.get(f"{LIMS}/clients", params={"search": "testowa"})

    assert response.status_code == 200
    page = response.json()
    assert page["pagination"]["total"] == 1
    assert page["pagination"]["total_pages"] == 1
    assert page["data"][0]["id"] == test_company.id

    response = await viewer_client.get(f"{LIMS}/clients", params={"search": "nie-istnieje"})
    assert response.json()["data"] == []


@pytest.mark.asyncio
async def test_delete_client_is_soft_and_admin_only(
    admin_client: AsyncClient,
    laborant_client: AsyncClient,
    test_company: lims_models.Client,
):
    denied = await laborant_client.delete(f"{LIMS}/clients/{test_company.id}")
    assert denied.status_code == 403

    response = await admin_client.delete(f"{LIMS}/clients/{test_company.id}")
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    # 비활성 고객사는 기본 목록에서 빠지지만 조회는 가능합니다.
    listed = await admin_client.get(f"{LIMS}/clients")
    assert listed.json()["pagination"]["total"] == 0
    detail = await admin_client.get(f"{LIMS}/clients/{test_company.id}")
    assert detail.status_code == 200


# =============================================================================
# 2. 공정 (Process) 및 파라미터
# =============================================================================
@pytest.mark.asyncio
async def test_create_process_with_parameters(admin_client: AsyncClient):
    payload = {
        "name": "Niklowanie blyszczace",
        "process_type": "NICKEL",
        "parameters": [
            {"parameter_name": "NiSO4", "unit": "g/l", "min_value": 250, "max_value": 300, "optimal_value": 280, "sort_order": 1},
            {"parameter_name": "pH", "min_value": 3.8, "max_value": 4.5, "sort_order": 2},
        ],
    }
    response = await admin_client.post(f"{LIMS}/processes", json=payload)

    assert response.status_code == 201, response.text
    created = response.json()
    assert [p["parameter_name"] for p in created["parameters"]] == ["NiSO4", "pH"]

    types = await admin_client.get(f"{LIMS}/process-types")
    assert "NICKEL" in types.json()


@pytest.mark.asyncio
async def test_create_process_rejects_inverted_band(admin_client: AsyncClient):
    payload = {
        "name": "Zly zakres",
        "process_type": "ZINC_ACID",
        "parameters": [{"parameter_name": "Zn", "min_value": 40, "max_value": 20}],
    }
    response = await admin_client.post(f"{LIMS}/processes", json=payload)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_process_write_requires_admin(laborant_client: AsyncClient):
    response = await laborant_client.post(f"{LIMS}/processes", json={"name": "Proces", "process_type": "OTHER"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_update_process_synchronizes_parameters(admin_client: AsyncClient, test_process: lims_models.Process):
    current = (await admin_client.get(f"{LIMS}/processes/{test_process.id}")).json()
    zn, naoh, _temperature = current["parameters"]

    payload = {
        "description": "Nowe zakresy",
        "parameters": [
            {**zn, "min_value": 8, "max_value": 14, "optimal_value": 11},
            {"id": naoh["id"], "parameter_name": "NaOH", "unit": "g/l", "min_value": 120, "max_value": 160},
            {"parameter_name": "Na2CO3", "unit": "g/l", "max_value": 60, "sort_order": 4},
        ],
    }
    response = await admin_client.put(f"{LIMS}/processes/{test_process.id}", json=payload)

    assert response.status_code == 200, response.text
    updated = response.json()
    assert updated["description"] == "Nowe zakresy"
    by_name = {p["parameter_name"]: p for p in updated["parameters"]}
    assert set(by_name) == {"Zn", "NaOH", "Na2CO3"}
    assert by_name["Zn"]["min_value"] == 8
    assert by_name["NaOH"]["optimal_value"] is None


@pytest.mark.asyncio
async def test_update_process_rejects_foreign_parameter(admin_client: AsyncClient, test_process: lims_models.Process):
    payload = {"parameters": [{"id": 9999, "parameter_name": "Zn"}]}
    response = await admin_client.put(f"{LIMS}/processes/{test_process.id}", json=payload)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_clone_process(admin_client: AsyncClient, test_process: lims_models.Process):
    response = await admin_client.post(f"{LIMS}/processes/{test_process.id}/clone", json={"name": "Cynkowanie alkaliczne L2"})

    assert response.status_code == 201
    clone = response.json()
    assert clone["id"] != test_process.id
    assert clone["process_type"] == "ZINC_ALKALINE"
    assert len(clone["parameters"]) == 3


# =============================================================================
# 3. 시료 (Sample)
# =============================================================================
@pytest.mark.asyncio
async def test_create_samples_assigns_sequential_codes(
    laborant_client: AsyncClient,
    test_company: lims_models.Client,
    test_process: lims_models.Process,
    test_laborant_user: usr_models.User,
):
    payload = {"client_id": test_company.id, "process_id": test_process.id, "sample_type": "RINSE"}
    first = await laborant_client.post(f"{LIMS}/samples", json=payload)
    second = await laborant_client.post(f"{LIMS}/samples", json=payload)

    assert first.status_code == 201, first.text
    first_code, second_code = first.json()["sample_code"], second.json()["sample_code"]
    assert re.fullmatch(r"PRB-\d{6}-0001", first_code)
    assert second_code == first_code[:-4] + "0002"
    assert first.json()["status"] == "REGISTERED"
    assert first.json()["collected_by"] == test_laborant_user.id
    assert first.json()["client"]["company_name"] == test_company.company_name


@pytest.mark.asyncio
async def test_create_sample_unknown_process(laborant_client: AsyncClient, test_company: lims_models.Client):
    response = await laborant_client.post(f"{LIMS}/samples", json={"client_id": test_company.id, "process_id": 999})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_sample_status_transitions(laborant_client: AsyncClient, test_sample: lims_models.Sample):
    invalid = await laborant_client.patch(f"{LIMS}/samples/{test_sample.id}/status", json={"status": "COMPLETED"})
    assert invalid.status_code == 400

    cancelled = await laborant_client.patch(f"{LIMS}/samples/{test_sample.id}/status", json={"status": "CANCELLED"})
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"

    # 종료된 시료에는 분석을 추가하거나 정보를 수정할 수 없습니다.
    analysis = await laborant_client.post(f"{LIMS}/analyses", json={"sample_id": test_sample.id})
    assert analysis.status_code == 400
    update = await laborant_client.put(f"{LIMS}/samples/{test_sample.id}", json={"description": "x"})
    assert update.status_code == 400


@pytest.mark.asyncio
async def test_read_samples_filtered_by_status(viewer_client: AsyncClient, test_sample: lims_models.Sample):
    response = await viewer_client.get(f"{LIMS}/samples", params={"status": "REGISTERED"})
    assert response.status_code == 200
    assert [s["id"] for s in response.json()["data"]] == [test_sample.id]

    response = await viewer_client.get(f"{LIMS}/samples", params={"status": "COMPLETED"})
    assert response.json()["pagination"]["total"] == 0


# =============================================================================
# 4. 분석 (Analysis) 및 결과
# =============================================================================
@pytest.mark.asyncio
async def test_save_results_snapshots_band_and_classifies(
    laborant_client: AsyncClient,
    test_sample: lims_models.Sample,
):
    analysis = await _create_analysis(laborant_client, test_sample.id)
    assert analysis["status"] == "PENDING"
    assert re.fullmatch(r"ANL-\d{6}-0001", analysis["analysis_code"])

    saved = await _save_results(laborant_client, analysis["id"], [
        {"parameter_name": "Zn", "value": 4},
        {"parameter_name": "naoh", "value": 140},
        {"parameter_name": "Temperatura", "unit": "C", "value": 24, "min_reference": 25, "max_reference": 40, "optimal_reference": 32},
        {"parameter_name": "pH", "value": 7},
    ])

    assert saved["message"] == "Saved 4 results"
    by_name = {r["parameter_name"]: r for r in saved["results"]}

    # 요청에 기준 범위가 없으면 같은 이름(대소문자 무시)의 공정 파라미터를 스냅샷으로 사용합니다.
    zn = by_name["Zn"]
    assert (zn["min_reference"], zn["max_reference"], zn["optimal_reference"], zn["unit"]) == (6, 12, 9, "g/l")
    assert zn["deviation"] == "CRITICAL_LOW"
    assert zn["deviation_percent"] == pytest.approx(-33.3333)
    assert by_name["naoh"]["deviation"] == "WITHIN_RANGE"
    assert by_name["naoh"]["deviation_percent"] == 0.0

    # 요청에 기준 범위가 있으면 그대로 사용합니다.
    temperature = by_name["Temperatura"]
    assert temperature["deviation"] == "BELOW_MIN"
    assert temperature["deviation_percent"] == pytest.approx(-6.6667)

    # 일치하는 파라미터가 없으면 기준 범위 없이 WITHIN_RANGE 입니다.
    assert by_name["pH"]["min_reference"] is None
    assert by_name["pH"]["deviation"] == "WITHIN_RANGE"

    detail = (await laborant_client.get(f"{LIMS}/analyses/{analysis['id']}")).json()
    assert detail["status"] == "IN_PROGRESS"
    assert len(detail["results"]) == 4

    sample = (await laborant_client.get(f"{LIMS}/samples/{test_sample.id}")).json()
    assert sample["status"] == "IN_PROGRESS"


@pytest.mark.asyncio
async def test_save_results_replaces_previous_results(laborant_client: AsyncClient, test_sample: lims_models.Sample):
    analysis = await _create_analysis(laborant_client, test_sample.id)
    await _save_results(laborant_client, analysis["id"], [{"parameter_name": "Zn", "value": 9}, {"parameter_name": "NaOH", "value": 150}])
    saved = await _save_results(laborant_client, analysis["id"], [{"parameter_name": "Zn", "value": 13}])

    assert saved["message"] == "Saved 1 results"
    detail = (await laborant_client.get(f"{LIMS}/analyses/{analysis['id']}")).json()
    assert [(r["parameter_name"], r["deviation"]) for r in detail["results"]] == [("Zn", "ABOVE_MAX")]


@pytest.mark.asyncio
async def test_save_results_rejects_empty_list(laborant_client: AsyncClient, test_sample: lims_models.Sample):
    analysis = await _create_analysis(laborant_client, test_sample.id)
    response = await laborant_client.put(f"{LIMS}/analyses/{analysis['id']}/results", json={"results": []})
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
async def test_save_results_rejects_non_finite_values(
    laborant_client: AsyncClient, test_sample: lims_models.Sample, literal: str
):
    analysis = await _create_analysis(laborant_client, test_sample.id)
    headers = {"Content-Type": "application/json"}

    # httpx 의 json= 인자는 NaN 을 직렬화하지 않으므로 본문을 직접 보냅니다.
    response = await laborant_client.put(
        f"{LIMS}/analyses/{analysis['id']}/results",
        content=f'{{"results": [{{"parameter_name": "Zn", "value": {literal}}}]}}',
        headers=headers,
    )
    assert response.status_code == 422

    response = await laborant_client.put(
        f"{LIMS}/analyses/{analysis['id']}/results",
        content=f'{{"results": [{{"parameter_name": "Zn", "value": 7, "max_reference": {literal}}}]}}',
        headers=headers,
    )
    assert response.status_code == 422

    saved = await _save_results(laborant_client, analysis["id"], [{"parameter_name": "Zn", "value": 7}])
    result_id = saved["results"][0]["id"]
    patched = await laborant_client.patch(
        f"{LIMS}/results/{result_id}", content=f'{{"value": {literal}}}', headers=headers
    )
    assert patched.status_code == 422


@pytest.mark.asyncio
async def test_stored_snapshot_survives_band_change(
    admin_client: AsyncClient,
    laborant_client: AsyncClient,
    test_sample: lims_models.Sample,
    test_process: lims_models.Process,
):
    analysis = await _create_analysis(laborant_client, test_sample.id)
    saved = await _save_results(laborant_client, analysis["id"], [{"parameter_name": "Zn", "value": 7}])
    result_id = saved["results"][0]["id"]

    # 공정 기준 범위를 2-5 로 변경
    current = (await admin_client.get(f"{LIMS}/processes/{test_process.id}")).json()
    parameters = [
        {**p, "min_value": 2, "max_value": 5, "optimal_value": 3} if p["parameter_name"] == "Zn" else p
        for p in current["parameters"]
    ]
    response = await admin_client.put(f"{LIMS}/processes/{test_process.id}", json={"parameters": parameters})
    assert response.status_code == 200

    detail = (await laborant_client.get(f"{LIMS}/analyses/{analysis['id']}")).json()
    stored = detail["results"][0]
    assert (stored["min_reference"], stored["max_reference"], stored["optimal_reference"]) == (6, 12, 9)
    assert stored["deviation"] == "WITHIN_RANGE"

    # 값 수정 시에도 결과 자신의 스냅샷(6-12)으로 다시 계산합니다.
    patched = await laborant_client.patch(f"{LIMS}/results/{result_id}", json={"value": 5})
    assert patched.status_code == 200
    assert patched.json()["deviation"] == "BELOW_MIN"
    assert patched.json()["max_reference"] == 12


@pytest.mark.asyncio
async def test_analysis_status_rules(laborant_client: AsyncClient, test_sample: lims_models.Sample):
    analysis = await _create_analysis(laborant_client, test_sample.id)
    url = f"{LIMS}/analyses/{analysis['id']}/status"

    assert (await laborant_client.patch(url, json={"status": "COMPLETED"})).status_code == 400

    started = await laborant_client.patch(url, json={"status": "IN_PROGRESS"})
    assert started.status_code == 200

    # 결과 없이 완료할 수 없습니다.
    assert (await laborant_client.patch(url, json={"status": "COMPLETED"})).status_code == 400

    await _save_results(laborant_client, analysis["id"], [{"parameter_name": "Zn", "value": 9}])
    # 승인은 전용 엔드포인트로만 가능합니다.
    assert (await laborant_client.patch(url, json={"status": "APPROVED"})).status_code == 400

    completed = await laborant_client.patch(url, json={"status": "COMPLETED"})
    assert completed.status_code == 200
    assert completed.json()["status"] == "COMPLETED"

    rejected = await laborant_client.patch(url, json={"status": "REJECTED", "notes": "Powtorzyc pomiar"})
    assert rejected.status_code == 200
    assert rejected.json()["notes"] == "Powtorzyc pomiar"


@pytest.mark.asyncio
async def test_approve_analysis_notifies_performer(
    admin_client: AsyncClient,
    laborant_client: AsyncClient,
    test_sample: lims_models.Sample,
    test_admin_user: usr_models.User,
    db_session: AsyncSession,
):
    analysis = await _create_analysis(laborant_client, test_sample.id)
    analysis_id = analysis["id"]

    # COMPLETED 이전에는 승인할 수 없습니다.
    assert (await admin_client.post(f"{LIMS}/analyses/{analysis_id}/approve")).status_code == 400

    await _save_results(laborant_client, analysis_id, [{"parameter_name": "Zn", "value": 9}])
    await laborant_client.patch(f"{LIMS}/analyses/{analysis_id}/status", json={"status": "COMPLETED"})

    assert (await laborant_client.post(f"{LIMS}/analyses/{analysis_id}/approve")).status_code == 403

    response = await admin_client.post(f"{LIMS}/analyses/{analysis_id}/approve")
    assert response.status_code == 200
    approved = response.json()
    assert approved["status"] == "APPROVED"
    assert approved["approved_by"] == test_admin_user.id
    assert approved["approved_at"] is not None
    assert approved["approver"]["id"] == test_admin_user.id

    # 승인된 분석은 수정할 수 없습니다.
    locked = await laborant_client.put(f"{LIMS}/analyses/{analysis_id}/results", json={"results": [{"parameter_name": "Zn", "value": 1}]})
    assert locked.status_code == 400
    assert (await laborant_client.put(f"{LIMS}/analyses/{analysis_id}", json={"notes": "x"})).status_code == 400

    notifications = (await laborant_client.get("/api/v1/shared/notifications")).json()
    assert len(notifications) == 1
    assert notifications[0]["type"] == "APPROVAL"
    assert notifications[0]["link"] == f"/analyses/{analysis_id}"

    audit = await db_session.execute(
        select(shared_models.AuditLog).where(shared_models.AuditLog.action == "APPROVE")
    )
    assert audit.scalars().one().entity_id == analysis_id


@pytest.mark.asyncio
async def test_read_analyses_list_counts(viewer_client: AsyncClient, laborant_client: AsyncClient, test_sample: lims_models.Sample):
    analysis = await _create_analysis(laborant_client, test_sample.id)
    await _save_results(laborant_client, analysis["id"], [
        {"parameter_name": "Zn", "value": 4},
        {"parameter_name": "NaOH", "value": 200},
        {"parameter_name": "Temperatura", "value": 30},
    ])

    response = await viewer_client.get(f"{LIMS}/analyses", params={"sample_id": test_sample.id})
    assert response.status_code == 200
    item = response.json()["data"][0]
    assert item["result_count"] == 3
    assert item["critical_count"] == 2
    assert item["sample"]["sample_code"] == test_sample.sample_code


# =============================================================================
# 5. 조치 권고 (Recommendation)
# =============================================================================
@pytest.mark.asyncio
async def test_recommendation_suggestions(laborant_client: AsyncClient, test_sample: lims_models.Sample):
    analysis = await _create_analysis(laborant_client, test_sample.id)
    saved = await _save_results(laborant_client, analysis["id"], [
        {"parameter_name": "Zn", "value": 4},
        {"parameter_name": "NaOH", "value": 165},
        {"parameter_name": "Temperatura", "value": 30},
    ])
    ids = {r["parameter_name"]: r["id"] for r in saved["results"]}

    response = await laborant_client.get(f"{LIMS}/analyses/{analysis['id']}/recommendation-suggestions")
    assert response.status_code == 200
    suggestions = {s["parameter_name"]: s for s in response.json()}

    assert set(suggestions) == {"Zn", "NaOH"}
    assert suggestions["Zn"]["result_id"] == ids["Zn"]
    assert suggestions["Zn"]["recommendation_type"] == "URGENT_ACTION"
    assert suggestions["Zn"]["priority"] == "CRITICAL"
    assert suggestions["NaOH"]["recommendation_type"] == "DECREASE"
    assert suggestions["NaOH"]["target_value"] == 140


@pytest.mark.asyncio
async def test_critical_recommendation_notifies_admins(
    admin_client: AsyncClient,
    laborant_client: AsyncClient,
    test_sample: lims_models.Sample,
):
    analysis = await _create_analysis(laborant_client, test_sample.id)
    payload = {
        "parameter_name": "Zn",
        "description": "Dodac tlenek cynku",
        "recommendation_type": "URGENT_ACTION",
        "priority": "CRITICAL",
        "current_value": 4,
        "target_value": 9,
    }
    response = await laborant_client.post(f"{LIMS}/analyses/{analysis['id']}/recommendations", json=payload)
    assert response.status_code == 201
    assert response.json()["created_by"] == analysis["performed_by"]

    listed = await laborant_client.get(f"{LIMS}/analyses/{analysis['id']}/recommendations")
    assert len(listed.json()) == 1

    unread = await admin_client.get("/api/v1/shared/notifications/unread-count")
    assert unread.json() == {"unread": 1}
    notifications = (await admin_client.get("/api/v1/shared/notifications")).json()
    assert notifications[0]["type"] == "CRITICAL"
    assert notifications[0]["title"] == "Critical recommendation"


# =============================================================================
# 6. 대시보드 (Dashboard)
# =============================================================================
@pytest.mark.asyncio
async def test_dashboard(laborant_client: AsyncClient, test_sample: lims_models.Sample):
    analysis = await _create_analysis(laborant_client, test_sample.id)
    await _save_results(laborant_client, analysis["id"], [{"parameter_name": "Zn", "value": 20}])

    stats = (await laborant_client.get(f"{LIMS}/dashboard/stats")).json()
    assert stats["samples_today"] == 1
    assert stats["samples_this_month"] == 1
    assert stats["analyses_by_status"]["IN_PROGRESS"] == 1
    assert stats["analyses_by_status"]["APPROVED"] == 0
    assert stats["critical_deviations"] == 1
    assert stats["active_clients"] == 1
    assert stats["active_processes"] == 1

    recent = (await laborant_client.get(f"{LIMS}/dashboard/recent-analyses")).json()
    assert [a["id"] for a in recent] == [analysis["id"]]

    alerts = (await laborant_client.get(f"{LIMS}/dashboard/critical-alerts")).json()
    assert len(alerts) == 1
    assert alerts[0]["parameter_name"] == "Zn"
    assert alerts[0]["deviation"] == "CRITICAL_HIGH"
    assert alerts[0]["client_name"] == "Galwanizernia Testowa Sp. z o.o."
