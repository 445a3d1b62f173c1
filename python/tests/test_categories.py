"""Integration tests for category routes."""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.orm import Session

from cmms.services.bootstrap import DEFAULT_CATEGORIES
from tests.factories import (
    create_test_category,
    create_test_document,
    create_test_segment,
    create_test_user,
    get_category_id,
)
from tests.helpers import auth_headers


@pytest.fixture
def headers(user_id):
    return auth_headers(user_id)


class TestListCategories:
    def test_defaults_in_sort_order(self, auth_client: TestClient, headers):
        response = auth_client.get("/api/v1/categories", headers=headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert [c["name"] for c in data] == [name for name, _, _ in DEFAULT_CATEGORIES]
        assert all(c["is_default"] for c in data)
        assert [c["sort_order"] for c in data] == sorted(c["sort_order"] for c in data)

    def test_segment_counts(self, auth_client: TestClient, db_session: Session, user_id, headers):
        bit = get_category_id(db_session, user_id, "Bit")
        document_id = create_test_document(db_session, user_id)
        create_test_segment(db_session, user_id, document_id, bit, start_offset=0)
        create_test_segment(db_session, user_id, document_id, bit, start_offset=20)

        data = auth_client.get("/api/v1/categories", headers=headers).json()["data"]

        counts = {c["name"]: c["segment_count"] for c in data}
        assert counts["Bit"] == 2
        assert counts["Sketch"] == 0

    def test_other_users_categories_hidden(self, auth_client: TestClient, db_session: Session):
        other = create_test_user(db_session)
        create_test_category(db_session, other, name="Secret Stuff")
        me = create_test_user(db_session)

        data = auth_client.get("/api/v1/categories", headers=auth_headers(me)).json()["data"]

        assert "Secret Stuff" not in [c["name"] for c in data]


class TestCreateUpdateCategory:
    def test_create_goes_last(self, auth_client: TestClient, headers):
        response = auth_client.post(
            "/api/v1/categories",
            json={"name": "  Road Stories ", "icon": "🚗"},
            headers=headers,
        )

        assert response.status_code == 201
        created = response.json()["data"]
        assert created["name"] == "Road Stories"
        assert created["is_default"] is False
        assert created["segment_count"] == 0

        listed = auth_client.get("/api/v1/categories", headers=headers).json()["data"]
        assert listed[-1]["id"] == created["id"]

    def test_duplicate_name_rejected(self, auth_client: TestClient, headers):
        response = auth_client.post("/api/v1/categories", json={"name": "Bit"}, headers=headers)

        assert response.status_code == 400
        assert response.json()["code"] == "E_NAME_TAKEN"

    def test_empty_name_rejected(self, auth_client: TestClient, headers):
        response = auth_client.post("/api/v1/categories", json={"name": ""}, headers=headers)

        assert response.status_code == 400
        assert response.json()["code"] == "E_INVALID_REQUEST"

    def test_rename(self, auth_client: TestClient, db_session: Session, user_id, headers):
        category_id = create_test_category(db_session, user_id, name="Drafts")

        response = auth_client.put(
            f"/api/v1/categories/{category_id}",
            json={"name": "Rough Drafts", "description": "unfinished"},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Rough Drafts"
        assert response.json()["data"]["description"] == "unfinished"

    def test_rename_onto_existing_name(
        self, auth_client: TestClient, db_session: Session, user_id, headers
    ):
        category_id = create_test_category(db_session, user_id, name="Drafts")

        response = auth_client.put(
            f"/api/v1/categories/{category_id}", json={"name": "Bit"}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "E_NAME_TAKEN"

    def test_foreign_category_is_not_found(
        self, auth_client: TestClient, db_session: Session, headers
    ):
        other = create_test_user(db_session)
        foreign = get_category_id(db_session, other, "Bit")

        response = auth_client.get(f"/api/v1/categories/{foreign}", headers=headers)

        assert response.status_code == 404
        assert response.json()["code"] == "E_CATEGORY_NOT_FOUND"


class TestReorderCategories:
    def test_reorder(self, auth_client: TestClient, headers):
        listed = auth_client.get("/api/v1/categories", headers=headers).json()["data"]
        reversed_ids = [c["id"] for c in reversed(listed)]

        response = auth_client.put(
            "/api/v1/categories/reorder", json={"category_ids": reversed_ids}, headers=headers
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert [c["id"] for c in data] == reversed_ids
        assert [c["sort_order"] for c in data] == [(i + 1) * 10 for i in range(len(data))]

    def test_duplicate_ids_rejected(self, auth_client: TestClient, db_session, user_id, headers):
        bit = str(get_category_id(db_session, user_id, "Bit"))

        response = auth_client.put(
            "/api/v1/categories/reorder", json={"category_ids": [bit, bit]}, headers=headers
        )

        assert response.status_code == 400

    def test_unknown_id_rejected(self, auth_client: TestClient, headers):
        response = auth_client.put(
            "/api/v1/categories/reorder", json={"category_ids": [str(uuid4())]}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "E_INVALID_REQUEST"


class TestDeleteCategory:
    def test_delete_empty(self, auth_client: TestClient, db_session: Session, user_id, headers):
        category_id = create_test_category(db_session, user_id)

        response = auth_client.delete(f"/api/v1/categories/{category_id}", headers=headers)

        assert response.status_code == 204
        assert auth_client.get(
            f"/api/v1/categories/{category_id}", headers=headers
        ).status_code == 404

    def test_non_empty_requires_migration(
        self, auth_client: TestClient, db_session: Session, user_id, headers
    ):
        category_id = create_test_category(db_session, user_id)
        document_id = create_test_document(db_session, user_id)
        create_test_segment(db_session, user_id, document_id, category_id)

        response = auth_client.delete(f"/api/v1/categories/{category_id}", headers=headers)

        assert response.status_code == 400
        assert response.json()["code"] == "E_CATEGORY_NOT_EMPTY"

    def test_migrates_segments_then_deletes(
        self, auth_client: TestClient, db_session: Session, user_id, headers
    ):
        doomed = create_test_category(db_session, user_id)
        target = get_category_id(db_session, user_id, "Premise")
        document_id = create_test_document(db_session, user_id)
        segment_id = create_test_segment(db_session, user_id, document_id, doomed)

        response = auth_client.delete(
            f"/api/v1/categories/{doomed}?migrate_to={target}", headers=headers
        )

        assert response.status_code == 204
        moved_to = db_session.execute(
            text("SELECT category_id FROM segments WHERE id = :id"), {"id": segment_id}
        ).scalar_one()
        assert moved_to == target

    def test_migrate_to_self_rejected(
        self, auth_client: TestClient, db_session: Session, user_id, headers
    ):
        category_id = create_test_category(db_session, user_id)

        response = auth_client.delete(
            f"/api/v1/categories/{category_id}?migrate_to={category_id}", headers=headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "E_INVALID_REQUEST"

    def test_migrate_to_unknown_rejected(
        self, auth_client: TestClient, db_session: Session, user_id, headers
    ):
        category_id = create_test_category(db_session, user_id)

        response = auth_client.delete(
            f"/api/v1/categories/{category_id}?migrate_to={uuid4()}", headers=headers
        )

        assert response.status_code == 400
