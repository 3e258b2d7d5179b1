"""
API tests for the import, job status, cancellation and template endpoints.
"""

import io
import os
import unittest
import uuid
from unittest.mock import patch

from api_fixtures import TEST_CALLER, make_session_factory, override_db

from fastapi.testclient import TestClient
from openpyxl import load_workbook
from sqlalchemy.exc import OperationalError

import app.main as main
from app.database.connection import get_db
from app.models.database_models import ImportJob, Project
from app.services.session_service import get_caller
from worker.database_models import DrawingType, HierarchyNode, ProjectStage

CSV_CONTENT = b"Element Type,Element Type Name\nET1,Beam-A\n"


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        self.session_factory = make_session_factory(self)
        main.app.dependency_overrides[get_db] = override_db(self.session_factory)
        main.app.dependency_overrides[get_caller] = lambda: TEST_CALLER
        self.addCleanup(main.app.dependency_overrides.clear)

        activity_patcher = patch.object(main, "activity_log_service")
        self.activity_log = activity_patcher.start()
        self.addCleanup(activity_patcher.stop)

        self.client = TestClient(main.app)

    def _add_job(self, project_id=7, state="pending", **fields):
        db = self.session_factory()
        try:
            job = ImportJob(
                id=uuid.uuid4(),
                project_id=project_id,
                state=state,
                batch_size=30,
                concurrent_batches=15,
                file_path="/tmp/staged.csv",
                **{"error_summary_json": {"errors": [], "warnings": []}, **fields}
            )
            db.add(job)
            db.commit()
            return job.id
        finally:
            db.close()

    def _job(self, job_id):
        db = self.session_factory()
        try:
            return db.query(ImportJob).filter(ImportJob.id == job_id).one()
        finally:
            db.close()


class TestSubmitImport(ApiTestCase):

    def setUp(self):
        super().setUp()
        enqueue_patcher = patch.object(main.job_service, "enqueue_job", return_value="rq-id")
        self.enqueue = enqueue_patcher.start()
        self.addCleanup(enqueue_patcher.stop)

    def _submit(self, project_id="7", filename="elements.csv", content=CSV_CONTENT, params=None):
        files = {"file": (filename, content, "text/csv")} if filename else None
        return self.client.post(f"/import/element_type/{project_id}", files=files, params=params or {})

    def test_submit_queues_a_pending_job(self):
        response = self._submit(params={"batch_size": "100"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "pending")
        self.assertEqual(body["batch_size"], 50)
        self.assertEqual(body["concurrent_batches"], 15)
        self.addCleanup(os.remove, body["file_path"])

        job = self._job(uuid.UUID(body["job_id"]))
        self.assertEqual(job.state, "pending")
        self.assertEqual(job.project_id, 7)
        self.assertEqual(job.created_by, "Dana Levi")
        with open(job.file_path, "rb") as f:
            self.assertEqual(f.read(), CSV_CONTENT)
        self.assertTrue(job.file_path.endswith(".csv"))

        self.enqueue.assert_called_once_with(job.id)
        entry = self.activity_log.record.call_args.args[0]
        self.assertEqual(entry.event_name, "Import")
        self.assertEqual(entry.event_context, "Element Type")
        self.assertEqual(entry.project_id, 7)
        self.assertEqual(entry.user_name, "Dana Levi")

    def test_tuning_is_clamped(self):
        response = self._submit(params={"batch_size": "0", "concurrent_batches": "99"})
        self.assertEqual(response.status_code, 200)
        self.addCleanup(os.remove, response.json()["file_path"])
        self.assertEqual(response.json()["batch_size"], 1)
        self.assertEqual(response.json()["concurrent_batches"], 20)

    def test_invalid_requests(self):
        cases = [
            self._submit(project_id="seven"),
            self._submit(filename=None),
            self._submit(filename="elements.pdf"),
            self._submit(content=b""),
            self._submit(params={"batch_size": "ten"}),
            self._submit(params={"concurrent_batches": "1.5"}),
        ]
        for response in cases:
            self.assertEqual(response.status_code, 400, msg=response.text)
        self.enqueue.assert_not_called()

    def test_oversize_file(self):
        with patch.object(main.settings, "max_file_size", 10):
            response = self._submit()
        self.assertEqual(response.status_code, 400)

    def test_queue_unavailable_fails_the_job(self):
        self.enqueue.side_effect = ConnectionError("redis down")

        response = self._submit()

        self.assertEqual(response.status_code, 503)
        db = self.session_factory()
        job = db.query(ImportJob).one()
        db.close()
        self.addCleanup(os.remove, job.file_path)
        self.assertEqual(job.state, "failed")
        self.assertIsNotNone(job.finished_at)
        self.activity_log.record.assert_not_called()

    def test_job_creation_failure_removes_staged_file(self):
        with patch.object(main.job_service, "create_import_job", side_effect=RuntimeError("db")), \
                patch.object(main.file_service, "delete_file") as delete_file:
            response = self._submit()

        self.assertEqual(response.status_code, 500)
        delete_file.assert_called_once()
        path = delete_file.call_args.args[0]
        if os.path.exists(path):
            os.remove(path)

    def test_storage_failure(self):
        with patch.object(main.file_service, "stage_import_file", side_effect=OSError("disk full")):
            response = self._submit()
        self.assertEqual(response.status_code, 500)


class TestJobStatus(ApiTestCase):

    def test_status_of_a_job(self):
        job_id = self._add_job(
            state="running", total=10, processed=4, succeeded=3, failed=1,
            error_summary_json={"errors": ["row 3: duplicate: ET1"], "warnings": ["w"]}
        )

        response = self.client.get(f"/import/jobs/{job_id}")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["job_id"], str(job_id))
        self.assertEqual(body["state"], "running")
        self.assertEqual(
            (body["total"], body["processed"], body["succeeded"], body["failed"]), (10, 4, 3, 1)
        )
        self.assertEqual(body["errors"], ["row 3: duplicate: ET1"])
        self.assertEqual(body["warnings"], ["w"])

    def test_unknown_job(self):
        self.assertEqual(self.client.get(f"/import/jobs/{uuid.uuid4()}").status_code, 404)
        self.assertEqual(self.client.get("/import/jobs/not-a-uuid").status_code, 404)

    def test_database_unavailable(self):
        error = OperationalError("SELECT", {}, Exception("could not connect"))
        with patch.object(main.job_service, "get_job", side_effect=error):
            response = self.client.get(f"/import/jobs/{uuid.uuid4()}")
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"], "database_unavailable")

    def test_project_job_list(self):
        first = self._add_job(project_id=7)
        second = self._add_job(project_id=7, state="succeeded")
        self._add_job(project_id=8)

        response = self.client.get("/projects/7/import/jobs")

        self.assertEqual(response.status_code, 200)
        self.assertEqual({item["job_id"] for item in response.json()}, {str(first), str(second)})


class TestCancelJob(ApiTestCase):

    def setUp(self):
        super().setUp()
        redis_patcher = patch.object(main.job_service, "redis_client")
        self.redis = redis_patcher.start()
        self.addCleanup(redis_patcher.stop)

    def test_pending_job_is_cancelled_outright(self):
        job_id = self._add_job(state="pending")

        response = self.client.post(f"/import/jobs/{job_id}/cancel")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"cancelled": True, "state": "cancelled"})
        self.assertEqual(self._job(job_id).state, "cancelled")
        self.redis.set.assert_not_called()

        repeated = self.client.post(f"/import/jobs/{job_id}/cancel")
        self.assertEqual(repeated.json(), {"cancelled": True, "state": "cancelled"})

    def test_running_job_gets_a_cancellation_flag(self):
        job_id = self._add_job(state="running")

        response = self.client.post(f"/import/jobs/{job_id}/cancel")

        self.assertEqual(response.json(), {"cancelled": True, "state": "running"})
        args, kwargs = self.redis.set.call_args
        self.assertEqual(args[0], f"import:cancel:{job_id}")
        self.assertIn("ex", kwargs)
        entry = self.activity_log.record.call_args.args[0]
        self.assertEqual(entry.event_name, "Cancel Import")

    def test_finished_job_is_left_alone(self):
        job_id = self._add_job(state="succeeded")

        response = self.client.post(f"/import/jobs/{job_id}/cancel")

        self.assertEqual(response.json(), {"cancelled": True, "state": "succeeded"})
        self.redis.set.assert_not_called()
        self.activity_log.record.assert_not_called()
        self.assertEqual(self._job(job_id).state, "succeeded")

    def test_cancellation_delivery_failure(self):
        job_id = self._add_job(state="running")
        self.redis.set.side_effect = ConnectionError("redis down")

        response = self.client.post(f"/import/jobs/{job_id}/cancel")

        self.assertEqual(response.status_code, 503)

    def test_unknown_job(self):
        self.assertEqual(self.client.post(f"/import/jobs/{uuid.uuid4()}/cancel").status_code, 404)


class TestTemplateExport(ApiTestCase):

    def setUp(self):
        super().setUp()
        db = self.session_factory()
        db.add_all([
            Project(project_id=7, name="Tower"),
            ProjectStage(project_id=7, name="Cast", order=1),
            DrawingType(project_id=7, drawing_type_name="Plan"),
            HierarchyNode(project_id=7, name="F1", path="T1/F1", naming_convention="T1-F1"),
        ])
        db.commit()
        db.close()

    def test_spreadsheet_template(self):
        response = self.client.get("/export/template/element_type/7")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"))
        self.assertIn("element_type_template_7.xlsx", response.headers["content-disposition"])

        workbook = load_workbook(io.BytesIO(response.content))
        labels = [cell.value for cell in workbook["Element Types"][1]]
        self.assertEqual(labels[10:], ["Cast", "Plan", "T1/F1"])

    def test_csv_template(self):
        response = self.client.get("/export/template/element_type/7", params={"format": "csv"})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/csv"))
        self.assertTrue(response.text.strip().endswith("Element Type Version,Cast,Plan,T1/F1"))

    def test_unknown_project(self):
        self.assertEqual(self.client.get("/export/template/element_type/99").status_code, 404)


class TestAuthentication(unittest.TestCase):

    def setUp(self):
        self.session_factory = make_session_factory(self)
        main.app.dependency_overrides[get_db] = override_db(self.session_factory)
        self.addCleanup(main.app.dependency_overrides.clear)
        self.client = TestClient(main.app)

    def test_missing_session(self):
        response = self.client.get(f"/import/jobs/{uuid.uuid4()}")
        self.assertEqual(response.status_code, 401)

    def test_unknown_session(self):
        response = self.client.get(f"/import/jobs/{uuid.uuid4()}", headers={"Authorization": "Bearer nope"})
        self.assertEqual(response.status_code, 401)

    def test_health_needs_no_session(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")


if __name__ == '__main__':
    unittest.main()
