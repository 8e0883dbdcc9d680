"""Tests for the batch service: creation, state machine, evidence and reads."""

import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from batchline.models import Batch, BatchMaterial, BatchStatus, BatchWorker
from batchline.services import batch_service, formulation_service, stock_ledger_service
from batchline.services.batch_service import PhotoFile
from batchline.services.dto import PaginationParams
from batchline.services.exceptions import (
    BatchNotFound,
    ConcurrentModification,
    FormulationVersionNotFound,
    InsufficientMaterials,
    InvalidStatusTransition,
    PermissionDenied,
    StorageFailure,
    ValidationError,
    VersionNotLocked,
)


class MemoryPhotoStorage:
    """File store double that keeps photos in a dict."""

    def __init__(self):
        self.saved = {}

    def save(self, batch_id, filename, content):
        url = f"memory://batches/{batch_id}/{filename}"
        self.saved[url] = content
        return url


class BrokenPhotoStorage:
    def save(self, batch_id, filename, content):
        raise OSError("disk full")


def _stock(material_id):
    return stock_ledger_service.get_material(material_id).current_qty


# =============================================================================
# Creation
# =============================================================================


class TestCreateBatch:
    def test_creates_planned_batch_and_reserves_materials(self, make_batch, materials, start_time):
        batch = make_batch(batch_size="20", workers=["W-1", "W-2", "W-1"], notes="First run")

        assert batch.status == BatchStatus.PLANNED.value
        assert batch.worker_ids == ["W-1", "W-2"]
        assert batch.supervisor_id == "sup-1"
        assert batch.version_id == 1
        assert batch.production_notes == "First run"
        assert batch.batch_code.startswith("LAV-")
        assert {m.material.name: m.quantity_used for m in batch.materials_used} == {
            "Glycerin": Decimal("12"),
            "Lye": Decimal("8"),
        }
        assert _stock(materials["glycerin"].id) == Decimal("88")
        assert _stock(materials["lye"].id) == Decimal("42")

    def test_traceability_payload(self, make_batch, locked_version):
        batch = make_batch(batch_size="12.5")

        payload = json.loads(batch.qr_code_data)
        assert payload == {
            "batchCode": batch.batch_code,
            "productName": "Lavender Soap",
            "formulationVersion": locked_version.version_number,
            "batchSize": 12.5,
            "startTime": "2026-03-02T08:00:00+00:00",
        }

    def test_accepts_iso_start_time(self, make_batch):
        batch = make_batch(start="2026-03-02T09:30:00+00:00")

        assert batch.start_time.replace(tzinfo=None) == datetime(2026, 3, 2, 9, 30)

    def test_insufficient_stock_changes_nothing(self, test_db, admin, manager, supervisor, start_time):
        material_a = stock_ledger_service.create_material("A", "kg", current_qty=10, actor=admin)
        version = formulation_service.create_formulation(
            "Pure A", [{"material_id": material_a.id, "percentage": "100", "unit": "kg"}], actor=manager
        )
        formulation_service.lock_version(version.id, actor=manager)

        with pytest.raises(InsufficientMaterials) as exc_info:
            batch_service.create_batch(
                "Pure A", version.id, 15, ["W-1"], "Night", start_time, actor=supervisor
            )

        [shortage] = exc_info.value.shortages
        assert (shortage.material_name, shortage.required, shortage.available) == (
            "A",
            Decimal("15.0000"),
            Decimal("10"),
        )
        assert _stock(material_a.id) == Decimal("10")
        session = test_db()
        assert session.query(Batch).count() == 0
        assert session.query(BatchMaterial).count() == 0
        assert session.query(BatchWorker).count() == 0

    def test_one_short_material_rolls_back_the_others(self, make_batch, materials):
        with pytest.raises(InsufficientMaterials) as exc_info:
            make_batch(batch_size="130")

        assert [s.material_name for s in exc_info.value.shortages] == ["Lye"]
        assert _stock(materials["glycerin"].id) == Decimal("100")
        assert _stock(materials["lye"].id) == Decimal("50")

    def test_every_short_material_reported(self, make_batch, materials):
        with pytest.raises(InsufficientMaterials) as exc_info:
            make_batch(batch_size="200")

        assert [s.material_name for s in exc_info.value.shortages] == ["Glycerin", "Lye"]
        assert [s.missing for s in exc_info.value.shortages] == [Decimal("20.0000"), Decimal("30.0000")]
        assert _stock(materials["glycerin"].id) == Decimal("100")

    def test_draft_version_rejected(self, materials, manager, supervisor, start_time):
        draft = formulation_service.create_formulation(
            "Draft Soap",
            [{"material_id": materials["lye"].id, "percentage": "100", "unit": "kg"}],
            actor=manager,
        )

        with pytest.raises(VersionNotLocked):
            batch_service.create_batch(
                "Draft Soap", draft.id, 1, ["W-1"], "Morning", start_time, actor=supervisor
            )
        assert _stock(materials["lye"].id) == Decimal("50")

    def test_unknown_version(self, test_db, supervisor, start_time):
        with pytest.raises(FormulationVersionNotFound):
            batch_service.create_batch("X", 999, 1, ["W-1"], "Morning", start_time, actor=supervisor)

    def test_validation_errors_collected(self, locked_version, supervisor):
        with pytest.raises(ValidationError) as exc_info:
            batch_service.create_batch(
                "", locked_version.id, 0, [], "", None, actor=supervisor
            )

        assert len(exc_info.value.errors) == 5

    @pytest.mark.parametrize(
        "product_name,shift,message",
        [
            (12345, "Morning", "product_name"),
            ("Lavender Soap", 2, "shift"),
            (None, None, "product_name"),
        ],
    )
    def test_non_text_name_or_shift_rejected(
        self, locked_version, materials, supervisor, start_time, test_db, product_name, shift, message
    ):
        with pytest.raises(ValidationError, match=message):
            batch_service.create_batch(
                product_name, locked_version.id, 10, ["W-1"], shift, start_time, actor=supervisor
            )

        assert _stock(materials["glycerin"].id) == Decimal("100")
        assert test_db().query(Batch).count() == 0

    def test_name_and_shift_are_trimmed(self, make_batch):
        batch = make_batch(product_name="  Lavender Soap ", shift=" Night ")

        assert batch.product_name == "Lavender Soap"
        assert batch.shift == "Night"
        assert batch.batch_code.startswith("LAV-")

    def test_worker_string_is_not_a_worker_list(self, make_batch):
        with pytest.raises(ValidationError, match="At least one worker"):
            make_batch(workers="W-1")

    def test_worker_role_may_not_create(self, make_batch, floor_worker):
        with pytest.raises(PermissionDenied):
            make_batch(actor=floor_worker)

    def test_caller_session_owns_the_transaction(self, test_db, locked_version, materials, supervisor, start_time):
        session = test_db()
        batch = batch_service.create_batch(
            "Lavender Soap", locked_version.id, 10, ["W-1"], "Morning", start_time,
            actor=supervisor, session=session,
        )
        session.rollback()

        assert session.query(Batch).filter(Batch.id == batch.id).count() == 0
        assert _stock(materials["glycerin"].id) == Decimal("100")

    def test_success_is_logged(self, make_batch, caplog):
        with caplog.at_level(logging.INFO, logger="batchline.services"):
            batch = make_batch()

        [record] = [
            r for r in caplog.records
            if getattr(r, "operation", None) == "create_batch" and r.outcome == "success"
        ]
        assert record.batch_code == batch.batch_code
        assert record.worker_count == 1

    def test_shortage_is_logged_as_warning(self, make_batch, caplog):
        with caplog.at_level(logging.INFO, logger="batchline.services"):
            with pytest.raises(InsufficientMaterials):
                make_batch(batch_size="500")

        [record] = [r for r in caplog.records if getattr(r, "outcome", None) == "insufficient_materials"]
        assert record.levelno == logging.WARNING
        assert record.shortages == ["Glycerin", "Lye"]


class TestBatchCodeCollision:
    def test_retries_with_a_fresh_code(self, make_batch, monkeypatch):
        first = make_batch()
        codes = iter([first.batch_code, "LAV-RETRY-00000001"])
        monkeypatch.setattr(
            batch_service, "generate_batch_code", lambda product_name: next(codes)
        )

        second = make_batch()

        assert second.batch_code == "LAV-RETRY-00000001"

    def test_gives_up_after_repeated_collisions(self, make_batch, monkeypatch, materials):
        first = make_batch()
        monkeypatch.setattr(
            batch_service, "generate_batch_code", lambda product_name: first.batch_code
        )

        with pytest.raises(StorageFailure):
            make_batch()
        assert _stock(materials["glycerin"].id) == Decimal("94")


class TestCodeResolution:
    def test_codes_resolve_to_their_batches(self, make_batch):
        batches = [make_batch(batch_size="1") for _ in range(40)]

        assert len({b.batch_code for b in batches}) == 40
        for batch in batches:
            assert batch_service.get_batch_by_code(batch.batch_code).id == batch.id

    def test_lookup_is_case_insensitive(self, make_batch):
        batch = make_batch()

        assert batch_service.get_batch_by_code(batch.batch_code.lower()).id == batch.id

    def test_resolve_traceability_payload(self, make_batch):
        batch = make_batch()

        resolved = batch_service.resolve_traceability_payload(batch.qr_code_data)

        assert resolved.id == batch.id
        assert resolved.formulation_version.formulation.name == "Lavender Soap"

    def test_unknown_code(self, test_db):
        with pytest.raises(BatchNotFound):
            batch_service.get_batch_by_code("NOPE-0-00000000")

    def test_unknown_id(self, test_db):
        with pytest.raises(BatchNotFound):
            batch_service.get_batch(12345)


# =============================================================================
# State machine
# =============================================================================


class TestStatusTransitions:
    def test_happy_path(self, make_batch, supervisor, start_time):
        batch = make_batch()

        batch = batch_service.update_batch_status(batch.id, "InProgress", actor=supervisor)
        assert batch.status == "InProgress"
        batch = batch_service.update_batch_status(
            batch.id, BatchStatus.QUALITY_CHECK, notes="Cured", actor=supervisor
        )
        end = start_time + timedelta(hours=6)
        batch = batch_service.update_batch_status(
            batch.id, "Completed", end_time=end, notes="Packed", actor=supervisor
        )

        assert batch.status == "Completed"
        assert batch.end_time.replace(tzinfo=None) == end.replace(tzinfo=None)
        assert batch.production_notes == "Cured\nPacked"
        assert batch.version_id == 4

    def test_planned_to_completed_rejected(self, make_batch, supervisor):
        batch = make_batch()

        with pytest.raises(InvalidStatusTransition) as exc_info:
            batch_service.update_batch_status(batch.id, "Completed", actor=supervisor)

        assert (exc_info.value.current, exc_info.value.requested) == ("Planned", "Completed")
        assert batch_service.get_batch(batch.id).status == "Planned"

    def test_same_state_rejected(self, make_batch, supervisor):
        batch = make_batch()

        with pytest.raises(InvalidStatusTransition):
            batch_service.update_batch_status(batch.id, "Planned", actor=supervisor)

    @pytest.mark.parametrize("path", [["Cancelled"], ["InProgress", "Cancelled"], ["InProgress", "QualityCheck", "Cancelled"]])
    def test_cancel_from_any_non_terminal_state(self, make_batch, supervisor, path):
        batch = make_batch()

        for status in path:
            batch = batch_service.update_batch_status(batch.id, status, actor=supervisor)

        assert batch.status == "Cancelled"

    def test_terminal_states_are_final(self, make_batch, complete_batch, supervisor):
        done = make_batch()
        complete_batch(done.id)
        cancelled = make_batch()
        batch_service.update_batch_status(cancelled.id, "Cancelled", actor=supervisor)

        for batch_id in (done.id, cancelled.id):
            for target in BatchStatus:
                with pytest.raises(InvalidStatusTransition):
                    batch_service.update_batch_status(batch_id, target, actor=supervisor)

    def test_completed_defaults_end_time_to_now(self, make_batch, complete_batch):
        batch = complete_batch(make_batch().id)

        assert batch.end_time is not None

    def test_end_time_before_start_rejected(self, make_batch, supervisor, start_time):
        batch = make_batch()
        batch_service.update_batch_status(batch.id, "InProgress", actor=supervisor)
        batch_service.update_batch_status(batch.id, "QualityCheck", actor=supervisor)

        with pytest.raises(ValidationError):
            batch_service.update_batch_status(
                batch.id, "Completed", end_time=start_time - timedelta(hours=1), actor=supervisor
            )
        assert batch_service.get_batch(batch.id).status == "QualityCheck"

    def test_unknown_status(self, make_batch, supervisor):
        batch = make_batch()

        with pytest.raises(ValidationError):
            batch_service.update_batch_status(batch.id, "Shipped", actor=supervisor)

    def test_unknown_batch(self, test_db, supervisor):
        with pytest.raises(BatchNotFound):
            batch_service.update_batch_status(999, "InProgress", actor=supervisor)

    def test_invalid_transition_is_logged(self, make_batch, supervisor, caplog):
        batch = make_batch()

        with caplog.at_level(logging.WARNING, logger="batchline.services"):
            with pytest.raises(InvalidStatusTransition):
                batch_service.update_batch_status(batch.id, "QualityCheck", actor=supervisor)

        [record] = [r for r in caplog.records if getattr(r, "outcome", None) == "invalid_transition"]
        assert record.current_status == "Planned"
        assert record.requested_status == "QualityCheck"

    def test_completion_recalculates_worker_efficiency(self, make_batch, complete_batch, start_time):
        from batchline.services import worker_efficiency_service

        batch = make_batch(workers=["W-1", "W-2"])
        complete_batch(batch.id, end_time=start_time + timedelta(hours=4))

        for worker_id in ("W-1", "W-2"):
            record = worker_efficiency_service.get_worker_efficiency(worker_id, recalculate=False)
            assert record.total_batches_completed == 1
            assert record.on_time_batches == 1
            assert record.punctuality_score == 100.0


class TestOptimisticLock:
    def test_expected_version_mismatch(self, make_batch, supervisor):
        batch = make_batch()
        batch_service.update_batch_status(batch.id, "InProgress", actor=supervisor)

        with pytest.raises(ConcurrentModification) as exc_info:
            batch_service.update_batch_status(
                batch.id, "Cancelled", expected_version=batch.version_id, actor=supervisor
            )

        assert (exc_info.value.expected, exc_info.value.actual) == (1, 2)
        assert batch_service.get_batch(batch.id).status == "InProgress"

    def test_expected_version_match(self, make_batch, supervisor):
        batch = make_batch()

        updated = batch_service.update_batch_status(
            batch.id, "InProgress", expected_version=1, actor=supervisor
        )

        assert updated.version_id == 2


# =============================================================================
# Photos and quality checks
# =============================================================================


class TestPhotos:
    def test_append(self, make_batch, floor_worker):
        batch = make_batch()
        storage = MemoryPhotoStorage()

        batch = batch_service.append_batch_photos(
            batch.id,
            "before",
            [PhotoFile("mix.jpg", b"\xff\xd8"), ("mold.PNG", b"\x89PNG")],
            notes="Setup",
            storage=storage,
            actor=floor_worker,
        )

        assert [p.url for p in batch.photos] == [
            f"memory://batches/{batch.id}/mix.jpg",
            f"memory://batches/{batch.id}/mold.PNG",
        ]
        assert {p.photo_type for p in batch.photos} == {"before"}
        assert {p.uploaded_by for p in batch.photos} == {"W-1"}
        assert len(storage.saved) == 2

    def test_type_defaults_to_general(self, make_batch, floor_worker):
        batch = batch_service.append_batch_photos(
            make_batch().id, None, [("a.gif", b"GIF")], storage=MemoryPhotoStorage(), actor=floor_worker
        )

        assert batch.photos[0].photo_type == "general"

    @pytest.mark.parametrize(
        "photo_type,files",
        [
            ("selfie", [("a.jpg", b"x")]),
            ("before", []),
            ("before", [("notes.txt", b"x")]),
            ("before", [(f"{i}.jpg", b"x") for i in range(11)]),
            ("before", [("huge.jpg", b"x" * (10 * 1024 * 1024 + 1))]),
        ],
    )
    def test_invalid_uploads(self, make_batch, floor_worker, photo_type, files):
        storage = MemoryPhotoStorage()

        with pytest.raises(ValidationError):
            batch_service.append_batch_photos(
                make_batch().id, photo_type, files, storage=storage, actor=floor_worker
            )
        assert storage.saved == {}

    def test_file_store_failure(self, make_batch, floor_worker):
        batch = make_batch()

        with pytest.raises(StorageFailure):
            batch_service.append_batch_photos(
                batch.id, "after", [("a.jpg", b"x")], storage=BrokenPhotoStorage(), actor=floor_worker
            )
        assert batch_service.get_batch(batch.id).photos == []

    def test_unknown_batch(self, test_db, floor_worker):
        with pytest.raises(BatchNotFound):
            batch_service.append_batch_photos(
                1, "after", [("a.jpg", b"x")], storage=MemoryPhotoStorage(), actor=floor_worker
            )


class TestQualityChecks:
    def test_append(self, make_batch, floor_worker):
        batch = batch_service.append_quality_check(
            make_batch().id, "pH", "pass", notes="9.5", actor=floor_worker
        )

        [check] = batch.quality_checks
        assert (check.check_type, check.result, check.inspector_id) == ("pH", "pass", "W-1")

    def test_explicit_inspector(self, make_batch, supervisor):
        batch = batch_service.append_quality_check(
            make_batch().id, "Hardness", "conditional", inspector_id="QA-7", actor=supervisor
        )

        assert batch.quality_checks[0].inspector_id == "QA-7"

    def test_invalid(self, make_batch, floor_worker):
        with pytest.raises(ValidationError) as exc_info:
            batch_service.append_quality_check(make_batch().id, " ", "maybe", actor=floor_worker)

        assert len(exc_info.value.errors) == 2


# =============================================================================
# Reads
# =============================================================================


class TestListBatches:
    def test_filters(self, make_batch, supervisor, start_time):
        first = make_batch(workers=["W-1"])
        second = make_batch(workers=["W-2"], product_name="Mint Soap", start=start_time + timedelta(days=10))
        batch_service.update_batch_status(second.id, "InProgress", actor=supervisor)

        assert batch_service.list_batches().total == 2
        assert [b.id for b in batch_service.list_batches(status="InProgress").items] == [second.id]
        assert [b.id for b in batch_service.list_batches(product_name="mint").items] == [second.id]
        assert [b.id for b in batch_service.list_batches(worker_id="W-1").items] == [first.id]
        assert batch_service.list_batches(supervisor_id="someone-else").total == 0
        in_range = batch_service.list_batches(
            start_date=start_time, end_date=start_time + timedelta(days=1)
        )
        assert [b.id for b in in_range.items] == [first.id]

    def test_pagination_newest_first(self, make_batch):
        ids = [make_batch(batch_size="1").id for _ in range(5)]

        page = batch_service.list_batches(pagination=PaginationParams(page=2, per_page=2))

        assert page.total == 5
        assert page.pages == 3
        assert [b.id for b in page.items] == [ids[2], ids[1]]

    def test_unknown_status_filter(self, test_db):
        with pytest.raises(ValidationError):
            batch_service.list_batches(status="Shipped")


class TestStatsOverview:
    def test_counts(self, make_batch, complete_batch, supervisor):
        complete_batch(make_batch(batch_size="10").id)
        complete_batch(make_batch(batch_size="20").id)
        in_progress = make_batch(batch_size="5")
        batch_service.update_batch_status(in_progress.id, "InProgress", actor=supervisor)
        make_batch(batch_size="1")

        stats = batch_service.get_batch_stats_overview()

        assert stats["total_batches"] == 4
        assert stats["completed"] == 2
        assert stats["in_progress"] == 1
        assert stats["total_output"] == Decimal("30")
        assert stats["avg_batch_size"] == Decimal("15")
        assert stats["completion_rate"] == 50.0
        assert stats["status_distribution"] == {
            "Planned": 1,
            "InProgress": 1,
            "QualityCheck": 0,
            "Completed": 2,
            "Cancelled": 0,
        }

    def test_empty(self, test_db):
        stats = batch_service.get_batch_stats_overview()

        assert stats["total_batches"] == 0
        assert stats["completion_rate"] == 0.0
        assert stats["avg_batch_size"] == Decimal("0")


class TestBatchReport:
    def test_report(self, make_batch, complete_batch, floor_worker, start_time):
        batch = make_batch(batch_size="40")
        batch_service.append_quality_check(batch.id, "pH", "pass", actor=floor_worker)
        batch_service.append_quality_check(batch.id, "Color", "fail", actor=floor_worker)
        complete_batch(batch.id, end_time=start_time + timedelta(hours=8))

        report = batch_service.get_batch_report(batch.id)

        assert report["batch_info"]["formulation_name"] == "Lavender Soap"
        assert report["batch_info"]["workers"] == ["W-1"]
        assert {m["material_name"] for m in report["materials"]} == {"Glycerin", "Lye"}
        assert report["quality"]["pass_rate"] == 50.0
        assert report["efficiency"]["production_hours"] == 8.0
        assert report["efficiency"]["output_per_hour"] == 5.0

    def test_no_quality_checks(self, make_batch):
        report = batch_service.get_batch_report(make_batch().id)

        assert report["quality"]["pass_rate"] is None
        assert report["quality"]["checks"] == []
