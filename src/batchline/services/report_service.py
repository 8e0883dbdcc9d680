"""Report Service - monthly worker performance reports.

Assembles a worker's month (completed batches started in the month,
feedback given in the month, whole-history efficiency, configured standard
output) and renders it as an Excel workbook (openpyxl) or JSON.

Transaction boundary: Read-only. Efficiency is computed from history with
the pure engine and is not written back.
"""

import json
from calendar import month_name
from contextlib import nullcontext
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session

from ..models import Batch, BatchStatus, BatchWorker, WorkerEfficiency, WorkerFeedback
from ..utils.config import get_config
from ..utils.datetime_utils import as_utc, month_bounds
from .database import session_scope
from .efficiency_engine import EfficiencyResult, compute_efficiency
from .exceptions import UnsupportedReportFormat, ValidationError
from .logging_utils import get_service_logger, log_operation
from .worker_efficiency_service import gather_worker_history

logger = get_service_logger(__name__)

FORMAT_EXCEL = "excel"
FORMAT_JSON = "json"
SUPPORTED_FORMATS = (FORMAT_EXCEL, FORMAT_JSON)

HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(start_color="D9EAD3", end_color="D9EAD3", fill_type="solid")
WRAP = Alignment(wrap_text=True, vertical="top")


@dataclass
class MonthlyReport:
    """One worker's month.

    Attributes:
        worker_id: Worker reported on
        year / month: Calendar month reported on
        efficiency: Whole-history efficiency scores
        standard_output: Configured standard output per shift (0 if unset)
        batches: Completed batches started in the month, oldest first
        feedback: Feedback given in the month, newest first
    """

    worker_id: str
    year: int
    month: int
    efficiency: EfficiencyResult
    standard_output: float
    batches: List[Dict[str, Any]] = field(default_factory=list)
    feedback: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def month_label(self) -> str:
        return f"{month_name[self.month]} {self.year}"

    def to_dict(self) -> Dict[str, Any]:
        eff = self.efficiency
        return {
            "worker_id": self.worker_id,
            "year": self.year,
            "month": self.month,
            "standard_output": self.standard_output,
            "efficiency": {
                "output_efficiency": eff.output_efficiency,
                "punctuality_score": eff.punctuality_score,
                "feedback_score": eff.feedback_score,
                "composite_score": eff.composite_score,
                "efficiency_rating": eff.efficiency_rating,
                "total_batches": eff.total_batches,
                "on_time_batches": eff.on_time_batches,
                "positive_feedback_count": eff.positive_feedback_count,
                "negative_feedback_count": eff.negative_feedback_count,
            },
            "batches": self.batches,
            "feedback": self.feedback,
        }


def _validate_period(year: int, month: int) -> None:
    errors = []
    if not isinstance(month, int) or not 1 <= month <= 12:
        errors.append("month must be between 1 and 12")
    if not isinstance(year, int) or year < 1:
        errors.append("year must be a positive integer")
    if errors:
        raise ValidationError(errors)


def _batch_row(batch: Batch) -> Dict[str, Any]:
    start = as_utc(batch.start_time)
    end = as_utc(batch.end_time) if batch.end_time else None
    return {
        "batch_code": batch.batch_code,
        "product_name": batch.product_name,
        "batch_size": float(batch.batch_size),
        "start_time": start.isoformat(),
        "end_time": end.isoformat() if end else None,
        "duration_hours": round((end - start).total_seconds() / 3600, 2) if end else None,
        "supervisor_id": batch.supervisor_id,
        "status": batch.status,
    }


def _feedback_row(feedback: WorkerFeedback) -> Dict[str, Any]:
    return {
        "date": as_utc(feedback.created_at).isoformat(),
        "tag": feedback.tag,
        "batch_code": feedback.batch.batch_code if feedback.batch else None,
        "supervisor_id": feedback.supervisor_id,
        "comment": feedback.comment or "",
    }


def get_monthly_report_data(
    worker_id: str, year: int, month: int, session: Optional[Session] = None
) -> MonthlyReport:
    """
    Assemble a worker's monthly report.

    Args:
        worker_id: Worker to report on
        year: Calendar year
        month: Calendar month (1-12)
        session: Optional database session

    Raises:
        ValidationError: If worker_id, year or month is invalid
    """
    if not worker_id:
        raise ValidationError(["worker_id is required"])
    _validate_period(year, month)
    start, end = month_bounds(year, month)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        batches = (
            sess.query(Batch)
            .join(BatchWorker, BatchWorker.batch_id == Batch.id)
            .filter(
                BatchWorker.worker_id == worker_id,
                Batch.status == BatchStatus.COMPLETED.value,
                Batch.start_time >= start,
                Batch.start_time < end,
            )
            .order_by(Batch.start_time, Batch.id)
            .all()
        )
        feedback = (
            sess.query(WorkerFeedback)
            .filter(
                WorkerFeedback.worker_id == worker_id,
                WorkerFeedback.created_at >= start,
                WorkerFeedback.created_at < end,
            )
            .order_by(WorkerFeedback.created_at.desc(), WorkerFeedback.id.desc())
            .all()
        )

        history = gather_worker_history(worker_id, sess)
        efficiency = compute_efficiency(
            history, on_time_threshold=get_config().on_time_threshold
        )

        return MonthlyReport(
            worker_id=worker_id,
            year=year,
            month=month,
            efficiency=efficiency,
            standard_output=history.standard_output_per_shift,
            batches=[_batch_row(b) for b in batches],
            feedback=[_feedback_row(f) for f in feedback],
        )


def get_monthly_summary(year: int, month: int, session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """
    Summarise a month for every worker with an efficiency record or a
    batch assignment.

    Returns:
        One dict per worker (sorted by worker id) with the worker's
        efficiency rating, batch count and feedback count for the month
    """
    _validate_period(year, month)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        worker_ids = {row.worker_id for row in sess.query(WorkerEfficiency.worker_id)}
        worker_ids.update(row.worker_id for row in sess.query(BatchWorker.worker_id).distinct())

        summary = []
        for worker_id in sorted(worker_ids):
            report = get_monthly_report_data(worker_id, year, month, session=sess)
            summary.append(
                {
                    "worker_id": worker_id,
                    "efficiency_rating": report.efficiency.efficiency_rating,
                    "composite_score": report.efficiency.composite_score,
                    "batch_count": len(report.batches),
                    "feedback_count": len(report.feedback),
                }
            )
        return summary


# ============================================================================
# Rendering
# ============================================================================


def _style_header(ws) -> None:
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL


def _auto_width(ws, max_width: int = 50) -> None:
    for col in range(1, ws.max_column + 1):
        longest = 0
        for row in ws.iter_rows(min_col=col, max_col=col):
            for cell in row:
                if cell.value is not None:
                    longest = max(longest, min(len(str(cell.value)), max_width))
        ws.column_dimensions[get_column_letter(col)].width = max(longest + 2, 12)


def render_excel(report: MonthlyReport) -> bytes:
    """Render a monthly report as an .xlsx workbook (Summary, Batch Details, Feedback)."""
    eff = report.efficiency
    wb = Workbook()

    summary = wb.active
    summary.title = "Summary"
    summary.append(["Metric", "Value"])
    for metric, value in [
        ("Worker", report.worker_id),
        ("Month", report.month_label),
        ("", ""),
        ("Overall Rating", f"{eff.efficiency_rating}/5"),
        ("Composite Score", round(eff.composite_score, 1)),
        ("Output Efficiency", f"{eff.output_efficiency:.1f}%"),
        ("Punctuality Score", f"{eff.punctuality_score:.1f}%"),
        ("Feedback Score", f"{eff.feedback_score:.1f}%"),
        ("", ""),
        ("Total Batches Completed", eff.total_batches),
        ("On-Time Batches", eff.on_time_batches),
        ("Positive Feedback Count", eff.positive_feedback_count),
        ("Negative Feedback Count", eff.negative_feedback_count),
        ("Standard Output per Shift", report.standard_output),
    ]:
        summary.append([metric, value])
    _style_header(summary)
    _auto_width(summary)

    batches = wb.create_sheet("Batch Details")
    batches.append(
        [
            "Batch Code",
            "Product Name",
            "Batch Size",
            "Start Time",
            "End Time",
            "Duration (hours)",
            "Supervisor",
            "Status",
        ]
    )
    for row in report.batches:
        batches.append(
            [
                row["batch_code"],
                row["product_name"],
                row["batch_size"],
                row["start_time"],
                row["end_time"] or "",
                row["duration_hours"] if row["duration_hours"] is not None else "",
                row["supervisor_id"] or "",
                row["status"],
            ]
        )
    _style_header(batches)
    _auto_width(batches)
    batches.freeze_panes = "A2"

    feedback = wb.create_sheet("Feedback")
    feedback.append(["Date", "Tag", "Batch Code", "Supervisor", "Comments"])
    for row in report.feedback:
        feedback.append(
            [
                row["date"],
                row["tag"],
                row["batch_code"] or "",
                row["supervisor_id"] or "",
                row["comment"],
            ]
        )
    _style_header(feedback)
    _auto_width(feedback)
    for cell in feedback["E"][1:]:
        cell.alignment = WRAP

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def render_json(report: MonthlyReport) -> bytes:
    """Render a monthly report as UTF-8 JSON."""
    return json.dumps(report.to_dict(), indent=2).encode("utf-8")


def export_monthly_report(
    worker_id: str,
    year: int,
    month: int,
    fmt: str = FORMAT_EXCEL,
    session: Optional[Session] = None,
) -> bytes:
    """
    Build and render a worker's monthly report.

    Args:
        worker_id: Worker to report on
        year: Calendar year
        month: Calendar month (1-12)
        fmt: "excel" or "json"
        session: Optional database session

    Returns:
        The rendered document

    Raises:
        UnsupportedReportFormat: For any other format (including "pdf")
        ValidationError: If worker_id, year or month is invalid
    """
    fmt = (fmt or "").lower()
    if fmt not in SUPPORTED_FORMATS:
        raise UnsupportedReportFormat(fmt)

    report = get_monthly_report_data(worker_id, year, month, session=session)
    document = render_excel(report) if fmt == FORMAT_EXCEL else render_json(report)

    log_operation(
        logger,
        operation="export_monthly_report",
        outcome="success",
        worker_id=worker_id,
        period=f"{year}-{month:02d}",
        report_format=fmt,
        size_bytes=len(document),
    )
    return document
