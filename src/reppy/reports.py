"""
Monthly workout report: aggregation and PDF export.
"""
import io
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

from reportlab.graphics.charts.barcharts import VerticalBarChart
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .volume import format_volume

logger = logging.getLogger(__name__)

MAX_CHART_BARS = 15

PRIMARY = colors.HexColor("#f97316")
PRIMARY_LIGHT = colors.HexColor("#fdba74")
SURFACE = colors.HexColor("#f8fafc")
BORDER = colors.HexColor("#e2e8f0")
TEXT_MUTED = colors.HexColor("#64748b")


# ==================== Aggregation ====================


def _new_daily_exercise(exercise: dict) -> Dict[str, Any]:
    return {
        "name": exercise["name"],
        "type": exercise["type"],
        "sets": 0,
        "reps": 0,
        "max_weight": None,
        "distance": None,
        "duration": None,
        "plank_seconds": None,
    }


def calculate_monthly_report(workouts: List[dict]) -> Dict[str, Any]:
    """Aggregate a month of workouts (each with nested ``workout_sets``).

    Sets whose exercise is unknown count toward total sets only.
    """
    stats = {
        "workout_count": len(workouts),
        "total_reps": 0,
        "total_sets": 0,
        "max_weight": 0,
        "total_volume": 0,
        "total_distance": 0,
        "total_duration_minutes": 0,
        "total_plank_seconds": 0,
    }
    exercises: Dict[str, Dict[str, Any]] = {}
    daily: Dict[str, Dict[str, Any]] = {}

    for workout in workouts:
        for set_row in workout.get("workout_sets") or []:
            stats["total_sets"] += 1
            exercise = set_row.get("exercise")
            if not exercise:
                continue

            key = exercise["id"]
            ex = exercises.setdefault(key, {
                "name": exercise["name"], "type": exercise["type"],
                "sets": 0, "reps": 0, "max_weight": None, "volume": 0,
            })
            ex["sets"] += 1

            day = daily.setdefault(workout["date"], {"reps": 0, "sets": 0, "volume": 0, "exercises": {}})
            day["sets"] += 1
            day_ex = day["exercises"].setdefault(key, _new_daily_exercise(exercise))
            day_ex["sets"] += 1

            reps = set_row.get("reps")
            weight = set_row.get("weight")
            kind = exercise["type"]

            if kind in ("weighted", "bodyweight") and reps:
                stats["total_reps"] += reps
                ex["reps"] += reps
                day["reps"] += reps
                day_ex["reps"] += reps

            if kind == "weighted" and weight:
                stats["max_weight"] = max(stats["max_weight"], weight)
                ex["max_weight"] = weight if ex["max_weight"] is None else max(ex["max_weight"], weight)
                day_ex["max_weight"] = (
                    weight if day_ex["max_weight"] is None else max(day_ex["max_weight"], weight)
                )
                if reps:
                    volume = reps * weight
                    stats["total_volume"] += volume
                    ex["volume"] += volume
                    day["volume"] += volume

            elif kind == "cardio":
                if set_row.get("distance_km"):
                    stats["total_distance"] += set_row["distance_km"]
                    day_ex["distance"] = (day_ex["distance"] or 0) + set_row["distance_km"]
                if set_row.get("duration_minutes"):
                    stats["total_duration_minutes"] += set_row["duration_minutes"]
                    day_ex["duration"] = (day_ex["duration"] or 0) + set_row["duration_minutes"]

            elif kind == "timed" and set_row.get("plank_seconds"):
                stats["total_plank_seconds"] += set_row["plank_seconds"]
                day_ex["plank_seconds"] = (day_ex["plank_seconds"] or 0) + set_row["plank_seconds"]

    exercise_breakdown = sorted(exercises.values(), key=lambda e: e["sets"], reverse=True)
    daily_data = [
        {
            "date": day_date,
            "label": day_date,
            "reps": data["reps"],
            "sets": data["sets"],
            "volume": data["volume"],
            "exercises": sorted(data["exercises"].values(), key=lambda e: e["sets"], reverse=True),
        }
        for day_date, data in sorted(daily.items())
    ]
    return {"stats": stats, "exercise_breakdown": exercise_breakdown, "daily_data": daily_data}


# ==================== Formatting ====================


def format_duration(minutes: float) -> str:
    if minutes < 60:
        return f"{round(minutes)} min"
    hours = int(minutes // 60)
    mins = round(minutes % 60)
    return f"{hours} h" if mins == 0 else f"{hours}h {mins}min"


def format_plank_time(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    mins, secs = divmod(seconds, 60)
    return f"{mins} min" if secs == 0 else f"{mins}min {secs}s"


def _daily_exercise_detail(ex: dict) -> str:
    parts = [f"{ex['sets']} sets"]
    if ex["reps"]:
        parts.append(f"{ex['reps']} reps")
    if ex["max_weight"]:
        parts.append(f"max {ex['max_weight']:g} kg")
    if ex["distance"]:
        parts.append(f"{ex['distance']:.1f} km")
    if ex["duration"]:
        parts.append(format_duration(ex["duration"]))
    if ex["plank_seconds"]:
        parts.append(format_plank_time(ex["plank_seconds"]))
    return ", ".join(parts)


# ==================== PDF ====================


def _stat_cards(stats: dict) -> Table:
    cards = [
        ("Workouts", str(stats["workout_count"])),
        ("Total sets", str(stats["total_sets"])),
        ("Total reps", str(stats["total_reps"])),
    ]
    if stats["max_weight"]:
        cards.append(("Max weight", f"{stats['max_weight']:g} kg"))
    if stats["total_volume"]:
        cards.append(("Volume", format_volume(stats["total_volume"], include_unit=False) + " kg"))
    if stats["total_distance"]:
        cards.append(("Distance", f"{stats['total_distance']:.1f} km"))
    if stats["total_duration_minutes"]:
        cards.append(("Duration", format_duration(stats["total_duration_minutes"])))
    if stats["total_plank_seconds"]:
        cards.append(("Plank time", format_plank_time(stats["total_plank_seconds"])))

    rows = []
    for start in range(0, len(cards), 2):
        pair = cards[start:start + 2]
        row = []
        for label, value in pair:
            row.extend([label, value])
        if len(pair) == 1:
            row.extend(["", ""])
        rows.append(row)

    table = Table(rows, colWidths=[40 * mm, 40 * mm, 40 * mm, 40 * mm])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), SURFACE),
        ("BOX", (0, 0), (-1, -1), 0.5, BORDER),
        ("INNERGRID", (0, 0), (-1, -1), 0.25, BORDER),
        ("TEXTCOLOR", (0, 0), (0, -1), TEXT_MUTED),
        ("TEXTCOLOR", (2, 0), (2, -1), TEXT_MUTED),
        ("FONTNAME", (1, 0), (1, -1), "Helvetica-Bold"),
        ("FONTNAME", (3, 0), (3, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 11),
        ("TOPPADDING", (0, 0), (-1, -1), 8),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
    ]))
    return table


def _sets_per_day_chart(daily_data: List[dict]) -> Drawing:
    bars = daily_data[:MAX_CHART_BARS]
    drawing = Drawing(170 * mm, 60 * mm)
    chart = VerticalBarChart()
    chart.x = 10 * mm
    chart.y = 10 * mm
    chart.width = 155 * mm
    chart.height = 45 * mm
    chart.data = [[day["sets"] for day in bars]]
    chart.categoryAxis.categoryNames = [day["date"][5:] for day in bars]
    chart.categoryAxis.labels.fontSize = 7
    chart.valueAxis.valueMin = 0
    chart.valueAxis.valueMax = max([day["sets"] for day in bars] + [1])
    chart.bars[0].fillColor = PRIMARY
    chart.bars[0].strokeColor = PRIMARY_LIGHT
    drawing.add(chart)
    return drawing


def _exercise_table(breakdown: List[dict]) -> Table:
    rows = [["Exercise", "Sets", "Reps", "Max weight", "Volume"]]
    for ex in breakdown:
        rows.append([
            ex["name"],
            str(ex["sets"]),
            str(ex["reps"]) if ex["reps"] else "—",
            f"{ex['max_weight']:g} kg" if ex["max_weight"] else "—",
            format_volume(ex["volume"], include_unit=False),
        ])
    table = Table(rows, repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), PRIMARY),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, SURFACE]),
        ("GRID", (0, 0), (-1, -1), 0.25, BORDER),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
    ]))
    return table


def render_monthly_report_pdf(report: dict, user_name: str, month: date,
                              generated_at: Optional[datetime] = None) -> bytes:
    """Render a report from ``calculate_monthly_report`` to PDF bytes."""
    generated_at = generated_at or datetime.now()
    month_label = month.strftime("%B %Y")
    styles = getSampleStyleSheet()
    subtitle = ParagraphStyle("Subtitle", parent=styles["Heading2"], textColor=PRIMARY)
    muted = ParagraphStyle("Muted", parent=styles["Normal"], textColor=TEXT_MUTED)

    def footer(canvas, doc):
        canvas.saveState()
        canvas.setFont("Helvetica", 8)
        canvas.setFillColor(TEXT_MUTED)
        canvas.drawString(doc.leftMargin, 12 * mm,
                          f"Reppy monthly report · generated {generated_at:%Y-%m-%d %H:%M}")
        canvas.drawRightString(A4[0] - doc.rightMargin, 12 * mm, f"Page {doc.page}")
        canvas.restoreState()

    story = [
        Paragraph("<b>REPPY</b>", subtitle),
        Paragraph("Monthly Report", styles["Title"]),
        Paragraph(escape(user_name), styles["Heading3"]),
        Paragraph(month_label, subtitle),
        Spacer(1, 10 * mm),
        _stat_cards(report["stats"]),
    ]

    if report["daily_data"]:
        story += [
            PageBreak(),
            Paragraph("Sets per day", styles["Heading2"]),
            _sets_per_day_chart(report["daily_data"]),
            Spacer(1, 6 * mm),
            Paragraph("Exercise breakdown", styles["Heading2"]),
            _exercise_table(report["exercise_breakdown"]),
            Spacer(1, 6 * mm),
            Paragraph("Daily breakdown", styles["Heading2"]),
        ]
        for day in report["daily_data"]:
            story.append(Paragraph(f"<b>{day['date']}</b> · {day['sets']} sets", styles["Normal"]))
            for ex in day["exercises"]:
                story.append(Paragraph(f"{escape(ex['name'])}: {_daily_exercise_detail(ex)}", muted))
            story.append(Spacer(1, 3 * mm))
    else:
        story += [Spacer(1, 10 * mm), Paragraph("No workouts recorded this month.", muted)]

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"Reppy report {month_label}",
                            bottomMargin=20 * mm)
    doc.build(story, onFirstPage=footer, onLaterPages=footer)
    logger.debug("Rendered monthly report for %s (%s)", user_name, month_label)
    return buffer.getvalue()
