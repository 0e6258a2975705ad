from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from openpyxl import Workbook
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas

from .calculations import SICK_LEAVE, VACATION, WORK
from .schemas import Day, ExtraEntry, LocationStat, MonthlySummary


def summarize_month(days: Iterable[Day], year: int, month: int) -> MonthlySummary:
    summary = MonthlySummary(year=year, month=month)
    grouped: Dict[Tuple[str, float], LocationStat] = {}
    extras: List[ExtraEntry] = []

    for day in days:
        if day.date.year != year or day.date.month != month:
            continue
        summary.base_earnings += day.total_amount
        summary.fuel_bonus += day.total_bonus
        summary.hourly_bonus += day.total_hourly_bonus or 0
        summary.total_weight += day.total_weight

        if day.workshop_hours:
            summary.workshop_hours += day.workshop_hours
            summary.workshop_money += day.total_workshop
            extras.append(
                ExtraEntry(
                    date=day.date,
                    kind="WORKSHOP",
                    note="Repair / service",
                    hours=day.workshop_hours,
                    amount=day.total_workshop,
                )
            )
        if day.waiting_hours:
            summary.waiting_hours += day.waiting_hours
            summary.waiting_money += day.total_waiting
            extras.append(
                ExtraEntry(
                    date=day.date,
                    kind="WAITING",
                    note=day.waiting_note or "No description",
                    hours=day.waiting_hours,
                    amount=day.total_waiting,
                )
            )
        if day.extra_hourly_hours:
            summary.extra_hourly_hours += day.extra_hourly_hours
            summary.extra_hourly_money += day.total_extra_hourly
            extras.append(
                ExtraEntry(
                    date=day.date,
                    kind="EXTRA_HOURLY",
                    note="Hourly work",
                    hours=day.extra_hourly_hours,
                    amount=day.total_extra_hourly,
                )
            )

        if day.type == VACATION:
            summary.vacation_days += 1
        elif day.type == SICK_LEAVE:
            summary.sick_days += 1
        elif day.type == WORK:
            summary.days_worked += 1
            summary.total_trips += len(day.trips)
            for trip in day.trips:
                # Same destination at a different rate is reported separately
                key = (trip.location_name, trip.rate)
                stat = grouped.get(key)
                if stat is None:
                    stat = LocationStat(name=trip.location_name, rate=trip.rate, count=0, weight=0.0, amount=0.0)
                    grouped[key] = stat
                stat.count += 1
                stat.weight += trip.weight
                stat.amount += trip.amount

    summary.total_earnings = (
        summary.base_earnings
        + summary.fuel_bonus
        + summary.hourly_bonus
        + summary.workshop_money
        + summary.waiting_money
        + summary.extra_hourly_money
    )
    summary.locations = sorted(grouped.values(), key=lambda stat: stat.name.lower())
    summary.extras = sorted(extras, key=lambda entry: entry.date, reverse=True)
    return summary


def _money(value: float, currency: str) -> str:
    return f"{value:.2f} {currency}"


def _summary_rows(summary: MonthlySummary) -> List[Tuple[str, float]]:
    return [
        ("Base earnings", summary.base_earnings),
        ("Fuel bonus (20%)", summary.fuel_bonus),
        ("Hourly bonus", summary.hourly_bonus),
        (f"Workshop ({summary.workshop_hours:g} h)", summary.workshop_money),
        (f"Waiting ({summary.waiting_hours:g} h)", summary.waiting_money),
        (f"Hourly work ({summary.extra_hourly_hours:g} h)", summary.extra_hourly_money),
        ("TOTAL", summary.total_earnings),
    ]


def write_summary_pdf(path: Path, title: str, summary: MonthlySummary, currency: str) -> None:
    pdf = canvas.Canvas(str(path), pagesize=A4)
    width, height = A4
    y = height - 2 * cm
    pdf.setTitle(title)
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(2 * cm, y, title)
    y -= 1 * cm

    lines: List[str] = [f"{label}: {_money(value, currency)}" for label, value in _summary_rows(summary)]
    lines.append("")
    for stat in summary.locations:
        lines.append(
            f"{stat.name} | {stat.rate:g} | {stat.count}x | {stat.weight:.2f} t | {_money(stat.amount, currency)}"
        )
    if summary.extras:
        lines.append("")
        for entry in summary.extras:
            lines.append(
                f"{entry.date.isoformat()} {entry.kind} {entry.note} | {entry.hours:g} h | {_money(entry.amount, currency)}"
            )
    lines.append("")
    lines.append(f"Trips: {summary.total_trips}")
    lines.append(f"Weight: {summary.total_weight:.2f} t")

    pdf.setFont("Helvetica", 11)
    for line in lines:
        # Built-in PDF fonts cannot render every diacritic
        pdf.drawString(2 * cm, y, line.encode("latin-1", "replace").decode("latin-1"))
        y -= 0.8 * cm
        if y < 2 * cm:
            pdf.showPage()
            y = height - 2 * cm
            pdf.setFont("Helvetica", 11)
    pdf.save()


def write_summary_xlsx(path: Path, summary: MonthlySummary, currency: str) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Summary"
    ws.append(["Item", f"Amount ({currency})"])
    for label, value in _summary_rows(summary):
        ws.append([label, round(value, 2)])
    ws.append([])
    ws.append(["Trips", summary.total_trips])
    ws.append(["Weight (t)", round(summary.total_weight, 2)])
    ws.append(["Days worked", summary.days_worked])

    locations = wb.create_sheet("Locations")
    locations.append(["Location", "Rate", "Trips", "Weight (t)", f"Amount ({currency})"])
    for stat in summary.locations:
        locations.append([stat.name, stat.rate, stat.count, round(stat.weight, 2), round(stat.amount, 2)])

    extras = wb.create_sheet("Extras")
    extras.append(["Date", "Kind", "Note", "Hours", f"Amount ({currency})"])
    for entry in summary.extras:
        extras.append([entry.date.isoformat(), entry.kind, entry.note, entry.hours, round(entry.amount, 2)])
    wb.save(path)
