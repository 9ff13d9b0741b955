from flask import Blueprint, jsonify, send_file, current_app
from application import get_workspace
from application.domain import DAYS
from application.util import schedule_to_frame, transform_schedule_for_grid

from datetime import datetime
from io import BytesIO
import re

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

timetable_bp = Blueprint('timetable', __name__, url_prefix='/timetable')

FORMAT_PALETTE = ["9FC5E8", "FCE5CD", "B4A7D6", "F6B26B", "D9EAD3", "F4CCCC", "A2E4E4", "C2E7DA", "FFF2CC"]
UNASSIGNED_COLOR = "D9D9D9"

# 15-minute rows from 06:00 to 21:45
TIME_SLOTS  = [f"{h:02d}{m:02d}" for h in range(6, 22) for m in (0, 15, 30, 45)]
TIME_LABELS = [f"{h}:{m:02d}"     for h in range(6, 22) for m in (0, 15, 30, 45)]

def _timestamp():
    return datetime.now().strftime('%Y%m%d_%H%M%S')

def _sheet_title(name, used):
    title = re.sub(r'[\[\]\*\?/\\:]', ' ', name).strip()[:31] or 'Location'
    base, n = title, 2
    while title in used:
        suffix = f" ({n})"
        title = base[:31 - len(suffix)] + suffix
        n += 1
    used.add(title)
    return title

@timetable_bp.route('/export/csv', methods=['GET'])
def export_csv():
    """Download the current schedule as a flat CSV table"""
    df = schedule_to_frame(get_workspace().schedule)

    out = BytesIO()
    out.write(df.to_csv(index=False).encode('utf-8'))
    out.seek(0)
    return send_file(
        out,
        as_attachment=True,
        download_name=f"schedule_{_timestamp()}.csv",
        mimetype="text/csv"
    )

@timetable_bp.route('/export/excel', methods=['GET'])
def export_excel():
    """Download the current schedule as a weekly grid, one sheet per location"""
    workspace = get_workspace()
    if not workspace.schedule:
        return jsonify(success=False, message="The schedule is empty"), 400

    data = transform_schedule_for_grid(workspace.schedule)
    formats = sorted({cls.format for cls in workspace.schedule})
    colors = {fmt: FORMAT_PALETTE[i % len(FORMAT_PALETTE)] for i, fmt in enumerate(formats)}
    top_performers = {(cls.location, cls.day, cls.time) for cls in workspace.schedule if cls.is_top_performer}

    wb = Workbook()
    wb.remove(wb.active)
    used_titles = set()

    for location in sorted(data):
        ws = wb.create_sheet(_sheet_title(location, used_titles))
        schedule = data[location]['schedule']

        # 1) Header row: merged day names
        col = 2
        for day in DAYS:
            span = len(schedule.get(day, {}))
            if span:
                ws.merge_cells(start_row=1, start_column=col,
                               end_row=1,   end_column=col+span-1)
                hdr = ws.cell(row=1, column=col, value=day)
                hdr.alignment = Alignment(horizontal="center")
                hdr.font = Font(bold=True)
                col += span

        # 2) Teacher row
        ws.cell(row=2, column=1, value="Time")
        flat_pairs = [(d, t) for d in DAYS for t in sorted(schedule.get(d, {}))]
        for idx, (_d, teacher) in enumerate(flat_pairs):
            ws.cell(row=2, column=2+idx, value=teacher)

        # 3) Time labels in col A
        for i, lbl in enumerate(TIME_LABELS, start=3):
            ws.cell(row=i, column=1, value=lbl)

        # 4) Fill sessions using duration as slot count
        for idx, (day, teacher) in enumerate(flat_pairs):
            for s in schedule[day][teacher]:
                t0 = s["start_time"].zfill(4)
                if t0 not in TIME_SLOTS:
                    current_app.logger.warning(f"Skipped {s['name']} at {location} on {day}: {t0} is off the grid")
                    continue

                r1 = TIME_SLOTS.index(t0) + 3
                r2 = min(r1 + s["duration"] - 1, len(TIME_SLOTS) + 2)
                c  = 2 + idx

                try:
                    ws.merge_cells(start_row=r1, start_column=c,
                                   end_row=r2,   end_column=c)
                    label = s["name"]
                    if (location, day, f"{t0[:2]}:{t0[2:]}") in top_performers:
                        label += " *"
                    cell = ws.cell(row=r1, column=c, value=label)
                    color = UNASSIGNED_COLOR if teacher == 'Unassigned' else colors.get(s["name"], "FFFFFF")
                    cell.fill = PatternFill("solid", fgColor="00"+color)
                    cell.alignment = Alignment(
                        horizontal="center", vertical="center", wrap_text=True
                    )
                except ValueError:
                    current_app.logger.warning(
                        f"Skipped overlapping session for {teacher} on {day} at {t0}"
                    )

        # 5) Layout tweaks
        ws.column_dimensions["A"].width = 12
        for i in range(2, 2 + len(flat_pairs)):
            ws.column_dimensions[get_column_letter(i)].width = 16
        ws.freeze_panes = "B3"

    out = BytesIO()
    wb.save(out)
    out.seek(0)
    return send_file(
        out,
        as_attachment=True,
        download_name=f"schedule_{_timestamp()}.xlsx",
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )
