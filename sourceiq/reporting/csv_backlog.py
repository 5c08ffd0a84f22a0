from __future__ import annotations

import csv
from io import StringIO


def build_csv(report: dict) -> str:
    roadmap = report.get("improvement_roadmap", [])
    buf = StringIO()
    writer = csv.DictWriter(buf, fieldnames=["order", "dimension", "action", "reason"])
    writer.writeheader()
    for order, item in enumerate(roadmap, start=1):
        writer.writerow(
            {
                "order": order,
                "dimension": item.get("dimension"),
                "action": item.get("action"),
                "reason": item.get("reason"),
            }
        )
    return buf.getvalue()
