"""Export project analyses as Markdown, JSON and Word reports."""

import io
from datetime import datetime
from typing import Any

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt

from .agreement import (
    NOT_RETAINED,
    RETAINED,
    DelphiAnalysis,
    FaceValidityAnalysis,
    format_fixed,
)
from .config import APP_NAME, criteria_for
from .survey import Project, ProjectType

FACE_REPORT_TITLE = "Face Validity Evaluation Report"
DELPHI_REPORT_TITLE = "Delphi Method Evaluation Report"


def format_date(timestamp: str) -> str:
    """Format an ISO timestamp for display, falling back to the raw value."""
    if not timestamp:
        return "Unknown date"
    try:
        dt = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return timestamp
    return dt.strftime("%Y-%m-%d %H:%M UTC")


def report_title(project: Project) -> str:
    if project.type == ProjectType.FACE_VALIDITY:
        return FACE_REPORT_TITLE
    return DELPHI_REPORT_TITLE


def report_filename(project: Project, extension: str) -> str:
    """Filesystem-friendly download name for a project's report."""
    safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in project.name.strip())
    return f"{safe or 'project'}_report.{extension}"


def _markdown_table(header: list[str], rows: list[list[Any]]) -> list[str]:
    lines = [
        "| " + " | ".join(header) + " |",
        "|" + "|".join("---" for _ in header) + "|",
    ]
    for row in rows:
        lines.append("| " + " | ".join(str(cell) for cell in row) + " |")
    return lines


def _expert_panel_lines(project: Project) -> list[str]:
    lines = ["## Expert Panel", ""]
    if not project.expert_responses:
        lines.append("*No expert responses yet.*")
        lines.append("")
        return lines
    for number, expert in enumerate(project.expert_responses, start=1):
        lines.append(f"**Expert {number}:** {expert.expert_name}")
        lines.append(f"- Qualification: {expert.qualification or 'N/A'}")
        lines.append(f"- Experience: {expert.years_of_experience or 'N/A'} years")
        lines.append(f"- Email: {expert.expert_email}")
        if expert.remarks:
            lines.append(f"- Remarks: {expert.remarks}")
        lines.append("")
    return lines


def _criteria_legend_lines(project: Project) -> list[str]:
    lines = ["## Criteria", ""]
    for criterion_id, text in enumerate(criteria_for(project.type.value), start=1):
        lines.append(f"- **C{criterion_id}:** {text}")
    lines.append("")
    return lines


def _face_validity_lines(project: Project, analysis: FaceValidityAnalysis) -> list[str]:
    lines = ["## Summary Statistics", ""]
    lines.extend(_markdown_table(
        ["Metric", "Value"],
        [
            ["Total Items Evaluated", analysis.item_count],
            ["Total Expert Raters", analysis.expert_count],
            ["Overall Agreement", f"{format_fixed(analysis.overall_agreement)}%"],
            ["Cohen's Kappa", f"{analysis.kappa_display} ({analysis.kappa_interpretation})"],
            ["Total YES Responses", f"{analysis.total_yes}/{analysis.total_possible}"],
            ["S-CVI/Ave", format_fixed(analysis.s_cvi_ave)],
        ],
    ))
    lines.append("")
    lines.append(
        f"*Cohen's Kappa is the average over {analysis.pair_count} expert pairs.*"
    )
    lines.append("")

    lines.extend(_expert_panel_lines(project))

    lines.append("## Detailed Item Evaluation")
    lines.append("")
    criterion_header = [f"C{c}" for c in range(1, analysis.criterion_count + 1)]
    for stats in analysis.items:
        lines.append(f"### Item {stats.item_index + 1}: {stats.item_text}")
        lines.append("")
        rows = []
        for expert, count, retained in zip(
            project.expert_responses, stats.expert_yes_counts, stats.expert_retained
        ):
            answers = [
                "Y" if expert.ratings.get(stats.item_index, c) == 1 else "N"
                for c in range(1, analysis.criterion_count + 1)
            ]
            rows.append([expert.expert_name, *answers, count, RETAINED if retained else NOT_RETAINED])
        rows.append(["Agreement %", *stats.criterion_agreement, "", ""])
        lines.extend(_markdown_table(["Expert", *criterion_header, "YES Count", "Status"], rows))
        lines.append("")
        lines.append(
            f"Item agreement: {stats.agreement_percent}% "
            f"({stats.yes_total}/{stats.possible_total} YES responses), "
            f"I-CVI {format_fixed(stats.i_cvi)}, modified kappa {format_fixed(stats.modified_kappa)}"
        )
        lines.append("")

    lines.extend(_criteria_legend_lines(project))
    lines.append(
        f"*Items with at least {analysis.retention_threshold} YES responses "
        f"(out of {analysis.criterion_count} criteria) from an expert are RETAINED by that expert.*"
    )
    lines.append("")
    return lines


def _delphi_lines(project: Project, analysis: DelphiAnalysis) -> list[str]:
    lines = ["## Summary Statistics", ""]
    summary = [
        ["Total Items Evaluated", analysis.item_count],
        ["Total Expert Raters", analysis.expert_count],
    ]
    for criterion_id, value in enumerate(analysis.s_cvi_ua, start=1):
        summary.append([f"S-CVI/UA (C{criterion_id})", format_fixed(value)])
    mean_corr = "N/A" if analysis.mean_correlation is None else format_fixed(analysis.mean_correlation, 3)
    summary.append(["Mean Pairwise Correlation", mean_corr])
    lines.extend(_markdown_table(["Metric", "Value"], summary))
    lines.append("")

    lines.extend(_expert_panel_lines(project))

    lines.append("## Detailed Item Evaluation")
    lines.append("")
    for item_index, row in enumerate(analysis.cells):
        consensus = analysis.items[item_index]
        lines.append(f"### Item {item_index + 1}: {consensus.item_text}")
        lines.append("")
        lines.extend(_markdown_table(
            ["Criterion", "1-3 %", "4-6 %", "7-9 %", "I-CVI", "Median", "SD", "CV"],
            [
                [
                    f"C{cell.criterion_id}",
                    format_fixed(cell.low_percent, 1),
                    format_fixed(cell.medium_percent, 1),
                    format_fixed(cell.high_percent, 1),
                    format_fixed(cell.i_cvi),
                    format_fixed(cell.median),
                    format_fixed(cell.sd),
                    format_fixed(cell.cv),
                ]
                for cell in row
            ],
        ))
        lines.append("")
        lines.append(
            f"Item mean {format_fixed(consensus.mean)}, SD {format_fixed(consensus.sd)}, "
            f"CV {format_fixed(consensus.cv)}: {RETAINED if consensus.retained else NOT_RETAINED}"
        )
        lines.append("")

    lines.extend(_criteria_legend_lines(project))
    lines.append(
        "*I-CVI is the share of experts rating 7-9 (Lynn 1986); "
        "S-CVI/UA is the share of items with an I-CVI of 1.00 (Polit & Beck 2006).*"
    )
    lines.append("")
    return lines


def export_to_markdown(
    project: Project, analysis: FaceValidityAnalysis | DelphiAnalysis
) -> str:
    """Export a project's analysis as a Markdown report.

    Args:
        project: Project with its responses
        analysis: Calculator output for the project

    Returns:
        Markdown-formatted string
    """
    lines = [
        f"# {report_title(project)}",
        "",
        f"**Project:** {project.name}",
        "",
    ]
    if project.description:
        lines.append(project.description)
        lines.append("")
    lines.append(f"*Exported from {APP_NAME}; project created {format_date(project.created_at)}*")
    lines.append("")
    lines.append("---")
    lines.append("")

    if isinstance(analysis, FaceValidityAnalysis):
        lines.extend(_face_validity_lines(project, analysis))
    else:
        lines.extend(_delphi_lines(project, analysis))

    return "\n".join(lines)


def export_to_json(
    project: Project, analysis: FaceValidityAnalysis | DelphiAnalysis
) -> dict[str, Any]:
    """Export a project with its analysis as a JSON-serializable dict.

    Expert emails are kept; the export is only served to the project owner.
    """
    return {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "type": project.type.value,
        "created_at": project.created_at,
        "criteria": criteria_for(project.type.value),
        "original_scale_items": [i.to_dict() for i in project.original_scale_items],
        "translated_scale_items": [i.to_dict() for i in project.translated_scale_items],
        "expert_responses": [r.to_dict() for r in project.expert_responses],
        "analysis": analysis.to_dict(),
    }


def _add_table(document: Any, header: list[str], rows: list[list[Any]]) -> None:
    table = document.add_table(rows=1, cols=len(header))
    table.style = "Table Grid"
    for cell, text in zip(table.rows[0].cells, header):
        cell.text = ""
        cell.paragraphs[0].add_run(str(text)).bold = True
    for row in rows:
        cells = table.add_row().cells
        for cell, value in zip(cells, row):
            cell.text = str(value)


def export_to_docx(
    project: Project, analysis: FaceValidityAnalysis | DelphiAnalysis
) -> bytes:
    """Build an APA-style Word report.

    Returns:
        The .docx file content
    """
    document = Document()
    style = document.styles["Normal"]
    style.font.name = "Times New Roman"
    style.font.size = Pt(12)

    title = document.add_heading(report_title(project), level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    info = document.add_paragraph()
    info.add_run("Project: ").bold = True
    info.add_run(project.name)
    dated = document.add_paragraph()
    dated.add_run("Date: ").bold = True
    dated.add_run(datetime.now().strftime("%Y-%m-%d"))

    document.add_heading("Summary Statistics", level=1)
    if isinstance(analysis, FaceValidityAnalysis):
        _add_table(document, ["Metric", "Value"], [
            ["Total Items Evaluated", analysis.item_count],
            ["Total Expert Raters", analysis.expert_count],
            ["Overall Agreement", f"{format_fixed(analysis.overall_agreement)}%"],
            ["Cohen's Kappa (κ)", f"{analysis.kappa_display} ({analysis.kappa_interpretation})"],
            ["Total YES Responses", f"{analysis.total_yes}/{analysis.total_possible}"],
            ["S-CVI/Ave", format_fixed(analysis.s_cvi_ave)],
        ])
    else:
        _add_table(document, ["Metric", "Value"], [
            ["Total Items Evaluated", analysis.item_count],
            ["Total Expert Raters", analysis.expert_count],
            *[
                [f"S-CVI/UA (C{criterion_id})", format_fixed(value)]
                for criterion_id, value in enumerate(analysis.s_cvi_ua, start=1)
            ],
        ])

    document.add_heading("Expert Panel", level=1)
    for number, expert in enumerate(project.expert_responses, start=1):
        paragraph = document.add_paragraph()
        paragraph.add_run(f"Expert {number}: ").bold = True
        paragraph.add_run(expert.expert_name)
        document.add_paragraph(f"Qualification: {expert.qualification or 'N/A'}")
        document.add_paragraph(f"Experience: {expert.years_of_experience or 'N/A'} years")
        document.add_paragraph(f"Email: {expert.expert_email}")

    document.add_heading("Detailed Item Evaluation", level=1)
    if isinstance(analysis, FaceValidityAnalysis):
        criterion_header = [f"C{c}" for c in range(1, analysis.criterion_count + 1)]
        for stats in analysis.items:
            heading = document.add_paragraph()
            heading.add_run(f"Item {stats.item_index + 1}: ").bold = True
            heading.add_run(stats.item_text)
            rows = []
            for expert, count, retained in zip(
                project.expert_responses, stats.expert_yes_counts, stats.expert_retained
            ):
                answers = [
                    "Y" if expert.ratings.get(stats.item_index, c) == 1 else "N"
                    for c in range(1, analysis.criterion_count + 1)
                ]
                rows.append([expert.expert_name, *answers, count, RETAINED if retained else NOT_RETAINED])
            _add_table(document, ["Expert", *criterion_header, "YES Count", "Status"], rows)
            document.add_paragraph(
                f"Item agreement: {stats.agreement_percent}% "
                f"({stats.yes_total}/{stats.possible_total} YES responses)"
            )
    else:
        for item_index, row in enumerate(analysis.cells):
            heading = document.add_paragraph()
            heading.add_run(f"Item {item_index + 1}: ").bold = True
            heading.add_run(analysis.items[item_index].item_text)
            _add_table(
                document,
                ["Criterion", "1-3 %", "4-6 %", "7-9 %", "I-CVI", "Median", "SD", "CV"],
                [
                    [
                        f"C{cell.criterion_id}",
                        format_fixed(cell.low_percent, 1),
                        format_fixed(cell.medium_percent, 1),
                        format_fixed(cell.high_percent, 1),
                        format_fixed(cell.i_cvi),
                        format_fixed(cell.median),
                        format_fixed(cell.sd),
                        format_fixed(cell.cv),
                    ]
                    for cell in row
                ],
            )

    document.add_heading("Criteria", level=1)
    for criterion_id, text in enumerate(criteria_for(project.type.value), start=1):
        paragraph = document.add_paragraph()
        paragraph.add_run(f"C{criterion_id}: ").bold = True
        paragraph.add_run(text)

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()
