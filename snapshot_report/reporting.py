"""Reporting and rendering utilities.

Provides functions to render the HTML report and its plain-text alternative
from classified snapshots, and to write a rendered document to disk.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence
import datetime, logging
import pathlib
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_EVEN
from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
)

from .domain_types import (
    ClassifiedSnapshot,
    ReportBodies,
    ReportStatistics,
    RiskThresholds,
    RiskTier,
)
from .errors import RenderError
from .risk import summarize_by_vm
from .settings import DEFAULT_TEMPLATE_DIR

logger = logging.getLogger("snapreport.reporting")

# Size badge bands, independent of the age-based risk tier
SIZE_CRITICAL_GIB = 50
SIZE_WARNING_GIB = 10
TOP_VM_COUNT = 5

TIER_CSS = {
    RiskTier.LOW: "low",
    RiskTier.MEDIUM: "medium",
    RiskTier.HIGH: "high",
}


def display_creator(identity: str) -> str:
    """Strip the domain from UPN/email style identities (``jdoe@corp`` -> ``jdoe``)."""
    if "@" in identity:
        return identity.split("@", 1)[0]
    return identity


def size_badge(size_gib: float) -> str:
    if size_gib > SIZE_CRITICAL_GIB:
        return "size-large"
    if size_gib > SIZE_WARNING_GIB:
        return "size-medium"
    return "size-small"


def format_gib(value, rounding: str = "round") -> str:
    """Two-decimal display of a GiB value (float or Decimal)."""
    mode = ROUND_FLOOR if rounding == "floor" else ROUND_HALF_EVEN
    return str(Decimal(str(value)).quantize(Decimal("0.01"), rounding=mode))


def _environment(template_dir: pathlib.Path, autoescape: bool) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=autoescape,
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _build_context(
    classified: Sequence[ClassifiedSnapshot],
    statistics: ReportStatistics,
    source_label: str,
    thresholds: RiskThresholds,
    generated_at: datetime.datetime,
    size_rounding: str,
) -> Dict[str, object]:
    labels = thresholds.labels()
    # Display totals come from the unrounded sizes so floor mode floors the real sum
    total = sum((Decimal(str(c.record.size_gib)) for c in classified), Decimal(0))
    average = total / len(classified) if classified else Decimal(0)
    rows: List[Dict[str, object]] = []
    vm_totals: Dict[str, Decimal] = {}
    for c in classified:
        r = c.record
        vm_totals[r.vm_name] = vm_totals.get(r.vm_name, Decimal(0)) + Decimal(str(r.size_gib))
        rows.append(
            {
                "vm_name": r.vm_name,
                "snapshot_name": r.snapshot_name,
                "created": r.created_at.strftime("%Y-%m-%d %H:%M"),
                "description": r.description,
                "size": format_gib(r.size_gib, size_rounding),
                "size_badge": size_badge(r.size_gib),
                "age_days": c.age_days,
                "tier": c.risk_tier.value,
                "tier_css": TIER_CSS[c.risk_tier],
                "creator": display_creator(r.creator),
                "power_state": r.power_state.value if r.power_state else "",
            }
        )
    return {
        "source_label": source_label,
        "report_date": generated_at.strftime("%Y-%m-%d"),
        "generated_at": generated_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip(),
        "stats": statistics,
        "total_size": format_gib(total, size_rounding),
        "average_size": format_gib(average, size_rounding),
        "legend": [
            {"tier": tier.value, "css": TIER_CSS[tier], "label": labels[tier], "count": count}
            for tier, count in (
                (RiskTier.HIGH, statistics.high_risk_count),
                (RiskTier.MEDIUM, statistics.medium_risk_count),
                (RiskTier.LOW, statistics.low_risk_count),
            )
        ],
        "rows": rows,
        "top_vms": [
            {
                "vm_name": vm.vm_name,
                "snapshot_count": vm.snapshot_count,
                "size": format_gib(vm_totals[vm.vm_name], size_rounding),
                "worst_tier": vm.worst_tier.value,
            }
            for vm in summarize_by_vm(classified)[:TOP_VM_COUNT]
        ],
    }


def _render(template_name: str, context: Dict[str, object], template_dir: pathlib.Path,
            autoescape: bool) -> str:
    env = _environment(template_dir, autoescape)
    try:
        return env.get_template(template_name).render(**context)
    except TemplateError as e:
        raise RenderError(f"Failed to render {template_name}: {e}") from e


def render_reports(
    classified: Sequence[ClassifiedSnapshot],
    statistics: ReportStatistics,
    source_label: str,
    thresholds: RiskThresholds,
    generated_at: Optional[datetime.datetime] = None,
    size_rounding: str = "round",
    template_dir: pathlib.Path = DEFAULT_TEMPLATE_DIR,
) -> ReportBodies:
    """Render text and HTML bodies using the Jinja2 templates.

    Returns (text_body, html_body). Output only depends on the arguments;
    ``generated_at`` defaults to the current UTC time.
    """
    if generated_at is None:
        generated_at = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
    context = _build_context(
        classified, statistics, source_label, thresholds, generated_at, size_rounding
    )
    text = _render("report.txt.j2", context, template_dir, autoescape=False)
    html = _render("report.html.j2", context, template_dir, autoescape=True)
    logger.debug("Rendered report with %d row(s)", len(classified))
    return text, html


def render_html(
    classified: Sequence[ClassifiedSnapshot],
    statistics: ReportStatistics,
    source_label: str,
    thresholds: RiskThresholds,
    generated_at: Optional[datetime.datetime] = None,
    size_rounding: str = "round",
    template_dir: pathlib.Path = DEFAULT_TEMPLATE_DIR,
) -> str:
    return render_reports(
        classified, statistics, source_label, thresholds,
        generated_at=generated_at, size_rounding=size_rounding, template_dir=template_dir,
    )[1]


def default_report_path(directory: pathlib.Path, source_label: str,
                        when: Optional[datetime.datetime] = None) -> pathlib.Path:
    when = when or datetime.datetime.now()
    safe = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in source_label) or "report"
    return directory / f"snapshot_report_{safe}_{when.strftime('%Y%m%d_%H%M%S')}.html"


def save_report(document: str, path: pathlib.Path) -> pathlib.Path:
    """Write ``document`` to ``path`` verbatim, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(document, encoding="utf-8")
    logger.info("Report written to %s", path)
    return path
