"""Human-friendly output formatter - converts change-sets and apply results to readable text."""

import json
import os
from typing import Any, Dict, List, Optional
from ..apply.models import ApplyResult, ApplyStatus
from ..graph.references import UNKNOWN
from ..plan.models import Change, ChangeAction, ChangeSet

WIDTH = 65


def _use_ascii(ascii_mode: Optional[bool] = None) -> bool:
    """Resolve whether to use ASCII output (checked at format time)."""
    if ascii_mode is not None:
        return bool(ascii_mode)
    return os.environ.get("CONVERGE_ASCII", "").lower() in ("1", "true", "yes")


def _box(title: str, width: int = WIDTH, ascii_mode: bool = False) -> List[str]:
    """Return box-drawing header lines."""
    b = {"tl": "+", "tr": "+", "h": "-", "v": "|"} if ascii_mode else {"tl": "┌", "tr": "┐", "h": "─", "v": "│"}
    h = b["h"] * (width - 2)
    return [
        b["tl"] + h + b["tr"],
        f"{b['v']} {title:<{width - 4}} {b['v']}",
        ("+" if ascii_mode else "└") + h + ("+" if ascii_mode else "┘"),
        "",
    ]


def _section(title: str, width: int = WIDTH) -> List[str]:
    """Return section divider."""
    h = "-" * width
    return [h, title.center(width), h]


def _symbol(change: Change) -> str:
    if change.replacement:
        return "-/+"
    return {
        ChangeAction.CREATE: "+",
        ChangeAction.UPDATE: "~",
        ChangeAction.DESTROY: "-",
    }.get(change.action, " ")


def _render(value: Any) -> str:
    if value == UNKNOWN:
        return UNKNOWN
    rendered = json.dumps(value, sort_keys=True, default=str)
    if UNKNOWN in rendered:
        # Nested unknowns: show the structure but flag it.
        return f"{rendered} {UNKNOWN}"
    return rendered


def _attribute_lines(change: Change, ascii_mode: bool) -> List[str]:
    arrow = "->" if ascii_mode else "→"
    before: Dict[str, Any] = change.before or {}
    after: Dict[str, Any] = change.after or {}
    lines = []

    if change.action == ChangeAction.DESTROY:
        return lines

    for key in change.changed_attributes:
        marker = "  # forces replacement" if key in change.requires_replace else ""
        if change.action == ChangeAction.UPDATE or (change.replacement and key in before):
            lines.append(f"      {key}: {_render(before.get(key))} {arrow} {_render(after.get(key))}{marker}")
        else:
            lines.append(f"      {key}: {_render(after.get(key))}{marker}")
    return lines


def format_change(change: Change, ascii_mode: Optional[bool] = None) -> List[str]:
    """Lines for a single change."""
    ascii_mode = _use_ascii(ascii_mode)
    label = "replace" if change.replacement else str(change.action).lower()
    lines = [f"  {_symbol(change):>3} {change.address} ({change.type}) {label}"]
    if change.action == ChangeAction.DESTROY and change.identity:
        lines.append(f"      id: {change.identity}")
    lines.extend(_attribute_lines(change, ascii_mode))
    return lines


def format_change_set(change_set: ChangeSet, ascii_mode: Optional[bool] = None, show_noop: bool = False) -> str:
    """Format a ChangeSet as a readable plan.

    Replacements appear twice: once in the destroy phase, once in the apply
    phase. Removed resources that kept resources still reference are listed
    after the updates that release them. If ascii_mode is True (or
    CONVERGE_ASCII=1), use ASCII-only characters.
    """
    ascii_mode = _use_ascii(ascii_mode)
    title = "Destroy plan" if change_set.destroy else "Execution plan"
    lines = _box(f"converge {title}: {change_set.environment}", WIDTH, ascii_mode)

    summary = change_set.summary()
    if not change_set.has_changes:
        lines.append(f"No changes. {summary['no_op']} resource(s) up to date.")
        return "\n".join(lines).rstrip() + "\n"

    destroys = change_set.phase("destroy")
    if destroys:
        lines.extend(_section("DESTROY (dependents first)"))
        for change in destroys:
            lines.extend(format_change(change, ascii_mode))
        lines.append("")

    applies = [c for c in change_set.phase("apply") if show_noop or not c.is_noop]
    if applies:
        lines.extend(_section("CREATE / UPDATE (dependencies first)"))
        for change in applies:
            lines.extend(format_change(change, ascii_mode))
        lines.append("")

    cleanups = change_set.phase("cleanup")
    if cleanups:
        lines.extend(_section("DESTROY AFTER UPDATES (no longer referenced)"))
        for change in cleanups:
            lines.extend(format_change(change, ascii_mode))
        lines.append("")

    lines.append(
        f"Plan: {summary['create']} to create, {summary['update']} to update, "
        f"{summary['destroy']} to destroy ({summary['replace']} replacement"
        f"{'s' if summary['replace'] != 1 else ''})."
    )
    return "\n".join(lines).rstrip() + "\n"


def format_apply_result(result: ApplyResult, ascii_mode: Optional[bool] = None) -> str:
    """Format an ApplyResult: counts, then each failure with its cause."""
    ascii_mode = _use_ascii(ascii_mode)
    bullet = "*" if ascii_mode else "•"
    status = str(result.status)
    lines = [f"Apply {status}: {result.summary_line()}"]

    if result.failed:
        lines.append("")
        lines.append("Failures:")
        for failure in result.failed:
            lines.append(f"  {bullet} {failure.address} ({failure.action.lower()}): {failure.error}")

    if result.skipped:
        lines.append("")
        reason = "cancelled" if result.status == ApplyStatus.CANCELLED else "not started"
        lines.append(f"Skipped ({reason}):")
        for record in result.skipped:
            lines.append(f"  {bullet} {record.address} ({record.action.lower()})")

    lines.append("")
    lines.append(f"State serial: {result.serial}")
    if result.outputs:
        lines.append("")
        lines.extend(format_outputs(result.outputs).rstrip("\n").split("\n"))
    return "\n".join(lines).rstrip() + "\n"


def format_outputs(outputs: Dict[str, Dict[str, Any]]) -> str:
    """Format module outputs as module.name = value lines."""
    if not outputs:
        return "No outputs.\n"
    lines = ["Outputs:"]
    for module in sorted(outputs):
        for name in sorted(outputs[module]):
            lines.append(f"  {module}.{name} = {_render(outputs[module][name])}")
    return "\n".join(lines) + "\n"
