"""CI/CD artifact generation from ChangeSets."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict
from ..plan.models import ChangeSet
from ..utils.errors import ConvergeError
from ..utils.logging import get_logger

logger = get_logger("report.artifact")

PLAN_FORMAT_VERSION = 1


def _write_json(path: Path, data: Dict[str, Any]) -> None:
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)
        logger.debug(f"Written {path.name}: {path}")
    except (OSError, TypeError) as e:
        raise ConvergeError(f"Failed to write {path.name}: {e}")


def plan_summary(change_set: ChangeSet) -> Dict[str, Any]:
    """High-level summary of a ChangeSet."""
    summary = change_set.summary()
    return {
        "environment": change_set.environment,
        "destroy": change_set.destroy,
        "has_changes": change_set.has_changes,
        "prior_serial": change_set.prior_serial,
        **summary,
    }


def generate_artifacts(change_set: ChangeSet, output_dir: Path) -> None:
    """
    Generate CI/CD artifacts from a ChangeSet.

    Creates the following files in output_dir:
    - plan.json: Full ChangeSet
    - summary.json: Action counts
    - metadata.json: Report metadata

    Raises:
        ConvergeError: If the directory or a file cannot be written
    """
    from .. import __version__

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConvergeError(f"Failed to create output directory: {e}")

    _write_json(output_dir / "plan.json", change_set.model_dump(mode="json"))
    _write_json(output_dir / "summary.json", plan_summary(change_set))
    _write_json(output_dir / "metadata.json", {
        "converge_version": __version__,
        "plan_format_version": PLAN_FORMAT_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "generator": "converge plan",
    })

    logger.info(f"Generated artifacts in: {output_dir}")
