"""Report generation - CI/CD artifacts."""

from .artifact import generate_artifacts, plan_summary

__all__ = ["generate_artifacts", "plan_summary"]
