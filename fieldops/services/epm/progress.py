"""Progress Aggregator: project-wide completion from per-stage percentages."""

from __future__ import annotations

from fieldops.models.epm_config import ApprovalStatus, ChecklistStatus
from fieldops.services.epm.contracts import ProjectProgress, StageProgress, StageView
from fieldops.services.epm.stage_manager import StageManager


def stage_status(view: StageView) -> str:
    """Display status of a stage: approval wins over completion."""
    if view.approval_status == ApprovalStatus.APPROVED.value:
        return ChecklistStatus.DONE.value
    if view.approval_status == ApprovalStatus.REJECTED.value:
        return ChecklistStatus.BLOCKED.value
    if view.completion_percentage > 0:
        return ChecklistStatus.IN_PROGRESS.value
    return ChecklistStatus.NOT_STARTED.value


def overall_percentage(percentages: list[int]) -> int:
    """Half-up mean of stage percentages, every stage weighted equally."""
    if not percentages:
        return 0
    count = len(percentages)
    return (2 * sum(percentages) + count) // (2 * count)


class ProgressAggregator:
    def __init__(self, stages: StageManager):
        self.stages = stages

    def get_project_progress(self, project_id) -> ProjectProgress:
        views = self.stages.list_stages_with_pct(project_id)
        return ProjectProgress(
            project_id=project_id,
            overall_percentage=overall_percentage([v.completion_percentage for v in views]),
            stages=[
                StageProgress(
                    stage_id=v.stage.id,
                    name=v.stage.name,
                    order=v.stage.order,
                    percentage=v.completion_percentage,
                    status=stage_status(v),
                    approval_status=v.approval_status,
                )
                for v in views
            ],
        )
