from carwash.workflow.state_machine import STATUS_WORKFLOW, StatusTransition, workflow_description
from carwash.workflow.status_workflow import StatusWorkflow
from carwash.workflow.sweeper import NoShowSweeper

__all__ = [
    "StatusWorkflow",
    "StatusTransition",
    "STATUS_WORKFLOW",
    "NoShowSweeper",
    "workflow_description",
]
