"""Agent package — wizard, session state, reconciliation and the auto-apply loop."""
from agent.controller import AutoApplyController, Outcome  # noqa: F401
from agent.session import SessionState, TaskHandle  # noqa: F401
from agent.wizard import TaskRequest, WizardSession, WizardStep  # noqa: F401
