"""agentic_pm.

Action governance for an autonomous project-management agent.

The agent proposes actions (send a stakeholder email, transition a Jira
ticket, update an artefact). This package decides, for every proposed action,
whether it executes now, waits in a timed hold queue, is escalated for human
approval, or is denied, and it keeps LLM spend under a hard ceiling.

Core subpackages
----------------

- ``agentic_pm.governance``:

  - Policy evaluation (autonomy mode x tool policy level).
  - The hold queue with race-safe approve/cancel/release.
  - Graduation tracking that shortens hold times as trust is earned.
  - The budget ledger and its degradation tiers.
  - Repository interfaces with SQL and in-memory implementations.

- ``agentic_pm.server``:

  - A FastAPI surface for reviewing held actions, graduation state and budget.

Typical workflow
----------------

Most integrations should use ``agentic_pm.governance.service.GovernanceService``:

1. Describe the tool with a ``ToolPolicy``.
2. Call ``propose`` with the autonomy mode and execution context.
3. Run ``ReleaseScheduler`` in the background so held actions execute when due.
"""
