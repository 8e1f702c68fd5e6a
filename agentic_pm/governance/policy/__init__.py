"""Policy subsystem deciding how proposed tool calls are handled.

Components
----------

- ``PolicyConfig``: hard-deny and background-deny tool names and the default
  hold duration.
- ``AUTONOMY_RULES``: the (autonomy mode x policy level) table, validated at
  import time to cover every pair.
- ``PolicyEvaluator``: evaluates a ``ToolPolicy`` under an autonomy mode and an
  ``ExecutionContext`` and returns a ``PolicyDecision``.
- ``describe_capabilities`` and ``create_tool_call_record``: helpers for
  settings screens and audit trails.
"""

from .evaluator import PolicyEvaluator, create_tool_call_record, describe_capabilities
from .models import AUTONOMY_RULES, POLICY_LEVEL_DESCRIPTIONS, PolicyConfig, PolicyDecision

__all__ = [
    "AUTONOMY_RULES",
    "POLICY_LEVEL_DESCRIPTIONS",
    "PolicyConfig",
    "PolicyDecision",
    "PolicyEvaluator",
    "create_tool_call_record",
    "describe_capabilities",
]
