"""Prompt execution engine.

Components:
  1. interpolation: variable validation and ${name} substitution
  2. catalog: tool/activity/workflow descriptor resolution and call routing
  3. dispatcher: concurrent, timeout-bounded execution of one tool-call batch
  4. validation: LLM-graded quality score of a final response
  5. orchestrator: the LLM-call / tool-dispatch loop and the validation gate
"""
