"""Guardrails applied around every outbound LLM call.

  redactor         strips personal data from user-supplied prompt text
  budget           per-run token budget (fail-closed)
  circuit_breaker  failure-rate breaker shared by all runs in the process
"""
