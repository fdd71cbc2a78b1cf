"""Config-driven policy agents.

Each active AgentConfig row becomes one callable agent at run time; there
is no per-agent subclass. Identity, prompt and tool name all come from
the config.
"""
