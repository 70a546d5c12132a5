"""Site Surgeon: autonomous triage and repair of reported website bugs.

A submitted bug report is classified by an LLM. Simple bugs are fixed by a
coding agent inside an ephemeral sandbox and published as a GitHub pull
request; everything else is routed to a human by email.
"""

__version__ = "1.0.0"
