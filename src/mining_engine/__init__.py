"""Mining protocol and reward engine.

Issues and validates proof-of-work shares against a retargeted difficulty,
scores submitters for automation and caps their rewards, and drives a
reconnecting client session against a remote work-issuing service.
"""

__version__ = "0.1.0"
