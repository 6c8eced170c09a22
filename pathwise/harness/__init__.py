"""
Rule regression harness.

Responsibilities:
- Hold saved fact profiles together with the rules each should trigger.
- Run a profile through the rule engine and diff matched against expected rules.
- Keep per-profile usage counts and a history of runs.
"""
