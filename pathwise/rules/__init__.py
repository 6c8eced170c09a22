"""
Rule store and version lifecycle.

Responsibilities:
- Hold domain-scoped rule aggregates with an append-only version history.
- Validate drafts at write time (operators, value shapes, weights).
- Publish, roll back and archive rules, notifying listeners afterwards.
- Expose published-rule views for the inference cache.
"""
