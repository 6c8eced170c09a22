"""
Rule inference engine.

Responsibilities:
- Match published rule versions against a normalized fact map.
- Merge the actions of matched rules into one recommendation.
- Score confidence from weighted match coverage.
- Record an ordered evaluation trace and per-rule metrics.
- Serve published rules from an atomically reloaded per-domain cache.
"""
