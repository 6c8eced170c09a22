"""
LLM refinement layer.

Responsibilities:
- Manage Groq API configuration, credentials and the retry policy.
- Sanitize user profiles and questions before they reach a prompt.
- Turn a rule-engine recommendation into a validated, sectioned roadmap.
- Answer follow-up questions about a recommendation.
- Degrade to the unmodified base recommendation when the LLM fails or is off.
"""
