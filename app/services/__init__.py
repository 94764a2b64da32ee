"""
Services layer - Business logic goes here.

DESIGN PRINCIPLE:
- Services contain business logic, NOT routes
- Only the enrichment orchestrator writes the ai_* attribute group
- Staff workflow and citizen feedback write their own attributes only
"""
