"""
Services Layer

Scheduling, bracket, advancement and ranking logic that:
- Accepts domain inputs (team ids, stages, sessions)
- Returns domain outputs (match plans, ranking rows, dicts)
- Never depends on HTTP request/response objects
- Never commits; the caller owns the transaction boundary
"""
