"""Game engine services: expressions, scoring, validation and win conditions.

This package holds pure game logic that HTTP routes and socket handlers
import, keeping transport and persistence concerns separated from the engine.
Every function here takes a definition and a freshly built
``EvaluationContext`` and returns a result without touching its inputs.
"""
