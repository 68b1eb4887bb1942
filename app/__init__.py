"""PeekAI API application package."""
