"""PeekAI core: relay, usage, history, profiles and payments."""
