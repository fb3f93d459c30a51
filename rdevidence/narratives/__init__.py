"""Narrative synthesis: job queue, cached narratives and the drain worker."""
