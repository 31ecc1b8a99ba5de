"""Incremental response streaming: server-side relay and client-side consumer."""
