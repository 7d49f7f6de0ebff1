"""Real-time state: push channel, event reconciliation, typing and outbox."""
