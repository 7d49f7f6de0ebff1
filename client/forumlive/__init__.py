"""forumlive: client for a real-time discussion forum service."""
