"""ICS-2000 hub HTTP gateway."""
