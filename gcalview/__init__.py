"""Google Calendar viewer core for launcher-style front ends."""
