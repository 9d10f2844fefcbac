"""Huddle realtime chat building blocks."""
