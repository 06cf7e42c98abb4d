"""Timed wallpaper-group classification trainer."""
