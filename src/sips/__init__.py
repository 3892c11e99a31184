"""Syntax & Sips gamification engine."""
