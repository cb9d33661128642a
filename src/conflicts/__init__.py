"""Insight conflict resolution engine.

Detects, classifies, analyzes and reconciles disagreeing insights reported
by independent analysis subsystems about shared entities. All state changes
go through ``ConflictOrchestrator``.
"""
