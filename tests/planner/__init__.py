"""
Planner Test Suite.
"""
