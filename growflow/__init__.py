"""
GrowFlow - cultivation workflow planning backend.

Task generation, scheduling, conflict audit, policy audit and the plan
approval lifecycle live in ``growflow.workflow``.
"""

__version__ = "0.4.0"
