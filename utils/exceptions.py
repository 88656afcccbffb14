"""
🚨 Jerarquía de excepciones del planificador de viajes
"""


class PlannerError(Exception):
    """Base exception for planner errors"""
    pass


class PlannerInvariantError(PlannerError):
    """Programming invariant violated (e.g. candidate placed in two clusters)"""
    pass
