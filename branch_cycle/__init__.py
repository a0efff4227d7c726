"""
branch-cycle: date-anchored promotion of base → uat → pre → pro branches.
"""

__version__ = '1.0.0'
