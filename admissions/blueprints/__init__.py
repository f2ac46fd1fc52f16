"""
Admissions Milestones
Blueprint registry.
"""
