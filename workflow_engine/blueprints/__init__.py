"""
Workflow Progression & Alert Engine
Blueprint registry.
"""
