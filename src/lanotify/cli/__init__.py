"""
Operator command line interface.
"""
