"""
Tools module - operational command line utilities.
"""
