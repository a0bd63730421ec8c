"""
Command-line interface of TextVault.
"""
