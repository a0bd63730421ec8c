"""
Tools built on the TextVault SDK: configuration and CLI.
"""
