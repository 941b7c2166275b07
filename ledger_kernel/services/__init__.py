"""Imperative shell: allocation, posting, reversal."""
