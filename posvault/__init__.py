"""
posvault: backup, encryption, scheduling and restore for POS back-office state
"""

__version__ = "1.0.0"
