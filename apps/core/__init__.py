"""
Core platform pieces shared by every app: base model, errors, logging,
request tracking and the ability permission class.
"""
