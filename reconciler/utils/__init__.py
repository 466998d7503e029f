"""
Subscription Reconciler - Utilities Package
"""
