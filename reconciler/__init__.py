"""
Subscription Reconciler

Payment webhook ingestion and subscription state reconciliation.
"""
