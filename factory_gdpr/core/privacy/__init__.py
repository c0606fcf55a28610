"""
Personal-data governance: encrypted inventory, consents, anonymization,
erasure/export requests, retention sweeps and compliance reporting.
"""
