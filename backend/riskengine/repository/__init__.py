"""Storage collaborator: the ``RiskStore`` contract and its implementations.

Import implementations from their modules (``repository.sql``,
``repository.memory``); this package stays import-free so services can
depend on ``repository.base`` without cycles.
"""
