"""mail/ -- Outbound email for Tasklane.

Layer rule: mail/ imports only stdlib and core/. auth/ depends on the
EmailSender port defined here, never on a concrete transport.
"""
