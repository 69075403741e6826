"""notify/ -- Outbound notifications (password reset email) for AuthKit.

Layer rule: notify/ imports only stdlib, third-party libraries and core/.
auth/ hands messages to notify/ through NotificationDispatcher; notify/ never
imports from auth/ or api/.
"""
