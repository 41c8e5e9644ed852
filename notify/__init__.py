"""notify/ -- Outbound email for the credential lifecycle.

Layer rule: notify/ imports auth.errors and core/ only. auth/ never imports
notify/ at module level except for the Notifier protocol type.
"""
