"""
Session-side components: the connection lifecycle state machine, its
back-off policy and failure diagnostics, plus the driver that ticks it.
"""
