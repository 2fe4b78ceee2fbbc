"""Pure booking rules: slot partitioning, lifecycle, queue order and refunds.

Nothing in this package performs I/O; the services layer feeds it rows and
persists its decisions.
"""
