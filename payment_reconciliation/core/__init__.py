"""Core payment logic: state machine, reconciliation, initiation and invoices."""
