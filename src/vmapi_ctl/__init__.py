"""Command-line entry points for the VMAPI storage layer."""
