"""Single-election voting portal: one vote per position, tallied for admins."""

__version__ = "1.0.0"
