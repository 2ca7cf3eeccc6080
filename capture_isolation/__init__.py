"""capture_isolation: extension isolation for forensic evidence capture.

Disables every other disableable browser extension for the duration of a
capture, keeps a durable hash-sealed record of what was changed, restores it
afterwards (or on the next boot after a crash), and reports interference while
isolation is active.
"""

__version__ = "0.1.0"
