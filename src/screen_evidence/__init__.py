"""
screen-evidence: forensic evidence generation for screen recordings.

Turns a finished capture into tamper-evident evidence: SHA-256/SHA-512
digests, NTP-verified time with an optional timestamp authority token, a
signed chain of custody log and a forensic manifest.
"""

__version__ = "0.1.0"
