"""
Forensic evidence modules for screen recordings.

Follows the ISO/IEC 27037 and NIST SP 800-86 guidance on identification,
collection and preservation of digital evidence.
"""
