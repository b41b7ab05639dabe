"""
acmepki - certificate lifecycle management over ACME HTTP-01
"""

__version__ = "0.1.0"
