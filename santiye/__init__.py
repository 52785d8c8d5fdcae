"""
Şantiye: construction-site financial backend (transactions, invoices, hakediş)
"""
__version__ = "1.0.0"
