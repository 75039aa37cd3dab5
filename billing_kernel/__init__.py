"""
Billing Kernel - invoice consolidation and reconciliation

Bills waste movements (inward collections, outward dispatches) through GST
invoices with:
- Collision-free sequential numbering under concurrent writers
- At most one invoice per movement record
- Whole-unit GST rounding and tolerance-based payment status
- Append mode that replaces an invoice's linkage set atomically
- Best-effort per-record projection of invoice totals for reporting
"""

__version__ = "0.1.0"
