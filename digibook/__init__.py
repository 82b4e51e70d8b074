"""
Digibook - Source Package

A single-user personal-finance ledger that tracks bank accounts,
credit cards, pending transactions and recurring ("fixed") expenses,
and derives projected balances, paycheck schedules and
budget-vs-actual insights.

DESIGN PRINCIPLES:
1. Every balance mutation happens inside one store transaction
2. Validation reports problems as data, commands raise
3. No silent corrections
4. Every state change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Digibook Team"
