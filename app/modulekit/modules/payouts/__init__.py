"""
Payouts module.

Wallet balances (credit/debit ledger), phone OTP verification, linked payout
provider accounts, and cashout requests gated by both verifications plus a
fraud assessment.
"""
