"""
Loyalty module.

- Members with a points balance, lifetime points and a tier derived from lifetime points
- Earn (tier multiplier applied), spend, staff adjustments, referral bonus
- Reward catalogue and redemptions
"""
