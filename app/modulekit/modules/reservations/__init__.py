"""Table reservations with a small staff-driven status workflow."""
