"""Live menu: categories and items with change events pushed over SSE."""
